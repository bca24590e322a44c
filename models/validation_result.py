"""
Validation Result Model
Outcome of checking a package against a servicer's requirements
"""

from typing import List, Dict, Any
from pydantic import BaseModel, Field


class ValidationResult(BaseModel):
    valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)

    @classmethod
    def from_findings(cls, errors: List[str], warnings: List[str], suggestions: List[str]) -> "ValidationResult":
        """Build a result; errors are the only thing that blocks submission"""
        return cls(valid=len(errors) == 0, errors=errors, warnings=warnings, suggestions=suggestions)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return self.model_dump()

    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def get_error_summary(self) -> str:
        """Get errors as a single line"""
        return "; ".join(self.errors)
