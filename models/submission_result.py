"""
Submission Result Models
Normalized responses returned by servicer adapters
"""

from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Literal
from pydantic import BaseModel, Field

SubmissionStatus = Literal["pending", "in_review", "accepted", "rejected", "additional_info_needed"]

SUBMISSION_STATUSES = ["pending", "in_review", "accepted", "rejected", "additional_info_needed"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SubmissionResult(BaseModel):
    success: bool
    tracking_number: Optional[str] = None
    confirmation_number: Optional[str] = None
    submitted_at: datetime = Field(default_factory=utc_now)
    estimated_response_time: Optional[int] = None  # milliseconds
    next_steps: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    raw_response: Optional[Dict[str, Any]] = None

    def get_reference(self) -> Optional[str]:
        """Get the number a servicer will recognize for status checks"""
        return self.tracking_number or self.confirmation_number

    def get_primary_error(self) -> str:
        return self.errors[0] if self.errors else "Submission failed"


class StatusCheckResult(BaseModel):
    status: SubmissionStatus = "pending"
    message: Optional[str] = None
    last_updated: datetime = Field(default_factory=utc_now)

    @classmethod
    def normalize_status(cls, status: Optional[str]) -> str:
        """Map a servicer-reported status onto the supported set"""
        value = (status or "").strip().lower().replace(" ", "_").replace("-", "_")
        return value if value in SUBMISSION_STATUSES else "pending"


class ConnectionTestResult(BaseModel):
    success: bool
    message: str
