"""
Application Models
Prepared loss mitigation package and its servicer-specific transformation
"""

from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PreparedDocument(BaseModel):
    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    type: str
    file_name: str
    content: bytes = b""
    mime_type: str = "application/pdf"
    size: int = 0

    @model_validator(mode="after")
    def _fill_size(self):
        if not self.size:
            self.size = len(self.content)
        return self

    @property
    def extension(self) -> str:
        """File extension without the dot, 'pdf' when missing"""
        if "." not in self.file_name:
            return "pdf"
        return self.file_name.rsplit(".", 1)[-1] or "pdf"

    def get_size_mb(self) -> float:
        return self.size / (1024 * 1024)


class PreparedApplication(BaseModel):
    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    case_id: str
    loan_number: str
    borrower_name: str
    borrower_last_name: Optional[str] = None
    documents: List[PreparedDocument] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    prepared_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _fill_last_name(self):
        if not self.borrower_last_name:
            parts = self.borrower_name.split()
            self.borrower_last_name = parts[-1] if parts else ""
        return self

    @property
    def borrower_first_name(self) -> str:
        parts = self.borrower_name.split()
        return parts[0] if parts else ""

    def get_document_types(self) -> List[str]:
        return [doc.type for doc in self.documents]

    def get_total_size(self) -> int:
        return sum(doc.size for doc in self.documents)

    def has_document_type(self, *document_types: str) -> bool:
        """Check whether any document matches one of the given types"""
        return any(doc.type in document_types for doc in self.documents)


class TransformedApplication(BaseModel):
    servicer_id: str
    format: str
    data: Dict[str, Any] = Field(default_factory=dict)
    attachments: List[Dict[str, Any]] = Field(default_factory=list)
    headers: Dict[str, str] = Field(default_factory=dict)
    # Generation-time metadata; not part of the deterministic payload
    generated_at: datetime = Field(default_factory=utc_now)

    def payload_equals(self, other: "TransformedApplication") -> bool:
        """Compare everything except generation-time metadata"""
        return self.model_dump(exclude={"generated_at"}) == other.model_dump(exclude={"generated_at"})
