"""
Submission Task Model
Represents one document package submission in the orchestration queue
"""

from sqlalchemy import Column, String, DateTime, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import json
import time
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

Base = declarative_base()

TASK_STATUSES = ['pending', 'in_progress', 'completed', 'failed', 'escalated']
TERMINAL_STATUSES = ['completed', 'failed', 'escalated']
TASK_CHANNELS = ['api', 'portal', 'email', 'manual']
PRIORITY_RANK = {'urgent': 4, 'high': 3, 'normal': 2, 'low': 1}


def generate_task_id() -> str:
    """Opaque task id: sub_<epoch ms>_<random>"""
    return f"sub_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class SubmissionTask(Base):
    __tablename__ = "submission_tasks"

    id = Column(String(64), primary_key=True, default=generate_task_id)
    transaction_id = Column(String(255), nullable=False, index=True)
    servicer_id = Column(String(100), nullable=False, index=True)
    document_type = Column(String(100), nullable=False)
    priority = Column(String(10), nullable=False, default='normal')  # 'urgent', 'high', 'normal', 'low'
    status = Column(String(20), nullable=False, default='pending', index=True)
    retry_count = Column(Integer, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    submission_channel = Column(String(10))  # 'api', 'portal', 'email', 'manual'
    confirmation_number = Column(String(255))
    tracking_number = Column(String(255))
    meta_data = Column("metadata", JSONB, default=dict)
    error_history = Column(JSONB, default=list)
    last_attempt = Column(DateTime(timezone=True))
    next_retry = Column(DateTime(timezone=True), index=True)
    submitted_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<SubmissionTask(id='{self.id}', servicer='{self.servicer_id}', status='{self.status}', priority='{self.priority}')>"

    @classmethod
    def create(
        cls,
        transaction_id: str,
        servicer_id: str,
        document_type: str,
        priority: str,
        max_retries: int,
        metadata: Optional[Dict[str, Any]] = None
    ) -> "SubmissionTask":
        """Create a new pending task"""
        now = datetime.now(timezone.utc)
        return cls(
            id=generate_task_id(),
            transaction_id=transaction_id,
            servicer_id=servicer_id,
            document_type=document_type,
            priority=priority,
            status='pending',
            retry_count=0,
            max_retries=max_retries,
            meta_data=metadata or {},
            error_history=[],
            created_at=now,
            updated_at=now
        )

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "SubmissionTask":
        """Rebuild a task from a persisted row"""
        return cls(
            id=record['id'],
            transaction_id=str(record['transaction_id']),
            servicer_id=record['servicer_id'],
            document_type=record['document_type'],
            priority=record.get('priority') or 'normal',
            status=record.get('status') or 'pending',
            retry_count=record.get('retry_count') or 0,
            max_retries=record.get('max_retries') if record.get('max_retries') is not None else 3,
            submission_channel=record.get('submission_channel'),
            confirmation_number=record.get('confirmation_number'),
            tracking_number=record.get('tracking_number'),
            meta_data=_parse_json(record.get('metadata'), {}),
            error_history=_parse_json(record.get('error_history'), []),
            last_attempt=_parse_datetime(record.get('last_attempt')),
            next_retry=_parse_datetime(record.get('next_retry')),
            submitted_at=_parse_datetime(record.get('submitted_at')),
            created_at=_parse_datetime(record.get('created_at')),
            updated_at=_parse_datetime(record.get('updated_at'))
        )

    def to_record(self) -> Dict[str, Any]:
        """Row parameters for persistence. JSON columns are left as Python values."""
        return {
            'id': self.id,
            'transaction_id': self.transaction_id,
            'servicer_id': self.servicer_id,
            'document_type': self.document_type,
            'priority': self.priority,
            'status': self.status,
            'retry_count': self.retry_count,
            'max_retries': self.max_retries,
            'submission_channel': self.submission_channel,
            'confirmation_number': self.confirmation_number,
            'tracking_number': self.tracking_number,
            'metadata': self.meta_data or {},
            'error_history': self.error_history or [],
            'last_attempt': self.last_attempt,
            'next_retry': self.next_retry,
            'submitted_at': self.submitted_at,
            'created_at': self.created_at,
            'updated_at': self.updated_at
        }

    def to_dict(self, include_document_data: bool = False) -> Dict[str, Any]:
        """Convert to dictionary"""
        metadata = dict(self.meta_data or {})
        if not include_document_data:
            metadata.pop('document_data', None)
        return {
            'id': self.id,
            'transaction_id': self.transaction_id,
            'servicer_id': self.servicer_id,
            'document_type': self.document_type,
            'priority': self.priority,
            'status': self.status,
            'retry_count': self.retry_count,
            'max_retries': self.max_retries,
            'submission_channel': self.submission_channel,
            'confirmation_number': self.confirmation_number,
            'tracking_number': self.tracking_number,
            'metadata': metadata,
            'error_history': list(self.error_history or []),
            'last_attempt': _isoformat(self.last_attempt),
            'next_retry': _isoformat(self.next_retry),
            'submitted_at': _isoformat(self.submitted_at),
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at)
        }

    def add_error(self, error: str, context: Dict[str, Any] = None):
        """Append an entry to the error history"""
        history = list(self.error_history or [])
        history.append({
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'error': error,
            'context': context or {}
        })
        self.error_history = history

    def get_recent_errors(self, count: int) -> List[str]:
        """Get the error strings of the last `count` attempts"""
        return [entry.get('error') for entry in (self.error_history or [])[-count:]]

    def is_pending(self) -> bool:
        return self.status == 'pending'

    def is_in_progress(self) -> bool:
        return self.status == 'in_progress'

    def is_completed(self) -> bool:
        return self.status == 'completed'

    def is_terminal(self) -> bool:
        """Completed, failed and escalated tasks are immutable"""
        return self.status in TERMINAL_STATUSES

    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def priority_rank(self) -> int:
        return PRIORITY_RANK.get(self.priority, 0)

    def get_deadline(self) -> Optional[datetime]:
        """Deadline from metadata, if any"""
        return _parse_datetime((self.meta_data or {}).get('deadline'))

    def get_status_display(self) -> str:
        """Get human-readable status"""
        status_map = {
            'pending': 'Pending',
            'in_progress': 'Submitting',
            'completed': 'Submitted',
            'failed': 'Failed',
            'escalated': 'Escalated to Specialist'
        }
        return status_map.get(self.status, 'Unknown')
