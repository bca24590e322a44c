"""
Submission Engine Models
Task persistence models and adapter data contracts
"""

from .application import PreparedApplication, PreparedDocument, TransformedApplication
from .servicer import ServicerConfig
from .validation_result import ValidationResult
from .submission_result import SubmissionResult, StatusCheckResult, ConnectionTestResult
from .submission_task import SubmissionTask
from .circuit_breaker_state import CircuitBreakerState

__all__ = [
    "PreparedApplication",
    "PreparedDocument",
    "TransformedApplication",
    "ServicerConfig",
    "ValidationResult",
    "SubmissionResult",
    "StatusCheckResult",
    "ConnectionTestResult",
    "SubmissionTask",
    "CircuitBreakerState"
]
