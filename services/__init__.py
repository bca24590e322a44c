"""
Submission Services
Core services supporting the servicer submission engine
"""

from .database_service import DatabaseService
from .circuit_breaker import CircuitBreaker
from .retry_strategy import ExponentialBackoffStrategy
from .submission_queue_service import SubmissionQueueService
from .intelligence_service import ServicerIntelligenceService
from .email_service import EmailService

__all__ = [
    "DatabaseService",
    "CircuitBreaker",
    "ExponentialBackoffStrategy",
    "SubmissionQueueService",
    "ServicerIntelligenceService",
    "EmailService"
]
