"""
Submission Exceptions

Error taxonomy for servicer submissions. The retry strategy classifies
failures by these types first and by message text second.
"""

from typing import List, Optional


class SubmissionError(Exception):
    """Base exception for all submission engine errors."""
    pass


class ConfigurationError(SubmissionError):
    """
    Raised when servicer or submission configuration is invalid.

    This includes YAML syntax errors and servicer entries that name an
    adapter that is not registered.
    """
    pass


class UnknownServicerError(SubmissionError):
    """Raised when a servicer id cannot be resolved to an adapter."""
    def __init__(self, message: str, servicer_id: str = None):
        self.servicer_id = servicer_id
        super().__init__(message)


class TransportError(SubmissionError):
    """
    Raised for transient delivery failures.

    Network errors, timeouts and 5xx responses from the servicer.
    """
    def __init__(self, message: str, status_code: int = None, response_body: str = None):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class AuthenticationError(SubmissionError):
    """Raised when the servicer rejects our credentials. Never retried."""
    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class SubmissionValidationError(SubmissionError):
    """
    Raised when a package fails servicer validation. Never retried.

    Carries the individual validation errors.
    """
    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or []
        super().__init__(message)


class CircuitOpenError(SubmissionError):
    """
    Raised by the orchestrator when a servicer's circuit breaker is open.

    Retryable, and not counted against the breaker itself.
    """
    def __init__(self, servicer_id: str, remaining_ms: float = 0):
        self.servicer_id = servicer_id
        self.remaining_ms = remaining_ms
        super().__init__(f"Circuit breaker open for servicer {servicer_id}")


class SubmissionFailedError(SubmissionError):
    """Raised when an adapter reports an unsuccessful submission."""
    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or []
        super().__init__(message)
