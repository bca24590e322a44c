"""
Retry Strategy
Exponential backoff with jitter and error classification for submission retries
"""

import random
from typing import Dict, Any, Optional, Union

from services.exceptions import (
    AuthenticationError,
    CircuitOpenError,
    SubmissionValidationError
)

AUTH_ERROR_MARKERS = ("authentication", "unauthorized")
VALIDATION_ERROR_MARKERS = ("validation", "invalid")


class ExponentialBackoffStrategy:
    """
    Retry policy for submission tasks:
    1. Delay doubles per attempt from the base delay, capped at the max delay
    2. Up to `jitter_ratio` positive jitter spreads retries for the same servicer
    3. Authentication and validation failures are never retried
    """

    def __init__(
        self,
        base_delay_ms: float = 5000,
        max_delay_ms: float = 300000,
        jitter_ratio: float = 0.3,
        max_retries_by_priority: Optional[Dict[str, int]] = None,
        default_max_retries: int = 3
    ):
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.jitter_ratio = jitter_ratio
        self.max_retries_by_priority = max_retries_by_priority or {
            "urgent": 5,
            "high": 4,
            "normal": 3,
            "low": 2
        }
        self.default_max_retries = default_max_retries

    @classmethod
    def from_config(cls, submission_config) -> "ExponentialBackoffStrategy":
        """Build the strategy from SubmissionConfig"""
        return cls(
            base_delay_ms=submission_config.get_base_delay_ms(),
            max_delay_ms=submission_config.get_max_delay_ms(),
            jitter_ratio=submission_config.get_jitter_ratio(),
            max_retries_by_priority=submission_config.get_max_retries_by_priority(),
            default_max_retries=submission_config.get_default_max_retries()
        )

    def calculate_delay(self, attempt_number: int) -> float:
        """
        Delay in milliseconds before the given retry attempt

        Args:
            attempt_number: 1 for the first retry

        Returns:
            min(base * 2^(n-1), max) scaled by 1 + U(0, jitter_ratio)
        """
        delay = min(self.base_delay_ms * (2 ** (attempt_number - 1)), self.max_delay_ms)
        jitter = random.uniform(0, self.jitter_ratio) * delay
        return delay + jitter

    def should_retry(self, task: Any, error: Union[BaseException, str]) -> bool:
        """
        Decide whether a failed task gets another attempt

        Args:
            task: Anything with retry_count and max_retries
            error: The failure, as an exception or message

        Returns:
            False when the budget is spent or the failure is permanent
        """
        if task.retry_count >= task.max_retries:
            return False

        if isinstance(error, CircuitOpenError):
            return True

        if isinstance(error, (AuthenticationError, SubmissionValidationError)):
            return False

        message = str(error).lower()

        # Retrying won't fix a bad credential
        if any(marker in message for marker in AUTH_ERROR_MARKERS):
            return False

        # Identical malformed input fails identically
        if any(marker in message for marker in VALIDATION_ERROR_MARKERS):
            return False

        return True

    def get_max_retries(self, priority: str) -> int:
        """Retry budget for a priority"""
        return self.max_retries_by_priority.get(priority, self.default_max_retries)

    def classify_error(self, error: Union[BaseException, str]) -> str:
        """Short error category for error history and intelligence"""
        if isinstance(error, CircuitOpenError):
            return "circuit_open"
        message = str(error).lower()
        if isinstance(error, AuthenticationError) or any(m in message for m in AUTH_ERROR_MARKERS):
            return "authentication"
        if isinstance(error, SubmissionValidationError) or any(m in message for m in VALIDATION_ERROR_MARKERS):
            return "validation"
        return "transient"
