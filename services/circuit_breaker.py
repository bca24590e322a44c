"""
Circuit Breaker
Per-servicer breaker that stops submissions to a failing servicer and probes for recovery
"""

import threading
from datetime import datetime, timezone, timedelta
from typing import Callable, Dict, Any, Optional

from utils.logger import get_logger

logger = get_logger(__name__)

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half-open"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CircuitBreaker:
    """
    Breaker states:
    - closed: submissions flow normally
    - open: submissions are refused until the timeout has elapsed since the last failure
    - half-open: one probe at a time is let through; enough successes close the breaker,
      any failure reopens it
    """

    def __init__(
        self,
        servicer_id: str,
        failure_threshold: int = 5,
        success_threshold: int = 3,
        timeout_ms: float = 60000,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.servicer_id = servicer_id
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.timeout_ms = timeout_ms
        self._clock = clock or _utc_now
        self._lock = threading.Lock()

        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[datetime] = None
        self._state = CLOSED
        self._probe_started_at: Optional[datetime] = None

    @property
    def state(self) -> str:
        return self._state

    def is_open(self) -> bool:
        """Check whether calls to the servicer must be refused right now"""
        with self._lock:
            now = self._clock()

            if self._state == OPEN:
                if self.last_failure_time and self._elapsed_ms(self.last_failure_time, now) > self.timeout_ms:
                    self._transition(HALF_OPEN)
                    self._probe_started_at = now
                    return False
                return True

            if self._state == HALF_OPEN:
                # A probe that never reported back frees its slot after the timeout
                if self._probe_started_at and self._elapsed_ms(self._probe_started_at, now) <= self.timeout_ms:
                    return True
                self._probe_started_at = now
                return False

            return False

    def record_success(self):
        """Record a successful submission"""
        with self._lock:
            self.failure_count = 0

            if self._state == HALF_OPEN:
                self._probe_started_at = None
                self.success_count += 1
                if self.success_count >= self.success_threshold:
                    self._transition(CLOSED)
                    self.success_count = 0

    def record_failure(self):
        """Record a failed submission"""
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()

            if self._state == HALF_OPEN:
                # Probation failed
                self._probe_started_at = None
                self.success_count = 0
                self._transition(OPEN)
            elif self.failure_count >= self.failure_threshold and self._state != OPEN:
                self._transition(OPEN)

    def release_probe(self):
        """Free the half-open probe slot when the probe never reached the servicer"""
        with self._lock:
            if self._state == HALF_OPEN:
                self._probe_started_at = None

    def remaining_open_ms(self) -> float:
        """Milliseconds until the breaker lets a call through, 0 when it would now"""
        with self._lock:
            now = self._clock()
            if self._state == OPEN and self.last_failure_time:
                return max(0.0, self.timeout_ms - self._elapsed_ms(self.last_failure_time, now))
            if self._state == HALF_OPEN and self._probe_started_at:
                return max(0.0, self.timeout_ms - self._elapsed_ms(self._probe_started_at, now))
            return 0

    def snapshot(self) -> Dict[str, Any]:
        """State for persistence"""
        with self._lock:
            return {
                "servicer_id": self.servicer_id,
                "state": self._state,
                "failure_count": self.failure_count,
                "success_count": self.success_count,
                "last_failure_time": self.last_failure_time
            }

    def restore(self, snapshot: Dict[str, Any]):
        """Load a persisted snapshot"""
        with self._lock:
            state = snapshot.get("state", CLOSED)
            self._state = state if state in (CLOSED, OPEN, HALF_OPEN) else CLOSED
            # A restored half-open breaker is treated as open until the next probe window
            if self._state == HALF_OPEN:
                self._state = OPEN
            self.failure_count = int(snapshot.get("failure_count") or 0)
            self.success_count = int(snapshot.get("success_count") or 0)
            last_failure = snapshot.get("last_failure_time")
            if isinstance(last_failure, str):
                last_failure = datetime.fromisoformat(last_failure.replace("Z", "+00:00"))
            if last_failure and last_failure.tzinfo is None:
                last_failure = last_failure.replace(tzinfo=timezone.utc)
            self.last_failure_time = last_failure
            self._probe_started_at = None

    def _transition(self, new_state: str):
        if new_state == self._state:
            return
        logger.warning(f"Circuit breaker for {self.servicer_id}: {self._state} -> {new_state}")
        self._state = new_state

    @staticmethod
    def _elapsed_ms(start: datetime, end: datetime) -> float:
        return (end - start) / timedelta(milliseconds=1)
