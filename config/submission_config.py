"""
Submission Configuration
Retry, circuit breaker, scheduling, health and escalation settings
"""

from typing import Dict, List, Any, Optional

from .yaml_config import YAMLConfigLoader

PRIORITIES = ["urgent", "high", "normal", "low"]

DEFAULT_MAX_RETRIES = {"urgent": 5, "high": 4, "normal": 3, "low": 2}

DEFAULT_PRIORITY_DELAYS_MS = {
    "urgent": 0,
    "high": 5 * 60 * 1000,
    "normal": 30 * 60 * 1000,
    "low": 60 * 60 * 1000
}


class SubmissionConfig:
    """Configuration for submission orchestration"""

    def __init__(self, yaml_loader: Optional[YAMLConfigLoader] = None):
        self.yaml_loader = yaml_loader or YAMLConfigLoader()

    # Retry
    def get_base_delay_ms(self) -> float:
        return float(self.yaml_loader.get_setting("retry", "base_delay_ms", 5000))

    def get_max_delay_ms(self) -> float:
        return float(self.yaml_loader.get_setting("retry", "max_delay_ms", 300000))

    def get_jitter_ratio(self) -> float:
        return float(self.yaml_loader.get_setting("retry", "jitter_ratio", 0.3))

    def get_max_retries_by_priority(self) -> Dict[str, int]:
        """Get retry budget per priority"""
        configured = self.yaml_loader.get_setting("retry", "max_retries", {}) or {}
        merged = dict(DEFAULT_MAX_RETRIES)
        merged.update({key: int(value) for key, value in configured.items()})
        return merged

    def get_default_max_retries(self) -> int:
        return int(self.yaml_loader.get_setting("retry", "default_max_retries", 3))

    # Circuit breaker
    def get_circuit_breaker_settings(self) -> Dict[str, Any]:
        """Get circuit breaker thresholds"""
        return {
            "failure_threshold": int(self.yaml_loader.get_setting("circuit_breaker", "failure_threshold", 5)),
            "success_threshold": int(self.yaml_loader.get_setting("circuit_breaker", "success_threshold", 3)),
            "timeout_ms": float(self.yaml_loader.get_setting("circuit_breaker", "timeout_ms", 60000))
        }

    # Scheduling
    def get_priority_delay_ms(self, priority: str) -> float:
        """Get the first-attempt delay for a priority"""
        configured = self.yaml_loader.get_setting("scheduling", "priority_delays_ms", {}) or {}
        delays = dict(DEFAULT_PRIORITY_DELAYS_MS)
        delays.update(configured)
        default = self.yaml_loader.get_setting("scheduling", "default_priority_delay_ms", 30 * 60 * 1000)
        return float(delays.get(priority, default))

    def get_max_concurrent_submissions(self) -> int:
        return int(self.yaml_loader.get_setting("scheduling", "max_concurrent_submissions", 5))

    # Health
    def get_health_check_interval_seconds(self) -> float:
        return float(self.yaml_loader.get_setting("health", "check_interval_seconds", 60))

    def get_max_pending_tasks(self) -> int:
        return int(self.yaml_loader.get_setting("health", "max_pending_tasks", 50))

    def get_max_pending_age_hours(self) -> float:
        return float(self.yaml_loader.get_setting("health", "max_pending_age_hours", 2))

    # Escalation
    def get_repeated_error_threshold(self) -> int:
        return int(self.yaml_loader.get_setting("escalation", "repeated_error_threshold", 3))

    def get_deadline_window_hours(self) -> float:
        return float(self.yaml_loader.get_setting("escalation", "deadline_window_hours", 24))

    def get_immediate_priorities(self) -> List[str]:
        """Priorities that are processed synchronously and always escalate on failure"""
        return list(self.yaml_loader.get_setting("escalation", "immediate_priorities", ["urgent", "high"]))

    # Channels
    def get_default_channel(self) -> str:
        return self.yaml_loader.get_setting("channels", "default", "portal")

    def is_valid_priority(self, priority: str) -> bool:
        return priority in PRIORITIES

    def reload_config(self):
        """Reload configuration from YAML file"""
        self.yaml_loader.reload_config()
