"""
Consecutive-failure circuit breaker shared by every call made through one client.
"""

import threading

from loguru import logger


class CircuitBreaker:
    """Counts consecutive definitive failures; opens at ``threshold``."""

    def __init__(self, threshold: int = 5):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.threshold = threshold
        self._failures = 0
        self._lock = threading.Lock()

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._failures >= self.threshold

    def status(self) -> tuple[int, bool]:
        """Return (consecutive_failures, is_open) as one consistent snapshot."""
        with self._lock:
            return self._failures, self._failures >= self.threshold

    def record_success(self) -> None:
        with self._lock:
            previous = self._failures
            self._failures = 0
        if previous >= self.threshold:
            logger.bind(event="circuit_closed").info("Circuit breaker closed after success")

    def record_failure(self) -> int:
        """Increment the counter and return the new value."""
        with self._lock:
            self._failures += 1
            failures = self._failures
        if failures == self.threshold:
            logger.bind(event="circuit_open", failures=failures).error(
                f"Circuit breaker opened after {failures} consecutive failures"
            )
        return failures

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
        logger.bind(event="circuit_reset").info("Circuit breaker reset")
