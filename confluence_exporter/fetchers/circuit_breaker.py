"""Circuit breaker guarding the Confluence API."""

import logging
import time
from typing import Callable


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    Opens after ``failure_threshold`` consecutive failures and refuses calls
    for ``reset_timeout`` seconds. After the cooldown a single trial call is
    let through (half-open): success closes the circuit, failure re-opens it.
    """

    CLOSED = 'closed'
    OPEN = 'open'
    HALF_OPEN = 'half_open'

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger = None
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self.logger = logger or logging.getLogger('confluence_exporter.circuit_breaker')
        self.failure_count = 0
        self.opened_at = None
        self._trial_in_flight = False

    @property
    def state(self) -> str:
        if self.opened_at is None:
            return self.CLOSED
        if self._clock() - self.opened_at >= self.reset_timeout:
            return self.HALF_OPEN
        return self.OPEN

    def can_attempt(self) -> bool:
        """Whether a call may be made right now."""
        state = self.state
        if state == self.CLOSED:
            return True
        if state == self.HALF_OPEN and not self._trial_in_flight:
            self._trial_in_flight = True
            return True
        return False

    def record_success(self) -> None:
        if self.opened_at is not None:
            self.logger.info("Circuit breaker reset")
        self.failure_count = 0
        self.opened_at = None
        self._trial_in_flight = False

    def record_failure(self) -> None:
        self.failure_count += 1
        if self._trial_in_flight or (
            self.opened_at is None and self.failure_count >= self.failure_threshold
        ):
            self.opened_at = self._clock()
            self._trial_in_flight = False
            self.logger.warning(f"Circuit breaker opened for {self.reset_timeout:g} seconds")

    def release_trial(self) -> None:
        """Give up a half-open trial slot without counting it either way (e.g. on cancellation)."""
        self._trial_in_flight = False

    def retry_after(self) -> float:
        """Seconds until the circuit allows a trial call."""
        if self.opened_at is None:
            return 0.0
        return max(0.0, self.reset_timeout - (self._clock() - self.opened_at))


__all__ = ['CircuitBreaker']
