"""Per-upstream circuit breaker."""

import logging
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class CircuitState(StrEnum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, calls blocked
    HALF_OPEN = "half_open"  # Probing whether the upstream recovered


class CircuitOpenError(Exception):
    """Raised instead of calling an upstream whose circuit is open."""


class CircuitBreaker:
    """Opens after ``failure_threshold`` consecutive failures.

    After ``recovery_timeout`` seconds the next call is let through as a probe
    (half-open). A successful probe closes the circuit, a failed one reopens it.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        failure_exceptions: tuple[type[BaseException], ...] = (Exception,),
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_exceptions = failure_exceptions
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitState:
        return self._state

    def allow_request(self) -> bool:
        if self._state == CircuitState.OPEN:
            if self._clock() - self._opened_at < self.recovery_timeout:
                return False
            self._state = CircuitState.HALF_OPEN
            logger.info(f"Circuit '{self.name}' half-open, probing upstream")
        return True

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info(f"Circuit '{self.name}' closed after successful call")
        self._state = CircuitState.CLOSED
        self._failure_count = 0

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            if self._state != CircuitState.OPEN:
                logger.warning(f"Circuit '{self.name}' opened after {self._failure_count} failure(s)")
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Run ``func`` under the breaker; raises CircuitOpenError when blocked."""
        if not self.allow_request():
            raise CircuitOpenError(f"Circuit '{self.name}' is open")
        try:
            result = await func(*args, **kwargs)
        except self.failure_exceptions:
            self.record_failure()
            raise
        self.record_success()
        return result

    def snapshot(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
        }
