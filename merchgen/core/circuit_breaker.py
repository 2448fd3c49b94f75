"""Circuit breaker shared by the integration clients.

A breaker opens after `failure_threshold` consecutive failures and rejects
calls until `recovery_timeout` has elapsed. The next call is then let through
as a trial (half-open). A successful trial closes the breaker. A failed trial
opens it again.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration."""

    failure_threshold: int
    recovery_timeout: float


class CircuitBreaker:
    """Async-safe circuit breaker for one external dependency."""

    def __init__(
        self,
        config: CircuitBreakerConfig,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._name = name
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: float | None = None
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def is_closed(self) -> bool:
        return self._state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def _transition(self, new_state: CircuitState) -> None:
        previous = self._state
        self._state = new_state
        extra = {
            "circuit_name": self._name,
            "previous_state": previous.value,
            "new_state": new_state.value,
            "failure_count": self._failure_count,
        }
        if new_state == CircuitState.OPEN:
            logger.warning(
                "Circuit breaker opened",
                extra={**extra, "recovery_timeout": self._config.recovery_timeout},
            )
        else:
            logger.info("Circuit breaker state change", extra=extra)

    async def can_execute(self) -> bool:
        """Check if a call may go out, moving OPEN to HALF_OPEN once recovery is due."""
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if (
                    self._opened_at is not None
                    and self._clock() - self._opened_at >= self._config.recovery_timeout
                ):
                    self._transition(CircuitState.HALF_OPEN)
                    return True
                return False
            return True

    async def record_success(self) -> None:
        """Record a successful call."""
        async with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._opened_at = None
                self._transition(CircuitState.CLOSED)

    async def record_failure(self) -> None:
        """Record a failed call."""
        async with self._lock:
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN or (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self._config.failure_threshold
            ):
                self._opened_at = self._clock()
                self._transition(CircuitState.OPEN)
