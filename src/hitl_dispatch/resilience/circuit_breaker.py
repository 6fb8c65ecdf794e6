"""
Circuit breaker protecting an overwhelmed human tier.

Implements the circuit breaker pattern with three states:
- Closed: Normal operation, requests pass through
- Open: Too many failures, requests are blocked
- Half-Open: Probing whether responders are available again

Time is an explicit input. Every state inspection first runs
:meth:`CircuitBreaker.advance`, which moves an open circuit to half-open
once the reset timeout has elapsed. There is no background timer.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

from hitl_dispatch.errors import CircuitOpenError
from hitl_dispatch.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker.

    Attributes:
        failure_threshold: Failures that trip a closed circuit
        reset_timeout_ms: Time an open circuit waits before probing
        half_open_max_attempts: Probe attempts allowed while half-open
    """

    failure_threshold: int = 5
    reset_timeout_ms: float = 60_000
    half_open_max_attempts: int = 3

    @classmethod
    def from_env(cls) -> CircuitBreakerConfig:
        """Create configuration from environment variables."""
        return cls(
            failure_threshold=int(os.getenv("HITL_BREAKER_FAILURE_THRESHOLD", "5")),
            reset_timeout_ms=float(os.getenv("HITL_BREAKER_RESET_TIMEOUT_MS", "60000")),
            half_open_max_attempts=int(
                os.getenv("HITL_BREAKER_HALF_OPEN_MAX_ATTEMPTS", "3")
            ),
        )


@dataclass
class CircuitMetrics:
    """Snapshot of circuit breaker counters."""

    failures: int
    successes: int
    state: CircuitState
    failure_rate: float
    last_failure: datetime | None = None
    last_success: datetime | None = None


def should_probe(
    state: CircuitState, last_state_change: float, now: float, reset_timeout_ms: float
) -> bool:
    """Decide whether an open circuit is due to move to half-open.

    Args:
        state: Current stored state
        last_state_change: Clock reading of the last transition (seconds)
        now: Current clock reading (seconds)
        reset_timeout_ms: Configured reset timeout

    Returns:
        True if the circuit should transition to half-open
    """
    if state != CircuitState.OPEN:
        return False
    return (now - last_state_change) * 1000 >= reset_timeout_ms


class CircuitBreaker:
    """Circuit breaker for human-tier requests.

    Example:
        >>> breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=5))
        >>> breaker.throw_if_open()
        >>> try:
        ...     await ask_human()
        ...     breaker.record_success()
        ... except Exception:
        ...     breaker.record_failure()
        ...     raise
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        name: str = "default",
    ) -> None:
        """Initialize circuit breaker.

        Args:
            config: Circuit breaker configuration
            clock: Monotonic clock in seconds
            name: Identifier used in logs
        """
        self.config = config or CircuitBreakerConfig()
        self.name = name
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._last_state_change = clock()
        self._half_open_attempts = 0
        self._last_failure: datetime | None = None
        self._last_success: datetime | None = None

    def advance(self, now: float | None = None) -> CircuitState:
        """Apply time-based transitions and return the resulting state.

        Args:
            now: Clock reading to evaluate at (defaults to the clock)

        Returns:
            Current state after the transition check
        """
        now = self._clock() if now is None else now
        if should_probe(self._state, self._last_state_change, now, self.config.reset_timeout_ms):
            self._state = CircuitState.HALF_OPEN
            self._half_open_attempts = 0
            self._last_state_change = now
            logger.info("Circuit half-open", breaker=self.name)
        return self._state

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        return self.advance()

    def _transition_to(self, new_state: CircuitState) -> None:
        self._state = new_state
        self._last_state_change = self._clock()

    def record_failure(self) -> None:
        """Record a failed request."""
        state = self.advance()
        self._failures += 1
        self._last_failure = datetime.now(timezone.utc)

        if state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.OPEN)
            logger.warning("Circuit re-opened after half-open failure", breaker=self.name)
        elif state == CircuitState.CLOSED and self._failures >= self.config.failure_threshold:
            self._transition_to(CircuitState.OPEN)
            logger.warning(
                "Circuit opened",
                breaker=self.name,
                failures=self._failures,
                threshold=self.config.failure_threshold,
            )

    def record_success(self) -> None:
        """Record a successful request."""
        state = self.advance()
        self._successes += 1
        self._last_success = datetime.now(timezone.utc)

        if state == CircuitState.HALF_OPEN:
            self._failures = 0
            self._transition_to(CircuitState.CLOSED)
            logger.info("Circuit closed", breaker=self.name)

    def is_open(self) -> bool:
        """Check if requests should be blocked."""
        return self.state == CircuitState.OPEN

    def throw_if_open(self) -> None:
        """Raise if the circuit is open.

        Raises:
            CircuitOpenError: If the circuit is open
        """
        if self.is_open():
            raise CircuitOpenError(time_until_retry_ms=self.get_time_until_retry_ms())

    def can_attempt(self) -> bool:
        """Check if an attempt may be made now.

        Closed circuits always allow attempts; half-open circuits allow up
        to ``half_open_max_attempts`` probes.
        """
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN:
            return self._half_open_attempts < self.config.half_open_max_attempts
        return False

    def record_attempt(self) -> None:
        """Count a probe attempt while half-open. No-op in other states."""
        if self.state == CircuitState.HALF_OPEN:
            self._half_open_attempts += 1

    def is_overwhelmed(self) -> bool:
        """Check if the human tier is overwhelmed."""
        return self.is_open()

    def get_failure_rate(self) -> float:
        """Get the failure rate (0-1); 0 with no data."""
        total = self._failures + self._successes
        if total == 0:
            return 0.0
        return self._failures / total

    def get_time_until_retry_ms(self) -> float | None:
        """Get time until an open circuit starts probing.

        Returns:
            Milliseconds until half-open, or None if not open
        """
        now = self._clock()
        if self.advance(now) != CircuitState.OPEN:
            return None
        elapsed_ms = (now - self._last_state_change) * 1000
        return max(0.0, self.config.reset_timeout_ms - elapsed_ms)

    def get_metrics(self) -> CircuitMetrics:
        """Get a snapshot of the breaker's counters."""
        return CircuitMetrics(
            failures=self._failures,
            successes=self._successes,
            state=self.state,
            failure_rate=self.get_failure_rate(),
            last_failure=self._last_failure,
            last_success=self._last_success,
        )

    def reset(self) -> None:
        """Force the circuit closed and zero all counters."""
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._half_open_attempts = 0
        self._last_state_change = self._clock()
        self._last_failure = None
        self._last_success = None

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker(state={self._state.value}, "
            f"failures={self._failures}/{self.config.failure_threshold})"
        )


HumanCircuitBreaker = CircuitBreaker
