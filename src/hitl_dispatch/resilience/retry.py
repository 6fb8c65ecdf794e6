"""
Retry policy for human-tier operations.

Tracks attempts per request and decides whether another attempt is
worthwhile. Humans get more retries than machines, and being busy or away
counts as transient.
"""

from __future__ import annotations

import inspect
import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from hitl_dispatch.errors import (
    DEFAULT_RETRYABLE_ERRORS,
    HUMAN_RETRYABLE_ERRORS,
    matches_retryable,
)
from hitl_dispatch.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = get_logger(__name__)


@dataclass
class RetryExhaustedContext:
    """Context passed to ``on_exhausted`` callbacks.

    Attributes:
        attempts: Attempts recorded for the request
        request_id: Request identifier
        duration_ms: Time since the first recorded attempt
    """

    attempts: int
    request_id: str
    duration_ms: float


@dataclass
class RetryConfig:
    """Configuration for retry policy.

    Attributes:
        max_retries: Maximum number of retries
        retryable_errors: Tokens that make an error message retryable
        on_exhausted: Called once when a request's retries run out
    """

    max_retries: int = 3
    retryable_errors: tuple[str, ...] = DEFAULT_RETRYABLE_ERRORS
    on_exhausted: (
        Callable[[str, RetryExhaustedContext], Awaitable[None] | None] | None
    ) = None

    @classmethod
    def for_humans(cls, **overrides: Any) -> RetryConfig:
        """Create a configuration tuned for human responders."""
        return replace(
            cls(max_retries=5, retryable_errors=HUMAN_RETRYABLE_ERRORS),
            **overrides,
        )


@dataclass
class RetryState:
    """Attempt tracking for a single request."""

    attempts: int = 0
    started_at: float = field(default_factory=time.monotonic)
    exhausted_notified: bool = False


class RetryPolicy:
    """Retry policy designed for human-tier operations.

    Example:
        >>> policy = RetryPolicy.for_humans()
        >>> if policy.should_retry(attempt, error):
        ...     await retry()
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize retry policy.

        Args:
            config: Retry configuration
            clock: Monotonic clock in seconds
        """
        self.config = config or RetryConfig()
        self._clock = clock
        self._states: dict[str, RetryState] = {}

    @classmethod
    def for_humans(cls, **overrides: Any) -> RetryPolicy:
        """Create a policy with human-appropriate defaults.

        Five retries; TIMEOUT, UNAVAILABLE, BUSY, AWAY and DO_NOT_DISTURB
        are all retryable.
        """
        return cls(RetryConfig.for_humans(**overrides))

    def should_retry(
        self,
        current_attempt: int,
        error: BaseException | None = None,
        max_retries: int | None = None,
    ) -> bool:
        """Check if a retry should be attempted.

        Args:
            current_attempt: Attempt number (0-based)
            error: Error from the failed attempt; when given, its message
                must contain a retryable token
            max_retries: Override for the configured limit

        Returns:
            True if another attempt should be made
        """
        limit = self.config.max_retries if max_retries is None else max_retries
        if current_attempt >= limit:
            return False

        if error is None:
            return True

        return matches_retryable(str(error), self.config.retryable_errors)

    def record_attempt(self, request_id: str) -> None:
        """Record an attempt for a request."""
        state = self._states.get(request_id)
        if state is None:
            state = RetryState(started_at=self._clock())
            self._states[request_id] = state
        state.attempts += 1

    async def record_attempt_async(self, request_id: str) -> None:
        """Record an attempt and notify ``on_exhausted`` on first exhaustion."""
        self.record_attempt(request_id)

        state = self._states[request_id]
        if not self.is_exhausted(request_id) or state.exhausted_notified:
            return

        state.exhausted_notified = True
        logger.warning(
            "Retries exhausted",
            request_id=request_id,
            attempts=state.attempts,
        )
        if self.config.on_exhausted is None:
            return

        context = RetryExhaustedContext(
            attempts=state.attempts,
            request_id=request_id,
            duration_ms=(self._clock() - state.started_at) * 1000,
        )
        result = self.config.on_exhausted(request_id, context)
        if inspect.isawaitable(result):
            await result

    def is_exhausted(self, request_id: str) -> bool:
        """Check if retries are exhausted for a request.

        Exhausted means more attempts than ``max_retries`` were recorded:
        the first attempt plus ``max_retries`` retries are all allowed.
        """
        state = self._states.get(request_id)
        attempts = state.attempts if state else 0
        return attempts > self.config.max_retries

    def get_attempts(self, request_id: str) -> int:
        """Get the number of attempts recorded for a request."""
        state = self._states.get(request_id)
        return state.attempts if state else 0

    def reset(self, request_id: str) -> None:
        """Forget tracking for a request."""
        self._states.pop(request_id, None)


HumanRetryPolicy = RetryPolicy
