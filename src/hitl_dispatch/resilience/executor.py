"""弹性执行器：统一的重试、熔断和 SLA 控制。

Retry orchestration for human-tier operations.

Composes backoff, circuit breaking and SLA tracking around an arbitrary
operation. Per-attempt errors stay silent until retries run out; then the
caller's escalation callback is invoked or a typed error is raised.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from hitl_dispatch.errors import (
    CircuitOpenError,
    RetryError,
    SLAViolationError,
    ValidationError,
)
from hitl_dispatch.resilience.backoff import BackoffConfig, ExponentialBackoff
from hitl_dispatch.resilience.circuit_breaker import CircuitBreaker
from hitl_dispatch.resilience.sla import SLATracker
from hitl_dispatch.telemetry.logger import bind_log_context, get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass
class EscalationContext:
    """Context passed to ``on_escalate`` once retries are exhausted.

    Attributes:
        attempts: Number of attempts made
        last_error: Error raised by the final attempt
        total_duration_ms: Time since the first attempt started
    """

    attempts: int
    last_error: BaseException
    total_duration_ms: float


@dataclass
class WithRetryOptions(Generic[T]):
    """Options for :func:`with_retry`.

    Attributes:
        max_retries: Retries after the first attempt
        backoff: Backoff settings; human defaults when None
        circuit_breaker: Breaker consulted before starting and updated per attempt
        sla_tracker: Tracker checked before every attempt (needs request_id)
        request_id: Identifier of the tracked request
        on_escalate: Called with an EscalationContext on exhaustion
        use_escalation_result: Return the escalation result instead of raising
    """

    max_retries: int = 3
    backoff: BackoffConfig | ExponentialBackoff | None = None
    circuit_breaker: CircuitBreaker | None = None
    sla_tracker: SLATracker | None = None
    request_id: str | None = None
    on_escalate: Callable[[EscalationContext], T | Awaitable[T]] | None = None
    use_escalation_result: bool = False

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValidationError(
                "max_retries must be non-negative",
                field="max_retries",
                expected=">= 0",
                actual=self.max_retries,
            )


def _resolve_backoff(backoff: BackoffConfig | ExponentialBackoff | None) -> ExponentialBackoff:
    if backoff is None:
        return ExponentialBackoff.for_humans()
    if isinstance(backoff, ExponentialBackoff):
        return backoff
    return ExponentialBackoff(backoff)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def with_retry(
    operation: Callable[[], T | Awaitable[T]],
    options: WithRetryOptions[T] | None = None,
    *,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
) -> T:
    """Run an operation with retry, circuit breaking and SLA checks.

    Args:
        operation: Zero-argument callable, sync or async
        options: Retry options
        on_retry: Called with (attempt, error, delay_ms) before each backoff sleep

    Returns:
        The operation's result, or the escalation result when
        ``use_escalation_result`` is set

    Raises:
        CircuitOpenError: If the breaker is open before the first attempt
        SLAViolationError: If the tracked request is past its deadline
        RetryError: If every attempt failed and no escalation result is used
    """
    options = options or WithRetryOptions()
    with bind_log_context(request_id=options.request_id):
        return await _run_with_retry(operation, options, on_retry)


async def _run_with_retry(
    operation: Callable[[], T | Awaitable[T]],
    options: WithRetryOptions[T],
    on_retry: Callable[[int, BaseException, float], None] | None,
) -> T:
    backoff = _resolve_backoff(options.backoff)
    breaker = options.circuit_breaker
    tracker = options.sla_tracker
    request_id = options.request_id

    if breaker is not None and breaker.is_open():
        raise CircuitOpenError(time_until_retry_ms=breaker.get_time_until_retry_ms())

    started = time.monotonic()
    last_error: BaseException | None = None
    attempts = 0

    for attempt in range(options.max_retries + 1):
        attempts += 1

        if tracker is not None and request_id is not None and tracker.is_violated(request_id):
            tracked = tracker.get_tracked(request_id)
            raise SLAViolationError(
                f"SLA violated for request {request_id}",
                request_id,
                tracked.deadline_at,
            )

        try:
            result = await _maybe_await(operation())
        except Exception as e:
            last_error = e
            if breaker is not None:
                breaker.record_failure()
        else:
            if breaker is not None:
                breaker.record_success()
            return result

        if attempt >= options.max_retries:
            break

        delay_ms = backoff.get_delay_with_jitter(attempt)
        logger.debug(
            "Attempt failed, retrying",
            attempt=attempt + 1,
            delay_ms=delay_ms,
            error=str(last_error),
        )
        if on_retry is not None:
            on_retry(attempt + 1, last_error, delay_ms)
        await asyncio.sleep(delay_ms / 1000)

    total_duration_ms = (time.monotonic() - started) * 1000

    if options.on_escalate is not None:
        logger.warning(
            "Retries exhausted, escalating",
            attempts=attempts,
        )
        escalation = await _maybe_await(
            options.on_escalate(
                EscalationContext(
                    attempts=attempts,
                    last_error=last_error,
                    total_duration_ms=total_duration_ms,
                )
            )
        )
        if options.use_escalation_result:
            return escalation

    raise RetryError(
        f"Operation failed after {attempts} attempts: {last_error}",
        attempts,
        last_error,
    )


@dataclass
class ExecutionStats:
    """Counters kept by a :class:`ResilientExecutor`."""

    executions: int = 0
    successes: int = 0
    failures: int = 0
    circuit_rejections: int = 0
    sla_violations: int = 0


class ResilientExecutor:
    """Executor sharing one breaker and SLA tracker across many calls.

    Example:
        >>> executor = ResilientExecutor(
        ...     WithRetryOptions(max_retries=2),
        ...     circuit_breaker=HumanCircuitBreaker(),
        ... )
        >>> answer = await executor.execute(ask_reviewer, request_id="req-1")
    """

    def __init__(
        self,
        options: WithRetryOptions[Any] | None = None,
        *,
        circuit_breaker: CircuitBreaker | None = None,
        sla_tracker: SLATracker | None = None,
        name: str = "default",
    ) -> None:
        """Initialize resilient executor.

        Args:
            options: Default retry options for every execution
            circuit_breaker: Shared breaker (overrides options.circuit_breaker)
            sla_tracker: Shared tracker (overrides options.sla_tracker)
            name: Identifier for this executor
        """
        self._options = options or WithRetryOptions()
        self._circuit_breaker = circuit_breaker or self._options.circuit_breaker
        self._sla_tracker = sla_tracker or self._options.sla_tracker
        self._name = name
        self._stats = ExecutionStats()

    @property
    def name(self) -> str:
        """Get executor name."""
        return self._name

    @property
    def circuit_state(self) -> str:
        """Get current circuit breaker state."""
        if self._circuit_breaker:
            return self._circuit_breaker.state.value
        return "disabled"

    async def execute(
        self,
        operation: Callable[[], T | Awaitable[T]],
        request_id: str | None = None,
    ) -> T:
        """Execute an operation with the executor's shared resilience state.

        Args:
            operation: Zero-argument callable, sync or async
            request_id: Tracked request for SLA checks

        Returns:
            Operation result
        """
        options = WithRetryOptions(
            max_retries=self._options.max_retries,
            backoff=self._options.backoff,
            circuit_breaker=self._circuit_breaker,
            sla_tracker=self._sla_tracker,
            request_id=request_id or self._options.request_id,
            on_escalate=self._options.on_escalate,
            use_escalation_result=self._options.use_escalation_result,
        )

        self._stats.executions += 1
        try:
            result = await with_retry(operation, options)
        except CircuitOpenError:
            self._stats.circuit_rejections += 1
            raise
        except SLAViolationError:
            self._stats.sla_violations += 1
            raise
        except RetryError:
            self._stats.failures += 1
            raise
        self._stats.successes += 1
        return result

    def get_stats(self) -> dict[str, Any]:
        """Get execution counters and component state.

        Returns:
            Dict with executor statistics
        """
        stats: dict[str, Any] = {
            "name": self._name,
            "executions": self._stats.executions,
            "successes": self._stats.successes,
            "failures": self._stats.failures,
            "circuit_rejections": self._stats.circuit_rejections,
            "sla_violations": self._stats.sla_violations,
        }

        if self._circuit_breaker:
            metrics = self._circuit_breaker.get_metrics()
            stats["circuit_breaker"] = {
                "state": metrics.state.value,
                "failures": metrics.failures,
                "successes": metrics.successes,
                "failure_rate": metrics.failure_rate,
            }

        if self._sla_tracker:
            sla = self._sla_tracker.get_metrics()
            stats["sla"] = {
                "completed": sla.completed,
                "violated": sla.violated,
                "compliance_rate": sla.compliance_rate,
            }

        return stats

    def reset(self) -> None:
        """Reset counters and the circuit breaker."""
        self._stats = ExecutionStats()
        if self._circuit_breaker:
            self._circuit_breaker.reset()
