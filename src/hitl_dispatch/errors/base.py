"""错误基类：为分发层提供分层错误体系和结构化错误上下文。

Base error classes for hitl-dispatch.

Provides a layered error hierarchy:
- DispatchError: Base class for all library errors
- ValidationError: Invalid configuration or request values
- RetryError: Retry attempts exhausted
- CircuitOpenError: Circuit breaker rejected the request
- SLAViolationError: Request deadline already passed
- SLAError: Lookup of a request the SLA tracker does not know
- WebhookError: Webhook registration failures
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class ErrorContext:
    """Structured error context for diagnostics.

    Provides actionable information for debugging and error handling.
    """

    field_path: str | None = None
    """Path to the problematic field (e.g., 'task.priority')"""

    details: dict[str, Any] = field(default_factory=dict)
    """Additional details about the error"""

    source: str | None = None
    """Error source (e.g., 'retry', 'circuit_breaker', 'webhook')"""

    hint: str | None = None
    """Actionable hint for resolving the error"""

    def __str__(self) -> str:
        parts = []
        if self.source:
            parts.append(f"[{self.source}]")
        if self.field_path:
            parts.append(f"at '{self.field_path}'")
        if self.hint:
            parts.append(f"(hint: {self.hint})")
        return " ".join(parts)


class DispatchError(Exception):
    """Base class for all hitl-dispatch errors.

    All errors from this library inherit from this class, making it easy
    to catch all library errors with a single except clause.

    Attributes:
        message: Human-readable error message
        context: Optional structured error context
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
    ) -> None:
        self.message = message
        self.context = context or ErrorContext()
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the full error message."""
        ctx_str = str(self.context)
        if ctx_str:
            return f"{self.message} {ctx_str}"
        return self.message

    def with_hint(self, hint: str) -> DispatchError:
        """Add a hint to this error."""
        self.context.hint = hint
        return self


class ValidationError(DispatchError):
    """Validation error for configuration and request values.

    Raised when:
    - Task priority is outside [1, 10]
    - Backoff multiplier or jitter factor is out of range
    - Routing rule has no name or a negative priority
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        field: str | None = None,
        expected: Any = None,
        actual: Any = None,
    ) -> None:
        ctx = context or ErrorContext(source="validation")
        if field:
            ctx.field_path = field
        if expected is not None:
            ctx.details["expected"] = expected
        if actual is not None:
            ctx.details["actual"] = actual
        super().__init__(message, ctx)
        self.field = field
        self.expected = expected
        self.actual = actual


class RetryError(DispatchError):
    """Raised when all retry attempts of an operation failed.

    Attributes:
        attempts: Number of attempts made
        last_error: The error raised by the final attempt
    """

    def __init__(self, message: str, attempts: int, last_error: BaseException) -> None:
        ctx = ErrorContext(source="retry")
        ctx.details["attempts"] = attempts
        ctx.details["last_error"] = str(last_error)
        super().__init__(message, ctx)
        self.attempts = attempts
        self.last_error = last_error
        self.__cause__ = last_error


class CircuitOpenError(DispatchError):
    """Raised when the circuit is open and the request is never attempted."""

    def __init__(
        self,
        message: str = "Circuit breaker is open - human tier is overwhelmed",
        time_until_retry_ms: float | None = None,
    ) -> None:
        ctx = ErrorContext(source="circuit_breaker")
        if time_until_retry_ms is not None:
            ctx.details["time_until_retry_ms"] = time_until_retry_ms
        super().__init__(message, ctx)
        self.time_until_retry_ms = time_until_retry_ms


class SLAViolationError(DispatchError):
    """Raised when a request's SLA deadline has already passed.

    Attributes:
        request_id: Tracked request identifier
        deadline: Absolute deadline of the request
    """

    def __init__(self, message: str, request_id: str, deadline: datetime) -> None:
        ctx = ErrorContext(source="sla")
        ctx.details["request_id"] = request_id
        ctx.details["deadline"] = deadline.isoformat()
        super().__init__(message, ctx)
        self.request_id = request_id
        self.deadline = deadline


class SLAError(DispatchError):
    """Raised when querying a request the SLA tracker is not tracking."""

    def __init__(self, request_id: str) -> None:
        ctx = ErrorContext(source="sla")
        ctx.details["request_id"] = request_id
        super().__init__(f"Request {request_id} not tracked", ctx)
        self.request_id = request_id


class WebhookError(DispatchError):
    """Error during webhook registration.

    Raised when:
    - URL is malformed or not http/https
    - Webhook subscribes to no event types
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        url: str | None = None,
    ) -> None:
        ctx = context or ErrorContext(source="webhook")
        if url:
            ctx.details["url"] = url
        super().__init__(message, ctx)
        self.url = url
