"""
Resilience layer - Backoff, retry, circuit breaker, and SLA tracking.

This module provides resilience patterns tuned for human responders:
- ExponentialBackoff: Minutes-to-hours delays with jitter
- RetryPolicy: Per-request attempt tracking with substring error matching
- CircuitBreaker: Closed/Open/Half-Open state machine with lazy transitions
- SLATracker: Tiered deadlines with an owned sweep task
- with_retry: Orchestrator composing all of the above
- ResilientExecutor: Shared breaker and tracker across many calls
"""

from hitl_dispatch.resilience.backoff import (
    HUMAN_BASE_DELAY_MS,
    HUMAN_MAX_DELAY_MS,
    BackoffConfig,
    ExponentialBackoff,
)
from hitl_dispatch.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitMetrics,
    CircuitState,
    HumanCircuitBreaker,
)
from hitl_dispatch.resilience.executor import (
    EscalationContext,
    ExecutionStats,
    ResilientExecutor,
    WithRetryOptions,
    with_retry,
)
from hitl_dispatch.resilience.retry import (
    HumanRetryPolicy,
    RetryConfig,
    RetryExhaustedContext,
    RetryPolicy,
    RetryState,
)
from hitl_dispatch.resilience.sla import (
    Priority,
    SLAConfig,
    SLADeadline,
    SLAMetrics,
    SLATier,
    SLATracker,
    SLAViolationContext,
    SLAWarningContext,
    TrackedRequest,
)

__all__ = [
    "HUMAN_BASE_DELAY_MS",
    "HUMAN_MAX_DELAY_MS",
    "BackoffConfig",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitMetrics",
    "CircuitState",
    "EscalationContext",
    "ExecutionStats",
    "ExponentialBackoff",
    "HumanCircuitBreaker",
    "HumanRetryPolicy",
    "Priority",
    "ResilientExecutor",
    "RetryConfig",
    "RetryExhaustedContext",
    "RetryPolicy",
    "RetryState",
    "SLAConfig",
    "SLADeadline",
    "SLAMetrics",
    "SLATier",
    "SLATracker",
    "SLAViolationContext",
    "SLAWarningContext",
    "TrackedRequest",
    "WithRetryOptions",
    "with_retry",
]
