"""人在回路任务分发：面向慢速、不可靠执行者的可靠调度。

hitl-dispatch: Reliable dispatch of work to humans and agents.

Resilience for human-tier operations (backoff, retry, circuit breaking,
SLA tracking), task routing among agents, and signed webhook delivery.
"""

from __future__ import annotations

from hitl_dispatch.dispatch import DispatchResult, NotificationDispatcher
from hitl_dispatch.errors import (
    CircuitOpenError,
    DispatchError,
    RetryError,
    SLAError,
    SLAViolationError,
    ValidationError,
    WebhookError,
)
from hitl_dispatch.resilience import (
    BackoffConfig,
    CircuitBreaker,
    CircuitBreakerConfig,
    ExponentialBackoff,
    HumanCircuitBreaker,
    HumanRetryPolicy,
    Priority,
    ResilientExecutor,
    RetryPolicy,
    SLAConfig,
    SLATier,
    SLATracker,
    WithRetryOptions,
    with_retry,
)
from hitl_dispatch.routing import (
    AgentAvailabilityTracker,
    AgentInfo,
    AgentStatus,
    CapabilityRouter,
    CompositeBalancer,
    LeastBusyBalancer,
    PriorityQueueBalancer,
    RoundRobinBalancer,
    RouteResult,
    RoutingRule,
    RoutingRuleEngine,
    TaskRequest,
    create_balancer,
)
from hitl_dispatch.telemetry import RoutingMetricsCollector, get_logger
from hitl_dispatch.transport import ContactChannel, Contacts, TransportSender
from hitl_dispatch.webhooks import (
    WebhookConfig,
    WebhookEventType,
    WebhookRegistry,
    WebhookRegistryOptions,
    sign_payload,
    verify_signature,
)

__version__ = "0.1.0"

__all__ = [
    # Errors
    "CircuitOpenError",
    "DispatchError",
    "RetryError",
    "SLAError",
    "SLAViolationError",
    "ValidationError",
    "WebhookError",
    # Resilience
    "BackoffConfig",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "ExponentialBackoff",
    "HumanCircuitBreaker",
    "HumanRetryPolicy",
    "Priority",
    "ResilientExecutor",
    "RetryPolicy",
    "SLAConfig",
    "SLATier",
    "SLATracker",
    "WithRetryOptions",
    "with_retry",
    # Routing
    "AgentAvailabilityTracker",
    "AgentInfo",
    "AgentStatus",
    "CapabilityRouter",
    "CompositeBalancer",
    "LeastBusyBalancer",
    "PriorityQueueBalancer",
    "RoundRobinBalancer",
    "RouteResult",
    "RoutingRule",
    "RoutingRuleEngine",
    "TaskRequest",
    "create_balancer",
    # Dispatch
    "DispatchResult",
    "NotificationDispatcher",
    # Telemetry
    "RoutingMetricsCollector",
    "get_logger",
    # Transport
    "ContactChannel",
    "Contacts",
    "TransportSender",
    # Webhooks
    "WebhookConfig",
    "WebhookEventType",
    "WebhookRegistry",
    "WebhookRegistryOptions",
    "sign_payload",
    "verify_signature",
]
