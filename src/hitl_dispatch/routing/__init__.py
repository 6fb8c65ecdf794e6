"""
Task routing and load balancing.

Provides balancing strategies, rule-based and composite routing, and agent
availability tracking for distributing work among agents.

Example:
    >>> from hitl_dispatch.routing import (
    ...     AgentInfo,
    ...     LeastBusyBalancer,
    ...     TaskRequest,
    ... )
    >>>
    >>> balancer = LeastBusyBalancer([
    ...     AgentInfo(id="alice", skills={"review"}, max_load=5),
    ...     AgentInfo(id="bob", skills={"review"}, max_load=5),
    ... ])
    >>> result = balancer.route(TaskRequest(id="t1", required_skills=["review"]))
    >>> print(f"Routed to: {result.agent.id}")
"""

from hitl_dispatch.routing.availability import (
    AgentAvailability,
    AgentAvailabilityTracker,
    CapacityInfo,
    StatusChangeEvent,
)
from hitl_dispatch.routing.composite import CompositeBalancer, WeightedStrategy
from hitl_dispatch.routing.rules import RoutingRule, RoutingRuleEngine, RuleCondition
from hitl_dispatch.routing.strategy import (
    CapabilityRouter,
    LeastBusyBalancer,
    LoadBalancer,
    PriorityQueueBalancer,
    RoundRobinBalancer,
    create_balancer,
)
from hitl_dispatch.routing.types import (
    MAX_TASK_PRIORITY,
    MIN_TASK_PRIORITY,
    AgentInfo,
    AgentStatus,
    BalancerStrategy,
    RouteFailure,
    RouteResult,
    TaskRequest,
    validate_priority,
)

__all__ = [
    "MAX_TASK_PRIORITY",
    "MIN_TASK_PRIORITY",
    "AgentAvailability",
    "AgentAvailabilityTracker",
    "AgentInfo",
    "AgentStatus",
    "BalancerStrategy",
    "CapabilityRouter",
    "CapacityInfo",
    "CompositeBalancer",
    "LeastBusyBalancer",
    "LoadBalancer",
    "PriorityQueueBalancer",
    "RoundRobinBalancer",
    "RouteFailure",
    "RouteResult",
    "RoutingRule",
    "RoutingRuleEngine",
    "RuleCondition",
    "StatusChangeEvent",
    "TaskRequest",
    "WeightedStrategy",
    "create_balancer",
    "validate_priority",
]
