"""
Routing metrics collection for hitl-dispatch.

Each collector owns its state outright. Balancers given the same collector
aggregate into it; balancers given different collectors never see each
other's counts. A process-wide default collector is kept for callers that
do not care about isolation.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hitl_dispatch.routing.types import BalancerStrategy, RouteResult


@dataclass
class AgentRouteStats:
    """Per-agent routing counters."""

    routed_count: int = 0
    last_routed: datetime | None = None


@dataclass
class RoutingMetrics:
    """Aggregated routing metrics.

    Attributes:
        total_routed: Number of routing decisions recorded
        failed_routes: Decisions that found no agent
        average_latency_ms: Mean decision latency
        per_agent: Counters keyed by agent id
        strategy_usage: Decision counts keyed by strategy
    """

    total_routed: int = 0
    failed_routes: int = 0
    average_latency_ms: float = 0.0
    per_agent: dict[str, AgentRouteStats] = field(default_factory=dict)
    strategy_usage: dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        """Fraction of decisions that found an agent."""
        if self.total_routed == 0:
            return 0.0
        return (self.total_routed - self.failed_routes) / self.total_routed


class RoutingMetricsCollector:
    """Collects routing decisions from one or more balancers.

    Example:
        >>> collector = RoutingMetricsCollector()
        >>> balancer = RoundRobinBalancer(agents, metrics_collector=collector)
        >>> balancer.route(task)
        >>> collector.collect().total_routed
        1
    """

    def __init__(self) -> None:
        """Initialize collector with empty counters."""
        self._lock = threading.Lock()
        self._metrics = RoutingMetrics()
        self._total_latency_ms = 0.0

    def record(
        self,
        result: RouteResult,
        latency_ms: float,
        strategy: BalancerStrategy | str,
    ) -> None:
        """Record a routing decision.

        Args:
            result: The routing decision
            latency_ms: Time taken to reach the decision
            strategy: Strategy credited with the decision
        """
        strategy_key = getattr(strategy, "value", strategy)
        with self._lock:
            metrics = self._metrics
            metrics.total_routed += 1
            self._total_latency_ms += latency_ms
            metrics.average_latency_ms = self._total_latency_ms / metrics.total_routed

            if result.agent is None:
                metrics.failed_routes += 1
            else:
                stats = metrics.per_agent.setdefault(result.agent.id, AgentRouteStats())
                stats.routed_count += 1
                stats.last_routed = datetime.now(timezone.utc)

            metrics.strategy_usage[strategy_key] = (
                metrics.strategy_usage.get(strategy_key, 0) + 1
            )

    def collect(self) -> RoutingMetrics:
        """Get a copy of the current metrics.

        Returns:
            RoutingMetrics detached from the collector's state
        """
        with self._lock:
            return RoutingMetrics(
                total_routed=self._metrics.total_routed,
                failed_routes=self._metrics.failed_routes,
                average_latency_ms=self._metrics.average_latency_ms,
                per_agent={k: replace(v) for k, v in self._metrics.per_agent.items()},
                strategy_usage=dict(self._metrics.strategy_usage),
            )

    def reset(self) -> None:
        """Reset all metrics to their initial state."""
        with self._lock:
            self._metrics = RoutingMetrics()
            self._total_latency_ms = 0.0

    def to_prometheus(self) -> str:
        """Export metrics in Prometheus text format.

        Returns:
            Prometheus-formatted metrics string
        """
        metrics = self.collect()
        lines = [
            "# HELP hitl_routes_total Total routing decisions",
            "# TYPE hitl_routes_total counter",
            f"hitl_routes_total {metrics.total_routed}",
            "# HELP hitl_routes_failed_total Routing decisions without an agent",
            "# TYPE hitl_routes_failed_total counter",
            f"hitl_routes_failed_total {metrics.failed_routes}",
            "# HELP hitl_route_latency_ms_avg Average routing decision latency",
            "# TYPE hitl_route_latency_ms_avg gauge",
            f"hitl_route_latency_ms_avg {metrics.average_latency_ms}",
            "# HELP hitl_routes_by_strategy_total Routing decisions per strategy",
            "# TYPE hitl_routes_by_strategy_total counter",
        ]
        for strategy, count in sorted(metrics.strategy_usage.items()):
            lines.append(f'hitl_routes_by_strategy_total{{strategy="{strategy}"}} {count}')

        lines.append("# HELP hitl_routes_by_agent_total Tasks routed per agent")
        lines.append("# TYPE hitl_routes_by_agent_total counter")
        for agent_id, stats in sorted(metrics.per_agent.items()):
            lines.append(f'hitl_routes_by_agent_total{{agent="{agent_id}"}} {stats.routed_count}')

        return "\n".join(lines)


# Default metrics collector
_default_collector: RoutingMetricsCollector | None = None


def get_metrics_collector() -> RoutingMetricsCollector:
    """Get the default metrics collector.

    Returns:
        Default RoutingMetricsCollector instance
    """
    global _default_collector
    if _default_collector is None:
        _default_collector = RoutingMetricsCollector()
    return _default_collector


def set_metrics_collector(collector: RoutingMetricsCollector) -> None:
    """Replace the default metrics collector.

    Args:
        collector: RoutingMetricsCollector instance
    """
    global _default_collector
    _default_collector = collector


def collect_routing_metrics() -> RoutingMetrics:
    """Collect metrics from the default collector."""
    return get_metrics_collector().collect()


def reset_routing_metrics() -> None:
    """Reset the default collector."""
    get_metrics_collector().reset()
