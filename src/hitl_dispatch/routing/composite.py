"""
Composite load balancing.

Tries an ordered list of weighted strategies, including named custom
functions, and returns the first decision that found an agent.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Literal

from hitl_dispatch.routing.strategy import LoadBalancer, create_balancer
from hitl_dispatch.routing.types import (
    AgentInfo,
    BalancerStrategy,
    RouteFailure,
    RouteResult,
    TaskRequest,
)
from hitl_dispatch.telemetry.metrics import RoutingMetricsCollector

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

FallbackBehavior = Literal["next-strategy", "none"]


@dataclass(frozen=True)
class WeightedStrategy:
    """A strategy with the weight reported in ``strategy_scores``."""

    strategy: BalancerStrategy
    weight: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "strategy", BalancerStrategy(self.strategy))

    @classmethod
    def of(cls, value: WeightedStrategy | BalancerStrategy | str) -> WeightedStrategy:
        """Normalize a strategy or strategy name to a weighted entry."""
        if isinstance(value, WeightedStrategy):
            return value
        return cls(BalancerStrategy(value))


class CompositeBalancer(LoadBalancer):
    """Balancer chaining several strategies.

    Strategies are tried in order. Without ``fallback_behavior="next-strategy"``
    the first strategy that finds no agent ends the attempt. The ``custom``
    entry runs each function in ``custom_strategies`` in insertion order.

    Example:
        >>> balancer = CompositeBalancer(
        ...     agents,
        ...     strategies=[WeightedStrategy("capability", 2.0), "least-busy"],
        ...     fallback_behavior="next-strategy",
        ... )
        >>> result = balancer.route(task)
        >>> result.strategies
        ['capability', 'least-busy']
    """

    strategy = BalancerStrategy.CUSTOM

    def __init__(
        self,
        agents: Iterable[AgentInfo] | None = None,
        *,
        strategies: list[WeightedStrategy | BalancerStrategy | str],
        fallback_behavior: FallbackBehavior = "none",
        custom_strategies: dict[
            str, Callable[[TaskRequest, list[AgentInfo]], AgentInfo | None]
        ] | None = None,
        metrics_collector: RoutingMetricsCollector | None = None,
    ) -> None:
        super().__init__(agents, metrics_collector=metrics_collector)
        self.strategies = [WeightedStrategy.of(s) for s in strategies]
        self.fallback_behavior = fallback_behavior
        self.custom_strategies = dict(custom_strategies or {})
        self._balancers: dict[BalancerStrategy, LoadBalancer] = {}
        # Sub-balancers record privately; the composite records each decision once.
        self._inner_collector = RoutingMetricsCollector()

    def _balancer(self, strategy: BalancerStrategy) -> LoadBalancer:
        balancer = self._balancers.get(strategy)
        if balancer is None:
            balancer = create_balancer(
                strategy, self._agents, metrics_collector=self._inner_collector
            )
            self._balancers[strategy] = balancer
        return balancer

    def _run_custom(self, task: TaskRequest) -> AgentInfo | None:
        available = self._available()
        for fn in self.custom_strategies.values():
            agent = fn(task, available)
            if agent is not None:
                return agent
        return None

    def route(self, task: TaskRequest) -> RouteResult:
        """Route with the first strategy that finds an agent."""
        start = time.perf_counter()
        tried: list[str] = []
        scores: dict[str, float] = {}
        used_fallback = False

        for entry in self.strategies:
            tried.append(entry.strategy.value)

            if entry.strategy == BalancerStrategy.CUSTOM:
                agent = self._run_custom(task)
                if agent is not None:
                    scores[entry.strategy.value] = entry.weight
                    return self._finish(
                        task,
                        agent,
                        start,
                        strategies=tried,
                        strategy_scores=scores,
                        used_fallback=used_fallback,
                    )
            else:
                result = self._balancer(entry.strategy).route(task)
                if result.agent is not None:
                    scores[entry.strategy.value] = entry.weight
                    final = replace(
                        result,
                        strategies=tried,
                        strategy_scores=scores,
                        used_fallback=used_fallback,
                    )
                    self._collector.record(
                        final, (time.perf_counter() - start) * 1000, entry.strategy
                    )
                    return final

            if self.fallback_behavior != "next-strategy":
                break
            used_fallback = True

        return self._finish(
            task,
            None,
            start,
            reason=RouteFailure.NO_STRATEGY_SUCCEEDED,
            strategies=tried,
            strategy_scores=scores,
            used_fallback=used_fallback,
        )

    def add_agent(self, agent: AgentInfo) -> None:
        super().add_agent(agent)
        for balancer in self._balancers.values():
            balancer.add_agent(agent)

    def remove_agent(self, agent_id: str) -> None:
        super().remove_agent(agent_id)
        for balancer in self._balancers.values():
            balancer.remove_agent(agent_id)
