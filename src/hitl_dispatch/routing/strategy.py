"""
Load balancing strategies for distributing tasks among agents.

Every balancer exposes ``route(task) -> RouteResult`` plus agent roster
management. Only agents whose status is available or busy are candidates.
When no agent qualifies a balancer returns a result with ``agent=None`` and
a reason code instead of raising.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from hitl_dispatch.routing.types import (
    AgentInfo,
    BalancerStrategy,
    RouteFailure,
    RouteResult,
    TaskRequest,
    validate_priority,
)
from hitl_dispatch.telemetry.metrics import RoutingMetricsCollector, get_metrics_collector

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable


class LoadBalancer(ABC):
    """Abstract base class for load balancers."""

    strategy: BalancerStrategy = BalancerStrategy.CUSTOM

    def __init__(
        self,
        agents: Iterable[AgentInfo] | None = None,
        *,
        metrics_collector: RoutingMetricsCollector | None = None,
    ) -> None:
        """Initialize balancer.

        Args:
            agents: Initial agent roster
            metrics_collector: Collector for routing decisions; the default
                collector is used when omitted
        """
        self._agents: list[AgentInfo] = list(agents or [])
        self._collector = metrics_collector or get_metrics_collector()

    @property
    def metrics_collector(self) -> RoutingMetricsCollector:
        """Collector this balancer records into."""
        return self._collector

    @abstractmethod
    def route(self, task: TaskRequest) -> RouteResult:
        """Pick an agent for a task.

        Args:
            task: Task to route

        Returns:
            Routing decision; ``agent`` is None when nothing qualified
        """
        raise NotImplementedError

    def add_agent(self, agent: AgentInfo) -> None:
        """Add an agent to the roster."""
        self._agents.append(agent)

    def remove_agent(self, agent_id: str) -> None:
        """Remove an agent from the roster by id."""
        self._agents = [a for a in self._agents if a.id != agent_id]

    def get_agents(self) -> list[AgentInfo]:
        """Get a copy of the roster."""
        return list(self._agents)

    def _available(self) -> list[AgentInfo]:
        return [a for a in self._agents if a.is_available]

    def _finish(
        self,
        task: TaskRequest,
        agent: AgentInfo | None,
        start: float,
        *,
        reason: RouteFailure | None = None,
        **extra: Any,
    ) -> RouteResult:
        result = RouteResult(
            agent=agent,
            task=task,
            strategy=self.strategy,
            reason=reason.value if reason else None,
            **extra,
        )
        self._collector.record(result, (time.perf_counter() - start) * 1000, self.strategy)
        return result


class RoundRobinBalancer(LoadBalancer):
    """Round-robin balancer.

    Cycles through the roster in order. The pointer advances past skipped
    (unavailable) agents too, so every call makes forward progress.

    Example:
        >>> balancer = RoundRobinBalancer([alice, bob, carol])
        >>> [balancer.route(task).agent.id for _ in range(4)]
        ['alice', 'bob', 'carol', 'alice']
    """

    strategy = BalancerStrategy.ROUND_ROBIN

    def __init__(
        self,
        agents: Iterable[AgentInfo] | None = None,
        *,
        metrics_collector: RoutingMetricsCollector | None = None,
    ) -> None:
        super().__init__(agents, metrics_collector=metrics_collector)
        self._index = 0

    def route(self, task: TaskRequest) -> RouteResult:
        """Route to the next available agent in rotation."""
        start = time.perf_counter()

        for _ in range(len(self._agents)):
            agent = self._agents[self._index % len(self._agents)]
            self._index += 1
            if agent.is_available:
                return self._finish(task, agent, start)

        return self._finish(task, None, start, reason=RouteFailure.NO_AVAILABLE_AGENTS)


class LeastBusyBalancer(LoadBalancer):
    """Least-busy balancer.

    Routes to the agent with the lowest load ratio. Load is tracked locally,
    seeded from each agent's ``current_load`` and incremented on every
    assignment. Callers reconcile it with :meth:`release_load`,
    :meth:`set_load` or :meth:`sync_loads`.

    Ties on load ratio go to the first tied agent after the one routed last,
    which spreads equal-load work round-robin style. The last routed agent
    is remembered by id, so roster changes do not shift the rotation.
    """

    strategy = BalancerStrategy.LEAST_BUSY

    def __init__(
        self,
        agents: Iterable[AgentInfo] | None = None,
        *,
        metrics_collector: RoutingMetricsCollector | None = None,
    ) -> None:
        super().__init__(agents, metrics_collector=metrics_collector)
        self._loads: dict[str, int] = {a.id: a.current_load for a in self._agents}
        self._last_agent_id: str | None = None

    def _load(self, agent: AgentInfo) -> int:
        return self._loads.get(agent.id, agent.current_load)

    def _ratio(self, agent: AgentInfo) -> float:
        return self._load(agent) / agent.max_load

    def route(self, task: TaskRequest) -> RouteResult:
        """Route to the least loaded available agent."""
        start = time.perf_counter()
        candidates = [
            (i, a)
            for i, a in enumerate(self._agents)
            if a.is_available and self._load(a) < a.max_load
        ]
        if not candidates:
            return self._finish(task, None, start, reason=RouteFailure.NO_AVAILABLE_AGENTS)

        n = len(self._agents)
        last = next(
            (i for i, a in enumerate(self._agents) if a.id == self._last_agent_id), -1
        )
        _, selected = min(
            candidates,
            key=lambda c: (self._ratio(c[1]), (c[0] - last - 1) % n),
        )
        self._last_agent_id = selected.id
        self._loads[selected.id] = self._load(selected) + 1
        return self._finish(task, selected, start)

    def add_agent(self, agent: AgentInfo) -> None:
        super().add_agent(agent)
        self._loads[agent.id] = agent.current_load

    def remove_agent(self, agent_id: str) -> None:
        super().remove_agent(agent_id)
        self._loads.pop(agent_id, None)

    def get_load_metrics(self) -> dict[str, float]:
        """Get the tracked load ratio of every agent."""
        return {a.id: self._ratio(a) for a in self._agents if a.max_load > 0}

    def release_load(self, agent_id: str) -> None:
        """Decrement an agent's tracked load, never below zero."""
        current = self._loads.get(agent_id)
        if current is not None and current > 0:
            self._loads[agent_id] = current - 1

    def set_load(self, agent_id: str, load: int) -> None:
        """Overwrite an agent's tracked load."""
        self._loads[agent_id] = load

    def sync_loads(self) -> None:
        """Reset tracked loads from each agent's reported ``current_load``."""
        self._loads = {a.id: a.current_load for a in self._agents}


class CapabilityRouter(LoadBalancer):
    """Capability-based router.

    Only agents holding every required skill qualify. With
    ``prefer_exact_match`` the agent whose skill count is closest to the
    number of required skills wins, keeping generalists free for broad work.
    """

    strategy = BalancerStrategy.CAPABILITY

    def __init__(
        self,
        agents: Iterable[AgentInfo] | None = None,
        *,
        prefer_exact_match: bool = False,
        metrics_collector: RoutingMetricsCollector | None = None,
    ) -> None:
        super().__init__(agents, metrics_collector=metrics_collector)
        self.prefer_exact_match = prefer_exact_match

    @staticmethod
    def _match_score(agent: AgentInfo, required: list[str]) -> float:
        if not required:
            return 1.0
        return sum(1 for s in required if s in agent.skills) / len(required)

    def route(self, task: TaskRequest) -> RouteResult:
        """Route to an available agent holding all required skills."""
        start = time.perf_counter()
        candidates = [a for a in self._available() if a.has_skills(task.required_skills)]
        if not candidates:
            return self._finish(
                task, None, start, reason=RouteFailure.NO_MATCHING_CAPABILITY
            )

        if self.prefer_exact_match:
            wanted = len(task.required_skills)
            candidates.sort(key=lambda a: abs(len(a.skills) - wanted))

        selected = candidates[0]
        return self._finish(
            task,
            selected,
            start,
            match_score=self._match_score(selected, task.required_skills),
        )

    def find_agents_with_skills(self, skills: list[str]) -> list[AgentInfo]:
        """Get every agent, regardless of status, holding all ``skills``."""
        return [a for a in self._agents if a.has_skills(skills)]

    def get_skill_coverage(self) -> dict[str, int]:
        """Count how many agents hold each skill."""
        coverage: dict[str, int] = {}
        for agent in self._agents:
            for skill in agent.skills:
                coverage[skill] = coverage.get(skill, 0) + 1
        return coverage


@dataclass
class _QueuedTask:
    task: TaskRequest
    sequence: int


class PriorityQueueBalancer(LoadBalancer):
    """Priority queue balancer.

    Tasks wait in a queue ordered by effective priority. With aging enabled a
    task gains ``aging_boost_per_second`` priority for every second it waits;
    once it has waited ``max_wait_time_ms`` it jumps to the front.

    Example:
        >>> balancer = PriorityQueueBalancer(agents, enable_aging=True)
        >>> balancer.enqueue(TaskRequest(id="t1", priority=8))
        >>> result = await balancer.route_next()
    """

    strategy = BalancerStrategy.PRIORITY_QUEUE

    def __init__(
        self,
        agents: Iterable[AgentInfo] | None = None,
        *,
        enable_aging: bool = False,
        aging_boost_per_second: float = 1.0,
        max_wait_time_ms: float | None = None,
        clock: Callable[[], float] = time.time,
        metrics_collector: RoutingMetricsCollector | None = None,
    ) -> None:
        super().__init__(agents, metrics_collector=metrics_collector)
        self.enable_aging = enable_aging
        self.aging_boost_per_second = aging_boost_per_second
        self.max_wait_time_ms = max_wait_time_ms
        self._clock = clock
        self._queue: list[_QueuedTask] = []
        self._sequence = 0

    def _effective(self, task: TaskRequest, now: float) -> float:
        priority = float(task.priority)
        if task.enqueued_at is None:
            return priority

        waited = now - task.enqueued_at
        if self.enable_aging:
            priority += waited * self.aging_boost_per_second
        if self.max_wait_time_ms and waited * 1000 >= self.max_wait_time_ms:
            priority = float("inf")
        return priority

    def _sort(self) -> None:
        now = self._clock()
        self._queue.sort(
            key=lambda q: (-self._effective(q.task, now), q.task.enqueued_at or 0, q.sequence)
        )

    def enqueue(self, task: TaskRequest) -> None:
        """Add a task to the queue, stamping its enqueue time.

        Raises:
            ValidationError: If the task priority is outside [1, 10]
        """
        validate_priority(task.priority)
        queued = replace(task, enqueued_at=self._clock())
        self._queue.append(_QueuedTask(queued, self._sequence))
        self._sequence += 1

    async def route_next(self) -> RouteResult | None:
        """Dequeue the highest priority task and assign it.

        Returns:
            Routing decision, or None if the queue is empty
        """
        if not self._queue:
            return None
        self._sort()
        task = self._queue.pop(0).task
        return self.route(task)

    def route(self, task: TaskRequest) -> RouteResult:
        """Assign a task to the first available agent."""
        start = time.perf_counter()
        available = self._available()
        if not available:
            return self._finish(task, None, start, reason=RouteFailure.NO_AVAILABLE_AGENTS)
        return self._finish(task, available[0], start)

    def queue_size(self) -> int:
        """Number of queued tasks."""
        return len(self._queue)

    def clear(self) -> None:
        """Drop every queued task."""
        self._queue.clear()

    def peek(self) -> TaskRequest | None:
        """Get the task that would be routed next without removing it."""
        if not self._queue:
            return None
        self._sort()
        return self._queue[0].task

    def get_effective_priority(self, task_id: str) -> float:
        """Get a queued task's current effective priority, 0 if not queued."""
        now = self._clock()
        for queued in self._queue:
            if queued.task.id == task_id:
                return self._effective(queued.task, now)
        return 0.0


def create_balancer(
    strategy: BalancerStrategy | str,
    agents: Iterable[AgentInfo] | None = None,
    **options: Any,
) -> LoadBalancer:
    """Create a load balancer for the given strategy.

    Args:
        strategy: Balancing strategy
        agents: Initial agent roster
        **options: Keyword options for the balancer class

    Returns:
        LoadBalancer instance

    Raises:
        ValueError: If the strategy has no standalone balancer
    """
    balancers: dict[BalancerStrategy, type[LoadBalancer]] = {
        BalancerStrategy.ROUND_ROBIN: RoundRobinBalancer,
        BalancerStrategy.LEAST_BUSY: LeastBusyBalancer,
        BalancerStrategy.CAPABILITY: CapabilityRouter,
        BalancerStrategy.PRIORITY_QUEUE: PriorityQueueBalancer,
    }
    balancer_class = balancers.get(BalancerStrategy(strategy))
    if balancer_class is None:
        raise ValueError(f"No standalone balancer for strategy: {strategy}")
    return balancer_class(agents, **options)
