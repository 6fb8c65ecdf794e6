"""
Agent availability tracking.

Keeps per-agent status, heartbeat time and capacity. Heartbeat timeouts are
checked only when the caller runs :meth:`AgentAvailabilityTracker.check_timeouts`.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from hitl_dispatch.routing.types import AgentInfo, AgentStatus
from hitl_dispatch.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = get_logger(__name__)

DEFAULT_HEARTBEAT_TIMEOUT_MS = 30_000


@dataclass
class AgentAvailability:
    """Availability record for one agent.

    Attributes:
        status: Current status
        last_seen: Clock reading in seconds of the last status or heartbeat
        current_load: Reported active tasks
        max_load: Reported capacity
    """

    status: AgentStatus
    last_seen: float
    current_load: int | None = None
    max_load: int | None = None


@dataclass(frozen=True)
class StatusChangeEvent:
    """Emitted when an agent's status actually changes."""

    agent_id: str
    previous_status: AgentStatus
    current_status: AgentStatus
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class CapacityInfo:
    """Aggregate capacity over non-offline agents."""

    total: int
    used: int
    available: int
    utilization: float


class AgentAvailabilityTracker:
    """Tracks agent status, heartbeats and capacity.

    Example:
        >>> tracker = AgentAvailabilityTracker(agents, heartbeat_timeout_ms=60_000)
        >>> tracker.on_status_change(lambda e: print(e.agent_id, e.current_status))
        >>> tracker.heartbeat("alice")
        >>> tracker.check_timeouts()
    """

    def __init__(
        self,
        agents: Iterable[AgentInfo] | None = None,
        *,
        heartbeat_timeout_ms: float = DEFAULT_HEARTBEAT_TIMEOUT_MS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize tracker.

        Args:
            agents: Agents to track
            heartbeat_timeout_ms: Silence after which an agent goes offline
            clock: Clock in seconds
        """
        self.heartbeat_timeout_ms = heartbeat_timeout_ms
        self._clock = clock
        self._agents: dict[str, AgentInfo] = {}
        self._availability: dict[str, AgentAvailability] = {}
        self._handlers: list[Callable[[StatusChangeEvent], None]] = []

        now = clock()
        for agent in agents or []:
            self._agents[agent.id] = agent
            self._availability[agent.id] = AgentAvailability(
                status=agent.status,
                last_seen=now,
                current_load=agent.current_load,
                max_load=agent.max_load,
            )

    def get_availability(self, agent_id: str) -> AgentAvailability:
        """Get an agent's availability; unknown agents read as offline."""
        availability = self._availability.get(agent_id)
        if availability is None:
            return AgentAvailability(status=AgentStatus.OFFLINE, last_seen=0.0)
        return availability

    def update_status(self, agent_id: str, status: AgentStatus | str) -> None:
        """Set an agent's status and refresh its last-seen time.

        Status change listeners fire only when the status differs from the
        previous one.
        """
        status = AgentStatus(status)
        current = self._availability.get(agent_id)
        previous = current.status if current else AgentStatus.OFFLINE

        if current is None:
            current = AgentAvailability(status=status, last_seen=self._clock())
            self._availability[agent_id] = current
        else:
            current.status = status
            current.last_seen = self._clock()

        agent = self._agents.get(agent_id)
        if agent is not None:
            agent.status = status

        if previous != status:
            logger.info(
                "Agent status changed",
                agent_id=agent_id,
                previous=previous.value,
                current=status.value,
            )
            event = StatusChangeEvent(
                agent_id=agent_id, previous_status=previous, current_status=status
            )
            for handler in list(self._handlers):
                handler(event)

    def get_available_agents(self) -> list[AgentInfo]:
        """Get tracked agents whose status is routable."""
        return [
            agent
            for agent_id, agent in self._agents.items()
            if self._availability[agent_id].status.is_routable
        ]

    def heartbeat(self, agent_id: str) -> None:
        """Refresh an agent's last-seen time. Unknown agents are ignored."""
        availability = self._availability.get(agent_id)
        if availability is not None:
            availability.last_seen = self._clock()

    def check_timeouts(self) -> list[str]:
        """Mark agents silent for longer than the heartbeat timeout offline.

        Returns:
            Ids of agents that were taken offline
        """
        now = self._clock()
        timed_out = [
            agent_id
            for agent_id, availability in self._availability.items()
            if availability.status != AgentStatus.OFFLINE
            and (now - availability.last_seen) * 1000 > self.heartbeat_timeout_ms
        ]
        for agent_id in timed_out:
            self.update_status(agent_id, AgentStatus.OFFLINE)
        return timed_out

    def on_status_change(self, handler: Callable[[StatusChangeEvent], None]) -> None:
        """Register a status change listener."""
        self._handlers.append(handler)

    def update_load(self, agent_id: str, current: int, maximum: int) -> None:
        """Record an agent's reported load. Unknown agents are ignored."""
        availability = self._availability.get(agent_id)
        if availability is not None:
            availability.current_load = current
            availability.max_load = maximum

    def get_capacity_utilization(self) -> dict[str, float]:
        """Get each agent's load ratio where capacity is known."""
        return {
            agent_id: a.current_load / a.max_load
            for agent_id, a in self._availability.items()
            if a.current_load is not None and a.max_load
        }

    def get_overall_capacity(self) -> CapacityInfo:
        """Aggregate capacity over all agents that are not offline."""
        total = 0
        used = 0
        for agent_id, availability in self._availability.items():
            agent = self._agents.get(agent_id)
            if agent is None or availability.status == AgentStatus.OFFLINE:
                continue
            total += (
                availability.max_load if availability.max_load is not None else agent.max_load
            )
            used += (
                availability.current_load
                if availability.current_load is not None
                else agent.current_load
            )

        return CapacityInfo(
            total=total,
            used=used,
            available=total - used,
            utilization=used / total if total > 0 else 0.0,
        )
