"""
Routing types and data structures.

Provides types for agents, tasks, routing decisions and routing metrics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from hitl_dispatch.errors import ValidationError
from hitl_dispatch.transport.contacts import Contacts

MIN_TASK_PRIORITY = 1
MAX_TASK_PRIORITY = 10


class AgentStatus(str, Enum):
    """Worker availability status."""

    AVAILABLE = "available"
    BUSY = "busy"
    AWAY = "away"
    OFFLINE = "offline"

    @property
    def is_routable(self) -> bool:
        """Whether agents in this status may receive tasks."""
        return self in (AgentStatus.AVAILABLE, AgentStatus.BUSY)


class BalancerStrategy(str, Enum):
    """Load balancing strategy identifiers."""

    ROUND_ROBIN = "round-robin"
    LEAST_BUSY = "least-busy"
    CAPABILITY = "capability"
    PRIORITY_QUEUE = "priority-queue"
    CUSTOM = "custom"


class RouteFailure(str, Enum):
    """Reason codes for routing decisions that found no agent."""

    NO_AVAILABLE_AGENTS = "no-available-agents"
    NO_MATCHING_CAPABILITY = "no-matching-capability"
    NO_STRATEGY_SUCCEEDED = "no-strategy-succeeded"


def validate_priority(priority: int) -> None:
    """Validate that a task priority lies in [1, 10].

    Raises:
        ValidationError: If priority is out of range
    """
    if not MIN_TASK_PRIORITY <= priority <= MAX_TASK_PRIORITY:
        raise ValidationError(
            f"Priority must be between {MIN_TASK_PRIORITY} and {MAX_TASK_PRIORITY}",
            field="priority",
            expected=f"{MIN_TASK_PRIORITY}..{MAX_TASK_PRIORITY}",
            actual=priority,
        )


@dataclass(eq=False)
class AgentInfo:
    """Agent information for load balancing.

    Agents are compared by identity; balancers look them up by ``id``.

    Attributes:
        id: Unique agent identifier
        name: Display name
        status: Current availability status
        skills: Skills the agent can handle
        current_load: Externally reported number of active tasks
        max_load: Maximum concurrent tasks
        contacts: How the agent can be reached
        metadata: Additional metadata
    """

    id: str
    name: str = ""
    status: AgentStatus = AgentStatus.AVAILABLE
    skills: set[str] = field(default_factory=set)
    current_load: int = 0
    max_load: int = 1
    contacts: Contacts = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.status = AgentStatus(self.status)
        self.skills = set(self.skills)
        if not self.name:
            self.name = self.id

    @property
    def is_available(self) -> bool:
        """Whether the agent can be routed to."""
        return self.status.is_routable

    def has_skills(self, required: list[str] | set[str]) -> bool:
        """Check that the agent has every required skill."""
        return all(skill in self.skills for skill in required)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "skills": sorted(self.skills),
            "current_load": self.current_load,
            "max_load": self.max_load,
            "metadata": self.metadata,
        }


@dataclass
class TaskRequest:
    """Task request for routing.

    Attributes:
        id: Task identifier
        name: Task name
        required_skills: Skills an agent needs to take the task
        priority: Priority from 1 (lowest) to 10 (highest)
        metadata: Additional metadata
        enqueued_at: Clock reading in seconds when the task was queued
    """

    id: str
    name: str = ""
    required_skills: list[str] = field(default_factory=list)
    priority: int = 5
    metadata: dict[str, Any] = field(default_factory=dict)
    enqueued_at: float | None = None

    def __post_init__(self) -> None:
        validate_priority(self.priority)
        self.required_skills = list(self.required_skills)


@dataclass(frozen=True)
class RouteResult:
    """Snapshot of a single routing decision.

    ``agent`` is None when routing failed; ``reason`` then carries a
    :class:`RouteFailure` code.
    """

    agent: AgentInfo | None
    task: TaskRequest
    strategy: BalancerStrategy
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    reason: str | None = None
    match_score: float | None = None
    matched_rule: str | None = None
    used_default: bool | None = None
    used_fallback: bool | None = None
    strategies: list[str] | None = None
    strategy_scores: dict[str, float] | None = None

    @property
    def success(self) -> bool:
        """Whether an agent was found."""
        return self.agent is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, omitting unset optional fields."""
        result: dict[str, Any] = {
            "agent": self.agent.id if self.agent else None,
            "task": self.task.id,
            "strategy": BalancerStrategy(self.strategy).value,
            "timestamp": self.timestamp.isoformat(),
        }
        for key in (
            "reason",
            "match_score",
            "matched_rule",
            "used_default",
            "used_fallback",
            "strategies",
            "strategy_scores",
        ):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result

