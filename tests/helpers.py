"""Shared test helpers."""

from __future__ import annotations

from typing import Any

from hitl_dispatch.routing import AgentInfo, AgentStatus


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


def make_agent(
    agent_id: str,
    *,
    status: AgentStatus | str = AgentStatus.AVAILABLE,
    skills: list[str] | None = None,
    current_load: int = 0,
    max_load: int = 10,
    **kwargs: Any,
) -> AgentInfo:
    """Build an agent with test-friendly defaults."""
    return AgentInfo(
        id=agent_id,
        status=AgentStatus(status),
        skills=set(skills or []),
        current_load=current_load,
        max_load=max_load,
        **kwargs,
    )
