"""
Production-style example: Dispatching review tasks to humans.

This example routes review tasks to reviewers, notifies them with retry
and circuit breaking, tracks SLA deadlines, and reports outcomes to a
webhook endpoint.

Key features:
- Rule-based routing with a least-busy fallback
- Notification delivery under with_retry
- Tiered SLA deadlines with a background sweep
- Signed webhook events with batching
"""

import asyncio
import os
from typing import Any

from hitl_dispatch import (
    AgentInfo,
    BackoffConfig,
    ContactChannel,
    Contacts,
    HumanCircuitBreaker,
    NotificationDispatcher,
    Priority,
    RoutingRule,
    RoutingRuleEngine,
    SLAConfig,
    SLATier,
    SLATracker,
    TaskRequest,
    WebhookEventType,
    WebhookRegistry,
    WebhookRegistryOptions,
    WithRetryOptions,
)
from hitl_dispatch.telemetry import DispatchLogger, LogLevel

# Configuration
WEBHOOK_URL = os.getenv("HITL_EXAMPLE_WEBHOOK_URL", "https://hooks.example.com/hitl")
WEBHOOK_SECRET = os.getenv("HITL_EXAMPLE_WEBHOOK_SECRET", "whsec-example")


class ConsoleSender:
    """Sender that prints notifications instead of calling Slack or email."""

    async def send(
        self, channel: ContactChannel, payload: dict[str, Any], contacts: Contacts
    ) -> None:
        print(f"  -> [{channel.value}] {contacts.get(channel)}: {payload['text']}")


def build_reviewers() -> list[AgentInfo]:
    """Build a small reviewer roster."""
    return [
        AgentInfo(
            id="alice",
            skills={"legal", "contracts"},
            max_load=3,
            contacts={ContactChannel.SLACK: "U01ALICE"},
        ),
        AgentInfo(
            id="bob",
            skills={"billing"},
            max_load=5,
            contacts={ContactChannel.EMAIL: "bob@example.com"},
        ),
        AgentInfo(
            id="carol",
            skills={"billing", "support"},
            max_load=5,
            contacts={ContactChannel.SMS: "+15550100"},
        ),
    ]


def build_engine(reviewers: list[AgentInfo]) -> RoutingRuleEngine:
    """Route legal work to counsel, everything else to the least busy reviewer."""
    engine = RoutingRuleEngine(reviewers, default_strategy="least-busy")
    engine.add_rule(
        RoutingRule(
            name="legal-to-counsel",
            priority=10,
            condition={"required_skills": {"contains": "legal"}},
            action=lambda task, agents: next(
                (a for a in agents if "legal" in a.skills), None
            ),
        )
    )
    return engine


async def main() -> None:
    """Dispatch a handful of review tasks."""
    DispatchLogger.configure(level=LogLevel.INFO, format="text")

    dispatcher = NotificationDispatcher(
        build_engine(build_reviewers()),
        ConsoleSender(),
        retry=WithRetryOptions(
            max_retries=2,
            backoff=BackoffConfig(base_delay_ms=500),
            circuit_breaker=HumanCircuitBreaker(),
        ),
    )

    sla = SLATracker(
        SLAConfig(
            deadline_ms=30 * 60_000,
            warning_threshold_ms=5 * 60_000,
            tiers={Priority.CRITICAL: SLATier(deadline_ms=5 * 60_000)},
        )
    )

    tasks = [
        TaskRequest(id="contract-17", required_skills=["legal"], priority=9),
        TaskRequest(id="refund-88", required_skills=["billing"], priority=5),
        TaskRequest(id="refund-89", required_skills=["billing"], priority=4),
    ]

    async with sla, WebhookRegistry(WebhookRegistryOptions(batching_enabled=True)) as hooks:
        hooks.register(
            {
                "url": WEBHOOK_URL,
                "events": [WebhookEventType.REQUEST_CREATED],
                "secret": WEBHOOK_SECRET,
            }
        )

        for task in tasks:
            priority = Priority.CRITICAL if task.priority >= 9 else Priority.NORMAL
            deadline = sla.track(task.id, priority=priority)
            print(f"{task.id}: due {deadline.deadline:%H:%M:%S}")

            result = await dispatcher.dispatch(task, {"text": f"Please review {task.id}"})
            if not result.delivered:
                print(f"  !! not delivered: {result.error}")
                continue

            await hooks.emit(
                WebhookEventType.REQUEST_CREATED,
                {"request_id": task.id, "assignee": result.route.agent.id},
            )

        print(f"\nSLA: {sla.get_metrics()}")


if __name__ == "__main__":
    asyncio.run(main())
