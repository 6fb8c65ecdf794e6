"""
Webhook types.

Wire-facing types (configs, events, delivery results) are pydantic models;
registry options are plain dataclasses configured from the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WebhookEventType(str, Enum):
    """Lifecycle events of a human request."""

    REQUEST_CREATED = "request.created"
    REQUEST_IN_PROGRESS = "request.in_progress"
    REQUEST_COMPLETED = "request.completed"
    REQUEST_REJECTED = "request.rejected"
    REQUEST_ESCALATED = "request.escalated"
    REQUEST_TIMEOUT = "request.timeout"
    REQUEST_CANCELLED = "request.cancelled"


def format_timestamp(value: datetime) -> str:
    """Format a datetime as UTC ISO-8601 with milliseconds and a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (
        value.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


class WebhookConfig(BaseModel):
    """A registered webhook endpoint.

    Attributes:
        id: Unique id, generated at registration when absent
        url: http or https endpoint
        events: Event types the webhook subscribes to
        secret: HMAC signing secret
        enabled: Disabled webhooks receive nothing
        description: Optional description
        metadata: Optional metadata
    """

    model_config = ConfigDict(extra="forbid")

    id: str | None = Field(default=None, description="Webhook identifier")
    url: str = Field(description="Endpoint URL")
    events: list[WebhookEventType] = Field(description="Subscribed event types")
    secret: str = Field(repr=False, description="Signing secret")
    enabled: bool = Field(default=True, description="Whether deliveries are sent")
    description: str | None = Field(default=None, description="Description")
    metadata: dict[str, Any] | None = Field(default=None, description="Metadata")


class WebhookEvent(BaseModel):
    """An event delivered to webhooks."""

    id: str = Field(description="Event identifier")
    type: WebhookEventType = Field(description="Event type")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred",
    )
    data: dict[str, Any] = Field(default_factory=dict, description="Event data")
    metadata: dict[str, Any] | None = Field(default=None, description="Event metadata")

    def to_payload(self) -> dict[str, Any]:
        """Build the JSON payload sent on the wire. ``metadata`` is omitted when unset."""
        payload: dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "timestamp": format_timestamp(self.timestamp),
            "data": self.data,
        }
        if self.metadata is not None:
            payload["metadata"] = self.metadata
        return payload


class DeliveryResult(BaseModel):
    """Outcome of a delivery. Failures are reported here, never raised."""

    success: bool
    status_code: int | None = None
    error: str | None = None
    attempts: int | None = None
    webhook_id: str | None = None
    event_id: str | None = None


@dataclass
class RetryOptions:
    """Backoff settings for :meth:`WebhookRegistry.deliver_with_retry`.

    Attributes:
        max_retries: Retries after the first attempt
        initial_delay_ms: Delay before the first retry, doubled each time
        max_delay_ms: Upper bound on a single delay
    """

    max_retries: int = 3
    initial_delay_ms: float = 1_000
    max_delay_ms: float = 30_000


@dataclass(eq=False)
class DeadLetterItem:
    """An event whose delivery exhausted its retries. Compared by identity."""

    webhook_id: str
    event: WebhookEvent
    error: str
    attempts: int
    added_at: datetime


@dataclass
class WebhookRegistryOptions:
    """Configuration for a webhook registry.

    Attributes:
        batching_enabled: Accumulate emitted events per webhook
        batch_window_ms: Flush a batch this long after its first event
        max_batch_size: Flush a batch immediately at this size
        max_dead_letter_queue_size: Oldest items are evicted past this size
        timeout_seconds: HTTP request timeout
    """

    batching_enabled: bool = False
    batch_window_ms: float = 100
    max_batch_size: int = 100
    max_dead_letter_queue_size: int = 1000
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> WebhookRegistryOptions:
        """Create options from environment variables."""
        return cls(
            batching_enabled=os.getenv("HITL_WEBHOOK_BATCHING", "0") == "1",
            batch_window_ms=float(os.getenv("HITL_WEBHOOK_BATCH_WINDOW_MS", "100")),
            max_batch_size=int(os.getenv("HITL_WEBHOOK_MAX_BATCH_SIZE", "100")),
            max_dead_letter_queue_size=int(os.getenv("HITL_WEBHOOK_MAX_DLQ_SIZE", "1000")),
            timeout_seconds=float(os.getenv("HITL_WEBHOOK_TIMEOUT_SECS", "30")),
        )
