"""
Integration test helper utilities.

Shared helpers for webhook delivery tests.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from hitl_dispatch.webhooks import WebhookConfig, WebhookEventType

if TYPE_CHECKING:
    import httpx

HOOK_URL = "https://hooks.example.com/hitl"
HOOK_SECRET = "whsec-test"


def request_json(request: httpx.Request) -> dict[str, Any]:
    """Decode a captured request body."""
    return json.loads(request.content.decode("utf-8"))


def hook_config(**overrides: Any) -> WebhookConfig:
    """Build a webhook config subscribed to completion events."""
    data: dict[str, Any] = {
        "id": "wh-1",
        "url": HOOK_URL,
        "events": [WebhookEventType.REQUEST_COMPLETED],
        "secret": HOOK_SECRET,
    }
    data.update(overrides)
    return WebhookConfig(**data)
