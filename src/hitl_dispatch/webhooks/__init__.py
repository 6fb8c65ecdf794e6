"""
Webhooks - Signed event delivery for human request lifecycle events.

Provides:
- WebhookRegistry: Registration, delivery, retry, batching, dead-letter queue
- sign_payload / verify_signature: HMAC-SHA256 signatures
- Wire types: WebhookConfig, WebhookEvent, DeliveryResult
"""

from hitl_dispatch.webhooks.registry import (
    WebhookRegistry,
    generate_id,
    get_default_webhook_registry,
    validate_url,
)
from hitl_dispatch.webhooks.signing import (
    SIGNATURE_PREFIX,
    encode_payload,
    sign_payload,
    verify_signature,
)
from hitl_dispatch.webhooks.types import (
    DeadLetterItem,
    DeliveryResult,
    RetryOptions,
    WebhookConfig,
    WebhookEvent,
    WebhookEventType,
    WebhookRegistryOptions,
    format_timestamp,
)

__all__ = [
    "SIGNATURE_PREFIX",
    "DeadLetterItem",
    "DeliveryResult",
    "RetryOptions",
    "WebhookConfig",
    "WebhookEvent",
    "WebhookEventType",
    "WebhookRegistry",
    "WebhookRegistryOptions",
    "encode_payload",
    "format_timestamp",
    "generate_id",
    "get_default_webhook_registry",
    "sign_payload",
    "validate_url",
    "verify_signature",
]
