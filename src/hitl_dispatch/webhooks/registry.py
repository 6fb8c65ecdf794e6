"""Webhook 注册表：事件投递、重试、批处理与死信队列。

Webhook registry with signed delivery, retry, batching and a dead-letter queue.

Deliveries never raise for HTTP or network failures; every outcome is a
:class:`DeliveryResult`. Client errors (4xx) are final, server errors and
network errors are retried with exponential backoff and, once retries run
out, the event is parked in a bounded dead-letter queue.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

import httpx

from hitl_dispatch.errors import WebhookError, is_retryable_status
from hitl_dispatch.telemetry.logger import bind_log_context, get_logger
from hitl_dispatch.webhooks.signing import encode_payload, sign_payload
from hitl_dispatch.webhooks.types import (
    DeadLetterItem,
    DeliveryResult,
    RetryOptions,
    WebhookConfig,
    WebhookEvent,
    WebhookEventType,
    WebhookRegistryOptions,
)

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger(__name__)

_DEFAULT_CONNECT_TIMEOUT = 10.0


def generate_id(prefix: str) -> str:
    """Generate an id like ``evt_1700000000000_3f9a1c2b7``."""
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


def validate_url(url: str) -> None:
    """Check that a webhook URL is an absolute http or https URL.

    Raises:
        WebhookError: If the URL is malformed or uses another scheme
    """
    try:
        parsed = urlsplit(url)
    except ValueError as e:
        raise WebhookError(f"Invalid webhook URL: {url}", url=url) from e
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise WebhookError(f"Invalid webhook URL: {url}", url=url)


@dataclass
class _BatchState:
    events: list[WebhookEvent] = field(default_factory=list)
    timer: asyncio.Task[None] | None = None


class WebhookRegistry:
    """Registry of webhooks and their deliveries.

    Example:
        >>> async with WebhookRegistry() as registry:
        ...     registry.register(WebhookConfig(
        ...         url="https://example.com/hooks",
        ...         events=[WebhookEventType.REQUEST_COMPLETED],
        ...         secret="s3cret",
        ...     ))
        ...     await registry.emit(WebhookEventType.REQUEST_COMPLETED, {"id": "req-1"})
    """

    def __init__(
        self,
        options: WebhookRegistryOptions | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize registry.

        Args:
            options: Registry options
            client: HTTP client to use; one is created lazily when omitted
            clock: Wall clock in seconds, used for signature timestamps
        """
        self.options = options or WebhookRegistryOptions()
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._webhooks: dict[str, WebhookConfig] = {}
        self._dead_letters: deque[DeadLetterItem] = deque()
        self._batches: dict[str, _BatchState] = {}

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self.options.timeout_seconds, connect=_DEFAULT_CONNECT_TIMEOUT
                ),
            )
        return self._client

    # Registration

    def register(self, config: WebhookConfig | dict[str, Any]) -> WebhookConfig:
        """Register a webhook.

        Args:
            config: Webhook configuration; an id is generated when absent

        Returns:
            The registered configuration

        Raises:
            WebhookError: If the URL is invalid or no events are subscribed
        """
        if isinstance(config, dict):
            config = WebhookConfig(**config)
        validate_url(config.url)
        if not config.events:
            raise WebhookError(
                "Webhook must subscribe to at least one event type", url=config.url
            )

        webhook = config.model_copy(update={"id": config.id or generate_id("wh")})
        self._webhooks[webhook.id] = webhook
        logger.info("Webhook registered", webhook_id=webhook.id, url=webhook.url)
        return webhook

    def get(self, webhook_id: str) -> WebhookConfig | None:
        """Get a webhook by id."""
        return self._webhooks.get(webhook_id)

    def list(self) -> list[WebhookConfig]:
        """List all webhooks."""
        return list(self._webhooks.values())

    def unregister(self, webhook_id: str) -> bool:
        """Remove a webhook. Returns False if it was not registered."""
        return self._webhooks.pop(webhook_id, None) is not None

    def enable(self, webhook_id: str) -> None:
        """Enable a webhook."""
        webhook = self._webhooks.get(webhook_id)
        if webhook is not None:
            webhook.enabled = True

    def disable(self, webhook_id: str) -> None:
        """Disable a webhook."""
        webhook = self._webhooks.get(webhook_id)
        if webhook is not None:
            webhook.enabled = False

    def get_by_event(self, event_type: WebhookEventType | str) -> list[WebhookConfig]:
        """Get enabled webhooks subscribed to an event type."""
        event_type = WebhookEventType(event_type)
        return [w for w in self._webhooks.values() if w.enabled and event_type in w.events]

    # Delivery

    async def _post(
        self,
        webhook: WebhookConfig,
        payload: dict[str, Any],
        headers: dict[str, str],
    ) -> DeliveryResult:
        timestamp = int(self._clock() * 1000)
        body = encode_payload(payload)
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-ID": webhook.id or "",
            **headers,
            "X-Signature": sign_payload(body, webhook.secret, timestamp),
            "X-Timestamp": str(timestamp),
        }

        try:
            response = await self._get_client().post(
                webhook.url, content=body.encode("utf-8"), headers=headers
            )
        except httpx.HTTPError as e:
            logger.debug("Webhook request failed", url=webhook.url, error=type(e).__name__)
            return DeliveryResult(
                success=False, error=str(e) or type(e).__name__, webhook_id=webhook.id
            )

        if response.is_success:
            return DeliveryResult(
                success=True, status_code=response.status_code, webhook_id=webhook.id
            )
        return DeliveryResult(
            success=False,
            status_code=response.status_code,
            error=response.reason_phrase,
            webhook_id=webhook.id,
        )

    async def deliver(self, webhook_id: str, event: WebhookEvent) -> DeliveryResult:
        """Deliver one event to one webhook, without retry."""
        webhook = self._webhooks.get(webhook_id)
        if webhook is None:
            return DeliveryResult(
                success=False,
                error=f"Webhook not found: {webhook_id}",
                webhook_id=webhook_id,
                event_id=event.id,
            )

        with bind_log_context(webhook_id=webhook_id):
            result = await self._post(
                webhook,
                event.to_payload(),
                {"X-Event-Type": event.type.value, "X-Event-ID": event.id},
            )
        return result.model_copy(update={"event_id": event.id})

    async def deliver_with_retry(
        self,
        webhook_id: str,
        event: WebhookEvent,
        options: RetryOptions | None = None,
    ) -> DeliveryResult:
        """Deliver an event, retrying server and network failures.

        4xx responses end the attempt immediately. When retries are
        exhausted the event is added to the dead-letter queue.

        Args:
            webhook_id: Target webhook
            event: Event to deliver
            options: Backoff settings

        Returns:
            Result of the last attempt, with ``attempts`` set
        """
        options = options or RetryOptions()
        attempts = 0
        result = DeliveryResult(success=False, error="No attempts made")

        while attempts <= options.max_retries:
            attempts += 1
            result = await self.deliver(webhook_id, event)

            if result.success:
                return result.model_copy(update={"attempts": attempts})

            if result.status_code and not is_retryable_status(result.status_code):
                logger.warning(
                    "Webhook delivery rejected",
                    webhook_id=webhook_id,
                    event_id=event.id,
                    status_code=result.status_code,
                )
                return result.model_copy(update={"attempts": attempts})

            if webhook_id not in self._webhooks or attempts > options.max_retries:
                break

            delay_ms = min(
                options.initial_delay_ms * 2 ** (attempts - 1), options.max_delay_ms
            )
            logger.debug(
                "Webhook delivery failed, retrying",
                webhook_id=webhook_id,
                event_id=event.id,
                attempt=attempts,
                delay_ms=delay_ms,
            )
            await asyncio.sleep(delay_ms / 1000)

        if webhook_id not in self._webhooks:
            return result.model_copy(update={"attempts": attempts})

        self._add_dead_letter(
            DeadLetterItem(
                webhook_id=webhook_id,
                event=event,
                error=result.error or "Max retries exceeded",
                attempts=attempts,
                added_at=datetime.now(timezone.utc),
            )
        )
        return result.model_copy(
            update={"attempts": attempts, "error": f"Max retries exceeded: {result.error}"}
        )

    async def emit(
        self,
        event_type: WebhookEventType | str,
        data: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> list[DeliveryResult]:
        """Send an event to every enabled subscribed webhook.

        With batching enabled the event is queued per webhook and an empty
        list is returned; batches are sent when full or when the batch
        window elapses.
        """
        event = WebhookEvent(
            id=generate_id("evt"),
            type=WebhookEventType(event_type),
            data=data,
            metadata=metadata,
        )
        results: list[DeliveryResult] = []

        for webhook in self.get_by_event(event.type):
            if webhook.id is None:
                continue
            if not self.options.batching_enabled:
                results.append(await self.deliver(webhook.id, event))
                continue

            state = self._batches.setdefault(webhook.id, _BatchState())
            state.events.append(event)
            if len(state.events) >= self.options.max_batch_size:
                await self._flush_webhook(webhook.id)
            elif state.timer is None:
                state.timer = asyncio.get_running_loop().create_task(
                    self._flush_later(webhook.id)
                )

        return results

    async def _flush_later(self, webhook_id: str) -> None:
        await asyncio.sleep(self.options.batch_window_ms / 1000)
        state = self._batches.get(webhook_id)
        if state is not None:
            state.timer = None
        await self._flush_webhook(webhook_id)

    async def _flush_webhook(self, webhook_id: str) -> DeliveryResult | None:
        state = self._batches.get(webhook_id)
        if state is None or not state.events:
            return None

        events, state.events = state.events, []
        if state.timer is not None:
            state.timer.cancel()
            state.timer = None

        with bind_log_context(webhook_id=webhook_id):
            result = await self._deliver_batch(webhook_id, events)
        if not result.success:
            logger.warning(
                "Webhook batch delivery failed",
                webhook_id=webhook_id,
                events=len(events),
                error=result.error,
            )
        return result

    async def _deliver_batch(
        self, webhook_id: str, events: list[WebhookEvent]
    ) -> DeliveryResult:
        webhook = self._webhooks.get(webhook_id)
        if webhook is None:
            return DeliveryResult(
                success=False,
                error=f"Webhook not found: {webhook_id}",
                webhook_id=webhook_id,
            )
        payload = {"events": [e.to_payload() for e in events]}
        return await self._post(webhook, payload, {"X-Batch": "true"})

    async def flush(self) -> None:
        """Send every pending batch now."""
        await asyncio.gather(*(self._flush_webhook(wid) for wid in list(self._batches)))

    # Dead-letter queue

    def _add_dead_letter(self, item: DeadLetterItem) -> None:
        self._dead_letters.append(item)
        while len(self._dead_letters) > self.options.max_dead_letter_queue_size:
            self._dead_letters.popleft()
        logger.warning(
            "Event dead-lettered",
            webhook_id=item.webhook_id,
            event_id=item.event.id,
            attempts=item.attempts,
            error=item.error,
        )

    def get_dead_letter_queue(self) -> list[DeadLetterItem]:
        """Get a copy of the dead-letter queue, oldest first."""
        return list(self._dead_letters)

    async def retry_dead_letter_queue(self) -> list[DeliveryResult]:
        """Redeliver every dead-lettered event once, removing successes."""
        results: list[DeliveryResult] = []
        delivered: list[DeadLetterItem] = []

        for item in list(self._dead_letters):
            result = await self.deliver(item.webhook_id, item.event)
            results.append(result)
            if result.success:
                delivered.append(item)

        for item in delivered:
            if item in self._dead_letters:
                self._dead_letters.remove(item)
        return results

    def clear_dead_letter_queue(self) -> None:
        """Drop every dead-lettered event."""
        self._dead_letters.clear()

    # Lifecycle

    async def aclose(self) -> None:
        """Send pending batches and close the HTTP client if owned."""
        await self.flush()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> WebhookRegistry:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


_default_registry: WebhookRegistry | None = None


def get_default_webhook_registry() -> WebhookRegistry:
    """Get or create the default webhook registry.

    Returns:
        Default WebhookRegistry instance
    """
    global _default_registry
    if _default_registry is None:
        _default_registry = WebhookRegistry()
    return _default_registry
