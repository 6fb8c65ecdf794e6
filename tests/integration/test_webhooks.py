"""
Integration tests for webhook delivery.

Tests signed delivery, retry, dead-lettering and batching against a mocked
HTTP endpoint.
"""

import asyncio

import httpx
import pytest

from hitl_dispatch.webhooks import (
    RetryOptions,
    WebhookEvent,
    WebhookEventType,
    WebhookRegistry,
    WebhookRegistryOptions,
    verify_signature,
)
from tests.integration.conftest import HOOK_SECRET, HOOK_URL, hook_config, request_json

NOW = 1_700_000_000.0
FAST = RetryOptions(max_retries=2, initial_delay_ms=1, max_delay_ms=5)


def completed_event(event_id: str = "evt_1") -> WebhookEvent:
    return WebhookEvent(
        id=event_id,
        type=WebhookEventType.REQUEST_COMPLETED,
        data={"request_id": "req-1", "decision": "approved"},
    )


class TestDelivery:
    """Tests for single deliveries."""

    @pytest.mark.asyncio
    async def test_signed_headers(self, httpx_mock) -> None:
        """Test deliveries carry verifiable signature headers."""
        httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=200)

        async with WebhookRegistry(clock=lambda: NOW) as registry:
            registry.register(hook_config())
            result = await registry.deliver("wh-1", completed_event())

        assert result.success
        assert result.status_code == 200
        assert result.event_id == "evt_1"

        request = httpx_mock.get_request()
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["X-Webhook-ID"] == "wh-1"
        assert request.headers["X-Event-Type"] == "request.completed"
        assert request.headers["X-Event-ID"] == "evt_1"
        assert request.headers["X-Timestamp"] == "1700000000000"
        assert verify_signature(
            request.content.decode("utf-8"),
            HOOK_SECRET,
            1_700_000_000_000,
            request.headers["X-Signature"],
        )

        body = request_json(request)
        assert body["id"] == "evt_1"
        assert body["type"] == "request.completed"
        assert body["data"] == {"request_id": "req-1", "decision": "approved"}
        assert body["timestamp"].endswith("Z")
        assert "metadata" not in body

    @pytest.mark.asyncio
    async def test_unknown_webhook(self, httpx_mock) -> None:
        """Test delivering to an unknown webhook fails without a request."""
        async with WebhookRegistry() as registry:
            result = await registry.deliver("ghost", completed_event())

        assert not result.success
        assert result.error == "Webhook not found: ghost"
        assert httpx_mock.get_requests() == []

    @pytest.mark.asyncio
    async def test_http_error_reported(self, httpx_mock) -> None:
        """Test non-2xx responses become failed results."""
        httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=502)

        async with WebhookRegistry() as registry:
            registry.register(hook_config())
            result = await registry.deliver("wh-1", completed_event())

        assert not result.success
        assert result.status_code == 502
        assert result.error == "Bad Gateway"

    @pytest.mark.asyncio
    async def test_network_error_reported(self, httpx_mock) -> None:
        """Test network failures become failed results."""
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))

        async with WebhookRegistry() as registry:
            registry.register(hook_config())
            result = await registry.deliver("wh-1", completed_event())

        assert not result.success
        assert result.status_code is None
        assert result.error == "connection refused"

    @pytest.mark.asyncio
    async def test_webhook_id_in_log_context(self, httpx_mock, log_capture) -> None:
        """Test request failures are logged with the webhook id bound."""
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))

        async with WebhookRegistry() as registry:
            registry.register(hook_config())
            await registry.deliver("wh-1", completed_event())

        record = log_capture.find("Webhook request failed")
        assert record["context"] == {"webhook_id": "wh-1"}
        assert record["error"] == "ConnectError"

    @pytest.mark.asyncio
    async def test_shared_client_not_closed(self, httpx_mock) -> None:
        """Test a caller-supplied client stays open after aclose."""
        httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=204)

        async with httpx.AsyncClient() as client:
            registry = WebhookRegistry(client=client)
            registry.register(hook_config())
            assert (await registry.deliver("wh-1", completed_event())).success
            await registry.aclose()
            assert not client.is_closed


class TestDeliverWithRetry:
    """Tests for retried delivery and the dead-letter queue."""

    @pytest.mark.asyncio
    async def test_success_after_server_errors(self, httpx_mock) -> None:
        """Test 5xx responses are retried until success."""
        httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=503)
        httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=200)

        async with WebhookRegistry() as registry:
            registry.register(hook_config())
            result = await registry.deliver_with_retry("wh-1", completed_event(), FAST)

            assert result.success
            assert result.attempts == 2
            assert registry.get_dead_letter_queue() == []

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, httpx_mock) -> None:
        """Test a 4xx response ends delivery after one attempt."""
        httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=400)

        async with WebhookRegistry() as registry:
            registry.register(hook_config())
            result = await registry.deliver_with_retry("wh-1", completed_event(), FAST)

            assert not result.success
            assert result.status_code == 400
            assert result.attempts == 1
            assert registry.get_dead_letter_queue() == []

        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    async def test_exhausted_goes_to_dead_letter_queue(self, httpx_mock) -> None:
        """Test persistent 5xx responses dead-letter the event."""
        for _ in range(3):
            httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=503)

        async with WebhookRegistry() as registry:
            registry.register(hook_config())
            result = await registry.deliver_with_retry("wh-1", completed_event(), FAST)

            assert not result.success
            assert result.attempts == 3
            assert result.error == "Max retries exceeded: Service Unavailable"

            [item] = registry.get_dead_letter_queue()
            assert item.webhook_id == "wh-1"
            assert item.event.id == "evt_1"
            assert item.attempts == 3
            assert item.error == "Service Unavailable"

        assert len(httpx_mock.get_requests()) == 3

    @pytest.mark.asyncio
    async def test_network_errors_retried(self, httpx_mock) -> None:
        """Test network failures are retried like server errors."""
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))
        httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=200)

        async with WebhookRegistry() as registry:
            registry.register(hook_config())
            result = await registry.deliver_with_retry("wh-1", completed_event(), FAST)

        assert result.success
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_unknown_webhook_not_dead_lettered(self, httpx_mock) -> None:
        """Test events for unknown webhooks are not dead-lettered."""
        async with WebhookRegistry() as registry:
            result = await registry.deliver_with_retry("ghost", completed_event(), FAST)

            assert not result.success
            assert result.attempts == 1
            assert registry.get_dead_letter_queue() == []

    @pytest.mark.asyncio
    async def test_dead_letter_queue_bounded(self, httpx_mock) -> None:
        """Test the oldest dead letters are evicted past the size limit."""
        for _ in range(3):
            httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=500)

        options = WebhookRegistryOptions(max_dead_letter_queue_size=2)
        async with WebhookRegistry(options) as registry:
            registry.register(hook_config())
            for i in range(3):
                await registry.deliver_with_retry(
                    "wh-1", completed_event(f"evt_{i}"), RetryOptions(max_retries=0)
                )

            assert [d.event.id for d in registry.get_dead_letter_queue()] == [
                "evt_1",
                "evt_2",
            ]

    @pytest.mark.asyncio
    async def test_retry_dead_letter_queue(self, httpx_mock) -> None:
        """Test redelivered dead letters are removed on success only."""
        httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=500)
        httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=500)
        httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=200)
        httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=500)

        async with WebhookRegistry() as registry:
            registry.register(hook_config())
            no_retry = RetryOptions(max_retries=0)
            await registry.deliver_with_retry("wh-1", completed_event("evt_a"), no_retry)
            await registry.deliver_with_retry("wh-1", completed_event("evt_b"), no_retry)
            assert len(registry.get_dead_letter_queue()) == 2

            results = await registry.retry_dead_letter_queue()

            assert [r.success for r in results] == [True, False]
            assert [d.event.id for d in registry.get_dead_letter_queue()] == ["evt_b"]

            registry.clear_dead_letter_queue()
            assert registry.get_dead_letter_queue() == []


class TestEmit:
    """Tests for emitting events."""

    @pytest.mark.asyncio
    async def test_emit_to_subscribers(self, httpx_mock) -> None:
        """Test events reach only enabled subscribed webhooks."""
        other_url = "https://other.example.com/hitl"
        httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=200)

        async with WebhookRegistry() as registry:
            registry.register(hook_config())
            registry.register(
                hook_config(id="wh-2", url=other_url, events=["request.created"])
            )
            registry.register(hook_config(id="wh-3", url=other_url, enabled=False))

            results = await registry.emit(
                WebhookEventType.REQUEST_COMPLETED,
                {"request_id": "req-1"},
                metadata={"tenant": "acme"},
            )

        assert [r.webhook_id for r in results] == ["wh-1"]
        assert results[0].success

        body = request_json(httpx_mock.get_request())
        assert body["id"].startswith("evt_")
        assert body["data"] == {"request_id": "req-1"}
        assert body["metadata"] == {"tenant": "acme"}

    @pytest.mark.asyncio
    async def test_emit_without_subscribers(self, httpx_mock) -> None:
        """Test emitting an unsubscribed event sends nothing."""
        async with WebhookRegistry() as registry:
            registry.register(hook_config())
            assert await registry.emit("request.cancelled", {}) == []
        assert httpx_mock.get_requests() == []


class TestBatching:
    """Tests for batched delivery."""

    @pytest.mark.asyncio
    async def test_batch_flushes_at_max_size(self, httpx_mock) -> None:
        """Test a full batch is sent immediately as one request."""
        httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=200)
        options = WebhookRegistryOptions(
            batching_enabled=True, batch_window_ms=60_000, max_batch_size=2
        )

        async with WebhookRegistry(options, clock=lambda: NOW) as registry:
            registry.register(hook_config())
            assert await registry.emit("request.completed", {"n": 1}) == []
            assert httpx_mock.get_requests() == []
            await registry.emit("request.completed", {"n": 2})

            request = httpx_mock.get_request()
            assert request.headers["X-Batch"] == "true"
            assert "X-Event-ID" not in request.headers
            assert verify_signature(
                request.content.decode("utf-8"),
                HOOK_SECRET,
                1_700_000_000_000,
                request.headers["X-Signature"],
            )
            events = request_json(request)["events"]
            assert [e["data"] for e in events] == [{"n": 1}, {"n": 2}]

    @pytest.mark.asyncio
    async def test_batch_window(self, httpx_mock) -> None:
        """Test a partial batch is sent when the window elapses."""
        httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=200)
        options = WebhookRegistryOptions(batching_enabled=True, batch_window_ms=10)

        async with WebhookRegistry(options) as registry:
            registry.register(hook_config())
            await registry.emit("request.completed", {"n": 1})

            for _ in range(100):
                if httpx_mock.get_requests():
                    break
                await asyncio.sleep(0.01)

            await asyncio.sleep(0.01)
            [request] = httpx_mock.get_requests()
            assert len(request_json(request)["events"]) == 1

    @pytest.mark.asyncio
    async def test_flush_sends_pending(self, httpx_mock) -> None:
        """Test flush sends pending batches without waiting for the window."""
        httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=200)
        options = WebhookRegistryOptions(batching_enabled=True, batch_window_ms=60_000)

        async with WebhookRegistry(options) as registry:
            registry.register(hook_config())
            await registry.emit("request.completed", {"n": 1})
            await registry.emit("request.completed", {"n": 2})
            await registry.flush()

            assert len(request_json(httpx_mock.get_request())["events"]) == 2

            await registry.flush()

        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    async def test_flush_cancels_window_timer(self, httpx_mock) -> None:
        """Test a manual flush stops the pending window from sending again."""
        httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=200)
        options = WebhookRegistryOptions(batching_enabled=True, batch_window_ms=20)

        async with WebhookRegistry(options) as registry:
            registry.register(hook_config())
            await registry.emit("request.completed", {"n": 1})
            await registry.flush()

            await asyncio.sleep(0.06)

            [request] = httpx_mock.get_requests()
            assert len(request_json(request)["events"]) == 1

    @pytest.mark.asyncio
    async def test_close_flushes_pending(self, httpx_mock) -> None:
        """Test closing the registry sends pending batches."""
        httpx_mock.add_response(url=HOOK_URL, method="POST", status_code=200)
        options = WebhookRegistryOptions(batching_enabled=True, batch_window_ms=60_000)

        async with WebhookRegistry(options) as registry:
            registry.register(hook_config())
            await registry.emit("request.completed", {"n": 1})

        assert len(httpx_mock.get_requests()) == 1
