"""Tests for contact resolution and notification dispatch."""

from typing import Any

import pytest

from hitl_dispatch.dispatch import NotificationDispatcher
from hitl_dispatch.errors import CircuitOpenError, RetryError
from hitl_dispatch.resilience import (
    BackoffConfig,
    CircuitBreaker,
    CircuitBreakerConfig,
    WithRetryOptions,
)
from hitl_dispatch.routing import LeastBusyBalancer, RoundRobinBalancer, TaskRequest
from hitl_dispatch.telemetry import RoutingMetricsCollector, get_log_context
from hitl_dispatch.transport import (
    ContactAddress,
    ContactChannel,
    Contacts,
    RecordingSender,
    TransportSender,
    primary_address,
    resolve_address,
    resolve_addresses,
)
from tests.helpers import make_agent

FAST_RETRY = WithRetryOptions(max_retries=2, backoff=BackoffConfig(base_delay_ms=1, jitter_factor=0))


class FailingSender:
    """Sender failing a fixed number of times."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def send(
        self, channel: ContactChannel, payload: dict[str, Any], contacts: Contacts
    ) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("UNAVAILABLE: slack returned 503")


class TestContactResolution:
    """Tests for contact address resolution."""

    def test_resolve_string_contact(self) -> None:
        """Test plain string contacts."""
        address = resolve_address({ContactChannel.EMAIL: "alice@example.com"}, "email")
        assert address.channel == ContactChannel.EMAIL
        assert address.transport == "email"
        assert address.value == "alice@example.com"
        assert address.name is None

    def test_resolve_structured_contact(self) -> None:
        """Test structured contacts keep name and metadata."""
        contacts: Contacts = {
            ContactChannel.SLACK: ContactAddress("U123", name="Alice", metadata={"workspace": "acme"})
        }
        address = resolve_address(contacts, ContactChannel.SLACK)
        assert address.value == "U123"
        assert address.name == "Alice"
        assert address.metadata == {"workspace": "acme"}

    def test_channel_transports(self) -> None:
        """Test channels map onto their transports."""
        assert resolve_address({ContactChannel.PHONE: "+15550100"}, "phone").transport == "voice"
        assert resolve_address({ContactChannel.API: "https://x"}, "api").transport == "webhook"

    def test_missing_contact(self) -> None:
        """Test missing or empty contacts resolve to None."""
        assert resolve_address({}, ContactChannel.SMS) is None
        assert resolve_address({ContactChannel.SMS: ""}, ContactChannel.SMS) is None

    def test_string_keys_accepted(self) -> None:
        """Test contacts keyed by channel name."""
        address = resolve_address({"teams": "alice@corp"}, ContactChannel.TEAMS)  # type: ignore[dict-item]
        assert address.value == "alice@corp"

    def test_resolve_all(self) -> None:
        """Test every contact is resolved in channel order."""
        contacts: Contacts = {
            ContactChannel.SMS: "+15550100",
            ContactChannel.EMAIL: "alice@example.com",
        }
        assert [a.channel for a in resolve_addresses(contacts)] == [
            ContactChannel.EMAIL,
            ContactChannel.SMS,
        ]

    def test_primary_default_order(self) -> None:
        """Test slack is preferred over email by default."""
        contacts: Contacts = {
            ContactChannel.EMAIL: "alice@example.com",
            ContactChannel.SLACK: "U123",
        }
        assert primary_address(contacts).channel == ContactChannel.SLACK

    def test_primary_falls_back_to_other_channels(self) -> None:
        """Test channels outside the default order are used last."""
        contacts: Contacts = {ContactChannel.TELEGRAM: "@alice"}
        assert primary_address(contacts).channel == ContactChannel.TELEGRAM
        assert primary_address({}) is None

    def test_primary_preferred(self) -> None:
        """Test a preferred channel wins and is not substituted."""
        contacts: Contacts = {ContactChannel.SLACK: "U123", ContactChannel.SMS: "+1555"}
        assert primary_address(contacts, "sms").channel == ContactChannel.SMS
        assert primary_address(contacts, "email") is None

    def test_recording_sender_is_transport_sender(self) -> None:
        """Test the recording sender satisfies the protocol."""
        assert isinstance(RecordingSender(), TransportSender)


class TestNotificationDispatcher:
    """Tests for NotificationDispatcher."""

    @pytest.mark.asyncio
    async def test_delivers(self, collector: RoutingMetricsCollector) -> None:
        """Test a routed task is delivered on the primary channel."""
        sender = RecordingSender()
        balancer = RoundRobinBalancer(
            [make_agent("alice", contacts={ContactChannel.EMAIL: "alice@example.com"})],
            metrics_collector=collector,
        )
        dispatcher = NotificationDispatcher(balancer, sender, retry=FAST_RETRY)

        result = await dispatcher.dispatch(TaskRequest(id="t1"), {"text": "Please review"})

        assert result.delivered
        assert result.attempts == 1
        assert result.address.value == "alice@example.com"
        assert result.route.agent.id == "alice"
        assert sender.sent == [(ContactChannel.EMAIL, {"text": "Please review"})]

    @pytest.mark.asyncio
    async def test_log_context_bound(
        self, collector: RoutingMetricsCollector, log_capture
    ) -> None:
        """Test sends and dispatch logs carry the task, agent and request ids."""
        seen: list[dict[str, Any]] = []

        class ContextSender:
            async def send(
                self, channel: ContactChannel, payload: dict[str, Any], contacts: Contacts
            ) -> None:
                seen.append(get_log_context().to_dict())

        balancer = RoundRobinBalancer(
            [make_agent("alice", contacts={ContactChannel.SLACK: "U1"})],
            metrics_collector=collector,
        )
        dispatcher = NotificationDispatcher(balancer, ContextSender(), retry=FAST_RETRY)

        await dispatcher.dispatch(TaskRequest(id="t1"), {})

        assert seen == [{"request_id": "t1", "task_id": "t1", "agent_id": "alice"}]
        assert log_capture.find("Notification delivered")["context"] == {
            "task_id": "t1",
            "agent_id": "alice",
        }
        assert get_log_context().to_dict() == {}

    @pytest.mark.asyncio
    async def test_retries_until_delivered(self, collector: RoutingMetricsCollector) -> None:
        """Test transient send failures are retried."""
        sender = FailingSender(failures=2)
        balancer = RoundRobinBalancer(
            [make_agent("alice", contacts={ContactChannel.SLACK: "U1"})],
            metrics_collector=collector,
        )
        dispatcher = NotificationDispatcher(balancer, sender, retry=FAST_RETRY)

        result = await dispatcher.dispatch(TaskRequest(id="t1"), {})

        assert result.delivered
        assert result.attempts == 3
        assert sender.calls == 3

    @pytest.mark.asyncio
    async def test_exhausted_releases_load(self, collector: RoutingMetricsCollector) -> None:
        """Test failed delivery reports the error and frees the agent's slot."""
        sender = FailingSender(failures=10)
        balancer = LeastBusyBalancer(
            [make_agent("alice", contacts={ContactChannel.SLACK: "U1"})],
            metrics_collector=collector,
        )
        dispatcher = NotificationDispatcher(balancer, sender, retry=FAST_RETRY)

        result = await dispatcher.dispatch(TaskRequest(id="t1"), {})

        assert not result.delivered
        assert result.attempts == 3
        assert isinstance(result.exception, RetryError)
        assert "UNAVAILABLE" in result.error
        assert balancer.get_load_metrics() == {"alice": 0.0}

    @pytest.mark.asyncio
    async def test_open_circuit(self, collector: RoutingMetricsCollector) -> None:
        """Test an open breaker rejects without sending."""
        breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=1))
        breaker.record_failure()
        sender = RecordingSender()
        balancer = RoundRobinBalancer(
            [make_agent("alice", contacts={ContactChannel.SLACK: "U1"})],
            metrics_collector=collector,
        )
        dispatcher = NotificationDispatcher(
            balancer, sender, retry=WithRetryOptions(circuit_breaker=breaker)
        )

        result = await dispatcher.dispatch(TaskRequest(id="t1"), {})

        assert not result.delivered
        assert result.attempts == 0
        assert isinstance(result.exception, CircuitOpenError)
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_no_agent(self, collector: RoutingMetricsCollector) -> None:
        """Test routing failures are reported."""
        dispatcher = NotificationDispatcher(
            RoundRobinBalancer([], metrics_collector=collector), RecordingSender()
        )
        result = await dispatcher.dispatch(TaskRequest(id="t1"), {})
        assert not result.delivered
        assert result.error == "no-available-agents"

    @pytest.mark.asyncio
    async def test_no_contact(self, collector: RoutingMetricsCollector) -> None:
        """Test agents without a usable contact are reported and released."""
        balancer = LeastBusyBalancer([make_agent("alice")], metrics_collector=collector)
        dispatcher = NotificationDispatcher(balancer, RecordingSender())

        result = await dispatcher.dispatch(TaskRequest(id="t1"), {})

        assert not result.delivered
        assert result.error == "No contact channel for agent alice"
        assert balancer.get_load_metrics() == {"alice": 0.0}

    @pytest.mark.asyncio
    async def test_preferred_channel(self, collector: RoutingMetricsCollector) -> None:
        """Test the preferred channel is used."""
        sender = RecordingSender()
        balancer = RoundRobinBalancer(
            [
                make_agent(
                    "alice",
                    contacts={ContactChannel.SLACK: "U1", ContactChannel.SMS: "+1555"},
                )
            ],
            metrics_collector=collector,
        )
        dispatcher = NotificationDispatcher(
            balancer, sender, retry=FAST_RETRY, preferred_channel="sms"
        )

        await dispatcher.dispatch(TaskRequest(id="t1"), {"text": "hi"})

        assert sender.sent[0][0] == ContactChannel.SMS
