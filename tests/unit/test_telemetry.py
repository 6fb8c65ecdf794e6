"""Tests for telemetry module."""

import io
import json
import logging

import pytest

from hitl_dispatch.routing import RoundRobinBalancer, TaskRequest
from hitl_dispatch.telemetry import (
    DispatchLogger,
    LogContext,
    LogLevel,
    RoutingMetricsCollector,
    SensitiveDataMasker,
    bind_log_context,
    clear_log_context,
    collect_routing_metrics,
    get_log_context,
    get_logger,
    get_metrics_collector,
    reset_routing_metrics,
    set_log_context,
    set_metrics_collector,
)
from hitl_dispatch.telemetry.logger import JsonFormatter, TextFormatter
from tests.helpers import make_agent


def make_record(msg: str, **fields) -> logging.LogRecord:
    record = logging.LogRecord("hitl_dispatch.test", logging.WARNING, __file__, 1, msg, None, None)
    if fields:
        record.extra_fields = fields
    return record


class TestLogContext:
    """Tests for LogContext."""

    def test_empty_context(self) -> None:
        """Test empty context."""
        assert LogContext().to_dict() == {}

    def test_context_with_fields(self) -> None:
        """Test context with fields."""
        ctx = LogContext(request_id="req-1", task_id="t-1", agent_id="alice", webhook_id="wh-1")
        assert ctx.to_dict() == {
            "request_id": "req-1",
            "task_id": "t-1",
            "agent_id": "alice",
            "webhook_id": "wh-1",
        }

    def test_context_with_extra(self) -> None:
        """Test context with extra fields."""
        ctx = LogContext(request_id="req-1").with_extra(attempt=2)
        assert ctx.to_dict() == {"request_id": "req-1", "attempt": 2}

    def test_set_and_clear(self) -> None:
        """Test the context variable round-trips known and extra fields."""
        set_log_context(LogContext(task_id="t-9", extra={"queue": "legal"}))
        try:
            ctx = get_log_context()
            assert ctx.task_id == "t-9"
            assert ctx.extra == {"queue": "legal"}
        finally:
            clear_log_context()
        assert get_log_context().to_dict() == {}

    def test_bind_nests_and_unwinds(self) -> None:
        """Test bound fields merge with outer bindings and are restored on exit."""
        with bind_log_context(task_id="t-1", request_id=None) as outer:
            assert outer.to_dict() == {"task_id": "t-1"}
            with bind_log_context(agent_id="alice") as inner:
                assert inner.to_dict() == {"task_id": "t-1", "agent_id": "alice"}
            assert get_log_context().to_dict() == {"task_id": "t-1"}
        assert get_log_context().to_dict() == {}

    def test_bind_restores_on_error(self) -> None:
        """Test the previous context comes back when the block raises."""
        with pytest.raises(RuntimeError), bind_log_context(webhook_id="wh-1"):
            raise RuntimeError("boom")
        assert get_log_context().webhook_id is None


class TestSensitiveDataMasker:
    """Tests for SensitiveDataMasker."""

    def test_mask_signature(self) -> None:
        """Test masking HMAC signatures."""
        masked = SensitiveDataMasker().mask("X-Signature: sha256=" + "ab12" * 16)
        assert "ab12ab12" not in masked
        assert "sha256=***REDACTED***" in masked

    def test_mask_secret(self) -> None:
        """Test masking secrets in key=value form."""
        masked = SensitiveDataMasker().mask("registering webhook secret=whsec-abc123")
        assert "whsec-abc123" not in masked
        assert "REDACTED" in masked

    def test_mask_bearer_token(self) -> None:
        """Test masking bearer tokens."""
        masked = SensitiveDataMasker().mask("Authorization: Bearer secret-token-123")
        assert "secret-token-123" not in masked

    def test_mask_dict(self) -> None:
        """Test masking dictionary."""
        masked = SensitiveDataMasker().mask_dict(
            {
                "secret": "whsec-1",
                "url": "https://hooks.example.com",
                "nested": {"signature": "sha256=00"},
                "items": [{"token": "x"}, 3],
            }
        )
        assert masked["secret"] == "***REDACTED***"
        assert masked["url"] == "https://hooks.example.com"
        assert masked["nested"]["signature"] == "***REDACTED***"
        assert masked["items"] == [{"token": "***REDACTED***"}, 3]


class TestFormatters:
    """Tests for log formatters."""

    def test_json_formatter(self) -> None:
        """Test JSON output carries extra fields and context."""
        set_log_context(LogContext(request_id="req-1"))
        try:
            output = JsonFormatter().format(
                make_record("Webhook delivery failed", webhook_id="wh-1", secret="s3cr3t")
            )
        finally:
            clear_log_context()

        data = json.loads(output)
        assert data["level"] == "WARNING"
        assert data["message"] == "Webhook delivery failed"
        assert data["webhook_id"] == "wh-1"
        assert data["secret"] == "***REDACTED***"
        assert data["context"] == {"request_id": "req-1"}
        assert data["timestamp"].endswith("Z")

    def test_json_formatter_without_timestamp(self) -> None:
        """Test timestamps can be disabled."""
        data = json.loads(JsonFormatter(include_timestamp=False).format(make_record("hi")))
        assert "timestamp" not in data

    def test_text_formatter(self) -> None:
        """Test text output appends fields."""
        output = TextFormatter(include_context=False).format(
            make_record("Circuit opened", breaker="reviewers", failures=5)
        )
        assert "Circuit opened" in output
        assert "WARNING" in output
        assert output.endswith("| breaker=reviewers failures=5")


class TestDispatchLogger:
    """Tests for DispatchLogger."""

    def test_get_logger(self) -> None:
        """Test getting a logger."""
        logger = get_logger("hitl_dispatch.test.get")
        assert isinstance(logger, DispatchLogger)

    def test_configure_writes_to_stream(self) -> None:
        """Test configured loggers write structured output."""
        stream = io.StringIO()
        logger = get_logger("hitl_dispatch.test.configure")
        DispatchLogger.configure(level=LogLevel.DEBUG, format="json", stream=stream)
        try:
            logger.debug("Tracking SLA", request_id="req-1", deadline_ms=1000)
        finally:
            DispatchLogger.configure(level=LogLevel.INFO, format="text")

        data = json.loads(stream.getvalue().strip())
        assert data["message"] == "Tracking SLA"
        assert data["deadline_ms"] == 1000


class TestRoutingMetricsCollector:
    """Tests for RoutingMetricsCollector."""

    def test_empty(self) -> None:
        """Test a fresh collector."""
        metrics = RoutingMetricsCollector().collect()
        assert metrics.total_routed == 0
        assert metrics.success_rate == 0.0
        assert metrics.per_agent == {}

    def test_record_and_collect(self) -> None:
        """Test decisions are aggregated."""
        collector = RoutingMetricsCollector()
        balancer = RoundRobinBalancer(
            [make_agent("a"), make_agent("b")], metrics_collector=collector
        )
        for i in range(3):
            balancer.route(TaskRequest(id=f"t{i}"))

        metrics = collector.collect()
        assert metrics.total_routed == 3
        assert metrics.per_agent["a"].routed_count == 2
        assert metrics.per_agent["b"].routed_count == 1
        assert metrics.per_agent["a"].last_routed is not None
        assert metrics.average_latency_ms >= 0
        assert metrics.success_rate == 1.0

    def test_collect_returns_copy(self) -> None:
        """Test mutating a snapshot does not affect the collector."""
        collector = RoutingMetricsCollector()
        RoundRobinBalancer([make_agent("a")], metrics_collector=collector).route(
            TaskRequest(id="t")
        )
        snapshot = collector.collect()
        snapshot.per_agent["a"].routed_count = 99
        snapshot.strategy_usage.clear()

        fresh = collector.collect()
        assert fresh.per_agent["a"].routed_count == 1
        assert fresh.strategy_usage == {"round-robin": 1}

    def test_reset(self) -> None:
        """Test reset clears everything."""
        collector = RoutingMetricsCollector()
        RoundRobinBalancer([], metrics_collector=collector).route(TaskRequest(id="t"))
        collector.reset()
        metrics = collector.collect()
        assert metrics.total_routed == 0
        assert metrics.failed_routes == 0
        assert metrics.average_latency_ms == 0.0

    def test_prometheus_export(self) -> None:
        """Test Prometheus text export."""
        collector = RoutingMetricsCollector()
        balancer = RoundRobinBalancer([make_agent("alice")], metrics_collector=collector)
        balancer.route(TaskRequest(id="t1"))
        RoundRobinBalancer([], metrics_collector=collector).route(TaskRequest(id="t2"))

        output = collector.to_prometheus()
        assert "hitl_routes_total 2" in output
        assert "hitl_routes_failed_total 1" in output
        assert 'hitl_routes_by_strategy_total{strategy="round-robin"} 2' in output
        assert 'hitl_routes_by_agent_total{agent="alice"} 1' in output

    def test_default_collector(self) -> None:
        """Test balancers without a collector use the default one."""
        previous = get_metrics_collector()
        set_metrics_collector(RoutingMetricsCollector())
        try:
            RoundRobinBalancer([make_agent("a")]).route(TaskRequest(id="t"))
            assert collect_routing_metrics().total_routed == 1
            reset_routing_metrics()
            assert collect_routing_metrics().total_routed == 0
        finally:
            set_metrics_collector(previous)
