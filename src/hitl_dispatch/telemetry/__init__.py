"""
Telemetry module for hitl-dispatch.

Provides structured logging and routing metrics collection.
"""

from hitl_dispatch.telemetry.logger import (
    DispatchLogger,
    LogContext,
    LogLevel,
    SensitiveDataMasker,
    bind_log_context,
    clear_log_context,
    get_log_context,
    get_logger,
    set_log_context,
)
from hitl_dispatch.telemetry.metrics import (
    AgentRouteStats,
    RoutingMetrics,
    RoutingMetricsCollector,
    collect_routing_metrics,
    get_metrics_collector,
    reset_routing_metrics,
    set_metrics_collector,
)

__all__ = [
    # Logger
    "DispatchLogger",
    "LogContext",
    "LogLevel",
    # Metrics
    "AgentRouteStats",
    "RoutingMetrics",
    "RoutingMetricsCollector",
    "SensitiveDataMasker",
    "bind_log_context",
    "clear_log_context",
    "collect_routing_metrics",
    "get_log_context",
    "get_logger",
    "get_metrics_collector",
    "reset_routing_metrics",
    "set_log_context",
    "set_metrics_collector",
]
