"""Root pytest fixtures for hitl-dispatch tests."""

from __future__ import annotations

import io
import json
from typing import Any

import pytest

from hitl_dispatch.telemetry import DispatchLogger, LogLevel, RoutingMetricsCollector
from tests.helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    """A fake clock starting at a fixed epoch time."""
    return FakeClock()


@pytest.fixture
def collector() -> RoutingMetricsCollector:
    """A private routing metrics collector."""
    return RoutingMetricsCollector()


class LogCapture:
    """JSON log lines written while the fixture is active."""

    def __init__(self) -> None:
        self.stream = io.StringIO()

    @property
    def records(self) -> list[dict[str, Any]]:
        return [json.loads(line) for line in self.stream.getvalue().splitlines() if line]

    def find(self, message: str) -> dict[str, Any]:
        return next(r for r in self.records if r["message"] == message)


@pytest.fixture
def log_capture():
    """Route package logging to an in-memory JSON stream at DEBUG level."""
    capture = LogCapture()
    DispatchLogger.configure(level=LogLevel.DEBUG, format="json", stream=capture.stream)
    try:
        yield capture
    finally:
        DispatchLogger.configure(level=LogLevel.INFO, format="text")
