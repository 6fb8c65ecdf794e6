"""
SLA 截止时间跟踪 - Deadline tracking for human-tier requests.

Each tracked request gets an absolute deadline resolved once at ``track()``
time, either from a priority tier or from the flat default. Violations are
detected lazily by :meth:`SLATracker.is_violated` and proactively by a
periodic sweep task that the caller owns and must stop.
"""

from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from hitl_dispatch.errors import SLAError
from hitl_dispatch.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger(__name__)

DEFAULT_DEADLINE_MS = 300_000
DEFAULT_CHECK_INTERVAL_MS = 1_000


class Priority(str, Enum):
    """Request priority levels used for SLA tiers."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class SLATier:
    """Deadline for one priority tier."""

    deadline_ms: float


@dataclass
class SLAWarningContext:
    """Context passed to ``on_warning`` callbacks."""

    remaining_ms: float
    deadline: datetime


@dataclass
class SLAViolationContext:
    """Context passed to ``on_violation`` callbacks."""

    violated_at: datetime
    deadline: datetime
    overdue_ms: float


@dataclass
class SLAConfig:
    """Configuration for SLA tracking.

    Attributes:
        deadline_ms: Default deadline for requests without a matching tier
        warning_threshold_ms: Emit a warning when this little time remains
        on_warning: Called once per request when the warning threshold is hit
        on_violation: Called once per request when its deadline passes
        tiers: Per-priority deadlines
        check_interval_ms: Period of the background sweep
    """

    deadline_ms: float = DEFAULT_DEADLINE_MS
    warning_threshold_ms: float | None = None
    on_warning: Callable[[str, SLAWarningContext], Any] | None = None
    on_violation: Callable[[str, SLAViolationContext], Any] | None = None
    tiers: dict[Priority, SLATier] = field(default_factory=dict)
    check_interval_ms: float = DEFAULT_CHECK_INTERVAL_MS

    def __post_init__(self) -> None:
        self.tiers = {
            Priority(key): tier if isinstance(tier, SLATier) else SLATier(**tier)
            for key, tier in self.tiers.items()
        }

    @classmethod
    def from_env(cls) -> SLAConfig:
        """Create configuration from environment variables."""
        warning = os.getenv("HITL_SLA_WARNING_THRESHOLD_MS")
        return cls(
            deadline_ms=float(os.getenv("HITL_SLA_DEADLINE_MS", str(DEFAULT_DEADLINE_MS))),
            warning_threshold_ms=float(warning) if warning else None,
            check_interval_ms=float(
                os.getenv("HITL_SLA_CHECK_INTERVAL_MS", str(DEFAULT_CHECK_INTERVAL_MS))
            ),
        )


@dataclass
class TrackedRequest:
    """A request whose deadline is being tracked. Times are clock seconds."""

    request_id: str
    deadline: float
    started_at: float
    priority: Priority | None = None
    completed_at: float | None = None
    violated: bool = False
    warning_emitted: bool = False

    @property
    def deadline_at(self) -> datetime:
        """Deadline as a UTC datetime."""
        return _to_datetime(self.deadline)


@dataclass(frozen=True)
class SLADeadline:
    """Result of :meth:`SLATracker.track`."""

    deadline: datetime
    remaining_ms: float


@dataclass
class SLAMetrics:
    """Compliance statistics over completed requests."""

    completed: int
    violated: int
    compliance_rate: float
    average_completion_ms: float | None = None


def _to_datetime(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


class SLATracker:
    """Tracks SLA deadlines for human-tier requests.

    The periodic sweep is an owned resource: call :meth:`start` (or use the
    tracker as an async context manager) and pair it with :meth:`destroy`.

    Example:
        >>> async with SLATracker(SLAConfig(deadline_ms=60_000)) as tracker:
        ...     tracker.track("req-1", priority=Priority.HIGH)
        ...     if tracker.is_violated("req-1"):
        ...         await escalate("req-1")
    """

    def __init__(
        self,
        config: SLAConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the tracker.

        Args:
            config: SLA configuration
            clock: Wall clock in seconds since the epoch
        """
        self.config = config or SLAConfig()
        self._clock = clock
        self._requests: dict[str, TrackedRequest] = {}
        self._completed: list[TrackedRequest] = []
        self._task: asyncio.Task[None] | None = None

    def track(self, request_id: str, priority: Priority | str | None = None) -> SLADeadline:
        """Start tracking a request.

        Args:
            request_id: Request identifier
            priority: Optional priority used to pick a deadline tier

        Returns:
            The absolute deadline and the time remaining until it
        """
        if priority is not None:
            priority = Priority(priority)
        now = self._clock()
        deadline_ms = self._deadline_for(priority)
        request = TrackedRequest(
            request_id=request_id,
            deadline=now + deadline_ms / 1000,
            started_at=now,
            priority=priority,
        )
        self._requests[request_id] = request
        logger.debug("Tracking SLA", request_id=request_id, deadline_ms=deadline_ms)
        return SLADeadline(deadline=request.deadline_at, remaining_ms=deadline_ms)

    def get_tracked(self, request_id: str) -> TrackedRequest | None:
        """Get the live tracking entry for a request, if any."""
        return self._requests.get(request_id)

    def get_remaining_time(self, request_id: str) -> float:
        """Get remaining time before the deadline, never negative.

        Raises:
            SLAError: If the request is not tracked
        """
        request = self._requests.get(request_id)
        if request is None:
            raise SLAError(request_id)
        return max(0.0, (request.deadline - self._clock()) * 1000)

    def is_violated(self, request_id: str) -> bool:
        """Check if a request's deadline has passed.

        The first check past the deadline marks the request violated and
        fires ``on_violation``. Untracked requests are never violated.
        """
        request = self._requests.get(request_id)
        if request is None:
            return False

        now = self._clock()
        if not request.violated and now > request.deadline:
            request.violated = True
            self._emit_violation(request, now)
        return request.violated

    def complete(self, request_id: str) -> None:
        """Mark a request completed and move it to history."""
        request = self._requests.pop(request_id, None)
        if request is None:
            return

        request.completed_at = self._clock()
        if request.completed_at > request.deadline:
            request.violated = True
        self._completed.append(request)

    def get_metrics(self) -> SLAMetrics:
        """Get compliance metrics over completed requests."""
        completed = len(self._completed)
        violated = sum(1 for r in self._completed if r.violated)
        if completed == 0:
            return SLAMetrics(completed=0, violated=0, compliance_rate=1.0)

        total_ms = sum(
            (r.completed_at - r.started_at) * 1000
            for r in self._completed
            if r.completed_at is not None
        )
        return SLAMetrics(
            completed=completed,
            violated=violated,
            compliance_rate=(completed - violated) / completed,
            average_completion_ms=total_ms / completed,
        )

    def sweep(self) -> None:
        """Run one warning/violation pass over all live requests."""
        now = self._clock()
        threshold = self.config.warning_threshold_ms

        for request in list(self._requests.values()):
            remaining_ms = (request.deadline - now) * 1000

            if (
                not request.warning_emitted
                and threshold
                and 0 < remaining_ms <= threshold
            ):
                request.warning_emitted = True
                self._emit_warning(request, remaining_ms)

            # The deadline instant itself is still on time, as in is_violated.
            if not request.violated and remaining_ms < 0:
                request.violated = True
                self._emit_violation(request, now)

    def start(self) -> None:
        """Start the periodic sweep. Requires a running event loop."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        interval = self.config.check_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("SLA sweep callback failed")

    def destroy(self) -> None:
        """Stop the periodic sweep."""
        if self._task is not None:
            self._task.cancel()
            self._task = None

    stop = destroy

    @property
    def is_running(self) -> bool:
        """Whether the sweep task is active."""
        return self._task is not None and not self._task.done()

    async def __aenter__(self) -> SLATracker:
        self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.destroy()

    def _deadline_for(self, priority: Priority | None) -> float:
        if priority is not None and priority in self.config.tiers:
            return self.config.tiers[priority].deadline_ms
        return self.config.deadline_ms

    def _emit_warning(self, request: TrackedRequest, remaining_ms: float) -> None:
        logger.warning(
            "SLA deadline approaching",
            request_id=request.request_id,
            remaining_ms=round(remaining_ms),
        )
        if self.config.on_warning:
            self.config.on_warning(
                request.request_id,
                SLAWarningContext(remaining_ms=remaining_ms, deadline=request.deadline_at),
            )

    def _emit_violation(self, request: TrackedRequest, now: float) -> None:
        overdue_ms = (now - request.deadline) * 1000
        logger.warning(
            "SLA violated",
            request_id=request.request_id,
            overdue_ms=round(overdue_ms),
        )
        if self.config.on_violation:
            self.config.on_violation(
                request.request_id,
                SLAViolationContext(
                    violated_at=_to_datetime(now),
                    deadline=request.deadline_at,
                    overdue_ms=overdue_ms,
                ),
            )
