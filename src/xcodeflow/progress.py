"""Progress reporting for long-running xcodebuild invocations.

The pieces, from the inside out:

- ``advance()``: pure heuristic step ``(state, line) -> (state, event)``
  that recognises build phases and ``N of M`` counters in tool output.
- ``ProgressEstimator``: keeps the state for one invocation.
- ``ProgressReporter``: turns estimator events into ``ProgressUpdate``
  values for a sink, throttled to one update per interval except phase
  transitions and the terminal update.
- ``ProgressChannel``: a sink that can be consumed with ``async for``.
- ``ProgressTracker``: a sink that remembers which operations are running.

Percentages are estimates. Within one run they never decrease, stay below
100 while the process is running, and become exactly 100 on success.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, UTC
from enum import Enum
from threading import Lock
from typing import Any, Callable, Optional

logger = logging.getLogger("xcodeflow.progress")


class ProgressStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ProgressUpdate:
    """One progress notification for an operation."""

    operation_id: str
    status: ProgressStatus
    percent: int
    phase: str = ""
    message: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_terminal(self) -> bool:
        return self.status is not ProgressStatus.RUNNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "status": self.status.value,
            "percent": self.percent,
            "phase": self.phase,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


ProgressSink = Callable[[ProgressUpdate], None]


# ---------------------------------------------------------------------------
# Heuristic estimator
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Phase:
    name: str
    floor: int
    patterns: tuple[re.Pattern[str], ...]

    def matches(self, line: str) -> bool:
        return any(p.search(line) for p in self.patterns)


def _phase(name: str, floor: int, *patterns: str) -> Phase:
    return Phase(name=name, floor=floor, patterns=tuple(re.compile(p) for p in patterns))


# Checked in this order; the first matching phase wins.
PHASES: tuple[Phase, ...] = (
    _phase(
        "Testing",
        85,
        r"^Test Suite '.*' started",
        r"^Testing started",
        r"^Test session results",
    ),
    _phase("Signing", 80, r"^CodeSign\b", r"^Signing\b"),
    _phase("Linking", 60, r"^Ld\b", r"^Linking\b"),
    _phase(
        "Processing resources",
        70,
        r"^(ProcessInfoPlistFile|CopySwiftLibs|CpResource|CopyPlistFile|ProcessProductPackaging)\b",
    ),
    _phase(
        "Compiling",
        10,
        r"^(CompileSwiftSources|CompileSwift|SwiftCompile|SwiftDriver|CompileC|CompileAssetCatalog|CompileStoryboard|CompileXIB)\b",
        r"^Compiling\b",
    ),
    _phase(
        "Resolving packages",
        2,
        r"^Resolve Package Graph",
        r"^Resolving (package|dependencies)",
        r"^Fetching from\b",
    ),
    _phase("Cleaning", 5, r"^Clean\.Remove\b", r"^CleanBuildFolder\b"),
)

_FLOORS: tuple[int, ...] = tuple(sorted({p.floor for p in PHASES}))
_COUNTER_RE = re.compile(r"\[(\d+) of (\d+)\]|\b(\d+) of (\d+) files?\b")
MAX_RUNNING_PERCENT = 99


def _ceiling(floor: int) -> int:
    for f in _FLOORS:
        if f > floor:
            return f
    return MAX_RUNNING_PERCENT


class EventKind(str, Enum):
    PHASE = "phase"
    PROGRESS = "progress"


@dataclass(frozen=True)
class EstimatorState:
    phase: str = ""
    floor: int = 0
    processed: int = 0
    total: int = 0
    percent: int = 0


@dataclass(frozen=True)
class ProgressEvent:
    kind: EventKind
    phase: str
    percent: int
    message: str


def _match_phase(line: str) -> Optional[Phase]:
    for phase in PHASES:
        if phase.matches(line):
            return phase
    return None


def _match_counter(line: str) -> Optional[tuple[int, int]]:
    m = _COUNTER_RE.search(line)
    if not m:
        return None
    n, total = (m.group(1), m.group(2)) if m.group(1) else (m.group(3), m.group(4))
    return int(n), int(total)


def advance(state: EstimatorState, line: str) -> tuple[EstimatorState, Optional[ProgressEvent]]:
    """Feed one output line to the estimator.

    Returns the new state and, when something changed, an event. A phase
    transition resets the file counters and lifts the percent to at least
    the phase floor. ``N of M`` counters move the percent toward the next
    phase floor.
    """
    text = line.strip()
    if not text:
        return state, None

    phase = _match_phase(text)
    if phase is not None and phase.name != state.phase:
        percent = min(MAX_RUNNING_PERCENT, max(state.percent, phase.floor))
        new_state = EstimatorState(phase=phase.name, floor=phase.floor, percent=percent)
        return new_state, ProgressEvent(EventKind.PHASE, phase.name, percent, text)

    counter = _match_counter(text)
    if counter is None:
        return state, None

    processed, total = counter
    if total <= 0 or processed > total:
        return state, None

    top = _ceiling(state.floor)
    estimate = state.floor + (top - state.floor) * processed // total
    percent = min(MAX_RUNNING_PERCENT, max(state.percent, estimate))
    new_state = replace(state, processed=processed, total=total, percent=percent)
    if percent == state.percent:
        return new_state, None
    return new_state, ProgressEvent(EventKind.PROGRESS, state.phase, percent, text)


class ProgressEstimator:
    """Per-invocation wrapper around :func:`advance`."""

    def __init__(self) -> None:
        self._state = EstimatorState()

    @property
    def state(self) -> EstimatorState:
        return self._state

    @property
    def percent(self) -> int:
        return self._state.percent

    @property
    def phase(self) -> str:
        return self._state.phase

    def feed(self, line: str) -> Optional[ProgressEvent]:
        self._state, event = advance(self._state, line)
        return event


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

class ProgressReporter:
    """Emits throttled ``ProgressUpdate`` values for a single operation."""

    def __init__(
        self,
        sink: ProgressSink,
        *,
        label: str,
        interval: float = 1.0,
        operation_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sink = sink
        self.label = label
        self.interval = interval
        self.operation_id = operation_id or str(uuid.uuid4())
        self.estimator = ProgressEstimator()
        self._clock = clock
        self._last_sent: Optional[float] = None
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def start(self) -> None:
        self._emit(ProgressStatus.RUNNING, 0, f"Starting {self.label}")

    def feed(self, line: str) -> None:
        if self._finished:
            return
        event = self.estimator.feed(line)
        if event is None:
            return
        if event.kind is EventKind.PHASE:
            self._emit(ProgressStatus.RUNNING, event.percent, f"{event.phase}: {event.message}")
            return
        now = self._clock()
        if self._last_sent is not None and now - self._last_sent < self.interval:
            return
        self._emit(ProgressStatus.RUNNING, event.percent, event.message)

    def finish(self, success: bool, message: Optional[str] = None) -> None:
        if self._finished:
            return
        if success:
            status, percent = ProgressStatus.COMPLETED, 100
            default = f"{self.label} completed"
        else:
            status, percent = ProgressStatus.FAILED, self.estimator.percent
            default = f"{self.label} failed"
        self._emit(status, percent, message or default)
        self._finished = True

    def _emit(self, status: ProgressStatus, percent: int, message: str) -> None:
        update = ProgressUpdate(
            operation_id=self.operation_id,
            status=status,
            percent=percent,
            phase=self.estimator.phase,
            message=message,
        )
        self._last_sent = self._clock()
        try:
            self.sink(update)
        except Exception as e:
            logger.warning("Progress sink raised for %s: %s", self.operation_id, e)


class ProgressChannel:
    """Queue-backed sink for one operation, consumed with ``async for``.

    Iteration ends after the terminal (completed/failed) update, or after
    ``close()`` for operations that end before reaching the executor.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Optional[ProgressUpdate]] = asyncio.Queue()
        self._done = False

    def __call__(self, update: ProgressUpdate) -> None:
        self._queue.put_nowait(update)

    def close(self) -> None:
        self._queue.put_nowait(None)

    def __aiter__(self) -> "ProgressChannel":
        return self

    async def __anext__(self) -> ProgressUpdate:
        if self._done:
            raise StopAsyncIteration
        update = await self._queue.get()
        if update is None:
            self._done = True
            raise StopAsyncIteration
        if update.is_terminal:
            self._done = True
        return update


class ProgressTracker:
    """Sink that logs updates and keeps the latest update of running operations."""

    def __init__(self, forward: Optional[ProgressSink] = None):
        self._forward = forward
        self._active: dict[str, ProgressUpdate] = {}
        self._lock = Lock()

    def __call__(self, update: ProgressUpdate) -> None:
        with self._lock:
            if update.is_terminal:
                self._active.pop(update.operation_id, None)
            else:
                self._active[update.operation_id] = update

        level = logging.ERROR if update.status is ProgressStatus.FAILED else logging.INFO
        logger.log(
            level,
            "Operation [%s]: %s - %s (%d%%)",
            update.operation_id,
            update.status.value.upper(),
            update.message,
            update.percent,
        )
        if self._forward:
            self._forward(update)

    def active_operations(self) -> list[ProgressUpdate]:
        with self._lock:
            return list(self._active.values())


def prefixed_sink(operation_name: str, sink: ProgressSink) -> ProgressSink:
    """Wrap *sink* so every message starts with ``<operation_name>: ``."""

    def _send(update: ProgressUpdate) -> None:
        sink(replace(update, message=f"{operation_name}: {update.message}"))

    return _send
