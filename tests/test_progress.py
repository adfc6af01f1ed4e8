"""Tests for xcodeflow.progress."""

import asyncio
import logging

import pytest

from xcodeflow.progress import (
    MAX_RUNNING_PERCENT,
    EstimatorState,
    EventKind,
    ProgressChannel,
    ProgressEstimator,
    ProgressReporter,
    ProgressStatus,
    ProgressTracker,
    ProgressUpdate,
    advance,
    prefixed_sink,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


BUILD_LOG = [
    "Resolve Package Graph",
    "Fetching from https://github.com/example/pkg",
    "CompileSwiftSources normal arm64 com.apple.xcode.tools.swift.compiler",
    "CompileSwift normal arm64 /src/A.swift",
    "[1 of 4] Compiling A.swift",
    "[2 of 4] Compiling B.swift",
    "[3 of 4] Compiling C.swift",
    "[4 of 4] Compiling D.swift",
    "Ld /build/App.app/App normal",
    "ProcessInfoPlistFile /build/App.app/Info.plist",
    "CodeSign /build/App.app",
    "** BUILD SUCCEEDED **",
]


# ---------------------------------------------------------------------------
# advance()
# ---------------------------------------------------------------------------

def test_phase_transition_sets_floor() -> None:
    state, event = advance(EstimatorState(), "CompileSwift normal arm64 /src/A.swift")
    assert event is not None
    assert event.kind is EventKind.PHASE
    assert event.phase == "Compiling"
    assert state.percent == 10


def test_same_phase_does_not_emit_again() -> None:
    state, _ = advance(EstimatorState(), "CompileC foo.o foo.c")
    state2, event = advance(state, "CompileC bar.o bar.c")
    assert event is None
    assert state2 == state


def test_counter_moves_toward_next_floor() -> None:
    state, _ = advance(EstimatorState(), "CompileSwift normal arm64")
    state, event = advance(state, "[2 of 4] Compiling B.swift")
    assert event is not None
    assert event.kind is EventKind.PROGRESS
    # Compiling spans 10..60.
    assert state.percent == 10 + (60 - 10) * 2 // 4
    assert (state.processed, state.total) == (2, 4)


def test_counter_never_lowers_percent() -> None:
    state = EstimatorState(phase="Compiling", floor=10, percent=50)
    new_state, event = advance(state, "[1 of 10] Compiling x")
    assert event is None
    assert new_state.percent == 50


def test_invalid_counter_is_ignored() -> None:
    state = EstimatorState(phase="Compiling", floor=10, percent=10)
    assert advance(state, "[5 of 0] weird") == (state, None)
    assert advance(state, "[9 of 3] weird") == (state, None)


def test_blank_and_unrelated_lines() -> None:
    state = EstimatorState()
    assert advance(state, "") == (state, None)
    assert advance(state, "note: Using new build system") == (state, None)


def test_later_lower_phase_keeps_percent() -> None:
    state, _ = advance(EstimatorState(), "CodeSign /build/App.app")
    assert state.percent == 80
    state, event = advance(state, "CompileC foo.o foo.c")
    assert event is not None
    assert state.phase == "Compiling"
    assert state.percent == 80


def test_percent_is_monotonic_and_below_100_over_build_log() -> None:
    est = ProgressEstimator()
    seen = []
    for line in BUILD_LOG:
        est.feed(line)
        seen.append(est.percent)
    assert seen == sorted(seen)
    assert max(seen) <= MAX_RUNNING_PERCENT
    assert est.phase == "Signing"


def test_testing_phase() -> None:
    state, event = advance(EstimatorState(), "Test Suite 'All tests' started at 2024-01-01")
    assert event is not None
    assert state.phase == "Testing"
    assert state.percent == 85


# ---------------------------------------------------------------------------
# ProgressReporter
# ---------------------------------------------------------------------------

def test_reporter_success_ends_at_100() -> None:
    updates: list[ProgressUpdate] = []
    clock = FakeClock()
    reporter = ProgressReporter(updates.append, label="Build", interval=1.0, clock=clock)
    reporter.start()
    for line in BUILD_LOG:
        clock.now += 2
        reporter.feed(line)
    reporter.finish(True)

    assert updates[0].status is ProgressStatus.RUNNING
    assert updates[0].percent == 0
    assert updates[-1].status is ProgressStatus.COMPLETED
    assert updates[-1].percent == 100
    percents = [u.percent for u in updates]
    assert percents == sorted(percents)
    assert all(u.percent < 100 for u in updates[:-1])
    assert len({u.operation_id for u in updates}) == 1


def test_reporter_failure_keeps_last_percent() -> None:
    updates: list[ProgressUpdate] = []
    reporter = ProgressReporter(updates.append, label="Build")
    reporter.start()
    reporter.feed("Ld /build/App normal")
    reporter.finish(False)
    assert updates[-1].status is ProgressStatus.FAILED
    assert updates[-1].percent == 60
    assert updates[-1].message == "Build failed"


def test_reporter_throttles_counter_updates_but_not_phases() -> None:
    updates: list[ProgressUpdate] = []
    clock = FakeClock()
    reporter = ProgressReporter(updates.append, label="Build", interval=1.0, clock=clock)
    reporter.start()
    reporter.feed("CompileSwift normal arm64")
    for i in range(1, 10):
        reporter.feed(f"[{i} of 10] Compiling f{i}.swift")
    reporter.feed("Ld /build/App normal")

    messages = [u.message for u in updates]
    # start + two phases; all counter updates fall inside the interval.
    assert len(updates) == 3
    assert messages[1].startswith("Compiling:")
    assert messages[2].startswith("Linking:")

    clock.now += 5
    reporter.feed("[1 of 2] Linking")
    assert len(updates) == 4


def test_reporter_finish_is_idempotent() -> None:
    updates: list[ProgressUpdate] = []
    reporter = ProgressReporter(updates.append, label="Build")
    reporter.finish(True)
    reporter.finish(False)
    reporter.feed("CompileC x")
    assert len(updates) == 1
    assert reporter.finished


def test_reporter_swallows_sink_errors(caplog) -> None:
    def broken(update: ProgressUpdate) -> None:
        raise RuntimeError("boom")

    reporter = ProgressReporter(broken, label="Build")
    with caplog.at_level(logging.WARNING, logger="xcodeflow.progress"):
        reporter.start()
        reporter.finish(True)
    assert "boom" in caplog.text


def test_distinct_operation_ids() -> None:
    a = ProgressReporter(lambda u: None, label="a")
    b = ProgressReporter(lambda u: None, label="b")
    assert a.operation_id != b.operation_id


# ---------------------------------------------------------------------------
# Channel, tracker, prefixed sink
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_channel_ends_after_terminal_update() -> None:
    channel = ProgressChannel()
    reporter = ProgressReporter(channel, label="Build")
    reporter.start()
    reporter.feed("CompileC x")
    reporter.finish(True)

    received = [u async for u in channel]
    assert [u.status for u in received] == [
        ProgressStatus.RUNNING,
        ProgressStatus.RUNNING,
        ProgressStatus.COMPLETED,
    ]


@pytest.mark.asyncio
async def test_channel_close_ends_iteration() -> None:
    channel = ProgressChannel()
    asyncio.get_running_loop().call_later(0.01, channel.close)
    received = [u async for u in channel]
    assert received == []


def test_tracker_keeps_only_running_operations() -> None:
    forwarded: list[ProgressUpdate] = []
    tracker = ProgressTracker(forward=forwarded.append)
    first = ProgressReporter(tracker, label="one")
    second = ProgressReporter(tracker, label="two")
    first.start()
    second.start()
    assert {u.operation_id for u in tracker.active_operations()} == {first.operation_id, second.operation_id}

    first.finish(True)
    assert [u.operation_id for u in tracker.active_operations()] == [second.operation_id]
    assert len(forwarded) == 3


def test_prefixed_sink() -> None:
    updates: list[ProgressUpdate] = []
    reporter = ProgressReporter(prefixed_sink("MyApp", updates.append), label="Build")
    reporter.start()
    assert updates[0].message == "MyApp: Starting Build"


def test_update_to_dict() -> None:
    update = ProgressUpdate(operation_id="x", status=ProgressStatus.FAILED, percent=42, phase="Linking")
    data = update.to_dict()
    assert data["status"] == "failed"
    assert data["percent"] == 42
    assert update.is_terminal
