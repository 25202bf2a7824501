from __future__ import annotations

from typing import List

import pytest

from chunkpress.progress import ProgressTracker
from chunkpress.schemas import ProgressEvent


def run_pass(tracker: ProgressTracker, total: int, durations: List[int]) -> None:
    tracker.begin_pass()
    tracker.report_planning(0)
    tracker.set_total_chunks(total)
    tracker.report_planning(100)
    for i, ms in enumerate(durations):
        tracker.start_chunk(i)
        tracker.complete_chunk(i, ms)
    tracker.report_merging(0)
    tracker.report_merging(50)
    tracker.report_complete()


def test_phase_weights_and_bounds() -> None:
    events: List[ProgressEvent] = []
    tracker = ProgressTracker(events.append)
    run_pass(tracker, 4, [100, 100, 100, 100])

    assert all(0 <= e.progress <= 100 for e in events)
    assert events[0].phase == "planning" and events[0].progress == 0
    planning = [e.progress for e in events if e.phase == "planning"]
    assert max(planning) == 10

    completed = [e for e in events if e.phase == "compressing" and e.estimated_time_remaining_ms is not None]
    assert [e.progress for e in completed] == [30, 50, 70]

    merging = [e.progress for e in events if e.phase == "merging"]
    assert merging == [90, 95, 100]
    assert events[-1].progress == 100


def test_progress_never_regresses_within_a_phase() -> None:
    events: List[ProgressEvent] = []
    tracker = ProgressTracker(events.append)
    tracker.report_merging(80)
    tracker.report_merging(20)
    assert [e.progress for e in events] == [98, 98]


def test_eta_uses_recent_mean_and_clears_when_done() -> None:
    tracker = ProgressTracker(eta_window=2)
    tracker.set_total_chunks(4)
    assert tracker.estimate_time_remaining() is None

    tracker.complete_chunk(0, 1000)
    assert tracker.estimate_time_remaining() == 3000
    tracker.complete_chunk(1, 3000)
    assert tracker.estimate_time_remaining() == 4000
    tracker.complete_chunk(2, 5000)
    # janela de 2: média de 3000 e 5000
    assert tracker.estimate_time_remaining() == 4000
    tracker.complete_chunk(3, 5000)
    assert tracker.estimate_time_remaining() is None


def test_chunk_events_are_one_based() -> None:
    events: List[ProgressEvent] = []
    tracker = ProgressTracker(events.append)
    tracker.set_total_chunks(3)
    tracker.start_chunk(0)
    assert events[-1].current_chunk == 1
    assert events[-1].total_chunks == 3


def test_error_recovery_keeps_position_and_new_pass_resets() -> None:
    events: List[ProgressEvent] = []
    tracker = ProgressTracker(events.append)
    tracker.set_total_chunks(2)
    tracker.complete_chunk(0, 10)
    tracker.report_error_recovery("tentando outro preset")
    assert events[-1].phase == "error-recovery"
    assert events[-1].progress == pytest.approx(50)
    assert events[-1].message == "tentando outro preset"

    tracker.begin_pass()
    assert tracker.state.completed_chunks == 0
    assert tracker.state.total_chunks == 0


def test_failing_listener_does_not_break_tracking() -> None:
    seen: List[ProgressEvent] = []

    def boom(_event: ProgressEvent) -> None:
        raise RuntimeError("listener quebrado")

    tracker = ProgressTracker(boom)
    tracker.on_event(seen.append)
    tracker.report_planning(100)
    assert len(seen) == 1
    assert tracker.state.progress == 10
