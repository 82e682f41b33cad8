import pytest

from bulksubmit.errors import ConfigurationError
from bulksubmit.progress import CallbackProgressSink, NullProgressSink, ProgressTracker, as_progress_sink, format_time_remaining
from bulksubmit.schemas import RunState


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [
        (0, "0s"),
        (45, "45s"),
        (59, "59s"),
        (60, "1m 0s"),
        (125, "2m 5s"),
        (3599, "59m 59s"),
        (3600, "1h 0m"),
        (4000, "1h 6m"),
    ],
)
def test_format_time_remaining_buckets(seconds: int, expected: str) -> None:
    assert format_time_remaining(seconds) == expected


def test_completed_run_always_reports_zero_remaining(fake_clock) -> None:
    tracker = ProgressTracker(fake_clock)
    state = RunState(total_records=100, processed_count=3, start_time=fake_clock.now, is_completed=True)

    assert tracker.time_remaining(state) == "0s"


def test_all_records_processed_but_not_completed_is_finishing(fake_clock) -> None:
    tracker = ProgressTracker(fake_clock)
    state = RunState(total_records=4, processed_count=4, start_time=fake_clock.now)

    assert tracker.time_remaining(state) == "Finishing..."


def test_no_progress_yet_is_calculating(fake_clock) -> None:
    tracker = ProgressTracker(fake_clock)
    state = RunState(total_records=10, processed_count=0, start_time=fake_clock.now)
    fake_clock.advance(30)

    assert tracker.time_remaining(state) == "Calculating..."


def test_estimate_uses_records_per_second(fake_clock) -> None:
    tracker = ProgressTracker(fake_clock)
    state = RunState(total_records=100, processed_count=10, start_time=fake_clock.now)
    fake_clock.advance(20)

    # 0.5 records/sec with 90 left
    assert tracker.time_remaining(state) == "3m 0s"


def test_elapsed_time_is_floored_at_one_second(fake_clock) -> None:
    tracker = ProgressTracker(fake_clock)
    state = RunState(total_records=50, processed_count=5, start_time=fake_clock.now)

    assert tracker.elapsed_seconds(state) == 1.0
    assert tracker.time_remaining(state) == "9s"


def test_snapshot_percentages_and_flags(fake_clock) -> None:
    tracker = ProgressTracker(fake_clock)
    state = RunState(
        total_records=8,
        processed_count=3,
        success_count=2,
        failure_count=1,
        start_time=fake_clock.now,
        current_group_index=1,
        total_groups=3,
    )
    fake_clock.advance(2)

    snapshot = tracker.snapshot(state, status="Processing batch 1 of 3")

    assert snapshot.status == "Processing batch 1 of 3"
    assert snapshot.entries_progress_pct == 38
    assert snapshot.group_progress_pct == 33
    assert snapshot.processing_speed == "2 records/sec"
    assert snapshot.is_error is True
    assert snapshot.is_completed is False


def test_sink_coercion() -> None:
    seen = []

    assert isinstance(as_progress_sink(None), NullProgressSink)
    sink = as_progress_sink(seen.append)
    assert isinstance(sink, CallbackProgressSink)

    with pytest.raises(ConfigurationError):
        as_progress_sink(42)
