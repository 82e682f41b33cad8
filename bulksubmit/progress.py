from collections.abc import Callable
import logging
import math
import time

from bulksubmit.errors import ConfigurationError
from bulksubmit.schemas import ProgressSnapshot, RunState


logger = logging.getLogger(__name__)

# Below this many records/sec there is no usable estimate yet.
MIN_SPEED_FOR_ESTIMATE = 0.01


def format_time_remaining(remaining_seconds: int) -> str:
    if remaining_seconds < 60:
        return f"{remaining_seconds}s"
    if remaining_seconds < 3600:
        minutes, seconds = divmod(remaining_seconds, 60)
        return f"{minutes}m {seconds}s"
    hours, rest = divmod(remaining_seconds, 3600)
    return f"{hours}h {rest // 60}m"


def _percent(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return max(0, min(100, round(part / whole * 100)))


class ProgressTracker:
    """Turns run counters into display-ready progress snapshots. Pure apart from the clock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock

    def now(self) -> float:
        return self.clock()

    def elapsed_seconds(self, state: RunState) -> float:
        return max(1.0, self.clock() - state.start_time)

    def speed(self, state: RunState) -> float:
        return state.processed_count / self.elapsed_seconds(state)

    def time_remaining(self, state: RunState) -> str:
        if state.is_completed:
            return "0s"

        remaining = state.total_records - state.processed_count
        if remaining <= 0:
            return "Finishing..."

        speed = self.speed(state)
        if speed < MIN_SPEED_FOR_ESTIMATE:
            return "Calculating..."
        return format_time_remaining(math.ceil(remaining / speed))

    def snapshot(self, state: RunState, *, status: str, is_error: bool | None = None) -> ProgressSnapshot:
        if is_error is None:
            is_error = state.failure_count > 0 or state.cancelled

        return ProgressSnapshot(
            status=status,
            processed_entries=state.processed_count,
            total_entries=state.total_records,
            entries_progress_pct=_percent(state.processed_count, state.total_records),
            current_group=state.current_group_index,
            total_groups=state.total_groups,
            group_progress_pct=_percent(state.current_group_index, state.total_groups),
            success_count=state.success_count,
            failure_count=state.failure_count,
            processing_speed=f"{self.speed(state):.0f} records/sec",
            time_remaining=self.time_remaining(state),
            is_completed=state.is_completed,
            is_error=is_error,
            is_cancelled=state.cancelled,
        )


class ProgressSink:
    """Receiver of progress snapshots. Subclasses override what they need."""

    def open(self, total_records: int, total_groups: int) -> None:
        pass

    def on_update(self, snapshot: ProgressSnapshot) -> None:
        pass


class NullProgressSink(ProgressSink):
    pass


class CallbackProgressSink(ProgressSink):
    def __init__(self, callback: Callable[[ProgressSnapshot], None]) -> None:
        self.callback = callback

    def on_update(self, snapshot: ProgressSnapshot) -> None:
        self.callback(snapshot)


class LoggingProgressSink(ProgressSink):
    def __init__(self, log_interval: int = 10) -> None:
        self.log_interval = max(1, log_interval)
        self._updates = 0

    def open(self, total_records: int, total_groups: int) -> None:
        self._updates = 0
        logger.info("upload started", extra={"total_records": total_records, "total_groups": total_groups})

    def on_update(self, snapshot: ProgressSnapshot) -> None:
        self._updates += 1
        if not snapshot.is_completed and self._updates % self.log_interval:
            return
        logger.info(
            snapshot.status,
            extra={
                "processed": snapshot.processed_entries,
                "total": snapshot.total_entries,
                "failures": snapshot.failure_count,
                "speed": snapshot.processing_speed,
                "time_remaining": snapshot.time_remaining,
            },
        )


def as_progress_sink(sink: ProgressSink | Callable[[ProgressSnapshot], None] | None) -> ProgressSink:
    if sink is None:
        return NullProgressSink()
    if isinstance(sink, ProgressSink):
        return sink
    if callable(sink):
        return CallbackProgressSink(sink)
    raise ConfigurationError(f"progress sink must be a ProgressSink or a callable, got {type(sink).__name__}")


def publish(sink: ProgressSink, snapshot: ProgressSnapshot) -> None:
    try:
        sink.on_update(snapshot)
    except Exception:
        # A broken display must never stop the upload.
        logger.exception("progress sink update failed", extra={"status": snapshot.status})
