import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
import logging
import time

from bulksubmit.aggregator import DEFAULT_SOURCE, ResultAggregator
from bulksubmit.cancellation import CancellationToken
from bulksubmit.config import Settings
from bulksubmit.errors import AlreadyProcessing, ConfigurationError, InvalidArgument, SetupFailure, StoppedOnError
from bulksubmit.grouping import GroupKeyFn, partition_records
from bulksubmit.progress import ProgressSink, ProgressTracker, as_progress_sink, publish
from bulksubmit.retry import RetryExhaustedError, RetryPolicy, error_code_for, is_retriable_error, run_with_retries, synthesize_failures
from bulksubmit.schemas import FailureOutcome, Group, InputRecord, MessageType, Outcome, ProgressSnapshot, RunState, RunSummary
from bulksubmit.submitters import UnitSubmitter, as_submitter, coerce_outcome


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineOptions:
    group_by: GroupKeyFn | None = None
    batch_size: int = 10
    inter_record_delay_ms: int = 100
    continue_on_error: bool = True
    max_retries: int = 3
    retry_delay_ms: int = 2000
    retry_on: Callable[[BaseException], bool] = is_retriable_error
    abort_in_flight_on_cancel: bool = False
    source: str = DEFAULT_SOURCE

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ConfigurationError("batch_size must be >= 1")
        if self.inter_record_delay_ms < 0:
            raise ConfigurationError("inter_record_delay_ms must be >= 0")
        self.retry_policy()

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "EngineOptions":
        values: dict[str, object] = {
            "batch_size": settings.batch_size,
            "inter_record_delay_ms": settings.inter_record_delay_ms,
            "continue_on_error": settings.continue_on_error,
            "max_retries": settings.max_retries,
            "retry_delay_ms": settings.retry_delay_ms,
            "abort_in_flight_on_cancel": settings.abort_in_flight_on_cancel,
        }
        values.update(overrides)
        return cls(**values)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_retries=self.max_retries, retry_delay_ms=self.retry_delay_ms, retry_on=self.retry_on)


class SequentialBatchEngine:
    """Submits records unit by unit, never two at once, and collects every outcome.

    Transport failures are retried per the retry policy and then recorded as failures for every
    record of the unit, so no input row is ever lost from the summary. ``cancel()`` stops the run
    between units, or immediately when ``abort_in_flight_on_cancel`` is set.
    """

    def __init__(
        self,
        submitter: UnitSubmitter | Callable[[Group], Awaitable[list[Outcome]]] | None = None,
        *,
        options: EngineOptions | None = None,
        progress_sink: ProgressSink | Callable[[ProgressSnapshot], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.submitter = as_submitter(submitter) if submitter is not None else None
        self.options = options or EngineOptions()
        self.progress_sink = as_progress_sink(progress_sink)
        self.tracker = ProgressTracker(clock)
        self._sleep = sleep

        self._processing = False
        self._state = RunState()
        self._aggregator = ResultAggregator(self._state, source=self.options.source)
        self._token: CancellationToken | None = None

    def is_processing(self) -> bool:
        return self._processing

    def cancel(self) -> bool:
        if not self._processing or self._token is None:
            return False
        return self._token.cancel()

    def reset(self) -> None:
        if self._processing:
            raise AlreadyProcessing("cannot reset while a run is in progress")
        self._state = RunState()
        self._aggregator = ResultAggregator(self._state, source=self.options.source)

    def snapshot(self, status: str = "") -> ProgressSnapshot:
        return self.tracker.snapshot(self._state, status=status)

    def summary(self) -> RunSummary:
        return self._aggregator.summary()

    async def run(
        self,
        records: Sequence[InputRecord],
        submitter: UnitSubmitter | Callable[[Group], Awaitable[list[Outcome]]] | None = None,
        options: EngineOptions | None = None,
    ) -> RunSummary:
        if records is None or isinstance(records, (str, bytes, Mapping)) or not isinstance(records, Sequence):
            raise InvalidArgument("records must be a list of mappings")
        if not records:
            raise InvalidArgument("no records to process")
        if any(not isinstance(record, Mapping) for record in records):
            raise InvalidArgument("every record must be a mapping of field name to value")
        if self._processing:
            raise AlreadyProcessing("a run is already in progress")

        unit_submitter = as_submitter(submitter) if submitter is not None else self.submitter
        if unit_submitter is None:
            raise ConfigurationError("no unit submitter configured")
        options = options or self.options

        batches = partition_records(records, group_by=options.group_by, batch_size=options.batch_size)
        units = [unit for batch in batches for unit in batch]

        try:
            self.progress_sink.open(len(records), len(batches))
        except Exception as exc:
            logger.exception("progress display setup failed")
            raise SetupFailure(f"progress display could not be initialised: {exc}") from exc

        self._processing = True
        state = RunState(total_records=len(records), total_groups=len(batches), start_time=self.tracker.now())
        self._state = state
        self._aggregator = ResultAggregator(state, source=options.source)
        token = CancellationToken(on_cancel=self._on_cancel)
        self._token = token

        logger.info(
            "run started",
            extra={"total_records": len(records), "units": len(units), "batches": len(batches)},
        )
        self._emit("Initializing...")

        try:
            stopped_on_error = await self._process(units, unit_submitter, options, token)
            return self._finalize(token, stopped_on_error)
        except StoppedOnError:
            raise
        except Exception as exc:
            logger.exception("run aborted by unexpected error")
            state.is_completed = True
            self._emit(f"Error during processing: {exc}", is_error=True)
            raise
        finally:
            self._processing = False
            self._token = None

    async def _process(
        self,
        units: list[Group],
        submitter: UnitSubmitter,
        options: EngineOptions,
        token: CancellationToken,
    ) -> bool:
        state = self._state
        policy = options.retry_policy()
        grouped = options.group_by is not None

        for position, unit in enumerate(units):
            if token.is_cancelled():
                break

            if unit.batch_index != state.current_group_index:
                state.current_group_index = unit.batch_index
                if grouped:
                    self._emit(f"Processing group {unit.batch_index} of {state.total_groups} ({unit.key or 'no key'})")
                else:
                    self._emit(f"Processing batch {unit.batch_index} of {state.total_groups}")

            if not len(unit):
                logger.warning("skipping empty unit", extra={"group_key": unit.key})
                continue

            outcomes = await self._submit_unit(unit, submitter, policy, options, token)
            if outcomes is None:
                break

            failures = 0
            for outcome in outcomes:
                self._aggregator.record(outcome, batch_index=unit.batch_index, group_key=unit.key)
                if not outcome.is_success:
                    failures += 1

            self._emit(
                f"Processed {state.processed_count} of {state.total_records} records "
                f"({state.success_count} success, {state.failure_count} failed)"
            )

            if failures and not options.continue_on_error:
                logger.error(
                    "stopping at first failed unit",
                    extra={"group_key": unit.key, "original_indices": list(unit.indices)},
                )
                return True

            is_last = position == len(units) - 1
            if options.inter_record_delay_ms and not is_last and not token.is_cancelled():
                await self._sleep(options.inter_record_delay_ms / 1000)

        return False

    async def _submit_unit(
        self,
        unit: Group,
        submitter: UnitSubmitter,
        policy: RetryPolicy,
        options: EngineOptions,
        token: CancellationToken,
    ) -> list[Outcome] | None:
        def on_attempt_failure(attempt: int, exc: Exception) -> None:
            logger.warning(
                "unit submission failed",
                extra={
                    "group_key": unit.key,
                    "original_indices": list(unit.indices),
                    "attempt": attempt,
                    "error_code": error_code_for(exc),
                    "error": str(exc),
                },
            )
            if policy.should_retry(exc, attempt - 1) and not token.is_cancelled():
                self._emit(f"Error in batch {unit.batch_index}. Retrying ({attempt}/{policy.max_retries})...")

        call = run_with_retries(
            lambda: submitter.submit(unit),
            policy=policy,
            on_attempt_failure=on_attempt_failure,
            should_stop=token.is_cancelled,
            sleep=self._sleep,
        )

        try:
            if options.abort_in_flight_on_cancel:
                task = asyncio.ensure_future(call)
                token.register_abortable(task)
                try:
                    outcomes = await task
                except asyncio.CancelledError:
                    current = asyncio.current_task()
                    if task.cancelled() and token.is_cancelled() and not (current and current.cancelling()):
                        logger.info(
                            "in-flight unit aborted, outcome discarded",
                            extra={"group_key": unit.key, "original_indices": list(unit.indices)},
                        )
                        return None
                    raise
                finally:
                    token.unregister_abortable(task)
            else:
                outcomes = await call
        except RetryExhaustedError as exc:
            cause = exc.__cause__ or exc
            logger.error(
                "unit failed after retries",
                extra={
                    "group_key": unit.key,
                    "original_indices": list(unit.indices),
                    "attempts": exc.attempts,
                    "error_code": error_code_for(cause),
                },
            )
            return synthesize_failures(unit, cause)

        return self._correlate(unit, outcomes)

    def _correlate(self, unit: Group, outcomes: object) -> list[Outcome]:
        expected = dict(unit.items())
        positional = list(unit.items())
        by_index: dict[int, Outcome] = {}

        if isinstance(outcomes, Iterable) and not isinstance(outcomes, (str, bytes, Mapping)):
            received = list(outcomes)
        else:
            logger.error(
                "submitter returned no usable outcome list",
                extra={"group_key": unit.key, "returned_type": type(outcomes).__name__},
            )
            received = []

        for position, raw in enumerate(received):
            index = getattr(raw, "index", None)
            if index is None and position < len(positional):
                index = positional[position][0]
            if index not in expected:
                logger.warning("ignoring outcome for a record outside the unit", extra={"group_key": unit.key, "index": index})
                continue
            if index in by_index:
                logger.warning("ignoring duplicate outcome", extra={"group_key": unit.key, "original_index": index})
                continue
            outcome = coerce_outcome(raw, index=index, record=expected[index])
            by_index[index] = replace(outcome, original_input=expected[index])

        correlated: list[Outcome] = []
        for index, record in unit.items():
            outcome = by_index.get(index)
            if outcome is None:
                logger.warning("no response for record", extra={"group_key": unit.key, "original_index": index})
                outcome = FailureOutcome(
                    index=index,
                    error="No response received for this record",
                    error_code="NO_RESPONSE",
                    original_input=record,
                )
            correlated.append(outcome)
        return correlated

    def _finalize(self, token: CancellationToken, stopped_on_error: bool) -> RunSummary:
        state = self._state
        state.cancelled = token.is_cancelled() and state.processed_count < state.total_records
        state.is_completed = True

        if state.cancelled:
            self._aggregator.add_notice(
                MessageType.WARNING,
                "CANCELLED",
                f"Processing cancelled by user after {state.processed_count} of {state.total_records} records",
            )

        summary = self._aggregator.summary()
        status = "Processing stopped after first error" if stopped_on_error else summary.status_text
        self._emit(status)

        logger.info(
            "run finished",
            extra={
                "status": summary.status,
                "total_records": summary.total_records,
                "success_count": summary.success_count,
                "failure_count": summary.failure_count,
                "cancelled": summary.cancelled,
            },
        )

        if stopped_on_error:
            raise StoppedOnError(status, summary)
        return summary

    def _on_cancel(self) -> None:
        self._emit("Cancellation requested - stopping processing...", is_error=True)

    def _emit(self, status: str, *, is_error: bool | None = None) -> None:
        publish(self.progress_sink, self.tracker.snapshot(self._state, status=status, is_error=is_error))
