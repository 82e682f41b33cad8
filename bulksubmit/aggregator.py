from collections.abc import Callable, Mapping
import copy
from datetime import UTC, datetime
import logging

from bulksubmit.schemas import FailureOutcome, InputRecord, Message, MessageType, Outcome, RunState, RunSummary


logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "BatchProcessor"

_DEFAULTS: dict[MessageType, tuple[str, str]] = {
    MessageType.SUCCESS: ("SUCCESS", "Operation successful."),
    MessageType.ERROR: ("ERROR", "Operation failed."),
    MessageType.WARNING: ("WARNING", "Operation completed with warnings."),
    MessageType.INFO: ("INFO", "Operation processed."),
}


def utc_timestamp() -> str:
    return datetime.now(UTC).isoformat()


def create_standard_message(
    message_type: MessageType,
    code: str | None,
    text: str | None,
    details: object = None,
    source: str = DEFAULT_SOURCE,
    entity_id: str = "",
    batch_index: int | None = None,
    original_index: int | None = None,
    *,
    timestamp: str | None = None,
) -> Message:
    default_code, default_text = _DEFAULTS[message_type]
    return Message(
        type=message_type,
        code=code or default_code,
        text=text or default_text,
        timestamp=timestamp or utc_timestamp(),
        source=source,
        entity_id=entity_id or "",
        batch_index=batch_index,
        original_index=original_index,
        details=details,
    )


def build_message(
    is_success: bool,
    code: str | None,
    text: str | None,
    details: object,
    source: str,
    entity_id: str,
    batch_index: int | None,
    original_index: int | None,
    *,
    timestamp: str | None = None,
) -> Message:
    return create_standard_message(
        MessageType.SUCCESS if is_success else MessageType.ERROR,
        code,
        text,
        details,
        source,
        entity_id,
        batch_index,
        original_index,
        timestamp=timestamp,
    )


class ResultAggregator:
    """Appends per-record outcomes to a RunState.

    Every recorded outcome produces one merged record (the full input row plus status fields)
    in the success or error list, and exactly one message in ``all_messages``.
    """

    def __init__(
        self,
        state: RunState,
        *,
        source: str = DEFAULT_SOURCE,
        timestamp_factory: Callable[[], str] = utc_timestamp,
    ) -> None:
        self.state = state
        self.source = source
        self.timestamp_factory = timestamp_factory

    def record(self, outcome: Outcome, *, batch_index: int | None = None, group_key: str | None = None) -> Message:
        timestamp = self.timestamp_factory()
        original_input = dict(outcome.original_input or {})

        if isinstance(outcome, FailureOutcome):
            message = build_message(
                False,
                outcome.error_code,
                outcome.error,
                outcome.details,
                self.source,
                outcome.entity_id,
                batch_index,
                outcome.index,
                timestamp=timestamp,
            )
            self.state.failure_count += 1
            self.state.error_records.append(
                {
                    **original_input,
                    "Status": "Error",
                    "Message": message.text,
                    "ErrorCode": message.code,
                    "ErrorDetails": outcome.details,
                    "ProcessedAt": timestamp,
                    "OriginalIndex": outcome.index,
                }
            )
            logger.error(
                "record failed",
                extra={
                    "group_key": group_key,
                    "original_index": outcome.index,
                    "error_code": message.code,
                    "error": message.text,
                },
            )
        else:
            message = build_message(
                True,
                "SUCCESS",
                outcome.message,
                None,
                self.source,
                outcome.entity_id,
                batch_index,
                outcome.index,
                timestamp=timestamp,
            )
            response_fields = dict(outcome.response) if isinstance(outcome.response, Mapping) else {}
            self.state.success_count += 1
            self.state.success_records.append(
                {
                    **original_input,
                    **response_fields,
                    "Status": "Success",
                    "Message": message.text,
                    "ProcessedAt": timestamp,
                    "OriginalIndex": outcome.index,
                }
            )
            logger.debug(
                "record succeeded",
                extra={"group_key": group_key, "original_index": outcome.index, "entity_id": outcome.entity_id},
            )

        self.state.processed_count += 1
        self.state.all_messages.append(message)
        return message

    def add_notice(self, message_type: MessageType, code: str, text: str, details: object = None) -> Message:
        # Run-level notices are logged but never counted as processed records.
        message = create_standard_message(
            message_type,
            code,
            text,
            details,
            self.source,
            batch_index=self.state.current_group_index or None,
            timestamp=self.timestamp_factory(),
        )
        self.state.all_messages.append(message)
        return message

    def summary(self) -> RunSummary:
        state = self.state
        return RunSummary(
            cancelled=state.cancelled,
            total_records=state.total_records,
            processed_count=state.processed_count,
            success_count=state.success_count,
            failure_count=state.failure_count,
            success_records=tuple(copy.deepcopy(state.success_records)),
            error_records=tuple(copy.deepcopy(state.error_records)),
            all_messages=tuple(state.all_messages),
        )
