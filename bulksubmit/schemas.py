from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum


InputRecord = dict[str, object]


@dataclass(frozen=True)
class Group:
    """One unit of work: the records sharing a group key, or a single record when grouping is off.

    ``indices`` holds each record's 0-based position in the original input, in the same order
    as ``records``. ``batch_index`` is the 1-based progress batch the unit belongs to.
    """

    key: str | None
    batch_index: int
    records: tuple[InputRecord, ...]
    indices: tuple[int, ...]

    def __len__(self) -> int:
        return len(self.records)

    def items(self) -> Iterator[tuple[int, InputRecord]]:
        return zip(self.indices, self.records)


@dataclass(frozen=True)
class SuccessOutcome:
    index: int | None = None
    response: object = None
    message: str = "Successfully processed"
    entity_id: str = ""
    original_input: InputRecord | None = None

    @property
    def is_success(self) -> bool:
        return True


@dataclass(frozen=True)
class FailureOutcome:
    index: int | None = None
    error: str = "Processing failed"
    error_code: str = "ERROR"
    details: object = None
    entity_id: str = ""
    original_input: InputRecord | None = None

    @property
    def is_success(self) -> bool:
        return False


Outcome = SuccessOutcome | FailureOutcome


class MessageType(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class Message:
    type: MessageType
    code: str
    text: str
    timestamp: str
    source: str
    entity_id: str
    batch_index: int | None
    original_index: int | None
    details: object = None

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.type.value,
            "code": self.code,
            "message": self.text,
            "timestamp": self.timestamp,
            "source": self.source,
            "entityId": self.entity_id,
            "batchIndex": self.batch_index,
            "originalIndex": self.original_index,
            "details": self.details,
        }


@dataclass(frozen=True)
class ProgressSnapshot:
    status: str
    processed_entries: int
    total_entries: int
    entries_progress_pct: int
    current_group: int
    total_groups: int
    group_progress_pct: int
    success_count: int
    failure_count: int
    processing_speed: str
    time_remaining: str
    is_completed: bool = False
    is_error: bool = False
    is_cancelled: bool = False


@dataclass
class RunState:
    total_records: int = 0
    processed_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    success_records: list[InputRecord] = field(default_factory=list)
    error_records: list[InputRecord] = field(default_factory=list)
    all_messages: list[Message] = field(default_factory=list)
    cancelled: bool = False
    is_completed: bool = False
    start_time: float = 0.0
    current_group_index: int = 0
    total_groups: int = 0


@dataclass(frozen=True)
class RunSummary:
    cancelled: bool
    total_records: int
    processed_count: int
    success_count: int
    failure_count: int
    success_records: tuple[InputRecord, ...] = ()
    error_records: tuple[InputRecord, ...] = ()
    all_messages: tuple[Message, ...] = ()

    @property
    def successful_records(self) -> tuple[InputRecord, ...]:
        return self.success_records

    @property
    def failed_records_list(self) -> tuple[InputRecord, ...]:
        return self.error_records

    @property
    def status(self) -> str:
        if self.cancelled:
            return "cancelled"
        if self.failure_count:
            return "partial"
        return "succeeded"

    @property
    def status_text(self) -> str:
        if self.cancelled:
            return "Processing cancelled by user"
        if self.failure_count:
            return f"Processing completed with {self.failure_count} errors"
        return "Processing completed successfully"

    def to_dict(self) -> dict[str, object]:
        return {
            "cancelled": self.cancelled,
            "totalRecords": self.total_records,
            "processedCount": self.processed_count,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "successRecords": list(self.success_records),
            "errorRecords": list(self.error_records),
            "successfulRecords": list(self.success_records),
            "failedRecordsList": list(self.error_records),
            "allMessages": [message.to_dict() for message in self.all_messages],
        }


@dataclass(frozen=True)
class UploadResult:
    run_id: int
    run_key: str
    source_file: str
    trigger_source: str
    status: str
    total_records: int
    success_count: int
    failure_count: int
    cancelled: bool
    report_path: str | None
    reused_existing_run: bool
