from datetime import UTC, datetime
import json

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bulksubmit.db_models import RecordResult, RunMessage, UploadRun
from bulksubmit.schemas import Message, RunSummary


def utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def get_run_by_key(db: Session, run_key: str) -> UploadRun | None:
    stmt = select(UploadRun).where(UploadRun.run_key == run_key)
    return db.execute(stmt).scalar_one_or_none()


def create_or_get_run(db: Session, *, run_key: str, source_file: str, trigger_source: str) -> tuple[UploadRun, bool]:
    run = UploadRun(run_key=run_key, source_file=source_file, trigger_source=trigger_source, status="queued")
    db.add(run)
    try:
        db.commit()
    except IntegrityError:
        # Unique run_key keeps a file from being uploaded twice under one key.
        db.rollback()
        existing = get_run_by_key(db, run_key)
        if existing:
            return existing, False
        raise

    db.refresh(run)
    return run, True


def reset_run_results(db: Session, run: UploadRun, *, source_file: str) -> None:
    db.execute(delete(RecordResult).where(RecordResult.run_id == run.id))
    db.execute(delete(RunMessage).where(RunMessage.run_id == run.id))

    run.source_file = source_file
    run.status = "queued"
    run.error = None
    run.cancelled = False
    run.completed_at = None
    run.total_records = 0
    run.success_count = 0
    run.failure_count = 0
    db.commit()


def mark_run_running(db: Session, run: UploadRun, *, total_records: int = 0) -> None:
    run.status = "running"
    run.started_at = utc_now()
    run.total_records = total_records
    run.error = None
    db.commit()


def mark_run_finished(db: Session, run: UploadRun, summary: RunSummary) -> None:
    run.status = summary.status
    run.cancelled = summary.cancelled
    run.total_records = summary.total_records
    run.success_count = summary.success_count
    run.failure_count = summary.failure_count
    run.completed_at = utc_now()
    run.error = None
    db.commit()


def mark_run_failed(db: Session, run: UploadRun, *, error: str, summary: RunSummary | None = None) -> None:
    run.status = "failed"
    run.error = error
    if summary is not None:
        run.cancelled = summary.cancelled
        run.total_records = summary.total_records
        run.success_count = summary.success_count
        run.failure_count = summary.failure_count
    run.completed_at = utc_now()
    db.commit()


def store_record_results(db: Session, *, run_id: int, summary: RunSummary) -> None:
    for record in (*summary.success_records, *summary.error_records):
        db.add(
            RecordResult(
                run_id=run_id,
                original_index=int(record["OriginalIndex"]),
                status=str(record["Status"]),
                error_code=record.get("ErrorCode"),
                message=str(record.get("Message") or ""),
                payload=json.dumps(record, default=str),
            )
        )
    db.commit()


def store_messages(db: Session, *, run_id: int, messages: tuple[Message, ...]) -> None:
    for message in messages:
        db.add(
            RunMessage(
                run_id=run_id,
                type=message.type.value,
                code=message.code,
                text=message.text,
                timestamp=message.timestamp,
                source=message.source,
                entity_id=message.entity_id,
                batch_index=message.batch_index,
                original_index=message.original_index,
                details=json.dumps(message.details, default=str) if message.details is not None else None,
            )
        )
    db.commit()
