from datetime import UTC, date, datetime
import logging
from pathlib import Path

from apscheduler.schedulers.blocking import BlockingScheduler
from sqlalchemy.orm import Session, sessionmaker

from bulksubmit.config import Settings
from bulksubmit.pipeline import UploadRunner


logger = logging.getLogger(__name__)


def daily_input_path(settings: Settings, run_date: date) -> Path:
    return Path(settings.input_dir) / f"records-{run_date.isoformat()}.jsonl"


def _run_daily_upload(settings: Settings, session_factory: sessionmaker[Session]) -> None:
    run_date = datetime.now(UTC).date()
    input_path = daily_input_path(settings, run_date)
    if not input_path.exists():
        logger.info("no upload file for today", extra={"input_path": str(input_path)})
        return

    runner = UploadRunner(settings, session_factory)
    result = runner.run(input_path=input_path, run_key=f"scheduled-{run_date.isoformat()}", trigger_source="scheduled")
    if result.status == "failed":
        logger.error(
            "scheduled upload failed",
            extra={
                "run_key": result.run_key,
                "status": result.status,
                "reused_existing_run": result.reused_existing_run,
            },
        )
        return
    logger.info(
        "scheduled upload completed",
        extra={
            "run_key": result.run_key,
            "status": result.status,
            "success_count": result.success_count,
            "failure_count": result.failure_count,
            "reused_existing_run": result.reused_existing_run,
        },
    )


def start_scheduler(settings: Settings, session_factory: sessionmaker[Session], *, run_now: bool = False) -> None:
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        _run_daily_upload,
        "cron",
        args=[settings, session_factory],
        hour=settings.schedule_hour_utc,
        minute=settings.schedule_minute_utc,
        id="daily_upload",
        replace_existing=True,
    )

    logger.info(
        "scheduler started",
        extra={
            "schedule_hour_utc": settings.schedule_hour_utc,
            "schedule_minute_utc": settings.schedule_minute_utc,
        },
    )

    if run_now:
        _run_daily_upload(settings, session_factory)

    scheduler.start()
