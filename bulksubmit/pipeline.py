import asyncio
from collections.abc import Mapping
import logging
from pathlib import Path
import signal

from sqlalchemy.orm import Session, sessionmaker

from bulksubmit.config import Settings
from bulksubmit.db_models import UploadRun
from bulksubmit.engine import EngineOptions, SequentialBatchEngine
from bulksubmit.errors import ConfigurationError, StoppedOnError
from bulksubmit.export import build_export_rows
from bulksubmit.grouping import field_group_key
from bulksubmit.progress import LoggingProgressSink, ProgressSink
from bulksubmit.records import ingest_records, map_columns, write_json, write_jsonl
from bulksubmit.run_store import (
    create_or_get_run,
    mark_run_failed,
    mark_run_finished,
    mark_run_running,
    reset_run_results,
    store_messages,
    store_record_results,
)
from bulksubmit.schemas import InputRecord, RunSummary, UploadResult
from bulksubmit.submitters import DryRunSubmitter, HttpJsonSubmitter, UnitSubmitter


logger = logging.getLogger(__name__)

RERUNNABLE_STATUSES = frozenset({"failed", "cancelled"})


async def _run_engine(engine: SequentialBatchEngine, records: list[InputRecord]) -> RunSummary:
    loop = asyncio.get_running_loop()
    installed = False
    try:
        loop.add_signal_handler(signal.SIGINT, engine.cancel)
        installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        # No signal support off the main thread or on this platform; Ctrl+C then aborts hard.
        pass

    try:
        return await engine.run(records)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


class UploadRunner:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        *,
        submitter: UnitSubmitter | None = None,
        progress_sink: ProgressSink | None = None,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.submitter = submitter
        self.progress_sink = progress_sink or LoggingProgressSink()

    def run(
        self,
        *,
        input_path: Path,
        run_key: str,
        trigger_source: str = "manual",
        group_by: str | None = None,
        column_mapping: Mapping[str, str] | None = None,
        submit_url: str | None = None,
        dry_run: bool = False,
        batch_size: int | None = None,
    ) -> UploadResult:
        with self.session_factory() as db:
            run, created = create_or_get_run(
                db,
                run_key=run_key,
                source_file=str(input_path),
                trigger_source=trigger_source,
            )
            if not created:
                if run.status in RERUNNABLE_STATUSES:
                    logger.info("rerunning upload", extra={"run_key": run_key, "previous_status": run.status})
                    reset_run_results(db, run, source_file=str(input_path))
                else:
                    logger.info("idempotent run reused", extra={"run_key": run_key, "status": run.status})
                    return self._result_from_run(run, report_path=self._report_path(run_key), reused_existing_run=True)

            mark_run_running(db, run)

            try:
                records = ingest_records(input_path)
                if column_mapping:
                    records = map_columns(records, column_mapping)
                mark_run_running(db, run, total_records=len(records))

                overrides: dict[str, object] = {}
                if group_by:
                    overrides["group_by"] = field_group_key(group_by)
                if batch_size:
                    overrides["batch_size"] = batch_size
                engine = SequentialBatchEngine(
                    self._build_submitter(submit_url=submit_url, dry_run=dry_run),
                    options=EngineOptions.from_settings(self.settings, **overrides),
                    progress_sink=self.progress_sink,
                )
                summary = asyncio.run(_run_engine(engine, records))
            except StoppedOnError as exc:
                self._persist(db, run, exc.summary)
                mark_run_failed(db, run, error=str(exc), summary=exc.summary)
                logger.error("upload stopped at first error", extra={"run_key": run_key})
                return self._result_from_run(run, report_path=self._report_path(run_key), reused_existing_run=False)
            except Exception as exc:
                mark_run_failed(db, run, error=str(exc))
                logger.exception("upload run failed", extra={"run_key": run_key})
                return self._result_from_run(run, report_path=None, reused_existing_run=False)

            self._persist(db, run, summary)
            mark_run_finished(db, run, summary)
            return self._result_from_run(run, report_path=self._report_path(run_key), reused_existing_run=False)

    def _build_submitter(self, *, submit_url: str | None, dry_run: bool) -> UnitSubmitter:
        if self.submitter is not None:
            return self.submitter
        if dry_run:
            return DryRunSubmitter()

        url = submit_url or self.settings.submit_url
        if not url:
            raise ConfigurationError("no submit url configured; pass --url, set SUBMIT_URL, or use --dry-run")
        return HttpJsonSubmitter(url, timeout=self.settings.submit_timeout_seconds)

    def _persist(self, db: Session, run: UploadRun, summary: RunSummary) -> None:
        store_record_results(db, run_id=run.id, summary=summary)
        store_messages(db, run_id=run.id, messages=summary.all_messages)
        self._publish_outputs(run_key=run.run_key, source_file=run.source_file, summary=summary)

    def _publish_outputs(self, *, run_key: str, source_file: str, summary: RunSummary) -> None:
        output_root = Path(self.settings.output_dir)
        success_path = output_root / "success" / f"{run_key}.jsonl"
        error_path = output_root / "errors" / f"{run_key}.jsonl"
        messages_path = output_root / "messages" / f"{run_key}.jsonl"

        write_jsonl(success_path, build_export_rows(summary, "success"))
        write_jsonl(error_path, build_export_rows(summary, "error"))
        write_jsonl(messages_path, build_export_rows(summary, "all_messages"))
        write_json(
            Path(self._report_path(run_key)),
            {
                "run_key": run_key,
                "source_file": source_file,
                "status": summary.status,
                "status_text": summary.status_text,
                "cancelled": summary.cancelled,
                "total_records": summary.total_records,
                "success_count": summary.success_count,
                "failure_count": summary.failure_count,
                "success_output": str(success_path),
                "error_output": str(error_path),
                "messages_output": str(messages_path),
            },
        )

    def _report_path(self, run_key: str) -> str:
        return str(Path(self.settings.output_dir) / "reports" / f"{run_key}.json")

    def _result_from_run(self, run: UploadRun, report_path: str | None, reused_existing_run: bool) -> UploadResult:
        return UploadResult(
            run_id=run.id,
            run_key=run.run_key,
            source_file=run.source_file,
            trigger_source=run.trigger_source,
            status=run.status,
            total_records=run.total_records,
            success_count=run.success_count,
            failure_count=run.failure_count,
            cancelled=run.cancelled,
            report_path=report_path,
            reused_existing_run=reused_existing_run,
        )
