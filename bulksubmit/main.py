import argparse
import logging
from pathlib import Path

from bulksubmit.config import get_settings
from bulksubmit.database import build_session_factory
from bulksubmit.pipeline import UploadRunner
from bulksubmit.records import parse_column_mapping
from bulksubmit.scheduler import start_scheduler


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Submit uploaded records to a backend one unit at a time")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="upload one input file")
    run_parser.add_argument("--input", required=True, help="Path to a .jsonl or .csv file of records")
    run_parser.add_argument("--run-key", required=False, help="Idempotency key for this upload")
    run_parser.add_argument("--url", required=False, help="Endpoint receiving each unit (defaults to SUBMIT_URL)")
    run_parser.add_argument("--dry-run", action="store_true", help="accept every record without calling a backend")
    run_parser.add_argument("--group-by", required=False, help="Field whose value groups records into one unit")
    run_parser.add_argument("--batch-size", type=int, required=False, help="Records per progress batch when not grouping")
    run_parser.add_argument(
        "--map",
        action="append",
        default=[],
        metavar="SOURCE=TARGET",
        help="Rename an input column before submission; may be repeated",
    )
    run_parser.add_argument(
        "--trigger-source",
        default="manual",
        choices=["manual", "scheduled"],
        help="Metadata label for how this upload was triggered",
    )

    schedule_parser = subparsers.add_parser("schedule", help="start the daily upload scheduler")
    schedule_parser.add_argument("--run-now", action="store_true", help="also upload today's file immediately")

    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    session_factory = build_session_factory(settings.database_url)
    if args.command == "schedule":
        start_scheduler(settings, session_factory, run_now=args.run_now)
        return

    input_path = Path(args.input)
    run_key = args.run_key or input_path.stem

    runner = UploadRunner(settings, session_factory)
    result = runner.run(
        input_path=input_path,
        run_key=run_key,
        trigger_source=args.trigger_source,
        group_by=args.group_by,
        column_mapping=parse_column_mapping(args.map),
        submit_url=args.url,
        dry_run=args.dry_run,
        batch_size=args.batch_size,
    )

    print(
        "run_id={run_id} run_key={run_key} trigger={trigger} status={status} total={total} success={success} failed={failed} cancelled={cancelled} reused={reused} report={report}".format(
            run_id=result.run_id,
            run_key=result.run_key,
            trigger=result.trigger_source,
            status=result.status,
            total=result.total_records,
            success=result.success_count,
            failed=result.failure_count,
            cancelled=result.cancelled,
            reused=result.reused_existing_run,
            report=result.report_path,
        )
    )
    if result.status == "failed":
        raise SystemExit(1)


if __name__ == "__main__":
    main()
