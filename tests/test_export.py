import pytest

from bulksubmit.aggregator import ResultAggregator
from bulksubmit.export import build_export_rows
from bulksubmit.schemas import FailureOutcome, MessageType, RunState, RunSummary, SuccessOutcome


def sample_summary() -> RunSummary:
    aggregator = ResultAggregator(RunState(total_records=2), timestamp_factory=lambda: "2026-03-01T10:00:00+00:00")
    aggregator.record(SuccessOutcome(index=0, original_input={"Material": "M-1", "Plant": "1000"}), batch_index=1)
    aggregator.record(
        FailureOutcome(index=1, error="Plant locked", error_code="LOCKED", original_input={"Material": "M-2", "Plant": "2000"}),
        batch_index=1,
    )
    return aggregator.summary()


def test_all_export_uses_one_column_order_for_every_row() -> None:
    rows = build_export_rows(sample_summary(), "all")

    assert len(rows) == 2
    expected_columns = ["Status", "Message", "Material", "Plant", "ErrorCode", "ErrorDetails", "ProcessedAt", "OriginalIndex"]
    assert [list(row) for row in rows] == [expected_columns, expected_columns]
    assert rows[0]["ErrorCode"] == ""
    assert rows[1]["Status"] == "Error"


def test_error_export_selects_failures_only() -> None:
    rows = build_export_rows(sample_summary(), "errors")

    assert [row["Material"] for row in rows] == ["M-2"]
    assert rows == build_export_rows(sample_summary(), "error")


def test_empty_selection_yields_a_placeholder_row() -> None:
    summary = RunSummary(cancelled=False, total_records=0, processed_count=0, success_count=0, failure_count=0)

    assert build_export_rows(summary, "success") == [
        {"Status": "No Records", "Message": "No records found matching type 'success'."}
    ]


def test_message_export_lists_every_message() -> None:
    rows = build_export_rows(sample_summary(), "all_messages")

    assert [row["Status"] for row in rows] == [MessageType.SUCCESS.value.capitalize(), "Error"]
    assert rows[1]["MessageCode"] == "LOCKED"
    assert rows[1]["OriginalIndex"] == 1
    assert list(rows[0])[:2] == ["Status", "Message"]


def test_unknown_export_type_is_rejected() -> None:
    with pytest.raises(ValueError):
        build_export_rows(sample_summary(), "warnings")
