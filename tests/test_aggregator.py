from bulksubmit.aggregator import ResultAggregator, build_message, create_standard_message
from bulksubmit.schemas import FailureOutcome, MessageType, RunState, SuccessOutcome


FIXED_TS = "2026-03-01T10:00:00+00:00"


def make_aggregator(total_records: int = 3) -> ResultAggregator:
    return ResultAggregator(RunState(total_records=total_records), source="MaterialUpload", timestamp_factory=lambda: FIXED_TS)


def test_build_message_is_deterministic_given_a_timestamp() -> None:
    first = build_message(False, "E42", "Plant not found", {"plant": "X1"}, "MaterialUpload", "MAT-1", 2, 5, timestamp=FIXED_TS)
    second = build_message(False, "E42", "Plant not found", {"plant": "X1"}, "MaterialUpload", "MAT-1", 2, 5, timestamp=FIXED_TS)

    assert first == second
    assert first.type is MessageType.ERROR
    assert first.to_dict() == {
        "type": "error",
        "code": "E42",
        "message": "Plant not found",
        "timestamp": FIXED_TS,
        "source": "MaterialUpload",
        "entityId": "MAT-1",
        "batchIndex": 2,
        "originalIndex": 5,
        "details": {"plant": "X1"},
    }


def test_standard_message_defaults() -> None:
    warning = create_standard_message(MessageType.WARNING, None, None, timestamp=FIXED_TS)
    info = create_standard_message(MessageType.INFO, "", "", timestamp=FIXED_TS)

    assert (warning.code, warning.text) == ("WARNING", "Operation completed with warnings.")
    assert (info.code, info.text) == ("INFO", "Operation processed.")
    assert warning.source == "BatchProcessor"


def test_failure_record_keeps_full_input_plus_status_fields() -> None:
    aggregator = make_aggregator()
    original = {"Material": "M-100", "Plant": "1000", "Quantity": 5}

    aggregator.record(
        FailureOutcome(index=1, error="Plant locked", error_code="PLANT_LOCKED", details=["locked"], original_input=original),
        batch_index=1,
    )

    merged = aggregator.state.error_records[0]
    assert merged == {
        "Material": "M-100",
        "Plant": "1000",
        "Quantity": 5,
        "Status": "Error",
        "Message": "Plant locked",
        "ErrorCode": "PLANT_LOCKED",
        "ErrorDetails": ["locked"],
        "ProcessedAt": FIXED_TS,
        "OriginalIndex": 1,
    }
    assert aggregator.state.failure_count == 1
    assert aggregator.state.all_messages[0].code == "PLANT_LOCKED"


def test_success_record_merges_response_fields() -> None:
    aggregator = make_aggregator()

    message = aggregator.record(
        SuccessOutcome(index=0, response={"DocumentNumber": "4500001"}, entity_id="4500001", original_input={"Material": "M-1"}),
        batch_index=1,
    )

    merged = aggregator.state.success_records[0]
    assert merged["Material"] == "M-1"
    assert merged["DocumentNumber"] == "4500001"
    assert merged["Status"] == "Success"
    assert merged["Message"] == "Successfully processed"
    assert merged["OriginalIndex"] == 0
    assert message.code == "SUCCESS"
    assert message.entity_id == "4500001"


def test_counters_stay_consistent_across_outcomes() -> None:
    aggregator = make_aggregator()

    aggregator.record(SuccessOutcome(index=0, original_input={"a": 1}))
    aggregator.record(FailureOutcome(index=1, original_input={"a": 2}))
    aggregator.record(SuccessOutcome(index=2, original_input={"a": 3}))
    summary = aggregator.summary()

    assert summary.processed_count == summary.success_count + summary.failure_count == 3
    assert len(summary.success_records) == summary.success_count
    assert len(summary.error_records) == summary.failure_count
    assert len(summary.all_messages) == 3


def test_notices_are_logged_but_not_counted() -> None:
    aggregator = make_aggregator()

    aggregator.add_notice(MessageType.WARNING, "CANCELLED", "Processing cancelled by user after 0 of 3 records")
    summary = aggregator.summary()

    assert summary.processed_count == 0
    assert [message.code for message in summary.all_messages] == ["CANCELLED"]


def test_summary_records_are_detached_from_the_running_state() -> None:
    aggregator = make_aggregator()
    aggregator.record(SuccessOutcome(index=0, original_input={"Material": "M-1"}))

    summary = aggregator.summary()
    summary.success_records[0]["Material"] = "changed"

    assert aggregator.state.success_records[0]["Material"] == "M-1"
