from bulksubmit.schemas import Message, RunSummary


EXPORT_TYPES = ("all", "success", "error", "errors", "all_messages")

LEADING_COLUMNS = ("Status", "Message")
TRAILING_COLUMNS = ("ErrorCode", "ErrorDetails", "ProcessedAt", "OriginalIndex")


def _message_row(message: Message) -> dict[str, object]:
    return {
        "Status": message.type.value.capitalize(),
        "Message": message.text,
        "MessageCode": message.code,
        "Source": message.source,
        "EntityId": message.entity_id,
        "BatchIndex": message.batch_index,
        "ErrorDetails": message.details,
        "ProcessedAt": message.timestamp,
        "OriginalIndex": message.original_index,
    }


def _column_order(rows: list[dict[str, object]]) -> list[str]:
    seen: list[str] = []
    for row in rows:
        for key in row:
            if key not in seen:
                seen.append(key)

    business = [key for key in seen if key not in LEADING_COLUMNS and key not in TRAILING_COLUMNS]
    leading = [key for key in LEADING_COLUMNS if key in seen]
    trailing = [key for key in TRAILING_COLUMNS if key in seen]
    return leading + business + trailing


def build_export_rows(summary: RunSummary, export_type: str = "all") -> list[dict[str, object]]:
    """Flatten a run summary into spreadsheet-ready rows sharing one column order.

    ``export_type`` selects successes, errors, both, or the full message log. An empty selection
    yields a single "No Records" placeholder row.
    """
    if export_type not in EXPORT_TYPES:
        raise ValueError(f"unknown export type {export_type!r}, expected one of {', '.join(EXPORT_TYPES)}")

    rows: list[dict[str, object]] = []
    if export_type == "all_messages":
        rows = [_message_row(message) for message in summary.all_messages]
    else:
        if export_type in ("all", "success"):
            rows.extend(dict(record) for record in summary.success_records)
        if export_type in ("all", "error", "errors"):
            rows.extend(dict(record) for record in summary.error_records)

    if not rows:
        return [{"Status": "No Records", "Message": f"No records found matching type '{export_type}'."}]

    columns = _column_order(rows)
    return [{column: row.get(column, "") for column in columns} for row in rows]
