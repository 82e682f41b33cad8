from collections.abc import Callable, Sequence
import logging

from bulksubmit.errors import ConfigurationError
from bulksubmit.schemas import Group, InputRecord


logger = logging.getLogger(__name__)

GroupKeyFn = Callable[[InputRecord], object]


def field_group_key(field_name: str) -> GroupKeyFn:
    def key_fn(record: InputRecord) -> object:
        return record.get(field_name)

    return key_fn


def partition_records(
    records: Sequence[InputRecord],
    *,
    group_by: GroupKeyFn | None = None,
    batch_size: int = 10,
) -> list[list[Group]]:
    """Split records into progress batches of submission units.

    Without ``group_by`` every record is its own unit and units are chunked ``batch_size`` to a
    batch. With ``group_by`` records sharing a key form one unit, each unit is its own batch, and
    units come out in the order their key was first seen. Records with an empty key stay alone.
    """
    if batch_size < 1:
        raise ConfigurationError("batch_size must be >= 1")

    if group_by is None:
        batches: list[list[Group]] = []
        for start in range(0, len(records), batch_size):
            batch_index = start // batch_size + 1
            batches.append(
                [
                    Group(key=None, batch_index=batch_index, records=(record,), indices=(index,))
                    for index, record in enumerate(records[start : start + batch_size], start=start)
                ]
            )
        return batches

    slots: list[tuple[str | None, list[InputRecord], list[int]]] = []
    by_key: dict[str, int] = {}

    for index, record in enumerate(records):
        raw_key = group_by(record)
        key = str(raw_key).strip() if raw_key is not None else ""
        if not key:
            logger.warning("record has no group key, submitting it alone", extra={"original_index": index})
            slots.append((None, [record], [index]))
            continue

        if key not in by_key:
            by_key[key] = len(slots)
            slots.append((key, [], []))
        _, slot_records, slot_indices = slots[by_key[key]]
        slot_records.append(record)
        slot_indices.append(index)

    return [
        [Group(key=key, batch_index=position, records=tuple(slot_records), indices=tuple(slot_indices))]
        for position, (key, slot_records, slot_indices) in enumerate(slots, start=1)
    ]
