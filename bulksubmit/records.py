import csv
import json
from collections.abc import Mapping
from pathlib import Path


def ingest_records(input_path: Path) -> list[dict[str, object]]:
    if not input_path.exists():
        raise FileNotFoundError(f"input file not found: {input_path}")

    suffix = input_path.suffix.lower()
    if suffix == ".csv":
        return _ingest_csv(input_path)
    if suffix in {".jsonl", ".ndjson"}:
        return _ingest_jsonl(input_path)
    raise ValueError(f"unsupported input format: {input_path.name}")


def _ingest_jsonl(input_path: Path) -> list[dict[str, object]]:
    records: list[dict[str, object]] = []
    with input_path.open("r", encoding="utf-8") as infile:
        for line in infile:
            line = line.strip()
            if not line:
                continue
            records.append(json.loads(line))
    return records


def _ingest_csv(input_path: Path) -> list[dict[str, object]]:
    records: list[dict[str, object]] = []
    with input_path.open("r", encoding="utf-8-sig", newline="") as infile:
        for row in csv.DictReader(infile):
            # Spreadsheet exports often end with blank rows.
            if not any((value or "").strip() for value in row.values() if isinstance(value, str)):
                continue
            records.append({key.strip(): value for key, value in row.items() if key is not None})
    return records


def map_columns(records: list[dict[str, object]], mapping: Mapping[str, str]) -> list[dict[str, object]]:
    """Rename source columns to target fields. When two columns land on one field the later column wins."""
    mapped: list[dict[str, object]] = []
    for record in records:
        row: dict[str, object] = {}
        for key, value in record.items():
            row[mapping.get(key, key)] = value
        mapped.append(row)
    return mapped


def parse_column_mapping(pairs: list[str]) -> dict[str, str]:
    mapping: dict[str, str] = {}
    for pair in pairs:
        source, separator, target = pair.partition("=")
        if not separator or not source.strip() or not target.strip():
            raise ValueError(f"column mapping must look like SOURCE=TARGET, got {pair!r}")
        mapping[source.strip()] = target.strip()
    return mapping


def write_jsonl(path: Path, rows: list[dict[str, object]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as outfile:
        for row in rows:
            outfile.write(json.dumps(row, default=str))
            outfile.write("\n")


def write_json(path: Path, payload: dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as outfile:
        json.dump(payload, outfile, indent=2, sort_keys=True, default=str)
        outfile.write("\n")
