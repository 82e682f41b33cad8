import json
import os
from pathlib import Path
import subprocess
import sys


def _base_env(tmp_path: Path) -> dict[str, str]:
    env = os.environ.copy()
    env["DATABASE_URL"] = f"sqlite:///{tmp_path / 'cli.db'}"
    env["INPUT_DIR"] = str(tmp_path / "data" / "input")
    env["OUTPUT_DIR"] = str(tmp_path / "outputs")
    env["MAX_RETRIES"] = "1"
    env["RETRY_DELAY_MS"] = "0"
    env["INTER_RECORD_DELAY_MS"] = "0"
    env.pop("SUBMIT_URL", None)
    return env


def _run_cli(tmp_path: Path, *args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, "-m", "bulksubmit.main", "run", *args],
        cwd=Path(__file__).resolve().parents[1],
        env=_base_env(tmp_path),
        check=False,
        capture_output=True,
        text=True,
    )


def test_cli_returns_nonzero_when_input_is_missing(tmp_path: Path) -> None:
    proc = _run_cli(tmp_path, "--input", str(tmp_path / "missing.jsonl"), "--run-key", "orders-missing", "--dry-run")

    assert proc.returncode == 1
    assert "status=failed" in proc.stdout


def test_cli_dry_run_returns_zero_on_success(tmp_path: Path) -> None:
    input_file = tmp_path / "orders.jsonl"
    with input_file.open("w", encoding="utf-8") as outfile:
        outfile.write(json.dumps({"PurchaseOrder": "4500000001", "Item": "10", "Material": "M-100"}))
        outfile.write("\n")
        outfile.write(json.dumps({"PurchaseOrder": "4500000001", "Item": "20", "Material": "M-200"}))
        outfile.write("\n")

    proc = _run_cli(tmp_path, "--input", str(input_file), "--group-by", "PurchaseOrder", "--dry-run")

    assert proc.returncode == 0
    assert "run_key=orders" in proc.stdout
    assert "status=succeeded" in proc.stdout
    assert "success=2" in proc.stdout
    assert (tmp_path / "outputs" / "reports" / "orders.json").exists()


def test_cli_without_url_or_dry_run_fails(tmp_path: Path) -> None:
    input_file = tmp_path / "orders.jsonl"
    input_file.write_text(json.dumps({"Material": "M-1"}) + "\n", encoding="utf-8")

    proc = _run_cli(tmp_path, "--input", str(input_file), "--run-key", "orders-no-url")

    assert proc.returncode == 1
    assert "status=failed" in proc.stdout
