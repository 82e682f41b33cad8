from collections.abc import Generator
from pathlib import Path

import pytest

from bulksubmit.config import Settings
from bulksubmit.database import build_session_factory
from bulksubmit.pipeline import UploadRunner
from bulksubmit.progress import NullProgressSink
from bulksubmit.schemas import FailureOutcome, Group, Outcome, SuccessOutcome


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FailingFieldSubmitter:
    """Accepts every record except those whose ``fail`` field is truthy."""

    def __init__(self) -> None:
        self.groups: list[Group] = []

    async def submit(self, group: Group) -> list[Outcome]:
        self.groups.append(group)
        outcomes: list[Outcome] = []
        for index, record in group.items():
            if record.get("fail"):
                outcomes.append(FailureOutcome(index=index, error="rejected by backend", error_code="BACKEND_REJECTED"))
            else:
                outcomes.append(SuccessOutcome(index=index, response={"DocumentNumber": f"DOC-{index}"}))
        return outcomes


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def temp_workspace(tmp_path: Path) -> Path:
    (tmp_path / "data" / "input").mkdir(parents=True, exist_ok=True)
    (tmp_path / "outputs").mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture()
def test_settings(temp_workspace: Path) -> Settings:
    return Settings(
        app_name="bulksubmit",
        database_url=f"sqlite:///{temp_workspace / 'test.db'}",
        log_level="INFO",
        input_dir=str(temp_workspace / "data" / "input"),
        output_dir=str(temp_workspace / "outputs"),
        submit_url="",
        batch_size=10,
        inter_record_delay_ms=0,
        continue_on_error=True,
        max_retries=1,
        retry_delay_ms=0,
        submit_timeout_seconds=5,
        abort_in_flight_on_cancel=False,
        schedule_hour_utc=2,
        schedule_minute_utc=0,
    )


@pytest.fixture()
def backend() -> FailingFieldSubmitter:
    return FailingFieldSubmitter()


@pytest.fixture()
def runner(test_settings: Settings, backend: FailingFieldSubmitter) -> Generator[UploadRunner, None, None]:
    session_factory = build_session_factory(test_settings.database_url)
    yield UploadRunner(test_settings, session_factory, submitter=backend, progress_sink=NullProgressSink())
