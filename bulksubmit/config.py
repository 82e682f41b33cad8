from dataclasses import dataclass
import os

from dotenv import load_dotenv


load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    database_url: str
    log_level: str
    input_dir: str
    output_dir: str
    submit_url: str
    batch_size: int
    inter_record_delay_ms: int
    continue_on_error: bool
    max_retries: int
    retry_delay_ms: int
    submit_timeout_seconds: float
    abort_in_flight_on_cancel: bool
    schedule_hour_utc: int
    schedule_minute_utc: int


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "bulksubmit"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./bulksubmit.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        input_dir=os.getenv("INPUT_DIR", "./data/input"),
        output_dir=os.getenv("OUTPUT_DIR", "./outputs"),
        submit_url=os.getenv("SUBMIT_URL", ""),
        batch_size=int(os.getenv("BATCH_SIZE", "10")),
        inter_record_delay_ms=int(os.getenv("INTER_RECORD_DELAY_MS", "100")),
        continue_on_error=_env_bool("CONTINUE_ON_ERROR", "true"),
        max_retries=int(os.getenv("MAX_RETRIES", "3")),
        retry_delay_ms=int(os.getenv("RETRY_DELAY_MS", "2000")),
        submit_timeout_seconds=float(os.getenv("SUBMIT_TIMEOUT_SECONDS", "120")),
        abort_in_flight_on_cancel=_env_bool("ABORT_IN_FLIGHT_ON_CANCEL", "false"),
        schedule_hour_utc=int(os.getenv("SCHEDULE_HOUR_UTC", "2")),
        schedule_minute_utc=int(os.getenv("SCHEDULE_MINUTE_UTC", "0")),
    )
