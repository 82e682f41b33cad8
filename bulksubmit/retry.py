import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging
from typing import TypeVar

from bulksubmit.errors import ConfigurationError
from bulksubmit.schemas import FailureOutcome, Group


logger = logging.getLogger(__name__)
T = TypeVar("T")

RETRIABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class RetryExhaustedError(RuntimeError):
    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


def error_status_code(error: BaseException) -> int | None:
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def is_retriable_error(error: BaseException) -> bool:
    if error_status_code(error) in RETRIABLE_STATUS_CODES:
        return True
    # Loose substring match on the message text, kept for parity with existing uploads.
    text = str(error).lower()
    return "timeout" in text or "network" in text


def error_code_for(error: BaseException) -> str:
    status = error_status_code(error)
    if status is not None:
        return f"HTTP_{status}"
    code = getattr(error, "code", None)
    if isinstance(code, str) and code:
        return code
    return "TRANSPORT_ERROR"


def synthesize_failures(group: Group, error: BaseException) -> list[FailureOutcome]:
    text = str(error) or "Processing failed after retries"
    code = error_code_for(error)
    details = getattr(error, "details", None)
    return [
        FailureOutcome(index=index, error=text, error_code=code, details=details, original_input=record)
        for index, record in group.items()
    ]


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    retry_delay_ms: int = 2000
    retry_on: Callable[[BaseException], bool] = is_retriable_error

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0")
        if self.retry_delay_ms < 0:
            raise ConfigurationError("retry_delay_ms must be >= 0")

    def should_retry(self, error: BaseException, attempt_number: int) -> bool:
        """``attempt_number`` counts the retries already made for this unit, starting at 0."""
        return attempt_number < self.max_retries and self.retry_on(error)

    def delay_for(self, attempt_number: int) -> int:
        # Constant delay, no exponential growth.
        return self.retry_delay_ms


async def run_with_retries(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    on_attempt_failure: Callable[[int, Exception], None] | None = None,
    should_stop: Callable[[], bool] | None = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    attempt_number = 0

    while True:
        try:
            return await fn()
        except Exception as exc:
            if on_attempt_failure:
                on_attempt_failure(attempt_number + 1, exc)

            stop_requested = should_stop is not None and should_stop()
            if stop_requested or not policy.should_retry(exc, attempt_number):
                raise RetryExhaustedError(str(exc), attempts=attempt_number + 1) from exc

            await sleep(policy.delay_for(attempt_number) / 1000)
            # A stop may arrive while waiting out the delay.
            if should_stop is not None and should_stop():
                raise RetryExhaustedError(str(exc), attempts=attempt_number + 1) from exc
            attempt_number += 1
