from collections.abc import Awaitable, Callable, Mapping
from dataclasses import replace
import logging
from typing import Protocol

import httpx

from bulksubmit.errors import ConfigurationError, TransportFailure
from bulksubmit.retry import RETRIABLE_STATUS_CODES, error_code_for
from bulksubmit.schemas import FailureOutcome, Group, InputRecord, Outcome, SuccessOutcome


logger = logging.getLogger(__name__)


class UnitSubmitter(Protocol):
    async def submit(self, group: Group) -> list[Outcome]: ...


class _CallableSubmitter:
    def __init__(self, fn: Callable[[Group], Awaitable[list[Outcome]]]) -> None:
        self.fn = fn

    async def submit(self, group: Group) -> list[Outcome]:
        return await self.fn(group)


def as_submitter(candidate: object) -> UnitSubmitter:
    if candidate is None:
        raise ConfigurationError("a unit submitter is required")
    if callable(getattr(candidate, "submit", None)):
        return candidate  # type: ignore[return-value]
    if callable(candidate):
        return _CallableSubmitter(candidate)  # type: ignore[arg-type]
    raise ConfigurationError(f"{type(candidate).__name__} does not provide submit(group)")


def _success_flag(value: object) -> bool:
    # Backends often send the flag as text.
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "x"}
    return bool(value)


def coerce_outcome(result: object, *, index: int, record: InputRecord) -> Outcome:
    if isinstance(result, (SuccessOutcome, FailureOutcome)):
        return replace(
            result,
            index=index if result.index is None else result.index,
            original_input=record if result.original_input is None else result.original_input,
        )

    if isinstance(result, Mapping) and "success" in result:
        entity_id = str(result.get("entityId") or "")
        if _success_flag(result["success"]):
            return SuccessOutcome(
                index=index,
                response=result.get("response", result.get("data")),
                message=str(result.get("message") or "Successfully processed"),
                entity_id=entity_id,
                original_input=record,
            )
        return FailureOutcome(
            index=index,
            error=str(result.get("error") or result.get("message") or "Processing failed"),
            error_code=str(result.get("errorCode") or "ERROR"),
            details=result.get("details"),
            entity_id=entity_id,
            original_input=record,
        )

    return SuccessOutcome(index=index, response=result, original_input=record)


class PerRecordSubmitter:
    """Fans a unit out to one awaited call per record, in order.

    With ``resolve_always`` a record whose call raises becomes a failure and the rest of the
    unit still runs; otherwise the exception fails the whole unit so it can be retried.
    """

    def __init__(self, fn: Callable[[InputRecord], Awaitable[object]], *, resolve_always: bool = False) -> None:
        self.fn = fn
        self.resolve_always = resolve_always

    async def submit(self, group: Group) -> list[Outcome]:
        outcomes: list[Outcome] = []
        for index, record in group.items():
            try:
                result = await self.fn(record)
            except Exception as exc:
                if not self.resolve_always:
                    raise
                logger.warning(
                    "record call failed",
                    extra={"group_key": group.key, "original_index": index, "error": str(exc)},
                )
                outcomes.append(
                    FailureOutcome(
                        index=index,
                        error=str(exc) or "Processing failed",
                        error_code=error_code_for(exc),
                        details=getattr(exc, "details", None),
                        original_input=record,
                    )
                )
                continue
            outcomes.append(coerce_outcome(result, index=index, record=record))
        return outcomes


class DryRunSubmitter:
    async def submit(self, group: Group) -> list[Outcome]:
        return [
            SuccessOutcome(index=index, message="Dry run: record accepted", original_input=record)
            for index, record in group.items()
        ]


class HttpJsonSubmitter:
    """Posts one unit per request as ``{"groupKey": ..., "records": [...]}``.

    The endpoint answers ``{"results": [...]}`` with one entry per record, in request order.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 120.0,
        headers: Mapping[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not url:
            raise ConfigurationError("HttpJsonSubmitter requires a url")
        self.url = url
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._client = client

    async def submit(self, group: Group) -> list[Outcome]:
        payload = {"groupKey": group.key, "records": list(group.records)}

        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, headers=self.headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload, headers=self.headers)
        except httpx.TimeoutException as exc:
            raise TransportFailure(f"timeout calling {self.url}", status_code=408) from exc
        except httpx.TransportError as exc:
            raise TransportFailure(f"network error calling {self.url}: {exc}") from exc

        status = response.status_code
        if status in RETRIABLE_STATUS_CODES:
            raise TransportFailure(f"{self.url} returned HTTP {status}", status_code=status, details=response.text[:500])

        if response.is_error:
            text = response.text[:500]
            return [
                FailureOutcome(
                    index=index,
                    error=f"HTTP {status}: {text or response.reason_phrase}",
                    error_code=f"HTTP_{status}",
                    details=text,
                    original_input=record,
                )
                for index, record in group.items()
            ]

        try:
            body = response.json()
        except ValueError as exc:
            logger.error("unreadable response body", extra={"group_key": group.key, "url": self.url})
            return [
                FailureOutcome(
                    index=index,
                    error=f"Error processing response: {exc}",
                    error_code="PARSE_ERROR",
                    details=[str(exc)],
                    original_input=record,
                )
                for index, record in group.items()
            ]

        results = body.get("results") if isinstance(body, Mapping) else body
        if not isinstance(results, list):
            results = []

        return [
            coerce_outcome(result, index=index, record=record)
            for (index, record), result in zip(group.items(), results)
        ]
