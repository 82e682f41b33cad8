from collections.abc import Callable
import logging
from typing import Protocol


logger = logging.getLogger(__name__)


class Abortable(Protocol):
    def cancel(self) -> object: ...


class CancellationToken:
    """Cooperative stop flag shared between the engine and whoever drives the UI.

    Handles registered with ``register_abortable`` are cancelled when the token is cancelled.
    """

    def __init__(self, on_cancel: Callable[[], None] | None = None) -> None:
        self._cancelled = False
        self._abortables: list[Abortable] = []
        self._listeners: list[Callable[[], None]] = [on_cancel] if on_cancel else []

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> bool:
        if self._cancelled:
            return False

        self._cancelled = True
        logger.info("cancellation requested", extra={"in_flight": len(self._abortables)})
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("cancellation listener failed")
        self.abort_all()
        return True

    def register_abortable(self, handle: Abortable) -> None:
        self._abortables.append(handle)

    def unregister_abortable(self, handle: Abortable) -> None:
        if handle in self._abortables:
            self._abortables.remove(handle)

    def abort_all(self) -> int:
        handles = list(self._abortables)
        self._abortables.clear()

        aborted = 0
        for handle in handles:
            try:
                handle.cancel()
                aborted += 1
            except Exception:
                logger.exception("failed to abort in-flight request")
        return aborted
