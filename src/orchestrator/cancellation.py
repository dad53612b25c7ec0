"""Cooperative cancellation for pipeline runs."""

import threading
from typing import Optional

from .exceptions import StageCancelledError


class CancellationToken:
    """Thread-safe flag a run checks between and during stages.

    Setting it does not interrupt anything by itself; the executor
    notices it, releases the current environment and stops.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds; return True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self, stage_name: str) -> None:
        if self._event.is_set():
            raise StageCancelledError(stage_name, self._reason)
