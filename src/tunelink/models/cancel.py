"""Cancellation token shared between the event loop and worker threads."""

import threading

from tunelink.exceptions import CancellationError

DEFAULT_REASON = "Conversion was cancelled"


class CancelToken:
    """One-shot cancellation flag that remembers why it was set.

    The first call to cancel() wins: later calls keep the original reason,
    so a user request is not reported as a shutdown or the other way round.
    A token is never reset; every conversion run gets a fresh one.
    """

    __slots__ = ("_event", "_lock", "_reason")

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None

    def cancel(self, reason: str = DEFAULT_REASON) -> bool:
        """Set the flag. Returns False if it was already set."""
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            return True

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError(self._reason or DEFAULT_REASON)
