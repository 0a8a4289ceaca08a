"""Cooperative stop signal shared by all part uploads of one run."""

import threading
import time
from typing import Optional

from .errors import UploadCancelled


class Cancellation:
    """A ``threading.Event`` with an optional deadline.

    Once cancelled (explicitly or by passing the deadline) it stays cancelled.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("deadline exceeded")
            return True
        return False

    def raise_if_cancelled(self, part_index: Optional[int] = None) -> None:
        if self.cancelled:
            raise UploadCancelled(self.reason or "cancelled", part_index)
