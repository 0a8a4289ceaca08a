"""Reusable byte buffers for part reads."""

import threading
from typing import List


class BufferPool:
    """Thread-safe pool of ``bytearray`` buffers of one fixed size.

    ``acquire`` hands out an idle buffer when there is one and allocates a new
    one otherwise. Buffer contents are undefined on acquire. At most
    ``max_idle`` released buffers are kept around.
    """

    def __init__(self, size: int, max_idle: int = 32) -> None:
        if size < 0:
            raise ValueError(f"Buffer size must not be negative (got {size}).")
        self.size = size
        self.max_idle = max_idle
        self._idle: List[bytearray] = []
        self._lock = threading.Lock()
        self.allocated = 0

    def acquire(self) -> bytearray:
        with self._lock:
            if self._idle:
                return self._idle.pop()
            self.allocated += 1
        return bytearray(self.size)

    def release(self, buf: bytearray) -> None:
        # Foreign-sized buffers are dropped rather than pooled
        if len(buf) != self.size:
            return
        with self._lock:
            if len(self._idle) < self.max_idle:
                self._idle.append(buf)


class NoPoolAllocator:
    """Same interface as :class:`BufferPool`, but never reuses a buffer."""

    def __init__(self, size: int) -> None:
        self.size = size
        self.allocated = 0

    def acquire(self) -> bytearray:
        self.allocated += 1
        return bytearray(self.size)

    def release(self, buf: bytearray) -> None:
        pass
