"""Exception types raised by the split/compose pipeline.

Every failure carries the phase it happened in (``plan``, ``upload`` or
``compose``) and, for upload failures, the index of the partition involved.
"""

from typing import Optional


class UploadError(Exception):
    """Base class for every pipeline failure."""

    phase = "upload"

    def __init__(self, message: str, part_index: Optional[int] = None) -> None:
        super().__init__(message)
        self.part_index = part_index

    def __str__(self) -> str:
        msg = super().__str__()
        if self.part_index is not None:
            return f"[{self.phase}] part {self.part_index}: {msg}"
        return f"[{self.phase}] {msg}"


class PlanningError(UploadError, ValueError):
    phase = "plan"


class PartReadError(UploadError):
    pass


class PartWriteError(UploadError):
    pass


class UploadCancelled(UploadError):
    """Raised by a part task that observed the shared cancellation signal."""


class ComposeError(UploadError):
    phase = "compose"
