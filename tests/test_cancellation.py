"""Tests for the shared cancellation signal."""

import pytest

from split_compose.cancellation import Cancellation
from split_compose.errors import UploadCancelled


def test_not_cancelled_by_default() -> None:
    c = Cancellation()

    assert not c.cancelled
    c.raise_if_cancelled()


def test_cancel_is_sticky_and_keeps_first_reason() -> None:
    c = Cancellation()
    c.cancel("part 3 failed")
    c.cancel("interrupted")

    assert c.cancelled
    assert c.reason == "part 3 failed"


def test_raise_if_cancelled_carries_part_index() -> None:
    c = Cancellation()
    c.cancel("part 1 failed")

    with pytest.raises(UploadCancelled) as excinfo:
        c.raise_if_cancelled(4)
    assert excinfo.value.part_index == 4
    assert excinfo.value.phase == "upload"


def test_deadline_cancels() -> None:
    c = Cancellation(timeout=0)

    assert c.cancelled
    assert c.reason == "deadline exceeded"
