"""Splits a file size into contiguous byte ranges, one per part object."""

from dataclasses import dataclass
from typing import List

from .errors import PlanningError

# Ceiling on the number of parts a single compose request may combine.
DEFAULT_MAX_PARTS = 32


@dataclass(frozen=True)
class Partition:
    index: int
    offset: int
    length: int

    @property
    def end(self) -> int:
        return self.offset + self.length


def plan_partitions(
    total_size: int, part_count: int, max_parts: int = DEFAULT_MAX_PARTS
) -> List[Partition]:
    """Return ``part_count`` ranges covering ``total_size`` bytes exactly once.

    Every range but the last is ``total_size // part_count`` bytes long; the
    last one also absorbs the remainder. Zero-length ranges are kept, so the
    plan always has ``part_count`` entries.
    """
    if total_size < 0:
        raise PlanningError(f"File size must not be negative (got {total_size}).")
    if part_count <= 0:
        raise PlanningError(f"Number of parts must be at least 1 (got {part_count}).")
    if part_count > max_parts:
        raise PlanningError(
            f"Number of parts {part_count} exceeds the compose limit of {max_parts}."
        )

    base, remainder = divmod(total_size, part_count)
    last = part_count - 1
    return [
        Partition(
            index=i,
            offset=i * base,
            length=base + remainder if i == last else base,
        )
        for i in range(part_count)
    ]
