"""Local source file with positional reads that are safe across threads."""

from dataclasses import dataclass
from pathlib import Path
from typing import Union


@dataclass(frozen=True)
class SourceFile:
    path: Path
    size: int
    name: str
    extension: str

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "SourceFile":
        path = Path(path)
        return cls(
            path=path,
            size=path.stat().st_size,
            name=path.name,
            extension=path.suffix,
        )

    def read_into(self, buffer: bytearray, offset: int, length: int) -> int:
        """Read up to ``length`` bytes at ``offset`` into the front of ``buffer``.

        Each call uses its own handle, so concurrent readers never share a
        file cursor. Returns the number of bytes read, which is short only
        when end-of-file was reached first.
        """
        view = memoryview(buffer)[:length]
        total = 0
        with self.path.open("rb", buffering=0) as fh:
            fh.seek(offset)
            while total < length:
                n = fh.readinto(view[total:])
                if not n:
                    break
                total += n
        return total
