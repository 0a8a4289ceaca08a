"""
Split/compose upload pipeline.

A source file is planned into N contiguous partitions, every partition is
uploaded concurrently as its own part object, and the part objects are then
composed, in partition order, into one object named after the source file.

The first part failure cancels every sibling still running; compose only
happens when all N parts were uploaded.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from .buffers import BufferPool
from .cancellation import Cancellation
from .errors import (
    ComposeError,
    PartReadError,
    PartWriteError,
    UploadCancelled,
    UploadError,
)
from .planner import Partition, plan_partitions
from .source import SourceFile
from .store import ObjectHandle, guess_content_type, part_object_name

LOGGER_NAME = "split_compose"


# ---------------------------------------------------------------------------
# Part upload
# ---------------------------------------------------------------------------

class PartUploader:
    """Uploads one partition of ``source`` as one part object in ``bucket``."""

    def __init__(
        self,
        source: SourceFile,
        bucket,
        pool,
        cancellation: Cancellation,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.source = source
        self.bucket = bucket
        self.pool = pool
        self.cancellation = cancellation
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    def object_name(self, index: int) -> str:
        return part_object_name(self.source.name, index, self.source.extension)

    def _read_into(self, buf: bytearray, partition: Partition) -> int:
        if len(buf) < partition.length:
            raise ValueError(
                f"Buffer of {len(buf):,} bytes cannot hold part {partition.index} "
                f"({partition.length:,} bytes); the pool size does not match the plan."
            )
        try:
            n = self.source.read_into(buf, partition.offset, partition.length)
        except OSError as exc:
            raise PartReadError(
                f"cannot read {partition.length} bytes at offset {partition.offset} — {exc}",
                partition.index,
            ) from exc
        if n < partition.length:
            raise PartReadError(
                f"unexpected end of file at byte {partition.offset + n} "
                f"(partition ends at byte {partition.end})",
                partition.index,
            )
        return n

    def upload(self, partition: Partition, last: bool = False) -> ObjectHandle:
        index = partition.index
        self.cancellation.raise_if_cancelled(index)
        self.logger.debug(
            f"Part {index}: reading {partition.length:,} bytes at offset {partition.offset:,}"
        )
        # The last partition carries the remainder, so it never fits a pooled buffer
        buf = bytearray(partition.length) if last else self.pool.acquire()
        try:
            n = self._read_into(buf, partition)

            key = self.object_name(index)
            self.cancellation.raise_if_cancelled(index)
            try:
                with self.bucket.open_writer(key, self.cancellation) as writer:
                    writer.write(memoryview(buf)[:n])
            except UploadError as exc:
                if exc.part_index is None:
                    exc.part_index = index
                raise
            except Exception as exc:
                raise PartWriteError(f"cannot write '{key}' — {exc}", index) from exc
        finally:
            # The writer has copied out what it sends, so the buffer can go back
            if not last:
                self.pool.release(buf)

        self.logger.debug(f"Part {index}: committed '{key}'")
        return writer.handle


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------

class UploadCoordinator:
    """Runs one :class:`PartUploader` task per partition and joins them all.

    Handles come back indexed by partition, whatever order the tasks finish
    in. The first failure cancels the shared :class:`Cancellation` and every
    task that has not started yet; it is raised once all tasks are done.
    """

    def __init__(
        self,
        uploader: PartUploader,
        max_concurrency: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if max_concurrency is not None and max_concurrency < 0:
            raise ValueError(
                f"max_concurrency must be 0 (one thread per part) or more (got {max_concurrency})."
            )
        self.uploader = uploader
        self.max_concurrency = max_concurrency
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    def run(self, partitions: Sequence[Partition]) -> List[ObjectHandle]:
        total = len(partitions)
        results: List[Optional[ObjectHandle]] = [None] * total
        if total == 0:
            return []
        workers = min(total, self.max_concurrency or total)
        cancellation = self.uploader.cancellation
        failure: Optional[BaseException] = None

        total_bytes = sum(p.length for p in partitions)
        bytes_done = 0
        parts_done = 0
        t0 = time.monotonic()

        self.logger.info(f"Uploading {total} part(s) with {workers} thread(s)...")

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="part") as pool:
            futures = {
                pool.submit(self.uploader.upload, p, p.index == total - 1): p
                for p in partitions
            }
            for future in as_completed(futures):
                part = futures[future]
                if future.cancelled():
                    continue

                exc = future.exception()
                if exc is None:
                    results[part.index] = future.result()
                    parts_done += 1
                    bytes_done += part.length
                    elapsed = max(time.monotonic() - t0, 0.001)
                    speed_mb = (bytes_done / elapsed) / (1024 * 1024)
                    eta_s = (
                        (total_bytes - bytes_done) / (bytes_done / elapsed)
                        if bytes_done
                        else 0
                    )
                    self.logger.info(
                        f"[{parts_done / total * 100:5.1f}%] part {part.index} done  "
                        f"({parts_done}/{total})  speed={speed_mb:.1f} MB/s  "
                        f"eta={_fmt_seconds(eta_s)}"
                    )
                    continue

                # A real failure outranks cancellations caused by a deadline or interrupt
                if failure is None or (
                    isinstance(failure, UploadCancelled)
                    and not isinstance(exc, UploadCancelled)
                ):
                    if failure is None:
                        self.logger.error(
                            f"Part {part.index} failed — {exc}. Cancelling remaining parts."
                        )
                    failure = exc
                    cancellation.cancel(f"part {part.index} failed")
                    for f in futures:
                        f.cancel()
                elif isinstance(exc, UploadCancelled):
                    self.logger.debug(f"Part {part.index} stopped after cancellation.")
                else:
                    self.logger.warning(f"Part {part.index} also failed — {exc}")

        if failure is not None:
            raise failure
        return results


# ---------------------------------------------------------------------------
# Compose
# ---------------------------------------------------------------------------

class Composer:
    def __init__(self, bucket, logger: Optional[logging.Logger] = None) -> None:
        self.bucket = bucket
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    def compose(
        self,
        handles: Sequence[ObjectHandle],
        target_key: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> ObjectHandle:
        """Issue one compose request joining ``handles``, in order, into ``target_key``."""
        limit = self.bucket.max_compose_sources
        if len(handles) > limit:
            raise ComposeError(
                f"{len(handles)} parts exceed the compose limit of {limit}."
            )

        self.logger.info(f"All {len(handles)} part(s) uploaded — composing '{target_key}' ...")
        try:
            result = self.bucket.compose(
                target_key,
                handles,
                metadata=metadata,
                content_type=guess_content_type(target_key),
            )
        except Exception as exc:
            raise ComposeError(f"cannot compose '{target_key}' — {exc}") from exc

        self.logger.info(f"Composed '{target_key}' in '{result.bucket}' ({result.size:,} bytes).")
        return result


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def upload_and_compose(
    source: SourceFile,
    bucket,
    part_count: int,
    *,
    pool=None,
    max_concurrency: Optional[int] = None,
    timeout: Optional[float] = None,
    cancellation: Optional[Cancellation] = None,
    cleanup_on_failure: bool = False,
    logger: Optional[logging.Logger] = None,
) -> ObjectHandle:
    """Upload ``source`` as ``part_count`` parts and compose them into one object.

    The composed object is named ``source.name``. Part objects are left in
    place on success and, unless ``cleanup_on_failure`` is set, on failure
    too. Every run uploads all parts again; nothing is resumed.

    ``timeout`` only applies when no ``cancellation`` is passed in.

    Raises an :class:`UploadError` subclass whose ``phase`` tells which step
    failed.
    """
    logger = logger or logging.getLogger(LOGGER_NAME)
    partitions = plan_partitions(source.size, part_count, bucket.max_compose_sources)

    if pool is None:
        pool = BufferPool(partitions[0].length, max_idle=part_count)
    if cancellation is None:
        cancellation = Cancellation(timeout)

    logger.info(
        f"File  : {source.path}  ({source.size:,} bytes / {source.size / (1024**3):.3f} GiB)"
    )
    logger.info(
        f"Parts : {part_count}  |  Part size: {partitions[0].length:,} bytes "
        f"(last: {partitions[-1].length:,})"
    )
    logger.info(f"Target: {bucket.name}/{source.name}")

    uploader = PartUploader(source, bucket, pool, cancellation, logger)
    try:
        handles = UploadCoordinator(uploader, max_concurrency, logger).run(partitions)
        metadata = {
            "uploaded_by": "split_compose",
            "uploaded_at": datetime.now(timezone.utc).isoformat(),
            "original_filename": source.name,
            "file_size_bytes": str(source.size),
            "part_count": str(part_count),
        }
        return Composer(bucket, logger).compose(handles, source.name, metadata)
    except UploadError:
        if cleanup_on_failure:
            delete_parts(bucket, uploader, part_count, logger)
        raise


def delete_parts(bucket, uploader: PartUploader, part_count: int, logger: logging.Logger) -> None:
    """Best-effort removal of every part object a run may have left behind."""
    logger.warning(f"Deleting up to {part_count} part object(s) left by the failed run ...")
    for index in range(part_count):
        key = uploader.object_name(index)
        try:
            bucket.delete(ObjectHandle(bucket.name, key))
        except Exception as exc:
            logger.warning(f"Could not delete '{key}' — {exc}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fmt_seconds(s: float) -> str:
    if s <= 0:
        return "--:--"
    s = int(s)
    h, rem = divmod(s, 3600)
    m, sec = divmod(rem, 60)
    if h:
        return f"{h}h{m:02d}m{sec:02d}s"
    if m:
        return f"{m}m{sec:02d}s"
    return f"{sec}s"
