"""Azure Blob Storage access: part writers, server-side compose, deletes.

Part objects are written as block blobs: bytes are staged in blocks of
``block_size`` and committed when the writer is closed. Composing stages one
block per source blob with *Put Block From URL* and commits them, in order,
on the target blob.
"""

import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import PurePath
from typing import Dict, Iterable, List, Optional

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import (
    BlobBlock,
    BlobSasPermissions,
    BlobServiceClient,
    ContainerClient,
    ContentSettings,
    generate_blob_sas,
)

from .cancellation import Cancellation
from .planner import DEFAULT_MAX_PARTS

logger = logging.getLogger("split_compose")

DEFAULT_BLOCK_SIZE = 4 * 1024 * 1024


@dataclass(frozen=True)
class ObjectHandle:
    bucket: str
    key: str
    size: int = 0


def part_object_name(base_name: str, index: int, extension: str) -> str:
    """Name of the part object holding partition ``index``.

    The extension goes after the index (``data.bin-0..bin`` for
    ``data.bin``); existing part objects are named this way.
    """
    return f"{base_name}-{index}.{extension}"


def guess_content_type(name: str) -> str:
    suffix = PurePath(name).suffix.lower()
    return {
        ".csv": "text/csv",
        ".json": "application/json",
        ".parquet": "application/octet-stream",
        ".zip": "application/zip",
        ".gz": "application/gzip",
        ".tar": "application/x-tar",
        ".txt": "text/plain",
        ".tsv": "text/tab-separated-values",
    }.get(suffix, "application/octet-stream")


def _block_id(index: int) -> str:
    return base64.b64encode(index.to_bytes(8, byteorder="big")).decode("ascii")


class BlockWriter:
    """Streams bytes into one block blob.

    Use as a context manager: a clean exit commits the staged blocks and sets
    :attr:`handle`, an exception abandons them (nothing is committed, Azure
    garbage-collects uncommitted blocks).
    """

    def __init__(
        self,
        blob_client,
        bucket: str,
        key: str,
        block_size: int = DEFAULT_BLOCK_SIZE,
        cancellation: Optional[Cancellation] = None,
    ) -> None:
        self.blob_client = blob_client
        self.bucket = bucket
        self.key = key
        self.block_size = block_size
        self.cancellation = cancellation
        self.handle: Optional[ObjectHandle] = None
        self._blocks: List[BlobBlock] = []
        self._written = 0
        self._closed = False

    def write(self, data: bytes) -> int:
        if self._closed:
            raise ValueError(f"Writer for '{self.key}' is already closed.")
        view = memoryview(data)
        for start in range(0, len(view), self.block_size):
            if self.cancellation is not None:
                self.cancellation.raise_if_cancelled()
            chunk = view[start:start + self.block_size]
            block_id = _block_id(len(self._blocks))
            self.blob_client.stage_block(
                block_id=block_id, data=bytes(chunk), length=len(chunk)
            )
            self._blocks.append(BlobBlock(block_id))
            self._written += len(chunk)
        return len(view)

    def close(self) -> ObjectHandle:
        if self._closed:
            return self.handle
        self._closed = True
        self.blob_client.commit_block_list(self._blocks)
        self.handle = ObjectHandle(self.bucket, self.key, self._written)
        return self.handle

    def abort(self) -> None:
        if not self._closed:
            self._closed = True
            logger.debug(
                f"Abandoned '{self.key}' with {len(self._blocks)} uncommitted block(s)."
            )

    def __enter__(self) -> "BlockWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()


class AzureBucket:
    """An Azure container seen as a bucket of composable objects."""

    def __init__(
        self,
        container_client: ContainerClient,
        account_key: Optional[str] = None,
        block_size: int = DEFAULT_BLOCK_SIZE,
        max_compose_sources: int = DEFAULT_MAX_PARTS,
        sas_expiry: timedelta = timedelta(minutes=60),
    ) -> None:
        self.container_client = container_client
        self.account_key = account_key
        self.block_size = block_size
        self.max_compose_sources = max_compose_sources
        self.sas_expiry = sas_expiry

    @classmethod
    def from_config(cls, cfg, container_name: str) -> "AzureBucket":
        """Connect with ``cfg.conn_str``, creating the container if needed."""
        svc = BlobServiceClient.from_connection_string(
            cfg.conn_str,
            connection_timeout=30,
            read_timeout=120,
        )
        container_client = svc.get_container_client(container_name)
        try:
            container_client.create_container()
            logger.info(f"Created container '{container_name}'.")
        except ResourceExistsError:
            logger.debug(f"Container '{container_name}' already exists.")

        return cls(
            container_client,
            account_key=cfg.account_key,
            block_size=cfg.block_size,
            max_compose_sources=cfg.max_parts,
            sas_expiry=timedelta(minutes=cfg.sas_expiry_minutes),
        )

    @property
    def name(self) -> str:
        return self.container_client.container_name

    def open_writer(
        self, key: str, cancellation: Optional[Cancellation] = None
    ) -> BlockWriter:
        return BlockWriter(
            self.container_client.get_blob_client(key),
            self.name,
            key,
            block_size=self.block_size,
            cancellation=cancellation,
        )

    def _source_url(self, key: str) -> str:
        blob_client = self.container_client.get_blob_client(key)
        if not self.account_key:
            return blob_client.url
        sas = generate_blob_sas(
            account_name=self.container_client.account_name,
            container_name=self.name,
            blob_name=key,
            account_key=self.account_key,
            permission=BlobSasPermissions(read=True),
            expiry=datetime.now(timezone.utc) + self.sas_expiry,
        )
        return f"{blob_client.url}?{sas}"

    def compose(
        self,
        target_key: str,
        sources: Iterable[ObjectHandle],
        metadata: Optional[Dict[str, str]] = None,
        content_type: Optional[str] = None,
    ) -> ObjectHandle:
        """Concatenate ``sources``, in order, into ``target_key``.

        Empty sources contribute no block; composing only empty sources
        produces an empty object. Keeping ``sources`` within
        ``max_compose_sources`` is up to the caller.
        """
        sources = list(sources)
        target = self.container_client.get_blob_client(target_key)
        blocks: List[BlobBlock] = []
        for i, src in enumerate(sources):
            if src.size == 0:
                continue
            block_id = _block_id(i)
            target.stage_block_from_url(
                block_id=block_id, source_url=self._source_url(src.key)
            )
            blocks.append(BlobBlock(block_id))

        target.commit_block_list(
            blocks,
            metadata=metadata,
            content_settings=ContentSettings(
                content_type=content_type or guess_content_type(target_key)
            ),
        )
        return ObjectHandle(self.name, target_key, sum(s.size for s in sources))

    def delete(self, handle: ObjectHandle) -> None:
        try:
            self.container_client.delete_blob(handle.key)
        except ResourceNotFoundError:
            logger.debug(f"'{handle.key}' already gone.")
