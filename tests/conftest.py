"""Shared fixtures: an in-memory bucket standing in for an Azure container."""

import base64
import logging
import threading
import time
from collections import Counter

import pytest
from azure.core.exceptions import ServiceRequestError

from split_compose.store import ObjectHandle

VALID_KEY = base64.b64encode(bytes(range(64))).decode("ascii")
VALID_CONN_STR = (
    "DefaultEndpointsProtocol=https;AccountName=testaccount;"
    f"AccountKey={VALID_KEY};EndpointSuffix=core.windows.net"
)


class MemoryWriter:
    def __init__(self, bucket, key, cancellation):
        self.bucket = bucket
        self.key = key
        self.cancellation = cancellation
        self.data = bytearray()
        self.handle = None

    def write(self, data):
        bucket = self.bucket
        if self.key in bucket.fail_writes:
            raise ServiceRequestError(f"connection reset while writing {self.key}")
        delay = bucket.write_delays.get(self.key)
        if delay:
            time.sleep(delay)
        if bucket.hold_writes and self.cancellation is not None:
            deadline = time.monotonic() + 5
            while not self.cancellation.cancelled and time.monotonic() < deadline:
                time.sleep(0.01)
        if self.cancellation is not None:
            self.cancellation.raise_if_cancelled()
        self.data.extend(data)
        return len(data)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.handle = self.bucket._commit(self.key, bytes(self.data))
        else:
            self.bucket.aborted.append(self.key)


class MemoryBucket:
    def __init__(self, name="test-bucket", max_compose_sources=32):
        self.name = name
        self.max_compose_sources = max_compose_sources
        self.objects = {}
        self.commits = Counter()
        self.aborted = []
        self.compose_calls = []
        self.deleted = []
        self.fail_writes = set()
        self.write_delays = {}
        self.hold_writes = False
        self.fail_compose = False
        self._lock = threading.Lock()

    def _commit(self, key, data):
        with self._lock:
            self.objects[key] = data
            self.commits[key] += 1
        return ObjectHandle(self.name, key, len(data))

    def open_writer(self, key, cancellation=None):
        return MemoryWriter(self, key, cancellation)

    def compose(self, target_key, sources, metadata=None, content_type=None):
        sources = list(sources)
        self.compose_calls.append((target_key, sources, metadata, content_type))
        if self.fail_compose:
            raise ServiceRequestError("compose request timed out")
        data = b"".join(self.objects[s.key] for s in sources)
        return self._commit(target_key, data)

    def delete(self, handle):
        with self._lock:
            self.deleted.append(handle.key)
            self.objects.pop(handle.key, None)


@pytest.fixture
def bucket():
    return MemoryBucket()


@pytest.fixture
def make_file(tmp_path):
    def _make(content: bytes, name: str = "data.bin"):
        path = tmp_path / name
        path.write_bytes(content)
        return path

    return _make


@pytest.fixture
def azure_env(monkeypatch, tmp_path):
    """A valid configuration environment with no .env lookup."""
    monkeypatch.setattr("split_compose.config.load_dotenv", lambda: None)
    for name in (
        "CONTAINER_NAME",
        "NUM_OF_PARTS",
        "MAX_PARTS",
        "MAX_CONCURRENCY",
        "BLOCK_SIZE_MB",
        "SAS_EXPIRY_MINUTES",
        "CLEANUP_ON_FAILURE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AZURE_CONN_STR", VALID_CONN_STR)
    monkeypatch.setenv("LOG_PATH", str(tmp_path / "logs"))
    return monkeypatch


@pytest.fixture(autouse=True)
def _reset_logger():
    yield
    logger = logging.getLogger("split_compose")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


@pytest.fixture
def account_key():
    """The base64 account key inside the ``azure_env`` connection string."""
    return VALID_KEY
