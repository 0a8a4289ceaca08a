"""Upload a large file as parallel part objects and compose them into one."""

from .buffers import BufferPool, NoPoolAllocator
from .cancellation import Cancellation
from .errors import (
    ComposeError,
    PartReadError,
    PartWriteError,
    PlanningError,
    UploadCancelled,
    UploadError,
)
from .planner import Partition, plan_partitions
from .source import SourceFile
from .store import AzureBucket, ObjectHandle, part_object_name
from .uploader import Composer, PartUploader, UploadCoordinator, upload_and_compose

__all__ = [
    "AzureBucket",
    "BufferPool",
    "Cancellation",
    "ComposeError",
    "Composer",
    "NoPoolAllocator",
    "ObjectHandle",
    "PartReadError",
    "PartUploader",
    "PartWriteError",
    "Partition",
    "PlanningError",
    "SourceFile",
    "UploadCancelled",
    "UploadCoordinator",
    "UploadError",
    "part_object_name",
    "plan_partitions",
    "upload_and_compose",
]
