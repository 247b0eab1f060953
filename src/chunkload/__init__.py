from .backend import AsyncStorageBackend, StorageBackend
from .config import DEFAULT_CONCURRENCY, DEFAULT_PART_SIZE, HTTPConfig, UploadConfig
from .errors import (
    AbortError,
    BackendError,
    ChunkloadError,
    FinalizeError,
    InitiateError,
    LocalIOError,
    PartUploadError,
    SessionStateError,
)
from .finalizer import Finalizer, check_complete, order_tokens
from .planner import BufferPayload, FilePayload, PartPlanner, open_payload, plan_parts
from .registry import CompletionRegistry
from .scheduler import AsyncUploadScheduler, UploadScheduler
from .session import AsyncSessionController, SessionController, upload, upload_async
from .types import (
    CompletionToken,
    Part,
    PartFailure,
    PartResult,
    PartSuccess,
    UploadProgressEvent,
    UploadResult,
    UploadSession,
)

__version__ = "0.1.0"

__all__ = [
    # Entry points
    "upload",
    "upload_async",
    "SessionController",
    "AsyncSessionController",
    # Components
    "PartPlanner",
    "plan_parts",
    "open_payload",
    "BufferPayload",
    "FilePayload",
    "CompletionRegistry",
    "UploadScheduler",
    "AsyncUploadScheduler",
    "Finalizer",
    "order_tokens",
    "check_complete",
    # Backends
    "StorageBackend",
    "AsyncStorageBackend",
    # Configuration
    "UploadConfig",
    "HTTPConfig",
    "DEFAULT_PART_SIZE",
    "DEFAULT_CONCURRENCY",
    # Types
    "Part",
    "CompletionToken",
    "PartSuccess",
    "PartFailure",
    "PartResult",
    "UploadSession",
    "UploadResult",
    "UploadProgressEvent",
    # Errors
    "ChunkloadError",
    "InitiateError",
    "PartUploadError",
    "FinalizeError",
    "AbortError",
    "LocalIOError",
    "SessionStateError",
    "BackendError",
]
