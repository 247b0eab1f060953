"""Storage backend capabilities consumed by the orchestrator."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from .types import CompletionToken


@runtime_checkable
class StorageBackend(Protocol):
    """Blocking multipart-upload backend.

    ``upload_part`` is called from worker threads, concurrently, and must be
    thread-safe. The other methods are only called from the controlling
    thread.
    """

    def initiate_upload(self, bucket: str, key: str) -> str: ...

    def upload_part(self, upload_id: str, index: int, data: bytes | memoryview) -> str: ...

    def complete_upload(self, upload_id: str, tokens: Sequence[CompletionToken]) -> Any: ...

    def abort_upload(self, upload_id: str) -> None: ...


@runtime_checkable
class AsyncStorageBackend(Protocol):
    async def initiate_upload(self, bucket: str, key: str) -> str: ...

    async def upload_part(self, upload_id: str, index: int, data: bytes | memoryview) -> str: ...

    async def complete_upload(self, upload_id: str, tokens: Sequence[CompletionToken]) -> Any: ...

    async def abort_upload(self, upload_id: str) -> None: ...


class BlockingBackend:
    """
    Present a blocking backend through the async interface.

    Methods are declared async but never await anything, so coroutines that
    only talk to this wrapper can be run with ``iter_coroutine``.
    """

    def __init__(self, backend: StorageBackend) -> None:
        self.backend = backend

    async def initiate_upload(self, bucket: str, key: str) -> str:
        return self.backend.initiate_upload(bucket, key)

    async def upload_part(self, upload_id: str, index: int, data: bytes | memoryview) -> str:
        return self.backend.upload_part(upload_id, index, data)

    async def complete_upload(self, upload_id: str, tokens: Sequence[CompletionToken]) -> Any:
        return self.backend.complete_upload(upload_id, tokens)

    async def abort_upload(self, upload_id: str) -> None:
        self.backend.abort_upload(upload_id)


__all__ = ["StorageBackend", "AsyncStorageBackend", "BlockingBackend"]
