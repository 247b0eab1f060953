"""In-process multipart backends.

They keep uploads in memory, record every call and enforce the same
completion contract as a real object store: parts must be listed once each,
in ascending order, with the etag returned when they were uploaded.
Failures and latency can be injected per part.
"""

from __future__ import annotations

import hashlib
import threading
import time
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import anyio

from ..errors import BackendError
from ..types import CompletionToken

Latency = float | Callable[[int], float]


@dataclass
class StoredObject:
    bucket: str
    key: str
    data: bytes
    etag: str
    parts: int


@dataclass
class _PendingUpload:
    bucket: str
    key: str
    parts: dict[int, tuple[str, bytes]] = field(default_factory=dict)


class _InMemoryState:
    def __init__(
        self,
        *,
        fail_parts: Iterable[int] = (),
        fail_initiate: bool = False,
        fail_complete: bool = False,
        fail_abort: bool = False,
        latency: Latency = 0.0,
    ) -> None:
        self.fail_parts = set(fail_parts)
        self.fail_initiate = fail_initiate
        self.fail_complete = fail_complete
        self.fail_abort = fail_abort
        self.latency = latency
        self.uploads: dict[str, _PendingUpload] = {}
        self.objects: dict[tuple[str, str], StoredObject] = {}
        self.aborted: list[str] = []
        self.calls: list[tuple[Any, ...]] = []
        self.started_parts: list[int] = []
        self.completed_orders: list[list[int]] = []
        self.in_flight = 0
        self.peak_in_flight = 0
        self._lock = threading.Lock()

    def calls_for(self, action: str) -> list[tuple[Any, ...]]:
        with self._lock:
            return [call for call in self.calls if call[0] == action]

    def _delay(self, index: int) -> float:
        if callable(self.latency):
            return float(self.latency(index))
        return float(self.latency)

    def _initiate(self, bucket: str, key: str) -> str:
        with self._lock:
            self.calls.append(("initiate", bucket, key))
            if self.fail_initiate:
                raise BackendError("initiate rejected", status_code=503, code="service_unavailable")
            upload_id = uuid.uuid4().hex
            self.uploads[upload_id] = _PendingUpload(bucket=bucket, key=key)
            return upload_id

    def _begin_part(self, upload_id: str, index: int) -> None:
        with self._lock:
            self.calls.append(("upload", upload_id, index))
            self.started_parts.append(index)
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)

    def _finish_part(self, upload_id: str, index: int, data: bytes | memoryview) -> str:
        with self._lock:
            self.in_flight -= 1
            if index in self.fail_parts:
                raise BackendError(f"part {index} rejected", status_code=500, code="internal_error")
            pending = self.uploads.get(upload_id)
            if pending is None:
                raise BackendError(f"no such upload {upload_id}", status_code=404, code="not_found")
            content = bytes(data)
            etag = f'"{hashlib.md5(content, usedforsecurity=False).hexdigest()}"'
            pending.parts[index] = (etag, content)
            return etag

    def _complete(self, upload_id: str, tokens: Sequence[CompletionToken]) -> dict[str, Any]:
        with self._lock:
            indices = [token.part_index for token in tokens]
            self.calls.append(("complete", upload_id, indices))
            self.completed_orders.append(indices)
            if self.fail_complete:
                raise BackendError("completion rejected", status_code=400, code="invalid_part")
            pending = self.uploads.get(upload_id)
            if pending is None:
                raise BackendError(f"no such upload {upload_id}", status_code=404, code="not_found")
            if any(a >= b for a, b in zip(indices, indices[1:])):
                raise BackendError(
                    "parts must be listed in ascending order", status_code=400, code="invalid_part_order"
                )
            chunks: list[bytes] = []
            for token in tokens:
                stored = pending.parts.get(token.part_index)
                if stored is None or stored[0] != token.etag:
                    raise BackendError(
                        f"part {token.part_index} does not match an uploaded part",
                        status_code=400,
                        code="invalid_part",
                    )
                chunks.append(stored[1])
            data = b"".join(chunks)
            etag = f'"{hashlib.md5(data, usedforsecurity=False).hexdigest()}-{len(tokens)}"'
            self.objects[(pending.bucket, pending.key)] = StoredObject(
                bucket=pending.bucket, key=pending.key, data=data, etag=etag, parts=len(tokens)
            )
            del self.uploads[upload_id]
            return {"bucket": pending.bucket, "key": pending.key, "etag": etag, "size": len(data)}

    def _abort(self, upload_id: str) -> None:
        with self._lock:
            self.calls.append(("abort", upload_id))
            if self.fail_abort:
                raise BackendError("abort rejected", status_code=503, code="service_unavailable")
            self.uploads.pop(upload_id, None)
            self.aborted.append(upload_id)


class InMemoryBackend(_InMemoryState):
    """Thread-safe blocking backend."""

    def initiate_upload(self, bucket: str, key: str) -> str:
        return self._initiate(bucket, key)

    def upload_part(self, upload_id: str, index: int, data: bytes | memoryview) -> str:
        self._begin_part(upload_id, index)
        try:
            delay = self._delay(index)
            if delay:
                time.sleep(delay)
        except BaseException:
            with self._lock:
                self.in_flight -= 1
            raise
        return self._finish_part(upload_id, index, data)

    def complete_upload(self, upload_id: str, tokens: Sequence[CompletionToken]) -> dict[str, Any]:
        return self._complete(upload_id, tokens)

    def abort_upload(self, upload_id: str) -> None:
        self._abort(upload_id)


class AsyncInMemoryBackend(_InMemoryState):
    async def initiate_upload(self, bucket: str, key: str) -> str:
        return self._initiate(bucket, key)

    async def upload_part(self, upload_id: str, index: int, data: bytes | memoryview) -> str:
        self._begin_part(upload_id, index)
        try:
            await anyio.sleep(self._delay(index))
        except BaseException:
            with self._lock:
                self.in_flight -= 1
            raise
        return self._finish_part(upload_id, index, data)

    async def complete_upload(
        self, upload_id: str, tokens: Sequence[CompletionToken]
    ) -> dict[str, Any]:
        return self._complete(upload_id, tokens)

    async def abort_upload(self, upload_id: str) -> None:
        self._abort(upload_id)


__all__ = ["InMemoryBackend", "AsyncInMemoryBackend", "StoredObject"]
