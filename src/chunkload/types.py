from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

SessionState = Literal["idle", "initiated", "uploading", "completed", "failed", "aborted"]
Admission = Literal["semaphore", "fifo"]


@dataclass(frozen=True, slots=True)
class Part:
    index: int
    offset: int
    length: int
    data: bytes | memoryview = field(repr=False)


@dataclass(frozen=True, slots=True)
class CompletionToken:
    part_index: int
    etag: str


@dataclass(frozen=True, slots=True)
class PartSuccess:
    token: CompletionToken
    length: int

    @property
    def part_index(self) -> int:
        return self.token.part_index


@dataclass(frozen=True, slots=True)
class PartFailure:
    part_index: int
    error: BaseException


PartResult = PartSuccess | PartFailure


@dataclass(slots=True)
class UploadSession:
    bucket: str
    key: str
    session_id: str | None = None
    state: SessionState = "idle"


@dataclass(slots=True)
class UploadResult:
    session_id: str | None
    bucket: str
    key: str
    size: int
    parts: int
    tokens: list[CompletionToken]
    response: Any = None


@dataclass
class UploadProgressEvent:
    loaded: int
    total: int
    percentage: float


OnUploadProgressCallback = (
    Callable[[UploadProgressEvent], None] | Callable[[UploadProgressEvent], Awaitable[None]]
)


__all__ = [
    "SessionState",
    "Admission",
    "Part",
    "CompletionToken",
    "PartSuccess",
    "PartFailure",
    "PartResult",
    "UploadSession",
    "UploadResult",
    "UploadProgressEvent",
    "OnUploadProgressCallback",
]
