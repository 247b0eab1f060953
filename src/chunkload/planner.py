"""Splitting payloads into ordered, contiguous parts."""

from __future__ import annotations

import os
from collections.abc import Iterator
from typing import Any, BinaryIO

from .errors import LocalIOError
from .types import Part


def plan_parts(length: int, part_size: int) -> Iterator[tuple[int, int, int]]:
    """Yield ``(index, offset, length)`` for each part of a payload.

    Indices start at 1. Every part is ``part_size`` bytes except the last,
    which holds the remainder. A zero-length payload yields nothing.
    """
    if length < 0:
        raise ValueError("payload length must not be negative")
    if part_size <= 0:
        raise ValueError("part_size must be a positive number of bytes")
    index = 1
    offset = 0
    while offset < length:
        size = min(part_size, length - offset)
        yield index, offset, size
        index += 1
        offset += size


def count_parts(length: int, part_size: int) -> int:
    if part_size <= 0:
        raise ValueError("part_size must be a positive number of bytes")
    return -(-length // part_size)


class BufferPayload:
    """In-memory payload; parts are read-only views, never copies."""

    def __init__(self, data: bytes | bytearray | memoryview) -> None:
        view = memoryview(data)
        if view.ndim != 1 or view.itemsize != 1:
            view = view.cast("B")
        self._view = view.toreadonly()

    def __len__(self) -> int:
        return len(self._view)

    def read(self, offset: int, length: int) -> memoryview:
        return self._view[offset : offset + length]

    def close(self) -> None:
        pass


class FilePayload:
    """Payload backed by a local file, read one range at a time."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = os.fspath(path)
        try:
            self._file: BinaryIO | None = open(self.path, "rb")
            self._length = os.fstat(self._file.fileno()).st_size
        except OSError as e:
            raise LocalIOError(f"cannot open payload {self.path!r}", e) from e

    def __len__(self) -> int:
        return self._length

    def read(self, offset: int, length: int) -> bytes:
        if self._file is None:
            raise LocalIOError(f"payload {self.path!r} is closed")
        try:
            self._file.seek(offset)
            data = self._file.read(length)
        except OSError as e:
            raise LocalIOError(f"cannot read {length} bytes at {offset} from {self.path!r}", e) from e
        if len(data) != length:
            raise LocalIOError(
                f"short read from {self.path!r}: expected {length} bytes at {offset}, got {len(data)}"
            )
        return data

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


Payload = BufferPayload | FilePayload


def open_payload(source: Any) -> Payload:
    if isinstance(source, (BufferPayload, FilePayload)):
        return source
    if isinstance(source, (bytes, bytearray, memoryview)):
        return BufferPayload(source)
    if isinstance(source, (str, os.PathLike)):
        return FilePayload(source)
    raise TypeError(
        "payload must be bytes, bytearray, memoryview or a file path, "
        f"got {type(source).__name__}"
    )


class PartPlanner:
    """Single-pass iterator of :class:`Part` objects over a payload."""

    def __init__(self, payload: Payload, part_size: int) -> None:
        self.payload = payload
        self.part_size = part_size
        self.total = len(payload)
        self.count = count_parts(self.total, part_size)
        self._started = False

    def __iter__(self) -> Iterator[Part]:
        if self._started:
            raise RuntimeError("PartPlanner can only be iterated once")
        self._started = True
        return self._parts()

    def _parts(self) -> Iterator[Part]:
        for index, offset, length in plan_parts(self.total, self.part_size):
            yield Part(
                index=index,
                offset=offset,
                length=length,
                data=self.payload.read(offset, length),
            )


__all__ = [
    "plan_parts",
    "count_parts",
    "BufferPayload",
    "FilePayload",
    "Payload",
    "open_payload",
    "PartPlanner",
]
