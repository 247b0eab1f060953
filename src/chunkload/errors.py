from __future__ import annotations


class ChunkloadError(Exception):
    def __init__(self, message: str, cause: BaseException | None = None):
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(f"chunkload: {message}")
        self.cause = cause
        self.abort_error: AbortError | None = None


class InitiateError(ChunkloadError):
    """The backend refused to start a multipart upload session."""


class PartUploadError(ChunkloadError):
    """A single part failed; the whole session fails with it."""

    def __init__(self, part_index: int, cause: BaseException | None = None):
        super().__init__(f"part {part_index} failed to upload", cause)
        self.part_index = part_index


class FinalizeError(ChunkloadError):
    """The backend rejected the completion request."""


class AbortError(ChunkloadError):
    pass


class LocalIOError(ChunkloadError):
    """The payload could not be read from local storage."""


class SessionStateError(ChunkloadError):
    def __init__(self, current: str, target: str):
        super().__init__(f"cannot move session from {current!r} to {target!r}")
        self.current = current
        self.target = target


class BackendError(ChunkloadError):
    """Non-successful response from a storage endpoint."""

    def __init__(self, message: str, *, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


__all__ = [
    "ChunkloadError",
    "InitiateError",
    "PartUploadError",
    "FinalizeError",
    "AbortError",
    "LocalIOError",
    "SessionStateError",
    "BackendError",
]
