"""Upload and transport configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any, get_args

from .types import Admission

DEFAULT_PART_SIZE = 8 * 1024 * 1024  # 8MB
DEFAULT_CONCURRENCY = 6
DEFAULT_ADMISSION: Admission = "fifo"
DEFAULT_API_BASE_URL = "http://localhost:9000"
DEFAULT_TIMEOUT = 60.0

_TRUTHY = {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class UploadConfig:
    """Tuning knobs for one multipart upload session.

    ``abort_on_failure`` decides whether a failed session is aborted on the
    backend. It is off by default: the error surfaces immediately and the
    remote upload stays open until the caller aborts it.

    ``cancel_on_failure`` only applies to the async scheduler. Worker threads
    cannot be interrupted, so the blocking scheduler always waits for
    in-flight parts.
    """

    part_size: int = DEFAULT_PART_SIZE
    concurrency: int = DEFAULT_CONCURRENCY
    admission: Admission = DEFAULT_ADMISSION
    abort_on_failure: bool = False
    cancel_on_failure: bool = False

    def validate(self) -> UploadConfig:
        if int(self.part_size) <= 0:
            raise ValueError("part_size must be a positive number of bytes")
        if int(self.concurrency) <= 0:
            raise ValueError("concurrency must be at least 1")
        if self.admission not in get_args(Admission):
            raise ValueError(
                f"admission must be one of {', '.join(get_args(Admission))}, got {self.admission!r}"
            )
        return self

    def with_overrides(self, **overrides: Any) -> UploadConfig:
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values).validate()

    @classmethod
    def from_env(cls) -> UploadConfig:
        admission = os.getenv("CHUNKLOAD_ADMISSION") or DEFAULT_ADMISSION
        return cls(
            part_size=_env_int("CHUNKLOAD_PART_SIZE", DEFAULT_PART_SIZE),
            concurrency=_env_int("CHUNKLOAD_CONCURRENCY", DEFAULT_CONCURRENCY),
            admission=admission,  # type: ignore[arg-type]
            abort_on_failure=_env_flag("CHUNKLOAD_ABORT_ON_FAILURE", False),
            cancel_on_failure=_env_flag("CHUNKLOAD_CANCEL_ON_FAILURE", False),
        ).validate()


@dataclass
class HTTPConfig:
    """Configuration for requests against a multipart upload endpoint."""

    base_url: str = DEFAULT_API_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    token: str | None = None
    default_headers: dict[str, str] = field(default_factory=dict)

    def get_headers(self, bearer: str) -> dict[str, str]:
        return {
            "authorization": f"Bearer {bearer}",
            "accept": "application/json",
            **self.default_headers,
        }

    @classmethod
    def from_env(cls, token: str | None = None) -> HTTPConfig:
        base_url = os.getenv("CHUNKLOAD_API_URL") or DEFAULT_API_BASE_URL
        timeout = os.getenv("CHUNKLOAD_TIMEOUT")
        try:
            effective_timeout = float(timeout) if timeout is not None else DEFAULT_TIMEOUT
        except ValueError:
            effective_timeout = DEFAULT_TIMEOUT
        return cls(base_url=base_url, timeout=effective_timeout, token=token)


def require_token(token: str | None) -> str:
    """Resolve token from argument or environment, raising if not found."""
    resolved = token or os.getenv("CHUNKLOAD_TOKEN")
    if not resolved:
        raise RuntimeError("Missing upload API token. Pass token=... or set CHUNKLOAD_TOKEN.")
    return resolved


__all__ = [
    "DEFAULT_PART_SIZE",
    "DEFAULT_CONCURRENCY",
    "DEFAULT_API_BASE_URL",
    "DEFAULT_TIMEOUT",
    "UploadConfig",
    "HTTPConfig",
    "require_token",
]
