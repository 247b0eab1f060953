from __future__ import annotations

import threading

from .types import CompletionToken


class CompletionRegistry:
    """Append-only collection of completion tokens guarded by one lock.

    Tokens are stored in arrival order. Duplicate or out-of-range indices are
    not rejected here; the finalizer checks completeness before finalizing.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: list[CompletionToken] = []

    def add(self, token: CompletionToken) -> None:
        with self._lock:
            self._tokens.append(token)

    def tokens(self) -> list[CompletionToken]:
        with self._lock:
            return list(self._tokens)

    def indices(self) -> list[int]:
        with self._lock:
            return [token.part_index for token in self._tokens]

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


__all__ = ["CompletionRegistry"]
