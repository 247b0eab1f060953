from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from typing import Any

from .backend import AsyncStorageBackend
from .errors import FinalizeError
from .types import CompletionToken

logger = logging.getLogger(__name__)


def order_tokens(tokens: Iterable[CompletionToken]) -> list[CompletionToken]:
    ordered = list(tokens)
    ordered.sort(key=lambda token: int(token.part_index))
    return ordered


def check_complete(tokens: Iterable[CompletionToken], expected: int) -> None:
    """Raise ``FinalizeError`` unless tokens cover parts 1..expected exactly once."""
    counts = Counter(token.part_index for token in tokens)
    duplicates = sorted(index for index, seen in counts.items() if seen > 1)
    missing = [index for index in range(1, expected + 1) if index not in counts]
    unexpected = sorted(index for index in counts if not 1 <= index <= expected)
    if duplicates or missing or unexpected:
        details = []
        if missing:
            details.append(f"missing {missing}")
        if duplicates:
            details.append(f"duplicate {duplicates}")
        if unexpected:
            details.append(f"out of range {unexpected}")
        raise FinalizeError(f"cannot finalize {expected} parts: {', '.join(details)}")


class Finalizer:
    """Orders registered tokens and issues the single finalize request.

    The finalizer never aborts; cleaning up after a rejected finalize is the
    session controller's job.
    """

    def __init__(self, backend: AsyncStorageBackend) -> None:
        self._backend = backend

    async def finalize(
        self, upload_id: str, tokens: Iterable[CompletionToken], expected: int
    ) -> tuple[list[CompletionToken], Any]:
        ordered = order_tokens(tokens)
        check_complete(ordered, expected)
        logger.debug("Finalizing upload %s with %d parts", upload_id, len(ordered))
        try:
            response = await self._backend.complete_upload(upload_id, ordered)
        except FinalizeError:
            raise
        except Exception as e:
            raise FinalizeError(f"backend rejected completion of upload {upload_id}", e) from e
        return ordered, response


__all__ = ["order_tokens", "check_complete", "Finalizer"]
