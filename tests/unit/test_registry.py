from __future__ import annotations

import threading

from chunkload.registry import CompletionRegistry
from chunkload.types import CompletionToken


def test_registry_keeps_arrival_order() -> None:
    registry = CompletionRegistry()
    for index in (3, 1, 2):
        registry.add(CompletionToken(part_index=index, etag=f"etag-{index}"))

    assert registry.indices() == [3, 1, 2]
    assert len(registry) == 3


def test_registry_does_not_deduplicate() -> None:
    registry = CompletionRegistry()
    registry.add(CompletionToken(part_index=1, etag="a"))
    registry.add(CompletionToken(part_index=1, etag="b"))

    assert [token.etag for token in registry.tokens()] == ["a", "b"]


def test_registry_tokens_returns_snapshot() -> None:
    registry = CompletionRegistry()
    registry.add(CompletionToken(part_index=1, etag="a"))

    snapshot = registry.tokens()
    registry.add(CompletionToken(part_index=2, etag="b"))

    assert len(snapshot) == 1
    assert len(registry) == 2


def test_registry_concurrent_writers() -> None:
    registry = CompletionRegistry()
    writers = 8
    per_writer = 500
    barrier = threading.Barrier(writers)

    def write(worker: int) -> None:
        barrier.wait()
        for i in range(per_writer):
            registry.add(CompletionToken(part_index=worker * per_writer + i + 1, etag="e"))

    threads = [threading.Thread(target=write, args=(n,)) for n in range(writers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(registry) == writers * per_writer
    assert sorted(registry.indices()) == list(range(1, writers * per_writer + 1))
