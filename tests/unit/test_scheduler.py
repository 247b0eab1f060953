from __future__ import annotations

import time
from collections.abc import Iterator

import anyio
import pytest

from chunkload._internal.iter_coroutine import iter_coroutine
from chunkload.backends import AsyncInMemoryBackend, InMemoryBackend
from chunkload.errors import LocalIOError
from chunkload.planner import BufferPayload, PartPlanner
from chunkload.registry import CompletionRegistry
from chunkload.scheduler import AsyncUploadScheduler, UploadScheduler
from chunkload.types import Part, PartFailure, PartResult

ADMISSION_MODES = ["semaphore", "fifo"]


def _parts(data: bytes, part_size: int) -> PartPlanner:
    return PartPlanner(BufferPayload(data), part_size)


class TestUploadScheduler:
    @pytest.mark.parametrize("admission", ADMISSION_MODES)
    def test_uploads_every_part_within_window(self, admission, make_payload) -> None:
        backend = InMemoryBackend(latency=0.02)
        upload_id = backend.initiate_upload("bucket", "key")
        registry = CompletionRegistry()
        scheduler = UploadScheduler(backend, concurrency=3, admission=admission)

        failure = iter_coroutine(
            scheduler.run(_parts(make_payload(120), 10), upload_id, registry)
        )

        assert failure is None
        assert sorted(registry.indices()) == list(range(1, 13))
        assert scheduler.dispatched == 12
        assert scheduler.peak_in_flight <= 3
        assert backend.peak_in_flight <= 3
        assert backend.in_flight == 0

    def test_semaphore_window_fills_every_slot(self, make_payload) -> None:
        backend = InMemoryBackend(latency=0.05)
        upload_id = backend.initiate_upload("bucket", "key")
        scheduler = UploadScheduler(backend, concurrency=4, admission="semaphore")

        iter_coroutine(scheduler.run(_parts(make_payload(80), 10), upload_id, CompletionRegistry()))

        assert backend.peak_in_flight == 4

    @pytest.mark.parametrize(
        ("admission", "started_while_head_runs"),
        [("fifo", [1, 2]), ("semaphore", [1, 2, 3, 4, 5])],
    )
    def test_slow_head_part_stalls_only_fifo_admission(
        self, admission, started_while_head_runs, make_payload
    ) -> None:
        seen_while_head_runs: list[int] = []
        backend: InMemoryBackend

        def latency(index: int) -> float:
            if index == 1:
                time.sleep(0.3)
                seen_while_head_runs.extend(backend.started_parts)
            return 0.0

        backend = InMemoryBackend(latency=latency)
        upload_id = backend.initiate_upload("bucket", "key")
        scheduler = UploadScheduler(backend, concurrency=2, admission=admission)

        failure = iter_coroutine(
            scheduler.run(_parts(make_payload(50), 10), upload_id, CompletionRegistry())
        )

        assert failure is None
        assert sorted(seen_while_head_runs) == started_while_head_runs

    @pytest.mark.parametrize("failing_part_latency", [0.0, 0.3])
    def test_failure_stops_admission_and_joins_in_flight(
        self, failing_part_latency, make_payload
    ) -> None:
        backend = InMemoryBackend(
            fail_parts={2}, latency=lambda index: failing_part_latency if index == 2 else 0.0
        )
        upload_id = backend.initiate_upload("bucket", "key")
        registry = CompletionRegistry()
        scheduler = UploadScheduler(backend, concurrency=2)

        failure = iter_coroutine(scheduler.run(_parts(make_payload(100), 10), upload_id, registry))

        assert scheduler.admission == "fifo"
        assert isinstance(failure, PartFailure)
        assert failure.part_index == 2
        # At most one part beyond the failing one fits in a window of two.
        assert max(backend.started_parts) <= 3
        assert backend.in_flight == 0
        assert 2 not in registry.indices()

    def test_semaphore_failure_joins_in_flight(self, make_payload) -> None:
        backend = InMemoryBackend(fail_parts={2})
        upload_id = backend.initiate_upload("bucket", "key")
        scheduler = UploadScheduler(backend, concurrency=2, admission="semaphore")

        failure = iter_coroutine(
            scheduler.run(_parts(make_payload(100), 10), upload_id, CompletionRegistry())
        )

        assert failure is not None and failure.part_index == 2
        assert backend.in_flight == 0

    def test_result_callback_error_is_raised_after_draining(self, make_payload) -> None:
        backend = InMemoryBackend(latency=lambda index: 0.1 if index == 2 else 0.0)
        upload_id = backend.initiate_upload("bucket", "key")
        registry = CompletionRegistry()
        calls: list[int] = []

        def on_result(result: PartResult) -> None:
            calls.append(result.part_index)
            raise ValueError("callback broke")

        scheduler = UploadScheduler(backend, concurrency=2)
        with pytest.raises(ValueError, match="callback broke"):
            iter_coroutine(scheduler.run(_parts(make_payload(100), 10), upload_id, registry, on_result))

        assert len(calls) == 1
        assert backend.in_flight == 0
        assert max(backend.started_parts) <= 3
        assert sorted(registry.indices()) == sorted(set(backend.started_parts))

    def test_failure_waits_for_slow_siblings(self, make_payload) -> None:
        backend = InMemoryBackend(
            fail_parts={1}, latency=lambda index: {1: 0.05, 2: 0.2}.get(index, 0.0)
        )
        upload_id = backend.initiate_upload("bucket", "key")
        registry = CompletionRegistry()
        scheduler = UploadScheduler(backend, concurrency=2)

        failure = iter_coroutine(scheduler.run(_parts(make_payload(40), 10), upload_id, registry))

        assert failure is not None and failure.part_index == 1
        assert 2 in backend.uploads[upload_id].parts
        assert registry.indices() == [2]

    def test_payload_error_propagates_after_draining(self, make_payload) -> None:
        backend = InMemoryBackend(latency=0.1)
        upload_id = backend.initiate_upload("bucket", "key")
        registry = CompletionRegistry()
        data = make_payload(20)

        def broken_parts() -> Iterator[Part]:
            yield Part(index=1, offset=0, length=10, data=data[:10])
            yield Part(index=2, offset=10, length=10, data=data[10:])
            raise LocalIOError("disk went away")

        scheduler = UploadScheduler(backend, concurrency=4)
        with pytest.raises(LocalIOError, match="disk went away"):
            iter_coroutine(scheduler.run(broken_parts(), upload_id, registry))

        assert backend.in_flight == 0
        assert sorted(registry.indices()) == [1, 2]

    def test_on_result_sees_every_result(self, make_payload) -> None:
        backend = InMemoryBackend()
        upload_id = backend.initiate_upload("bucket", "key")
        seen: list[PartResult] = []
        scheduler = UploadScheduler(backend, concurrency=2)

        iter_coroutine(
            scheduler.run(_parts(make_payload(35), 10), upload_id, CompletionRegistry(), seen.append)
        )

        assert sorted(result.part_index for result in seen) == [1, 2, 3, 4]

    @pytest.mark.parametrize("kwargs", [{"concurrency": 0}, {"admission": "lifo"}])
    def test_rejects_bad_settings(self, kwargs) -> None:
        with pytest.raises(ValueError):
            UploadScheduler(InMemoryBackend(), **kwargs)


class TestAsyncUploadScheduler:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("admission", ADMISSION_MODES)
    async def test_uploads_every_part_within_window(self, admission, make_payload) -> None:
        backend = AsyncInMemoryBackend(latency=0.01)
        upload_id = await backend.initiate_upload("bucket", "key")
        registry = CompletionRegistry()
        scheduler = AsyncUploadScheduler(backend, concurrency=3, admission=admission)

        failure = await scheduler.run(_parts(make_payload(120), 10), upload_id, registry)

        assert failure is None
        assert sorted(registry.indices()) == list(range(1, 13))
        assert scheduler.peak_in_flight <= 3
        assert backend.peak_in_flight <= 3
        assert backend.in_flight == 0

    @pytest.mark.asyncio
    async def test_semaphore_window_fills_every_slot(self, make_payload) -> None:
        backend = AsyncInMemoryBackend(latency=0.05)
        upload_id = await backend.initiate_upload("bucket", "key")
        scheduler = AsyncUploadScheduler(backend, concurrency=4, admission="semaphore")

        await scheduler.run(_parts(make_payload(80), 10), upload_id, CompletionRegistry())

        assert backend.peak_in_flight == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("admission", "started_while_head_runs"),
        [("fifo", [1, 2]), ("semaphore", [1, 2, 3, 4, 5])],
    )
    async def test_slow_head_part_stalls_only_fifo_admission(
        self, admission, started_while_head_runs, make_payload
    ) -> None:
        seen_while_head_runs: list[int] = []

        class SlowHeadBackend(AsyncInMemoryBackend):
            async def upload_part(self, upload_id, index, data):
                if index == 1:
                    self._begin_part(upload_id, index)
                    await anyio.sleep(0.3)
                    seen_while_head_runs.extend(self.started_parts)
                    return self._finish_part(upload_id, index, data)
                return await super().upload_part(upload_id, index, data)

        backend = SlowHeadBackend()
        upload_id = await backend.initiate_upload("bucket", "key")
        scheduler = AsyncUploadScheduler(backend, concurrency=2, admission=admission)

        failure = await scheduler.run(_parts(make_payload(50), 10), upload_id, CompletionRegistry())

        assert failure is None
        assert sorted(seen_while_head_runs) == started_while_head_runs

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failing_part_latency", [0.0, 0.3])
    async def test_failure_stops_admission_and_joins_in_flight(
        self, failing_part_latency, make_payload
    ) -> None:
        backend = AsyncInMemoryBackend(
            fail_parts={2}, latency=lambda index: failing_part_latency if index == 2 else 0.0
        )
        upload_id = await backend.initiate_upload("bucket", "key")
        registry = CompletionRegistry()
        scheduler = AsyncUploadScheduler(backend, concurrency=2)

        failure = await scheduler.run(_parts(make_payload(100), 10), upload_id, registry)

        assert isinstance(failure, PartFailure)
        assert failure.part_index == 2
        assert max(backend.started_parts) <= 3
        assert backend.in_flight == 0

    @pytest.mark.asyncio
    async def test_semaphore_failure_joins_in_flight(self, make_payload) -> None:
        backend = AsyncInMemoryBackend(fail_parts={2})
        upload_id = await backend.initiate_upload("bucket", "key")
        scheduler = AsyncUploadScheduler(backend, concurrency=2, admission="semaphore")

        failure = await scheduler.run(_parts(make_payload(100), 10), upload_id, CompletionRegistry())

        assert failure is not None and failure.part_index == 2
        assert backend.in_flight == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("admission", ADMISSION_MODES)
    async def test_result_callback_error_is_raised_after_draining(
        self, admission, make_payload
    ) -> None:
        backend = AsyncInMemoryBackend(latency=lambda index: 0.1 if index == 2 else 0.01)
        upload_id = await backend.initiate_upload("bucket", "key")
        registry = CompletionRegistry()
        calls: list[int] = []

        async def on_result(result: PartResult) -> None:
            calls.append(result.part_index)
            raise ValueError("callback broke")

        scheduler = AsyncUploadScheduler(backend, concurrency=2, admission=admission)
        with pytest.raises(ValueError, match="callback broke"):
            await scheduler.run(_parts(make_payload(100), 10), upload_id, registry, on_result)

        assert len(calls) == 1
        assert backend.in_flight == 0
        assert scheduler.peak_in_flight <= 2
        assert sorted(registry.indices()) == sorted(set(backend.started_parts))

    @pytest.mark.asyncio
    async def test_failure_waits_for_slow_siblings_by_default(self, make_payload) -> None:
        backend = AsyncInMemoryBackend(
            fail_parts={1}, latency=lambda index: {1: 0.05, 2: 0.2}.get(index, 0.0)
        )
        upload_id = await backend.initiate_upload("bucket", "key")
        scheduler = AsyncUploadScheduler(backend, concurrency=2)

        failure = await scheduler.run(_parts(make_payload(40), 10), upload_id, CompletionRegistry())

        assert failure is not None and failure.part_index == 1
        assert 2 in backend.uploads[upload_id].parts

    @pytest.mark.asyncio
    async def test_cancel_on_failure_cancels_siblings(self, make_payload) -> None:
        backend = AsyncInMemoryBackend(
            fail_parts={1}, latency=lambda index: {1: 0.05, 2: 5.0}.get(index, 0.0)
        )
        upload_id = await backend.initiate_upload("bucket", "key")
        scheduler = AsyncUploadScheduler(backend, concurrency=2, cancel_on_failure=True)

        with anyio.fail_after(2):
            failure = await scheduler.run(
                _parts(make_payload(40), 10), upload_id, CompletionRegistry()
            )

        assert failure is not None and failure.part_index == 1
        assert 2 not in backend.uploads[upload_id].parts
        assert backend.in_flight == 0

    @pytest.mark.asyncio
    async def test_payload_error_propagates_after_draining(self, make_payload) -> None:
        backend = AsyncInMemoryBackend(latency=0.1)
        upload_id = await backend.initiate_upload("bucket", "key")
        registry = CompletionRegistry()
        data = make_payload(20)

        def broken_parts() -> Iterator[Part]:
            yield Part(index=1, offset=0, length=10, data=data[:10])
            yield Part(index=2, offset=10, length=10, data=data[10:])
            raise LocalIOError("disk went away")

        scheduler = AsyncUploadScheduler(backend, concurrency=4)
        with pytest.raises(LocalIOError, match="disk went away"):
            await scheduler.run(broken_parts(), upload_id, registry)

        assert backend.in_flight == 0
        assert sorted(registry.indices()) == [1, 2]

    @pytest.mark.asyncio
    async def test_awaits_async_result_callback(self, make_payload) -> None:
        backend = AsyncInMemoryBackend()
        upload_id = await backend.initiate_upload("bucket", "key")
        seen: list[int] = []

        async def on_result(result: PartResult) -> None:
            await anyio.sleep(0)
            seen.append(result.part_index)

        scheduler = AsyncUploadScheduler(backend, concurrency=2)
        await scheduler.run(_parts(make_payload(30), 10), upload_id, CompletionRegistry(), on_result)

        assert sorted(seen) == [1, 2, 3]
