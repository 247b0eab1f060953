"""Bounded-concurrency dispatch of part uploads.

Both schedulers admit at most ``concurrency`` parts at a time and feed every
part's result to a single aggregator, which is the only writer to the
completion registry. A slot is freed once its result has been aggregated, so
admission always sees the latest failure state.

Admission modes:

``"fifo"`` (default)
    Outstanding parts form a queue and admission waits for the *oldest* one.
    A slow head part stalls admission while other slots sit idle, which also
    bounds how many parts can start after a failing one.
``"semaphore"``
    Any freed slot admits the next part.

On the first failed part no further parts are admitted, every part already
dispatched is joined, and the failure is returned to the caller. An exception
raised by the result callback stops admission the same way and is re-raised
once the dispatched parts have been joined.
"""

from __future__ import annotations

import inspect
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, as_completed, wait
from typing import Any, cast

import anyio

from .backend import AsyncStorageBackend, StorageBackend
from .config import DEFAULT_ADMISSION, DEFAULT_CONCURRENCY
from .registry import CompletionRegistry
from .types import Admission, CompletionToken, Part, PartFailure, PartResult, PartSuccess

logger = logging.getLogger(__name__)

ResultCallback = Callable[[PartResult], None]
AsyncResultCallback = Callable[[PartResult], None] | Callable[[PartResult], Awaitable[None]]


def _success(upload_id: str, part: Part, etag: str) -> PartSuccess:
    logger.debug("Uploaded part %d of %s (%d bytes)", part.index, upload_id, part.length)
    return PartSuccess(token=CompletionToken(part_index=part.index, etag=etag), length=part.length)


def _failure(upload_id: str, part: Part, error: Exception) -> PartFailure:
    logger.warning("Part %d of %s failed: %s", part.index, upload_id, error)
    return PartFailure(part_index=part.index, error=error)


class _SchedulerBase:
    def __init__(
        self,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        admission: Admission = DEFAULT_ADMISSION,
    ) -> None:
        if concurrency <= 0:
            raise ValueError("concurrency must be at least 1")
        if admission not in ("semaphore", "fifo"):
            raise ValueError(f"unknown admission mode {admission!r}")
        self.concurrency = concurrency
        self.admission = admission
        self.dispatched = 0
        self.peak_in_flight = 0
        self._in_flight = 0

    def _note_dispatch(self) -> None:
        self.dispatched += 1
        self._in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self._in_flight)

    def _note_joined(self) -> None:
        self._in_flight -= 1


class UploadScheduler(_SchedulerBase):
    """Thread pool scheduler for blocking backends.

    ``run`` is declared async but never suspends; the controlling thread
    blocks on the pool instead, which lets the session coroutine be driven
    with ``iter_coroutine``.
    """

    def __init__(
        self,
        backend: StorageBackend,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        admission: Admission = DEFAULT_ADMISSION,
    ) -> None:
        super().__init__(concurrency=concurrency, admission=admission)
        self._backend = backend

    def _upload_one(self, upload_id: str, part: Part) -> PartResult:
        try:
            etag = self._backend.upload_part(upload_id, part.index, part.data)
        except Exception as e:
            return _failure(upload_id, part, e)
        return _success(upload_id, part, etag)

    def _harvest(self, inflight: deque[Future[PartResult]]) -> list[Future[PartResult]]:
        done: list[Future[PartResult]] = []
        if self.admission == "fifo":
            while inflight and inflight[0].done():
                done.append(inflight.popleft())
            return done
        for future in list(inflight):
            if future.done():
                inflight.remove(future)
                done.append(future)
        return done

    def _wait_for_slot(self, inflight: deque[Future[PartResult]]) -> list[Future[PartResult]]:
        if self.admission == "fifo":
            oldest = inflight.popleft()
            wait([oldest])
            return [oldest]
        finished, _ = wait(inflight, return_when=FIRST_COMPLETED)
        done = [future for future in inflight if future in finished]
        for future in done:
            inflight.remove(future)
        return done

    async def run(
        self,
        parts: Iterable[Part],
        upload_id: str,
        registry: CompletionRegistry,
        on_result: ResultCallback | None = None,
    ) -> PartFailure | None:
        failure: PartFailure | None = None
        callback_error: Exception | None = None

        def collect(futures: list[Future[PartResult]]) -> None:
            nonlocal failure, callback_error
            for future in futures:
                result = future.result()
                self._note_joined()
                if isinstance(result, PartSuccess):
                    registry.add(result.token)
                elif failure is None:
                    failure = result
                if on_result is not None and callback_error is None:
                    try:
                        on_result(result)
                    except Exception as e:
                        logger.warning("Result callback for %s raised; stopping admission", upload_id)
                        callback_error = e

        def stopped() -> bool:
            return failure is not None or callback_error is not None

        inflight: deque[Future[PartResult]] = deque()
        with ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="chunkload-part"
        ) as executor:
            try:
                for part in parts:
                    collect(self._harvest(inflight))
                    if not stopped() and len(inflight) >= self.concurrency:
                        collect(self._wait_for_slot(inflight))
                    if stopped():
                        break
                    inflight.append(executor.submit(self._upload_one, upload_id, part))
                    self._note_dispatch()
            finally:
                # Join everything already dispatched, even when the payload
                # iterator itself raised.
                for future in as_completed(list(inflight)):
                    collect([future])
                inflight.clear()
        if callback_error is not None:
            raise callback_error
        return failure


class _AdmissionWindow:
    def __init__(self, size: int, admission: Admission) -> None:
        self._admission = admission
        self._size = size
        self._semaphore = anyio.Semaphore(size)
        self._queue: deque[anyio.Event] = deque()

    async def acquire(self) -> anyio.Event | None:
        if self._admission == "semaphore":
            await self._semaphore.acquire()
            return None
        if len(self._queue) >= self._size:
            await self._queue.popleft().wait()
        slot = anyio.Event()
        self._queue.append(slot)
        return slot

    def release(self, slot: anyio.Event | None) -> None:
        if slot is None:
            self._semaphore.release()
        else:
            slot.set()


class AsyncUploadScheduler(_SchedulerBase):
    """anyio scheduler: one task per part, one aggregating task.

    Part tasks send their result over a memory object stream to the
    aggregator. With ``cancel_on_failure`` the aggregator cancels in-flight
    siblings on the first failure instead of waiting for them.
    """

    def __init__(
        self,
        backend: AsyncStorageBackend,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        admission: Admission = DEFAULT_ADMISSION,
        cancel_on_failure: bool = False,
    ) -> None:
        super().__init__(concurrency=concurrency, admission=admission)
        self._backend = backend
        self.cancel_on_failure = cancel_on_failure

    async def _upload_one(self, upload_id: str, part: Part) -> PartResult:
        try:
            etag = await self._backend.upload_part(upload_id, part.index, part.data)
        except Exception as e:
            return _failure(upload_id, part, e)
        return _success(upload_id, part, etag)

    async def run(
        self,
        parts: Iterable[Part],
        upload_id: str,
        registry: CompletionRegistry,
        on_result: AsyncResultCallback | None = None,
    ) -> PartFailure | None:
        failure: PartFailure | None = None
        callback_error: Exception | None = None
        payload_error: Exception | None = None
        window = _AdmissionWindow(self.concurrency, self.admission)
        send_stream, receive_stream = anyio.create_memory_object_stream(self.concurrency)

        async def upload_task(part: Part, send: Any, slot: anyio.Event | None) -> None:
            async with send:
                try:
                    result = await self._upload_one(upload_id, part)
                    await send.send((result, slot))
                except anyio.get_cancelled_exc_class():
                    self._note_joined()
                    window.release(slot)
                    raise
                except anyio.BrokenResourceError:
                    # The aggregator is gone; the task group reports why.
                    self._note_joined()
                    window.release(slot)

        async def report(result: PartResult) -> None:
            nonlocal callback_error
            if on_result is None or callback_error is not None:
                return
            try:
                callback_result = on_result(result)
                if inspect.isawaitable(callback_result):
                    await cast(Awaitable[None], callback_result)
            except Exception as e:
                logger.warning("Result callback for %s raised; stopping admission", upload_id)
                callback_error = e

        async def aggregate() -> None:
            nonlocal failure
            async with receive_stream:
                async for result, slot in receive_stream:
                    try:
                        if isinstance(result, PartSuccess):
                            registry.add(result.token)
                        elif failure is None:
                            failure = result
                            if self.cancel_on_failure:
                                logger.info(
                                    "Cancelling in-flight parts of %s after part %d failed",
                                    upload_id,
                                    result.part_index,
                                )
                                task_group.cancel_scope.cancel()
                        await report(result)
                    finally:
                        self._note_joined()
                        window.release(slot)

        async with anyio.create_task_group() as task_group:
            task_group.start_soon(aggregate)
            async with send_stream:
                try:
                    for part in parts:
                        slot = await window.acquire()
                        if failure is not None or callback_error is not None:
                            window.release(slot)
                            break
                        task_group.start_soon(upload_task, part, send_stream.clone(), slot)
                        self._note_dispatch()
                except Exception as e:
                    # Raised after the task group has joined in-flight parts.
                    payload_error = e

        if payload_error is not None:
            raise payload_error
        if callback_error is not None:
            raise callback_error
        return failure


__all__ = ["UploadScheduler", "AsyncUploadScheduler"]
