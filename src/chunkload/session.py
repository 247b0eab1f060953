"""Upload session lifecycle.

A controller owns exactly one remote multipart upload. Its state only moves
forward:

    idle -> initiated -> uploading -> completed
    idle | initiated | uploading -> failed -> aborted

An empty payload goes straight from idle to completed without contacting
the backend.

Failures are surfaced immediately. Whether the remote upload is aborted on
failure is decided by ``UploadConfig.abort_on_failure``; when it is off the
remote session stays open and ``abort()`` can be called explicitly.

The lifecycle is implemented once, as a coroutine. The blocking controller
drives it with ``iter_coroutine`` over a blocking backend and the thread pool
scheduler, neither of which ever suspends.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable
from typing import Any, cast

from ._internal.iter_coroutine import iter_coroutine
from .backend import AsyncStorageBackend, BlockingBackend, StorageBackend
from .config import UploadConfig
from .errors import (
    AbortError,
    ChunkloadError,
    FinalizeError,
    InitiateError,
    LocalIOError,
    PartUploadError,
    SessionStateError,
)
from .finalizer import Finalizer
from .planner import Payload, PartPlanner, open_payload
from .registry import CompletionRegistry
from .scheduler import AsyncUploadScheduler, UploadScheduler
from .types import (
    OnUploadProgressCallback,
    PartResult,
    PartSuccess,
    SessionState,
    UploadProgressEvent,
    UploadResult,
    UploadSession,
)

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    "idle": frozenset({"initiated", "completed", "failed"}),
    "initiated": frozenset({"uploading", "failed"}),
    "uploading": frozenset({"completed", "failed"}),
    "failed": frozenset({"aborted"}),
    "completed": frozenset(),
    "aborted": frozenset(),
}


def _progress_event(loaded: int, total: int) -> UploadProgressEvent:
    percentage = round((loaded / total) * 100, 2) if total else 100.0
    return UploadProgressEvent(loaded=loaded, total=total, percentage=percentage)


class _SessionCore:
    def __init__(
        self,
        *,
        backend: AsyncStorageBackend | BlockingBackend,
        scheduler: UploadScheduler | AsyncUploadScheduler,
        bucket: str,
        key: str,
        config: UploadConfig,
        on_upload_progress: OnUploadProgressCallback | None,
        await_progress_callback: bool,
    ) -> None:
        self.session = UploadSession(bucket=bucket, key=key)
        self.registry = CompletionRegistry()
        self.scheduler = scheduler
        self._backend = backend
        self._config = config
        self._finalizer = Finalizer(backend)
        self._on_upload_progress = on_upload_progress
        self._await_progress_callback = await_progress_callback
        self._total = 0
        self._loaded = 0
        self._started = False

    def _transition(self, target: SessionState) -> None:
        current = self.session.state
        if target not in _TRANSITIONS[current]:
            raise SessionStateError(current, target)
        logger.debug(
            "Session %s/%s: %s -> %s", self.session.bucket, self.session.key, current, target
        )
        self.session.state = target

    def _on_part_result(self, result: PartResult) -> Any:
        if not isinstance(result, PartSuccess):
            return None
        self._loaded += result.length
        if self._on_upload_progress is None:
            return None
        return self._on_upload_progress(_progress_event(self._loaded, self._total))

    async def _emit_final_progress(self) -> None:
        if self._on_upload_progress is None:
            return
        callback_result = self._on_upload_progress(_progress_event(self._total, self._total))
        if self._await_progress_callback and inspect.isawaitable(callback_result):
            await cast(Awaitable[None], callback_result)

    async def run(self, source: Any) -> UploadResult:
        # Claimed before the first await so concurrent calls cannot both initiate.
        if self._started:
            raise SessionStateError(self.session.state, "initiated")
        self._started = True
        try:
            payload = open_payload(source)
        except LocalIOError:
            self._transition("failed")
            raise
        try:
            return await self._run(payload)
        finally:
            payload.close()

    async def _run(self, payload: Payload) -> UploadResult:
        bucket, key = self.session.bucket, self.session.key
        planner = PartPlanner(payload, self._config.part_size)
        self._total = planner.total

        if planner.count == 0:
            logger.info("Empty payload for %s/%s; nothing to upload", bucket, key)
            self._transition("completed")
            await self._emit_final_progress()
            return UploadResult(
                session_id=None, bucket=bucket, key=key, size=0, parts=0, tokens=[]
            )

        try:
            upload_id = await self._backend.initiate_upload(bucket, key)
        except Exception as e:
            self._transition("failed")
            raise InitiateError(f"cannot start upload of {bucket}/{key}", e) from e
        self.session.session_id = upload_id
        self._transition("initiated")
        logger.info(
            "Initiated upload %s for %s/%s: %d bytes in %d parts (concurrency %d, %s admission)",
            upload_id,
            bucket,
            key,
            planner.total,
            planner.count,
            self._config.concurrency,
            self._config.admission,
        )

        self._transition("uploading")
        try:
            failure = await self.scheduler.run(
                planner, upload_id, self.registry, self._on_part_result
            )
        except Exception as e:
            await self._fail(e)
            raise
        if failure is not None:
            part_error = PartUploadError(failure.part_index, failure.error)
            await self._fail(part_error)
            raise part_error from failure.error

        try:
            ordered, response = await self._finalizer.finalize(
                upload_id, self.registry.tokens(), planner.count
            )
        except FinalizeError as e:
            await self._fail(e)
            raise

        self._transition("completed")
        logger.info("Completed upload %s for %s/%s", upload_id, bucket, key)
        await self._emit_final_progress()
        return UploadResult(
            session_id=upload_id,
            bucket=bucket,
            key=key,
            size=planner.total,
            parts=planner.count,
            tokens=ordered,
            response=response,
        )

    async def _fail(self, error: Exception) -> None:
        self._transition("failed")
        upload_id = self.session.session_id
        if not self._config.abort_on_failure:
            logger.warning(
                "Upload %s failed; remote session left open (abort_on_failure is off): %s",
                upload_id,
                error,
            )
            return
        try:
            await self.abort()
        except AbortError as abort_error:
            logger.warning("Could not abort upload %s after failure: %s", upload_id, abort_error)
            if isinstance(error, ChunkloadError):
                error.abort_error = abort_error

    async def abort(self) -> None:
        if self.session.state != "failed":
            raise SessionStateError(self.session.state, "aborted")
        upload_id = self.session.session_id
        if upload_id is None:
            # Nothing was created remotely.
            self._transition("aborted")
            return
        try:
            await self._backend.abort_upload(upload_id)
        except Exception as e:
            raise AbortError(f"cannot abort upload {upload_id}", e) from e
        self._transition("aborted")
        logger.info("Aborted upload %s", upload_id)


class _ControllerBase:
    _core: _SessionCore

    @property
    def session(self) -> UploadSession:
        return self._core.session

    @property
    def state(self) -> SessionState:
        return self._core.session.state

    @property
    def registry(self) -> CompletionRegistry:
        return self._core.registry

    @property
    def scheduler(self) -> UploadScheduler | AsyncUploadScheduler:
        return self._core.scheduler


class SessionController(_ControllerBase):
    """Runs one multipart upload against a blocking backend.

    Parts are uploaded from a thread pool; everything else happens on the
    calling thread.
    """

    def __init__(
        self,
        backend: StorageBackend,
        bucket: str,
        key: str,
        *,
        config: UploadConfig | None = None,
        on_upload_progress: OnUploadProgressCallback | None = None,
    ) -> None:
        effective = (config or UploadConfig()).validate()
        scheduler = UploadScheduler(
            backend, concurrency=effective.concurrency, admission=effective.admission
        )
        self._core = _SessionCore(
            backend=BlockingBackend(backend),
            scheduler=scheduler,
            bucket=bucket,
            key=key,
            config=effective,
            on_upload_progress=on_upload_progress,
            await_progress_callback=False,
        )

    def upload(self, payload: Any) -> UploadResult:
        return iter_coroutine(self._core.run(payload))

    def abort(self) -> None:
        iter_coroutine(self._core.abort())


class AsyncSessionController(_ControllerBase):
    def __init__(
        self,
        backend: AsyncStorageBackend,
        bucket: str,
        key: str,
        *,
        config: UploadConfig | None = None,
        on_upload_progress: OnUploadProgressCallback | None = None,
    ) -> None:
        effective = (config or UploadConfig()).validate()
        scheduler = AsyncUploadScheduler(
            backend,
            concurrency=effective.concurrency,
            admission=effective.admission,
            cancel_on_failure=effective.cancel_on_failure,
        )
        self._core = _SessionCore(
            backend=backend,
            scheduler=scheduler,
            bucket=bucket,
            key=key,
            config=effective,
            on_upload_progress=on_upload_progress,
            await_progress_callback=True,
        )

    async def upload(self, payload: Any) -> UploadResult:
        return await self._core.run(payload)

    async def abort(self) -> None:
        await self._core.abort()


def upload(
    backend: StorageBackend,
    bucket: str,
    key: str,
    payload: Any,
    *,
    config: UploadConfig | None = None,
    on_upload_progress: OnUploadProgressCallback | None = None,
    **overrides: Any,
) -> UploadResult:
    """Upload ``payload`` (bytes-like or file path) to ``bucket/key`` in parts.

    Keyword overrides (``part_size``, ``concurrency``, ``admission``,
    ``abort_on_failure``) are applied on top of ``config``.
    """
    effective = (config or UploadConfig()).with_overrides(**overrides)
    controller = SessionController(
        backend, bucket, key, config=effective, on_upload_progress=on_upload_progress
    )
    return controller.upload(payload)


async def upload_async(
    backend: AsyncStorageBackend,
    bucket: str,
    key: str,
    payload: Any,
    *,
    config: UploadConfig | None = None,
    on_upload_progress: OnUploadProgressCallback | None = None,
    **overrides: Any,
) -> UploadResult:
    effective = (config or UploadConfig()).with_overrides(**overrides)
    controller = AsyncSessionController(
        backend, bucket, key, config=effective, on_upload_progress=on_upload_progress
    )
    return await controller.upload(payload)


__all__ = [
    "SessionController",
    "AsyncSessionController",
    "upload",
    "upload_async",
]
