"""Drive the session coroutine from blocking code."""

from __future__ import annotations

import typing

_T = typing.TypeVar("_T")


def iter_coroutine(coro: typing.Coroutine[None, None, _T]) -> _T:
    """
    Run an upload coroutine to completion in a single step.

    The blocking controller shares the async session lifecycle. It pairs it
    with a ``BlockingBackend`` and the thread pool scheduler, whose ``async
    def`` methods do their work before returning, so one ``send`` is enough.

    Args:
        coro: A coroutine built only on non-suspending awaitables.

    Returns:
        Whatever the coroutine returns, e.g. an ``UploadResult``.

    Raises:
        RuntimeError: If the coroutine yields to an event loop. The coroutine
            is closed first, so its ``finally`` blocks (payload cleanup
            included) still run.
    """
    try:
        coro.send(None)
    except StopIteration as ex:
        return ex.value  # type: ignore [no-any-return]
    else:
        raise RuntimeError(
            f"coroutine {coro!r} suspended; blocking uploads must not await real I/O"
        )
    finally:
        coro.close()


__all__ = ["iter_coroutine"]
