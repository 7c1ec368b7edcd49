"""Deadline guard for pending results.

Every blocking wait in the harness returns a future produced here: it mirrors
the pending result if that settles first, otherwise it fails with
WaitTimeoutError once the deadline elapses.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .errors import WaitTimeoutError

T = TypeVar("T")


def settled(value: T) -> asyncio.Future[T]:
    """Return an already-resolved future (no timer is armed)."""
    fut: asyncio.Future[T] = asyncio.get_running_loop().create_future()
    fut.set_result(value)
    return fut


def add_timeout(
    target: Awaitable[T],
    message: str,
    timeout: float,
    *,
    on_timeout: Callable[[], Any] | None = None,
) -> asyncio.Future[T]:
    """Race `target` against a deadline of `timeout` seconds.

    `on_timeout` runs when the deadline wins (or the guarded future is
    cancelled by its consumer) so the caller can drop whatever registration
    would otherwise have settled `target`. The losing `target` is cancelled.
    """
    loop = asyncio.get_running_loop()
    inner = asyncio.ensure_future(target)
    guarded: asyncio.Future[T] = loop.create_future()
    # Built here so the traceback points at the caller that armed the wait.
    err = WaitTimeoutError(message)
    cleaned_up = False

    def _cleanup() -> None:
        nonlocal cleaned_up
        if cleaned_up:
            return
        cleaned_up = True
        if on_timeout is not None:
            on_timeout()
        if not inner.done():
            inner.cancel()

    def _expire() -> None:
        if guarded.done():
            return
        guarded.set_exception(err)
        _cleanup()

    timer = loop.call_later(max(0.0, float(timeout)), _expire)

    def _mirror(fut: asyncio.Future[T]) -> None:
        timer.cancel()
        if guarded.done():
            return
        if fut.cancelled():
            guarded.cancel()
            return
        exc = fut.exception()
        if exc is not None:
            guarded.set_exception(exc)
        else:
            guarded.set_result(fut.result())

    def _abandoned(fut: asyncio.Future[T]) -> None:
        if fut.cancelled():
            timer.cancel()
            _cleanup()

    inner.add_done_callback(_mirror)
    guarded.add_done_callback(_abandoned)
    return guarded


__all__ = ["add_timeout", "settled"]
