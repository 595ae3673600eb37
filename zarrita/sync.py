"""Blocking entry points onto the asynchronous API.

Coroutines are run on an event loop in another thread: the one named by
``RuntimeConfiguration.asyncio_loop`` if given, otherwise the IO loop fsspec
keeps in a daemon thread, which remote stores share.

"""
from __future__ import annotations

import asyncio
import inspect
from typing import Any, Coroutine, Optional

import fsspec.asyn


def get_loop() -> asyncio.AbstractEventLoop:
    """Return the default IO loop, starting it on first use."""
    return fsspec.asyn.get_loop()


async def _await(coro: Coroutine) -> Any:
    return await coro


def sync(coro: Coroutine, loop: Optional[asyncio.AbstractEventLoop] = None) -> Any:
    """Run `coro` on `loop` and block until it returns.

    Exceptions raised by the coroutine propagate to the caller.

    Raises
    ------
    NotImplementedError
        If called from a coroutine running on `loop` itself, which would
        deadlock.
    RuntimeError
        If `loop` has been closed.

    Examples
    --------
    >>> async def answer():
    ...     return 42
    >>> sync(answer())
    42

    """
    if loop is None:
        loop = get_loop()
    try:
        return fsspec.asyn.sync(loop, _await, coro)
    finally:
        if inspect.getcoroutinestate(coro) == inspect.CORO_CREATED:
            # never scheduled
            coro.close()
