from __future__ import annotations

import os
from asyncio import AbstractEventLoop
from typing import Optional

from attr import field, frozen


def _default_concurrency() -> Optional[int]:
    value = os.environ.get("ZARRITA_CONCURRENCY", "10").strip().lower()
    if value in ("", "none", "0"):
        return None
    return int(value)


@frozen
class RuntimeConfiguration:
    """Settings that affect how, not what, an array is read or written.

    Parameters
    ----------
    concurrency : int, optional
        Maximum number of chunk tasks in flight for one read or write. ``None``
        removes the bound. Defaults to the ``ZARRITA_CONCURRENCY`` environment
        variable, or 10.
    asyncio_loop : asyncio.AbstractEventLoop, optional
        Loop that the blocking API submits coroutines to. When not given, the
        IO loop fsspec runs in a daemon thread is used.

    """

    concurrency: Optional[int] = field(factory=_default_concurrency)
    asyncio_loop: Optional[AbstractEventLoop] = None

    @concurrency.validator
    def _check_concurrency(self, attribute, value):
        if value is not None and value < 1:
            raise ValueError(f"concurrency must be a positive integer or None, got {value!r}")


def runtime_configuration(
    concurrency: Optional[int] = 10, asyncio_loop: Optional[AbstractEventLoop] = None
) -> RuntimeConfiguration:
    return RuntimeConfiguration(concurrency=concurrency, asyncio_loop=asyncio_loop)
