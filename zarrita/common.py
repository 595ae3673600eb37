from __future__ import annotations

import asyncio
import contextvars
import functools
from typing import Any, Awaitable, Callable, List, Optional, Tuple, TypeVar, Union

ZARR_JSON = "zarr.json"

# v3 key prefixes
meta_root = "meta/root/"
data_root = "data/root/"

BytesLike = Union[bytes, bytearray, memoryview]
ChunkCoords = Tuple[int, ...]
SelectionItem = Union[int, slice, None, type(Ellipsis)]
Selection = Union[SelectionItem, Tuple[SelectionItem, ...]]


def product(tup: ChunkCoords) -> int:
    return functools.reduce(lambda x, y: x * y, tup, 1)


T = TypeVar("T", bound=Tuple)
V = TypeVar("V")


async def concurrent_map(
    items: List[T], func: Callable[..., Awaitable[V]], limit: Optional[int] = None
) -> List[V]:
    """Await ``func(*item)`` for every item, with at most `limit` in flight.

    The first exception raised by any call is re-raised once it occurs; the
    results of the other calls are discarded.
    """
    if limit is None:
        return await asyncio.gather(*[func(*item) for item in items])

    else:
        sem = asyncio.Semaphore(limit)

        async def run(item):
            async with sem:
                return await func(*item)

        return await asyncio.gather(*[asyncio.ensure_future(run(item)) for item in items])


async def to_thread(func: Callable[..., Any], /, *args, **kwargs) -> Any:
    loop = asyncio.get_running_loop()
    ctx = contextvars.copy_context()
    func_call = functools.partial(ctx.run, func, *args, **kwargs)
    return await loop.run_in_executor(None, func_call)
