import asyncio
import inspect

import fsspec.asyn
import pytest

from zarrita.common import concurrent_map, to_thread
from zarrita.config import RuntimeConfiguration, runtime_configuration
from zarrita.hierarchy import create_hierarchy
from zarrita.sync import get_loop, sync


async def _double(x):
    await asyncio.sleep(0)
    return 2 * x


async def _fail():
    raise KeyError("foo")


def test_sync():
    assert 4 == sync(_double(2))
    with pytest.raises(KeyError):
        sync(_fail())


def test_default_loop_is_shared_with_fsspec():
    loop = get_loop()
    assert loop is fsspec.asyn.get_loop()
    assert loop is get_loop()
    assert loop.is_running()
    assert 6 == sync(_double(3), loop)


def test_sync_closed_loop():
    loop = asyncio.new_event_loop()
    loop.close()
    coro = _double(2)
    with pytest.raises(RuntimeError):
        sync(coro, loop)
    # the rejected coroutine is closed rather than left un-awaited
    assert inspect.CORO_CLOSED == inspect.getcoroutinestate(coro)


@pytest.mark.asyncio
async def test_sync_from_inside_loop():
    loop = asyncio.get_running_loop()
    coro = _double(2)
    with pytest.raises(NotImplementedError):
        sync(coro, loop)
    assert inspect.CORO_CLOSED == inspect.getcoroutinestate(coro)

    # blocking calls using the IO loop work from inside another loop
    h = create_hierarchy(runtime_configuration=RuntimeConfiguration(asyncio_loop=None))
    assert not h.has("/")

    # but not when they are configured to use the running loop
    config = RuntimeConfiguration(asyncio_loop=loop)
    with pytest.raises(NotImplementedError):
        create_hierarchy(runtime_configuration=config)


@pytest.mark.asyncio
async def test_concurrent_map():
    assert [2, 4, 6] == await concurrent_map([(1,), (2,), (3,)], _double)
    assert [2, 4, 6] == await concurrent_map([(1,), (2,), (3,)], _double, limit=1)
    assert [] == await concurrent_map([], _double, limit=2)

    in_flight = 0
    max_in_flight = 0

    async def track(x):
        nonlocal in_flight, max_in_flight
        in_flight += 1
        max_in_flight = max(max_in_flight, in_flight)
        await asyncio.sleep(0.001)
        in_flight -= 1
        return x

    assert list(range(20)) == await concurrent_map([(i,) for i in range(20)], track, limit=3)
    assert max_in_flight <= 3


@pytest.mark.asyncio
async def test_concurrent_map_failure():

    async def maybe_fail(x):
        if x == 3:
            raise OSError("boom")
        return x

    with pytest.raises(OSError):
        await concurrent_map([(i,) for i in range(10)], maybe_fail, limit=2)


@pytest.mark.asyncio
async def test_to_thread():
    assert 6 == await to_thread(sum, [1, 2, 3])
    assert "a-b" == await to_thread("-".join, ["a", "b"])


def test_runtime_configuration(monkeypatch):
    monkeypatch.delenv("ZARRITA_CONCURRENCY", raising=False)
    assert 10 == RuntimeConfiguration().concurrency
    assert RuntimeConfiguration().asyncio_loop is None

    monkeypatch.setenv("ZARRITA_CONCURRENCY", "4")
    assert 4 == RuntimeConfiguration().concurrency

    monkeypatch.setenv("ZARRITA_CONCURRENCY", "none")
    assert RuntimeConfiguration().concurrency is None

    assert 2 == runtime_configuration(concurrency=2).concurrency
    assert runtime_configuration(concurrency=None).concurrency is None

    with pytest.raises(ValueError):
        RuntimeConfiguration(concurrency=0)
