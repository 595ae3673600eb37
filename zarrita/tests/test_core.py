import asyncio

import numpy as np
import pytest
from numcodecs import GZip, Zlib
from numpy.testing import assert_array_equal

from zarrita.config import runtime_configuration
from zarrita.hierarchy import create_hierarchy, create_hierarchy_async
from zarrita.storage import MemoryStore
from zarrita.sync import sync


class CountingStore(MemoryStore):
    """Memory store that records chunk reads and how many run at once."""

    def __init__(self):
        super().__init__()
        self.in_flight = 0
        self.max_in_flight = 0
        self.chunk_gets = []

    async def get(self, key):
        if key.startswith("data/"):
            self.chunk_gets.append(key)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            try:
                await asyncio.sleep(0.001)
                return await super().get(key)
            finally:
                self.in_flight -= 1
        return await super().get(key)


class FailingStore(MemoryStore):
    """Memory store whose chunk reads fail with an I/O error."""

    async def get(self, key):
        if key.startswith("data/"):
            raise OSError(f"cannot read {key}")
        return await super().get(key)


def test_write_single_item(store):
    h = create_hierarchy(store)
    a = h.create_array("/x", shape=10, dtype="u1", chunk_shape=3, fill_value=0)
    a[7] = 5
    assert_array_equal(np.array([0, 0, 0, 0, 0, 0, 0, 5, 0, 0], dtype="u1"), a[:])
    assert_array_equal([0, 0, 0, 0, 0, 0, 0, 5, 0, 0], a[...])

    # only the touched chunk has been written
    assert ["root/x/c2"] == sync(store.list_prefix("data/"))


def test_strided_write_touches_selected_chunks(store):
    h = create_hierarchy(store)
    a = h.create_array("/x", shape=10, dtype="u1", chunk_shape=2, fill_value=0)
    a[0:10:5] = 1
    assert ["root/x/c0", "root/x/c2"] == sync(store.list_prefix("data/"))
    assert_array_equal([1, 0, 0, 0, 0, 1, 0, 0, 0, 0], a[:])

    b = h.create_array("/y", shape=(6, 6), dtype="u1", chunk_shape=(2, 2), fill_value=0)
    b[1::4, ::5] = 7
    assert ["root/y/c0/0", "root/y/c0/2", "root/y/c2/0", "root/y/c2/2"] == \
        sorted(k for k in sync(store.list_prefix("data/")) if k.startswith("root/y/"))
    expect = np.zeros((6, 6), dtype="u1")
    expect[1::4, ::5] = 7
    assert_array_equal(expect, b[:])

    # a strided read only fetches the chunks holding selected items
    store = CountingStore()
    h = create_hierarchy(store)
    a = h.create_array("/x", shape=10, dtype="u1", chunk_shape=2, fill_value=0)
    a[0:10:5]
    assert ["data/root/x/c0", "data/root/x/c2"] == sorted(store.chunk_gets)


def test_unwritten_reads_fill_value(store):
    h = create_hierarchy(store)

    a = h.create_array("/i", shape=(5, 5), dtype="<i4", chunk_shape=(2, 2), fill_value=42)
    assert_array_equal(np.full((5, 5), 42, dtype="i4"), a[:])
    assert 42 == a[4, 4]

    a = h.create_array("/f", shape=(7,), dtype=">f8", chunk_shape=(3,), fill_value=np.nan)
    assert np.all(np.isnan(a[:]))

    a = h.create_array("/n", shape=(7,), dtype="<u2", chunk_shape=(3,))
    assert a.fill_value is None
    assert_array_equal(np.zeros(7, dtype="u2"), a[:])


@pytest.mark.parametrize("dtype", ["i1", "u1", "<i2", ">i4", "<u8", ">f2", "<f4", ">f8"])
@pytest.mark.parametrize("compressor", [None, GZip(level=1), Zlib(level=1)],
                         ids=["none", "gzip", "zlib"])
@pytest.mark.parametrize("separator", ["/", "."])
def test_read_write_2d(dtype, compressor, separator):
    h = create_hierarchy()
    a = h.create_array("/data/a", shape=(11, 7), dtype=dtype, chunk_shape=(4, 3),
                       compressor=compressor, fill_value=0, chunk_separator=separator)
    expect = np.zeros((11, 7), dtype=np.dtype(dtype).newbyteorder("="))

    # full write
    value = (np.arange(77).reshape(11, 7) % 100).astype(expect.dtype)
    a[:] = value
    expect[:] = value
    assert_array_equal(expect, a[:])

    # partial writes
    a[2:9, 1] = 3
    expect[2:9, 1] = 3
    a[0, :] = np.arange(7)
    expect[0, :] = np.arange(7)
    a[5:11:2, 2:6] = np.ones((3, 4))
    expect[5:11:2, 2:6] = 1
    assert_array_equal(expect, a[:])

    for selection, np_selection in [
        ((slice(None), slice(None)), Ellipsis),
        ((slice(1, 10), slice(2, 5)), (slice(1, 10), slice(2, 5))),
        ((slice(None, None, 3), slice(1, None, 2)), (slice(None, None, 3), slice(1, None, 2))),
        ((3, slice(None)), (3, slice(None))),
        ((slice(None), -1), (slice(None), -1)),
        ((slice(8, 2), slice(None)), (slice(8, 2), slice(None))),
        ((Ellipsis, 4), (Ellipsis, 4)),
        ((None, 2), (slice(None), 2)),
        (5, 5),
        ((5, 6), (5, 6)),
    ]:
        assert_array_equal(expect[np_selection], a[selection])

    chunk_key = "data/root/data/a/c0" + separator + "1"
    assert chunk_key in h.store._mutable_mapping


def test_scalar_selection():
    h = create_hierarchy()
    a = h.create_array("/a", shape=(4, 4), dtype="<f8", chunk_shape=(2, 2), fill_value=-1)
    a[1, 2] = 2.5
    v = a[1, 2]
    assert np.isscalar(v)
    assert 2.5 == v
    assert -1 == a[-1, -1]


def test_set_value_shape():
    h = create_hierarchy()
    a = h.create_array("/a", shape=(4, 4), dtype="<i4", chunk_shape=(2, 2), fill_value=0)
    with pytest.raises(ValueError):
        a[:2, :2] = np.ones((3, 3))
    with pytest.raises(ValueError):
        a[:] = np.ones((4,))
    with pytest.raises(ValueError):
        a[0] = [1, 2]

    # lists and 0-d arrays are fine
    a[0] = [1, 2, 3, 4]
    a[1] = np.array(7)
    assert_array_equal([[1, 2, 3, 4], [7, 7, 7, 7]], a[:2])

    # values are cast to the array type
    a[2] = np.array([1.9, 2.1, 3.5, 4.0])
    assert_array_equal([1, 2, 3, 4], a[2])


def test_selection_errors():
    h = create_hierarchy()
    a = h.create_array("/a", shape=(4, 4), dtype="<i4", chunk_shape=(2, 2))
    with pytest.raises(IndexError):
        a[0, 0, 0]
    with pytest.raises(IndexError):
        a[4]
    with pytest.raises(IndexError):
        a[::-1]
    with pytest.raises(IndexError):
        a[[0, 1]]
    with pytest.raises(IndexError):
        a[0.5]


def test_partial_chunk_write_preserves_data():
    h = create_hierarchy()
    a = h.create_array("/a", shape=(6,), dtype="<i2", chunk_shape=(6,), fill_value=9)
    a[1:3] = 1
    a[4] = 4
    assert_array_equal([9, 1, 1, 9, 4, 9], a[:])


def test_edge_chunks():
    h = create_hierarchy()
    a = h.create_array("/a", shape=(5,), dtype="u1", chunk_shape=(4,), fill_value=0)
    a[:] = np.arange(1, 6)
    assert_array_equal(np.arange(1, 6), a[:])
    # edge chunks are stored at full chunk size
    assert 4 == len(h.store._mutable_mapping["data/root/a/c1"])
    assert_array_equal([5, 0, 0, 0], a.get_chunk((1,)))


def test_stored_bytes():
    h = create_hierarchy()
    a = h.create_array("/a", shape=(2,), dtype=">u2", chunk_shape=(2,))
    a[:] = [1, 258]
    assert b"\x00\x01\x01\x02" == h.store._mutable_mapping["data/root/a/c0"]

    a = h.create_array("/b", shape=(2,), dtype="<u2", chunk_shape=(2,))
    a[:] = [1, 258]
    assert b"\x01\x00\x02\x01" == h.store._mutable_mapping["data/root/b/c0"]


def test_root_and_0d_arrays():
    h = create_hierarchy()
    a = h.create_array("/", shape=(4,), dtype="u1", chunk_shape=(2,), fill_value=0)
    a[3] = 1
    assert "data/root/c1" in h.store._mutable_mapping
    assert "meta/root.array.json" in h.store._mutable_mapping
    assert "" == a.name

    z = h.create_array("/z", shape=(), dtype="<f4", chunk_shape=(), fill_value=0)
    assert 0 == z[()]
    z[()] = 3.5
    assert 3.5 == z[()]
    assert 3.5 == z[...]
    assert "data/root/z/c" in h.store._mutable_mapping
    assert 1 == z.nchunks
    assert 1 == z.size
    assert 0 == z.ndim


def test_chunk_keys():
    h = create_hierarchy()
    a = h.create_array("/foo/bar", shape=(10, 10, 10), dtype="u1", chunk_shape=(5, 5, 5))
    assert "data/root/foo/bar/c0/1/0" == a._chunk_key((0, 1, 0))
    assert (0, 1, 0) == a.decode_chunk_key("data/root/foo/bar/c0/1/0")

    b = h.create_array("/dot", shape=(10, 10), dtype="u1", chunk_shape=(5, 5),
                       chunk_separator=".")
    assert "data/root/dot/c1.0" == b._chunk_key((1, 0))
    assert (1, 0) == b.decode_chunk_key("data/root/dot/c1.0")

    for key in ["data/root/dot/c1", "data/root/dot/c1/0", "data/root/foo/c1.0",
                "data/root/dot/cx.0"]:
        with pytest.raises(ValueError):
            b.decode_chunk_key(key)


def test_properties():
    h = create_hierarchy()
    a = h.create_array("/foo/bar", shape=(10, 11), dtype="<f4", chunk_shape=(3, 5),
                       compressor=GZip(level=2), fill_value=1.5, attrs={"answer": 42})
    assert "/foo/bar" == a.path
    assert "bar" == a.name
    assert (10, 11) == a.shape
    assert np.dtype("<f4") == a.dtype
    assert (3, 5) == a.chunk_shape
    assert "/" == a.chunk_separator
    assert GZip(level=2) == a.compressor
    assert 1.5 == a.fill_value
    assert "C" == a.order
    assert {"answer": 42} == a.attrs
    assert 2 == a.ndim
    assert 110 == a.size
    assert (11, 1) == a.strides
    assert (4, 3) == a.cdata_shape
    assert 12 == a.nchunks
    assert h is a.hierarchy
    assert h.store is a.store
    assert "<Array /foo/bar>" == repr(a)


def test_get_chunk():
    h = create_hierarchy()
    a = h.create_array("/a", shape=(4, 4), dtype="<i8", chunk_shape=(2, 2), fill_value=-1)
    assert_array_equal(np.full((2, 2), -1), a.get_chunk((1, 1)))
    a[2:, 2:] = np.array([[1, 2], [3, 4]])
    assert_array_equal([[1, 2], [3, 4]], a.get_chunk((1, 1)))
    with pytest.raises(IndexError):
        a.get_chunk((2, 0))
    with pytest.raises(IndexError):
        a.get_chunk((0,))


def test_chunk_read_failure_propagates():
    h = create_hierarchy(FailingStore())
    a = h.create_array("/a", shape=(4,), dtype="u1", chunk_shape=(2,))
    with pytest.raises(OSError):
        a[:]
    with pytest.raises(OSError):
        a[1] = 1
    with pytest.raises(OSError):
        a.get_chunk((0,))


def test_concurrency_limit():
    store = CountingStore()
    h = create_hierarchy(store, runtime_configuration=runtime_configuration(concurrency=2))
    a = h.create_array("/a", shape=(20,), dtype="u1", chunk_shape=(2,))
    a[:]
    assert 10 == len(store.chunk_gets)
    assert store.max_in_flight <= 2

    store = CountingStore()
    h = create_hierarchy(store, runtime_configuration=runtime_configuration(concurrency=None))
    a = h.create_array("/a", shape=(20,), dtype="u1", chunk_shape=(2,))
    a[:]
    assert 10 == len(store.chunk_gets)


@pytest.mark.asyncio
async def test_async_api():
    h = await create_hierarchy_async()
    a = await h.create_array_async("/a", shape=(6, 6), dtype="<i4", chunk_shape=(4, 4),
                                   fill_value=0)
    await a.set_async((slice(1, 5), slice(1, 5)), np.arange(16).reshape(4, 4))
    out = await a.get_async((slice(1, 5), slice(1, 5)))
    assert_array_equal(np.arange(16).reshape(4, 4), out)
    assert 5 == await a.get_async((2, 2))
    assert_array_equal([[0, 0], [0, 0]], (await a.get_chunk_async((1, 1)))[2:, 2:])
    assert_array_equal([[15, 0], [0, 0]], (await a.get_chunk_async((1, 1)))[:2, :2])

    b = await h.get_array_async("/a")
    assert_array_equal(out, (await b.get_async())[1:5, 1:5])
