from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

import numpy as np
from numcodecs.abc import Codec

from zarrita.codecs import ChunkCodec
from zarrita.common import BytesLike, ChunkCoords, Selection, concurrent_map, data_root, product
from zarrita.indexing import BasicIndexer, ceildiv, get_strides, is_total_slice
from zarrita.sync import sync

if TYPE_CHECKING:
    from zarrita.hierarchy import Hierarchy

logger = logging.getLogger(__name__)


class Node(object):
    """Base class for everything that lives at a path in a hierarchy.

    Parameters
    ----------
    hierarchy : Hierarchy
        The hierarchy the node belongs to.
    path : str
        Absolute, normalized path of the node.

    """

    def __init__(self, hierarchy: Hierarchy, path: str):
        self.hierarchy = hierarchy
        self.path = path

    @property
    def store(self):
        return self.hierarchy.store

    @property
    def name(self) -> str:
        """Last segment of the path, the empty string for the root."""
        return self.path.rsplit("/", 1)[-1]

    @property
    def _asyncio_loop(self):
        return self.hierarchy.runtime_configuration.asyncio_loop


class Array(Node):
    """A chunked N-dimensional array stored in a hierarchy.

    Arrays are not created directly; use :func:`Hierarchy.create_array` or
    :func:`Hierarchy.get_array`.

    Reading and writing take a basic selection: per dimension an integer, a
    slice with a positive step, ``None`` or ``Ellipsis``.

    Examples
    --------
    >>> import zarrita
    >>> h = zarrita.create_hierarchy()
    >>> a = h.create_array("/x", shape=10, dtype="u1", chunk_shape=3, fill_value=0)
    >>> a[7] = 5
    >>> a[:]
    array([0, 0, 0, 0, 0, 0, 0, 5, 0, 0], dtype=uint8)

    """

    def __init__(self, hierarchy: Hierarchy, path: str, shape: ChunkCoords,
                 dtype: np.dtype, chunk_shape: ChunkCoords, chunk_separator: str = "/",
                 compressor: Optional[Codec] = None, fill_value: Any = None,
                 attrs: Optional[Dict[str, Any]] = None):
        super().__init__(hierarchy, path)
        self.shape = tuple(shape)
        self.dtype = np.dtype(dtype)
        self.chunk_shape = tuple(chunk_shape)
        self.chunk_separator = chunk_separator
        self.compressor = compressor
        self.fill_value = fill_value
        self._attrs = dict(attrs) if attrs else dict()
        self.codec = ChunkCodec(dtype=self.dtype, chunk_shape=self.chunk_shape,
                                compressor=compressor)

    @property
    def order(self) -> str:
        return "C"

    @property
    def attrs(self) -> Dict[str, Any]:
        """User attributes stored in the array metadata document."""
        return self._attrs

    @property
    def ndim(self) -> int:
        return len(self.shape)

    @property
    def size(self) -> int:
        return product(self.shape)

    @property
    def strides(self) -> Tuple[int, ...]:
        """Element strides of the whole array in C order."""
        return get_strides(self.shape, self.order)

    @property
    def cdata_shape(self) -> ChunkCoords:
        """Number of chunks along each dimension."""
        return tuple(ceildiv(s, c) for s, c in zip(self.shape, self.chunk_shape))

    @property
    def nchunks(self) -> int:
        return product(self.cdata_shape)

    @property
    def _chunk_prefix(self) -> str:
        if self.path == "/":
            return data_root
        return data_root + self.path[1:] + "/"

    def _chunk_key(self, chunk_coords: ChunkCoords) -> str:
        return (self._chunk_prefix + "c"
                + self.chunk_separator.join(str(c) for c in chunk_coords))

    def decode_chunk_key(self, key: str) -> ChunkCoords:
        """Inverse of the chunk key derivation: chunk coordinates for `key`."""
        prefix = self._chunk_prefix + "c"
        if not key.startswith(prefix):
            raise ValueError(f"{key!r} is not a chunk key of array {self.path!r}")
        coords = key[len(prefix):]
        if self.ndim == 0:
            if coords:
                raise ValueError(f"{key!r} is not a chunk key of array {self.path!r}")
            return ()
        try:
            out = tuple(int(c) for c in coords.split(self.chunk_separator))
        except ValueError:
            raise ValueError(f"{key!r} is not a chunk key of array {self.path!r}")
        if len(out) != self.ndim:
            raise ValueError(f"{key!r} is not a chunk key of array {self.path!r}")
        return out

    def _fill_chunk(self) -> np.ndarray:
        chunk = np.zeros(self.chunk_shape, dtype=self.codec.native_dtype)
        if self.fill_value is not None:
            chunk.fill(self.fill_value)
        return chunk

    async def _load_chunk(self, chunk_key: str) -> Optional[np.ndarray]:
        try:
            chunk_bytes: BytesLike = await self.store.get(chunk_key)
        except KeyError:
            logger.debug("chunk %s not found, using fill value", chunk_key)
            return None
        logger.debug("decoding chunk %s", chunk_key)
        return await self.codec.decode_chunk(chunk_bytes)

    async def get_chunk_async(self, chunk_coords: ChunkCoords) -> np.ndarray:
        """Return the decoded chunk at `chunk_coords`, or a chunk of fill
        value if it has never been written."""
        chunk_coords = tuple(chunk_coords)
        if len(chunk_coords) != self.ndim or any(
            c < 0 or c >= n for c, n in zip(chunk_coords, self.cdata_shape)
        ):
            raise IndexError(f"chunk coordinates {chunk_coords} out of range for "
                             f"chunk grid {self.cdata_shape}")
        chunk = await self._load_chunk(self._chunk_key(chunk_coords))
        if chunk is None:
            chunk = self._fill_chunk()
        return chunk

    def get_chunk(self, chunk_coords: ChunkCoords) -> np.ndarray:
        return sync(self.get_chunk_async(chunk_coords), self._asyncio_loop)

    async def get_async(self, selection: Selection = Ellipsis):
        """Read the items in `selection`.

        Returns a numpy array of the selection's shape, or a scalar when every
        dimension is selected with an integer.
        """
        indexer = BasicIndexer(selection, shape=self.shape, chunk_shape=self.chunk_shape)

        # setup output array
        out = np.zeros(indexer.shape, dtype=self.codec.native_dtype)

        await concurrent_map(
            [
                (chunk_coords, chunk_selection, out_selection, out)
                for chunk_coords, chunk_selection, out_selection in indexer
            ],
            self._read_chunk,
            self.hierarchy.runtime_configuration.concurrency,
        )

        if out.shape:
            return out
        else:
            return out[()]

    async def _read_chunk(self, chunk_coords: ChunkCoords, chunk_selection: tuple,
                          out_selection: tuple, out: np.ndarray):
        chunk = await self._load_chunk(self._chunk_key(chunk_coords))
        if chunk is not None:
            out[out_selection] = chunk[chunk_selection]
        elif self.fill_value is not None:
            out[out_selection] = self.fill_value

    def __getitem__(self, selection: Selection):
        return sync(self.get_async(selection), self._asyncio_loop)

    async def set_async(self, selection: Selection, value: Any):
        """Write `value` into `selection`.

        `value` is either a scalar, broadcast to the whole selection, or an
        array-like with exactly the selection's shape.
        """
        indexer = BasicIndexer(selection, shape=self.shape, chunk_shape=self.chunk_shape)

        # check value shape
        if np.ndim(value) == 0:
            value = np.asarray(value).astype(self.codec.native_dtype)[()]
        else:
            value = np.asarray(value)
            if value.shape != indexer.shape:
                raise ValueError(f"value shape {value.shape} does not match selection "
                                 f"shape {indexer.shape}")
            value = value.astype(self.codec.native_dtype, copy=False)

        await concurrent_map(
            [
                (value, chunk_coords, chunk_selection, out_selection)
                for chunk_coords, chunk_selection, out_selection in indexer
            ],
            self._write_chunk,
            self.hierarchy.runtime_configuration.concurrency,
        )

    async def _write_chunk(self, value: Any, chunk_coords: ChunkCoords,
                           chunk_selection: tuple, out_selection: tuple):
        chunk_key = self._chunk_key(chunk_coords)

        if is_total_slice(chunk_selection, self.chunk_shape):
            # write entire chunk
            if isinstance(value, np.ndarray):
                chunk = value[out_selection]
            else:
                chunk = np.empty(self.chunk_shape, dtype=self.codec.native_dtype)
                chunk.fill(value)

        else:
            # read chunk first
            chunk = await self._load_chunk(chunk_key)
            if chunk is None:
                chunk = self._fill_chunk()

            # merge new value
            if isinstance(value, np.ndarray):
                chunk[chunk_selection] = value[out_selection]
            else:
                chunk[chunk_selection] = value

        logger.debug("storing chunk %s", chunk_key)
        await self.store.set(chunk_key, await self.codec.encode_chunk(chunk))

    def __setitem__(self, selection: Selection, value: Any):
        sync(self.set_async(selection, value), self._asyncio_loop)

    def __repr__(self) -> str:
        return f"<Array {self.path}>"
