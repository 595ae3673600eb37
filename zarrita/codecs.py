from __future__ import annotations

from typing import Dict, Optional

import numcodecs
import numpy as np
from attr import frozen
from numcodecs.abc import Codec
from numcodecs.compat import ensure_bytes

from zarrita.common import BytesLike, ChunkCoords, product, to_thread
from zarrita.errors import BadCompressorError
from zarrita.meta import CompressorMetadata
from zarrita.util import LITTLE_ENDIAN_OS

# See https://zarr.readthedocs.io/en/stable/tutorial.html#configuring-blosc
numcodecs.blosc.use_threads = False

CODEC_URI_PREFIX = "https://purl.org/zarr/spec/codec/"

# codec URI -> numcodecs codec id
_codec_registry: Dict[str, str] = {
    CODEC_URI_PREFIX + "gzip/1.0": "gzip",
    CODEC_URI_PREFIX + "zlib/1.0": "zlib",
    CODEC_URI_PREFIX + "blosc/1.0": "blosc",
    CODEC_URI_PREFIX + "bz2/1.0": "bz2",
    CODEC_URI_PREFIX + "lz4/1.0": "lz4",
    CODEC_URI_PREFIX + "lzma/1.0": "lzma",
    CODEC_URI_PREFIX + "zstd/1.0": "zstd",
}


def register_codec(uri: str, codec_id: str):
    """Make the numcodecs codec `codec_id` available under `uri`.

    Examples
    --------
    >>> register_codec("https://purl.org/zarr/spec/codec/lzma/1.0", "lzma")

    """
    _codec_registry[uri] = codec_id


def get_codec_uri(codec_id: str) -> str:
    for uri, registered_id in _codec_registry.items():
        if registered_id == codec_id:
            return uri
    raise NotImplementedError(f"no codec URI registered for {codec_id!r}")


def check_compressor(compressor) -> Codec:
    if not (callable(getattr(compressor, "encode", None))
            and callable(getattr(compressor, "decode", None))):
        raise BadCompressorError(compressor)
    # must be expressible in metadata
    get_codec_uri(getattr(compressor, "codec_id", None))
    return compressor


def encode_compressor_metadata(compressor: Optional[Codec]) -> Optional[CompressorMetadata]:
    if compressor is None:
        return None
    config = compressor.get_config()
    codec_id = config.pop("id")
    return CompressorMetadata(codec=get_codec_uri(codec_id), configuration=config)


def decode_compressor_metadata(meta: Optional[CompressorMetadata]) -> Optional[Codec]:
    if meta is None:
        return None
    try:
        codec_id = _codec_registry[meta.codec]
    except KeyError:
        raise NotImplementedError(f"{meta.codec!r} is not a supported codec")
    config = dict(meta.configuration)
    config["id"] = codec_id
    return numcodecs.get_codec(config)


def needs_byte_swap(dtype: np.dtype) -> bool:
    """True if items of `dtype` are stored in the opposite order to the host's."""
    if dtype.byteorder == "<":
        return not LITTLE_ENDIAN_OS
    elif dtype.byteorder == ">":
        return LITTLE_ENDIAN_OS
    return False


def byte_swap_inplace(a: np.ndarray) -> np.ndarray:
    """Reverse the bytes of every item of `a`, keeping its dtype."""
    a.byteswap(inplace=True)
    return a


@frozen
class ChunkCodec:
    """Turns one chunk between its stored bytes and an in-memory array.

    The stored form is ``compress(byte_swap(raw))``: items are laid out in C
    order with the byte order declared by `dtype`, then compressed if a
    compressor is configured. Decoded chunks always have the native byte
    order and the full `chunk_shape`.

    """

    dtype: np.dtype
    chunk_shape: ChunkCoords
    compressor: Optional[Codec] = None

    @property
    def native_dtype(self) -> np.dtype:
        return self.dtype.newbyteorder("=")

    async def decode_chunk(self, chunk_bytes: BytesLike) -> np.ndarray:
        if self.compressor is not None:
            chunk_bytes = await to_thread(self.compressor.decode, chunk_bytes)
        chunk_bytes = ensure_bytes(chunk_bytes)

        expected = product(self.chunk_shape) * self.dtype.itemsize
        if len(chunk_bytes) != expected:
            raise ValueError(
                f"chunk has {len(chunk_bytes)} bytes, expected {expected} for "
                f"chunk shape {self.chunk_shape} and dtype {self.dtype}"
            )

        # frombuffer gives a read-only view; swapping needs our own copy
        chunk_array = np.frombuffer(chunk_bytes, dtype=self.native_dtype).copy()
        if needs_byte_swap(self.dtype):
            byte_swap_inplace(chunk_array)
        return chunk_array.reshape(self.chunk_shape)

    async def encode_chunk(self, chunk_array: np.ndarray) -> bytes:
        chunk_array = np.ascontiguousarray(chunk_array, dtype=self.native_dtype)
        if chunk_array.shape != self.chunk_shape:
            chunk_array = chunk_array.reshape(self.chunk_shape)
        if needs_byte_swap(self.dtype):
            chunk_array = byte_swap_inplace(chunk_array.copy())
        chunk_bytes = chunk_array.tobytes()

        if self.compressor is not None:
            chunk_bytes = ensure_bytes(await to_thread(self.compressor.encode, chunk_bytes))
        return chunk_bytes
