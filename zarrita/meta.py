"""Metadata documents: the hierarchy entry point, arrays and groups.

Documents are JSON objects. They are structured into frozen attrs classes on
the way in and unstructured back to plain dicts on the way out; checks that
depend on what this library can handle (protocol version, chunk grid type,
memory layout, mandatory extensions, data types) raise ``NotImplementedError``
while malformed documents raise ``MetadataError`` or ``ValueError``.

"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np
from attr import asdict, field, frozen
from cattrs import Converter

from zarrita.errors import MetadataError
from zarrita.util import json_dumps, json_loads

ZARR_FORMAT_URI = "https://purl.org/zarr/spec/protocol/core/3.0"
PROTOCOL_URI = "https://purl.org/zarr/spec/protocol/core"
PROTOCOL_MAJOR_VERSION = "3"
METADATA_ENCODING_URI = "https://purl.org/zarr/spec/protocol/core/3.0"
DEFAULT_METADATA_KEY_SUFFIX = ".json"

_dtype_re = re.compile(r"^(?P<order>[<>|]?)(?P<kind>[iuf])(?P<width>\d+)$")
_dtype_widths = {
    "i": {1, 2, 4, 8},
    "u": {1, 2, 4, 8},
    "f": {2, 4, 8},
}

_converter = Converter()


@frozen
class EntryPointMetadata:
    zarr_format: str = ZARR_FORMAT_URI
    metadata_encoding: str = METADATA_ENCODING_URI
    metadata_key_suffix: str = DEFAULT_METADATA_KEY_SUFFIX
    extensions: List[Dict[str, Any]] = field(factory=list)


@frozen
class ChunkGridMetadata:
    chunk_shape: Tuple[int, ...]
    separator: str = "/"
    type: str = "regular"


@frozen
class CompressorMetadata:
    codec: str
    configuration: Dict[str, Any] = field(factory=dict)


@frozen
class ArrayMetadata:
    shape: Tuple[int, ...]
    data_type: str
    chunk_grid: ChunkGridMetadata
    chunk_memory_layout: str = "C"
    fill_value: Any = None
    compressor: Optional[CompressorMetadata] = None
    extensions: List[Dict[str, Any]] = field(factory=list)
    attributes: Dict[str, Any] = field(factory=dict)


@frozen
class GroupMetadata:
    attributes: Dict[str, Any] = field(factory=dict)
    extensions: List[Dict[str, Any]] = field(factory=list)


def parse_metadata(s: Union[Mapping, bytes, str]) -> Mapping[str, Any]:
    # Allow a store to hand back an already-parsed document.
    if isinstance(s, Mapping):
        return s
    try:
        meta = json_loads(s)
    except ValueError as e:
        raise MetadataError(f"error decoding metadata: {e}") from e
    if not isinstance(meta, Mapping):
        raise MetadataError(f"metadata document must be a JSON object, got {type(meta)!r}")
    return meta


def _structure(meta: Mapping[str, Any], cls):
    try:
        return _converter.structure(dict(meta), cls)
    except Exception as e:
        raise MetadataError(f"error decoding metadata: {e}") from e


def check_extensions(extensions: List[Mapping[str, Any]]):
    """Fail on any extension that must be understood; ignore the rest."""
    for ext in extensions:
        if ext.get("must_understand", False):
            raise NotImplementedError(f"unsupported mandatory extension: {ext!r}")


def decode_dtype(d) -> np.dtype:
    """Turn a ``data_type`` token such as ``"<f8"`` or ``"u1"`` into a numpy dtype.

    Raises
    ------
    ValueError
        If `d` is not a recognisable token.
    NotImplementedError
        For boolean types and for byte-order markers on single-byte types.

    """
    if not isinstance(d, str):
        raise ValueError(f"invalid dtype, got: {d!r}")
    if d in ("bool", "b1", "|b1"):
        raise NotImplementedError(f"unsupported dtype: {d!r}")
    m = _dtype_re.match(d)
    if m is None:
        raise ValueError(f"invalid dtype, got: {d!r}")
    order, kind, width = m.group("order"), m.group("kind"), int(m.group("width"))
    if width not in _dtype_widths[kind]:
        raise ValueError(f"invalid dtype, got: {d!r}")
    if width == 1 and order:
        raise NotImplementedError(f"unsupported dtype: {d!r}; single byte types take no byte order")
    if width > 1 and order not in ("<", ">"):
        raise ValueError(f"invalid dtype, got: {d!r}; byte order must be '<' or '>'")
    return np.dtype(d)


def encode_dtype(dtype: np.dtype) -> str:
    """Inverse of :func:`decode_dtype`, for dtypes it accepts."""
    dtype = np.dtype(dtype)
    s = dtype.str
    if s in ("|u1", "|i1"):
        s = s[1:]
    # validate
    decode_dtype(s)
    return s


def decode_fill_value(v: Any, dtype: np.dtype) -> Any:
    # early out
    if v is None:
        return v
    if dtype.kind == "f":
        if v == "NaN":
            return np.nan
        elif v == "Infinity":
            return np.inf
        elif v == "-Infinity":
            return -np.inf
    try:
        return np.array(v, dtype=dtype)[()]
    except (TypeError, ValueError, OverflowError) as e:
        raise ValueError(f"fill_value {v!r} is not valid for dtype {dtype}") from e


def encode_fill_value(v: Any, dtype: np.dtype) -> Any:
    # early out
    if v is None:
        return v
    if dtype.kind == "f":
        if np.isnan(v):
            return "NaN"
        elif np.isposinf(v):
            return "Infinity"
        elif np.isneginf(v):
            return "-Infinity"
        else:
            return float(v)
    elif dtype.kind in "ui":
        return int(v)
    else:
        raise ValueError(f"unsupported dtype: {dtype}")


def encode_entry_point_metadata(meta: Optional[EntryPointMetadata] = None) -> bytes:
    if meta is None:
        meta = EntryPointMetadata()
    return json_dumps(asdict(meta))


def decode_entry_point_metadata(s: Union[Mapping, bytes, str]) -> EntryPointMetadata:
    """Decode ``zarr.json`` and check that this library can read the hierarchy."""
    doc = parse_metadata(s)
    for key in ("zarr_format", "metadata_encoding"):
        if key not in doc:
            raise MetadataError(f"entry point metadata is missing {key!r}")
    meta = _structure(doc, EntryPointMetadata)

    # check protocol version
    protocol_uri, _, protocol_version = meta.zarr_format.rpartition("/")
    if protocol_uri != PROTOCOL_URI:
        raise NotImplementedError(f"unsupported protocol: {meta.zarr_format!r}")
    if protocol_version.split(".")[0] != PROTOCOL_MAJOR_VERSION:
        raise NotImplementedError(f"unsupported protocol version: {protocol_version!r}")

    # check metadata encoding
    if meta.metadata_encoding != METADATA_ENCODING_URI:
        raise NotImplementedError(f"unsupported metadata encoding: {meta.metadata_encoding!r}")

    check_extensions(meta.extensions)
    return meta


def encode_array_metadata(meta: ArrayMetadata) -> bytes:
    d = _converter.unstructure(meta)
    # compressor field should be absent when there is no compression
    if d.get("compressor") is None:
        d.pop("compressor", None)
    return json_dumps(d)


def decode_array_metadata(s: Union[Mapping, bytes, str]) -> ArrayMetadata:
    meta = _structure(parse_metadata(s), ArrayMetadata)

    if meta.chunk_grid.type != "regular":
        raise NotImplementedError(f"unsupported chunk grid: {meta.chunk_grid.type!r}")
    if len(meta.chunk_grid.chunk_shape) != len(meta.shape):
        raise ValueError("chunk_shape and shape have different numbers of dimensions")
    if meta.chunk_memory_layout != "C":
        raise NotImplementedError(
            f"unsupported chunk memory layout: {meta.chunk_memory_layout!r}"
        )
    check_extensions(meta.extensions)
    return meta


def encode_group_metadata(meta: Optional[GroupMetadata] = None) -> bytes:
    if meta is None:
        meta = GroupMetadata()
    return json_dumps(asdict(meta))


def decode_group_metadata(s: Union[Mapping, bytes, str]) -> GroupMetadata:
    meta = _structure(parse_metadata(s), GroupMetadata)
    check_extensions(meta.extensions)
    return meta
