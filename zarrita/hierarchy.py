"""Hierarchies of arrays and groups.

A hierarchy is rooted at the ``zarr.json`` entry point of a store. Every node
lives at an absolute path; arrays and explicit groups have a metadata document
under ``meta/root``, implicit groups exist only because something below them
does.

"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Union

import numpy as np
from numcodecs.abc import Codec

from zarrita.codecs import check_compressor, decode_compressor_metadata, encode_compressor_metadata
from zarrita.common import ZARR_JSON, meta_root
from zarrita.config import RuntimeConfiguration
from zarrita.core import Array, Node
from zarrita.errors import ContainsArrayError, ContainsGroupError, NodeNotFoundError
from zarrita.meta import (
    DEFAULT_METADATA_KEY_SUFFIX,
    ArrayMetadata,
    ChunkGridMetadata,
    EntryPointMetadata,
    GroupMetadata,
    decode_array_metadata,
    decode_dtype,
    decode_entry_point_metadata,
    decode_fill_value,
    decode_group_metadata,
    encode_array_metadata,
    encode_dtype,
    encode_entry_point_metadata,
    encode_fill_value,
    encode_group_metadata,
)
from zarrita.storage import Store, StoreLike, normalize_store_arg
from zarrita.sync import sync
from zarrita.util import (
    TreeNode,
    TreeViewer,
    normalize_chunk_separator,
    normalize_chunks,
    normalize_fill_value,
    normalize_path,
    normalize_shape,
)

logger = logging.getLogger(__name__)

__all__ = [
    "NodeKind",
    "Node",
    "Group",
    "ExplicitGroup",
    "ImplicitGroup",
    "Hierarchy",
    "create_hierarchy",
    "create_hierarchy_async",
    "get_hierarchy",
    "get_hierarchy_async",
]


class NodeKind(Enum):
    ARRAY = "array"
    EXPLICIT_GROUP = "explicit_group"
    IMPLICIT_GROUP = "implicit_group"


def _parent_paths(path: str) -> Iterator[str]:
    # all proper ancestors of path, root included
    while path != "/":
        path = path.rsplit("/", 1)[0] or "/"
        yield path


def _normalize_dtype(dtype: Union[str, np.dtype]) -> np.dtype:
    if isinstance(dtype, str):
        return decode_dtype(dtype)
    return decode_dtype(encode_dtype(dtype))


class Hierarchy(object):
    """A tree of arrays and groups stored in a single store.

    Use :func:`create_hierarchy` or :func:`get_hierarchy` rather than
    instantiating this class directly.

    Parameters
    ----------
    store : Store
        Where metadata documents and chunks are kept.
    meta_key_suffix : str, optional
        Suffix of metadata document keys, as recorded in the entry point.
    runtime_configuration : RuntimeConfiguration, optional
        Handed on to every node of the hierarchy.

    """

    def __init__(self, store: Store, meta_key_suffix: str = DEFAULT_METADATA_KEY_SUFFIX,
                 runtime_configuration: Optional[RuntimeConfiguration] = None):
        self.store = store
        self.meta_key_suffix = meta_key_suffix
        self.runtime_configuration = runtime_configuration or RuntimeConfiguration()

    @property
    def array_suffix(self) -> str:
        return ".array" + self.meta_key_suffix

    @property
    def group_suffix(self) -> str:
        return ".group" + self.meta_key_suffix

    def _array_meta_key(self, path: str) -> str:
        if path == "/":
            # special case root path
            return "meta/root" + self.array_suffix
        return f"meta/root{path}" + self.array_suffix

    def _group_meta_key(self, path: str) -> str:
        if path == "/":
            # special case root path
            return "meta/root" + self.group_suffix
        return f"meta/root{path}" + self.group_suffix

    @staticmethod
    def _children_prefix(path: str) -> str:
        if path == "/":
            return meta_root
        return f"meta/root{path}/"

    def _sync(self, coro):
        return sync(coro, self.runtime_configuration.asyncio_loop)

    # creation

    async def create_group_async(self, path: str,
                                 attrs: Optional[Dict[str, Any]] = None) -> ExplicitGroup:
        """Create an explicit group at `path`, replacing any existing group
        document there."""
        path = normalize_path(path)
        if await self.store.exists(self._array_meta_key(path)):
            raise ContainsArrayError(path)

        meta = GroupMetadata(attributes=dict(attrs) if attrs else dict())
        await self.store.set(self._group_meta_key(path), encode_group_metadata(meta))
        logger.debug("created group %s", path)
        return ExplicitGroup(self, path, attrs=meta.attributes)

    def create_group(self, path: str, attrs: Optional[Dict[str, Any]] = None) -> ExplicitGroup:
        return self._sync(self.create_group_async(path, attrs=attrs))

    async def create_array_async(self, path: str, shape, dtype: Union[str, np.dtype],
                                 chunk_shape, chunk_separator: str = "/",
                                 compressor: Optional[Codec] = None,
                                 fill_value: Any = None,
                                 attrs: Optional[Dict[str, Any]] = None) -> Array:
        """Create an array at `path`, replacing any existing array document there.

        Parameters
        ----------
        path : str
            Absolute path, or a path relative to the root.
        shape : int or tuple of ints
            Array shape.
        dtype : str or numpy.dtype
            Data type token such as ``"<f8"`` or ``"u1"``.
        chunk_shape : int or tuple of ints
            Shape of each chunk; must have the same rank as `shape`.
        chunk_separator : {'/', '.'}, optional
            Separator between chunk coordinates in chunk keys.
        compressor : numcodecs.abc.Codec, optional
            Compressor applied to each chunk, None for no compression.
        fill_value : scalar, optional
            Value of items in chunks that have not been written.
        attrs : dict, optional
            User attributes, must be JSON serializable.

        Returns
        -------
        Array

        """
        path = normalize_path(path)
        shape = normalize_shape(shape)
        chunk_shape = normalize_chunks(chunk_shape, shape)
        chunk_separator = normalize_chunk_separator(chunk_separator)
        dtype = _normalize_dtype(dtype)
        if compressor is not None:
            compressor = check_compressor(compressor)
        fill_value = normalize_fill_value(fill_value, dtype)
        attrs = dict(attrs) if attrs else dict()

        if await self.store.exists(self._group_meta_key(path)):
            raise ContainsGroupError(path)

        meta = ArrayMetadata(
            shape=shape,
            data_type=encode_dtype(dtype),
            chunk_grid=ChunkGridMetadata(chunk_shape=chunk_shape, separator=chunk_separator),
            chunk_memory_layout="C",
            fill_value=encode_fill_value(fill_value, dtype),
            compressor=encode_compressor_metadata(compressor),
            extensions=[],
            attributes=attrs,
        )
        await self.store.set(self._array_meta_key(path), encode_array_metadata(meta))
        logger.debug("created array %s", path)

        return Array(self, path, shape=shape, dtype=dtype, chunk_shape=chunk_shape,
                     chunk_separator=chunk_separator, compressor=compressor,
                     fill_value=fill_value, attrs=attrs)

    def create_array(self, path: str, shape, dtype: Union[str, np.dtype], chunk_shape,
                     chunk_separator: str = "/", compressor: Optional[Codec] = None,
                     fill_value: Any = None, attrs: Optional[Dict[str, Any]] = None) -> Array:
        return self._sync(self.create_array_async(
            path, shape=shape, dtype=dtype, chunk_shape=chunk_shape,
            chunk_separator=chunk_separator, compressor=compressor,
            fill_value=fill_value, attrs=attrs,
        ))

    # retrieval

    async def get_array_async(self, path: str) -> Array:
        path = normalize_path(path)
        try:
            doc = await self.store.get(self._array_meta_key(path))
        except KeyError:
            raise NodeNotFoundError(path)
        meta = decode_array_metadata(doc)

        dtype = decode_dtype(meta.data_type)
        shape = normalize_shape(meta.shape)
        chunk_shape = normalize_chunks(meta.chunk_grid.chunk_shape, shape)
        logger.debug("resolved array %s", path)
        return Array(
            self,
            path,
            shape=shape,
            dtype=dtype,
            chunk_shape=chunk_shape,
            chunk_separator=normalize_chunk_separator(meta.chunk_grid.separator),
            compressor=decode_compressor_metadata(meta.compressor),
            fill_value=decode_fill_value(meta.fill_value, dtype),
            attrs=meta.attributes,
        )

    def get_array(self, path: str) -> Array:
        return self._sync(self.get_array_async(path))

    async def get_explicit_group_async(self, path: str) -> ExplicitGroup:
        path = normalize_path(path)
        try:
            doc = await self.store.get(self._group_meta_key(path))
        except KeyError:
            raise NodeNotFoundError(path)
        meta = decode_group_metadata(doc)
        logger.debug("resolved explicit group %s", path)
        return ExplicitGroup(self, path, attrs=meta.attributes)

    def get_explicit_group(self, path: str) -> ExplicitGroup:
        return self._sync(self.get_explicit_group_async(path))

    async def get_implicit_group_async(self, path: str) -> ImplicitGroup:
        path = normalize_path(path)
        # one level is enough, anything below shows up as a prefix
        result = await self.store.list_dir(self._children_prefix(path))
        if not (result.contents or result.prefixes):
            raise NodeNotFoundError(path)
        logger.debug("resolved implicit group %s", path)
        return ImplicitGroup(self, path)

    def get_implicit_group(self, path: str) -> ImplicitGroup:
        return self._sync(self.get_implicit_group_async(path))

    async def get_async(self, path: str) -> Union[Array, ExplicitGroup, ImplicitGroup]:
        """Return the node at `path`, whatever its kind.

        An array takes precedence over an explicit group, which takes
        precedence over an implicit group.

        Raises
        ------
        NodeNotFoundError
            If there is no node at `path`.

        """
        path = normalize_path(path)

        try:
            return await self.get_array_async(path)
        except NodeNotFoundError:
            pass

        try:
            return await self.get_explicit_group_async(path)
        except NodeNotFoundError:
            pass

        return await self.get_implicit_group_async(path)

    def get(self, path: str) -> Union[Array, ExplicitGroup, ImplicitGroup]:
        return self._sync(self.get_async(path))

    async def has_async(self, path: str) -> bool:
        try:
            await self.get_async(path)
        except NodeNotFoundError:
            return False
        return True

    def has(self, path: str) -> bool:
        return self._sync(self.has_async(path))

    @property
    def root(self) -> Union[Array, ExplicitGroup, ImplicitGroup]:
        return self.get("/")

    # listing

    async def get_children_async(self, path: str = "/") -> Dict[str, NodeKind]:
        """Names and kinds of the nodes directly below `path`, sorted by name."""
        path = normalize_path(path)
        result = await self.store.list_dir(self._children_prefix(path))

        children: Dict[str, NodeKind] = dict()

        # find explicit children
        for n in result.contents:
            if n.endswith(self.array_suffix):
                children[n[:-len(self.array_suffix)]] = NodeKind.ARRAY
            elif n.endswith(self.group_suffix):
                children[n[:-len(self.group_suffix)]] = NodeKind.EXPLICIT_GROUP

        # find implicit children
        for name in result.prefixes:
            children.setdefault(name, NodeKind.IMPLICIT_GROUP)

        return dict(sorted(children.items()))

    def get_children(self, path: str = "/") -> Dict[str, NodeKind]:
        return self._sync(self.get_children_async(path))

    async def get_nodes_async(self) -> Dict[str, NodeKind]:
        """Paths and kinds of every node in the hierarchy, sorted by path."""
        explicit: Dict[str, NodeKind] = dict()
        for key in await self.store.list_prefix("meta/"):
            if not (key.startswith("root/") or key.startswith("root.")):
                continue
            if key.endswith(self.array_suffix):
                kind = NodeKind.ARRAY
                path = key[len("root"):-len(self.array_suffix)]
            elif key.endswith(self.group_suffix):
                kind = NodeKind.EXPLICIT_GROUP
                path = key[len("root"):-len(self.group_suffix)]
            else:
                continue
            explicit[path or "/"] = kind

        nodes = dict(explicit)
        for path in explicit:
            for parent in _parent_paths(path):
                nodes.setdefault(parent, NodeKind.IMPLICIT_GROUP)

        return dict(sorted(nodes.items()))

    def get_nodes(self) -> Dict[str, NodeKind]:
        return self._sync(self.get_nodes_async())

    def keys(self) -> List[str]:
        return list(self.get_nodes())

    def __iter__(self):
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self.get_nodes())

    def __contains__(self, path) -> bool:
        return self.has(path)

    def __getitem__(self, path: str):
        return self.get(path)

    def _tree_node(self, path: str, kind: NodeKind, nodes: Dict[str, NodeKind]) -> TreeNode:
        name = path.rsplit("/", 1)[-1] or "/"
        if kind is NodeKind.ARRAY:
            array = self.get_array(path)
            text = f"{name} {array.shape} {array.dtype}"
        elif kind is NodeKind.IMPLICIT_GROUP:
            text = f"{name} (implied)"
        else:
            text = name
        prefix = path.rstrip("/") + "/"
        children = [
            self._tree_node(p, k, nodes)
            for p, k in nodes.items()
            if p != path and p.startswith(prefix) and "/" not in p[len(prefix):]
        ]
        return TreeNode(text, children)

    def tree(self, path: str = "/", level: Optional[int] = None) -> TreeViewer:
        """Render the nodes at and below `path` as a text tree.

        Examples
        --------
        >>> import zarrita
        >>> h = zarrita.create_hierarchy()
        >>> _ = h.create_array("/a/x", shape=(10, 10), dtype="<f8", chunk_shape=(5, 5))
        >>> print(h.tree())
        / (implied)
         └── a (implied)
             └── x (10, 10) float64

        """
        path = normalize_path(path)
        nodes = self.get_nodes()
        if path not in nodes:
            raise NodeNotFoundError(path)
        return TreeViewer(self._tree_node(path, nodes[path], nodes), level=level)

    def __repr__(self) -> str:
        return f"<Hierarchy at {self.store!r}>"


class Group(Node):
    """Base class for groups.

    Paths passed to a group's methods are relative to the group unless they
    start with ``/``.
    """

    def _dereference_path(self, path: str) -> str:
        if not isinstance(path, str):
            raise TypeError(f"path must be a string, got {type(path)!r}")
        if path and path[0] != "/":
            # treat as relative path
            if path[-1] == "/":
                raise ValueError(f"relative path must not end with '/', got {path!r}")
            if self.path == "/":
                # special case root group
                path = "/" + path
            else:
                path = self.path + "/" + path
        return normalize_path(path)

    async def get_async(self, path: str):
        return await self.hierarchy.get_async(self._dereference_path(path))

    def get(self, path: str):
        return self.hierarchy.get(self._dereference_path(path))

    async def has_async(self, path: str) -> bool:
        return await self.hierarchy.has_async(self._dereference_path(path))

    def has(self, path: str) -> bool:
        return self.hierarchy.has(self._dereference_path(path))

    async def create_group_async(self, path: str, attrs=None) -> ExplicitGroup:
        return await self.hierarchy.create_group_async(self._dereference_path(path), attrs=attrs)

    def create_group(self, path: str, attrs=None) -> ExplicitGroup:
        return self.hierarchy.create_group(self._dereference_path(path), attrs=attrs)

    async def create_array_async(self, path: str, **kwargs) -> Array:
        return await self.hierarchy.create_array_async(self._dereference_path(path), **kwargs)

    def create_array(self, path: str, **kwargs) -> Array:
        return self.hierarchy.create_array(self._dereference_path(path), **kwargs)

    async def get_array_async(self, path: str) -> Array:
        return await self.hierarchy.get_array_async(self._dereference_path(path))

    def get_array(self, path: str) -> Array:
        return self.hierarchy.get_array(self._dereference_path(path))

    async def get_explicit_group_async(self, path: str) -> ExplicitGroup:
        return await self.hierarchy.get_explicit_group_async(self._dereference_path(path))

    def get_explicit_group(self, path: str) -> ExplicitGroup:
        return self.hierarchy.get_explicit_group(self._dereference_path(path))

    async def get_implicit_group_async(self, path: str) -> ImplicitGroup:
        return await self.hierarchy.get_implicit_group_async(self._dereference_path(path))

    def get_implicit_group(self, path: str) -> ImplicitGroup:
        return self.hierarchy.get_implicit_group(self._dereference_path(path))

    async def get_children_async(self) -> Dict[str, NodeKind]:
        return await self.hierarchy.get_children_async(self.path)

    def get_children(self) -> Dict[str, NodeKind]:
        return self.hierarchy.get_children(self.path)

    def keys(self) -> List[str]:
        """Names of the group's children."""
        return list(self.get_children())

    def __iter__(self):
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self.get_children())

    def __contains__(self, path) -> bool:
        return self.has(path)

    def __getitem__(self, path: str):
        return self.get(path)

    def tree(self, level: Optional[int] = None) -> TreeViewer:
        return self.hierarchy.tree(self.path, level=level)


class ExplicitGroup(Group):
    """A group with its own metadata document."""

    def __init__(self, hierarchy: Hierarchy, path: str,
                 attrs: Optional[Dict[str, Any]] = None):
        super().__init__(hierarchy, path)
        self.attrs = dict(attrs) if attrs else dict()

    def __repr__(self) -> str:
        return f"<Group {self.path}>"


class ImplicitGroup(Group):

    def __repr__(self) -> str:
        return f"<Group {self.path} (implied)>"


async def create_hierarchy_async(store: Optional[StoreLike] = None,
                                 meta_key_suffix: str = DEFAULT_METADATA_KEY_SUFFIX,
                                 runtime_configuration: Optional[RuntimeConfiguration] = None,
                                 **storage_options) -> Hierarchy:
    """Write a new entry point document to `store` and return the hierarchy.

    Parameters
    ----------
    store : Store, MutableMapping, str or pathlib.Path, optional
        Defaults to a new in-memory store. Strings are local paths unless
        they carry a protocol such as ``s3://``.
    meta_key_suffix : str, optional
        Suffix of metadata document keys.
    runtime_configuration : RuntimeConfiguration, optional
        Concurrency and event loop settings for the hierarchy's nodes.
    **storage_options
        Passed on to fsspec for remote stores.

    """
    store = normalize_store_arg(store, **storage_options)
    entry_point = EntryPointMetadata(metadata_key_suffix=meta_key_suffix)
    await store.set(ZARR_JSON, encode_entry_point_metadata(entry_point))
    logger.debug("created hierarchy in %r", store)
    return Hierarchy(store, meta_key_suffix=meta_key_suffix,
                     runtime_configuration=runtime_configuration)


def create_hierarchy(store: Optional[StoreLike] = None,
                     meta_key_suffix: str = DEFAULT_METADATA_KEY_SUFFIX,
                     runtime_configuration: Optional[RuntimeConfiguration] = None,
                     **storage_options) -> Hierarchy:
    runtime_configuration = runtime_configuration or RuntimeConfiguration()
    return sync(
        create_hierarchy_async(store, meta_key_suffix=meta_key_suffix,
                               runtime_configuration=runtime_configuration,
                               **storage_options),
        runtime_configuration.asyncio_loop,
    )


async def get_hierarchy_async(store: StoreLike,
                              runtime_configuration: Optional[RuntimeConfiguration] = None,
                              **storage_options) -> Hierarchy:
    """Open the hierarchy whose entry point is in `store`.

    Raises
    ------
    NodeNotFoundError
        If the store has no entry point document.
    NotImplementedError
        If the entry point declares a protocol version, metadata encoding or
        mandatory extension that is not supported.

    """
    store = normalize_store_arg(store, **storage_options)
    try:
        doc = await store.get(ZARR_JSON)
    except KeyError:
        raise NodeNotFoundError(ZARR_JSON)
    entry_point = decode_entry_point_metadata(doc)
    return Hierarchy(store, meta_key_suffix=entry_point.metadata_key_suffix,
                     runtime_configuration=runtime_configuration)


def get_hierarchy(store: StoreLike,
                  runtime_configuration: Optional[RuntimeConfiguration] = None,
                  **storage_options) -> Hierarchy:
    runtime_configuration = runtime_configuration or RuntimeConfiguration()
    return sync(
        get_hierarchy_async(store, runtime_configuration=runtime_configuration,
                            **storage_options),
        runtime_configuration.asyncio_loop,
    )
