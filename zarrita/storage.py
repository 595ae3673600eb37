"""Storage backends.

Every store maps string keys to byte strings and exposes the same small set
of coroutines: ``get``, ``set``, ``delete``, ``keys``, ``list_prefix`` and
``list_dir``. A missing key is signalled by :class:`KeyError` from ``get``,
never by a return value, so callers can tell "not written yet" apart from any
other failure.

"""
from __future__ import annotations

import abc
import os
import uuid
from collections.abc import MutableMapping
from pathlib import Path
from string import ascii_letters, digits
from typing import Any, Dict, List, NamedTuple, Optional, Tuple, Union

import fsspec
from numcodecs.compat import ensure_bytes

from zarrita.common import ZARR_JSON, BytesLike, to_thread


class ListDirResult(NamedTuple):
    """One level of a directory-style listing.

    ``contents`` are the names of keys directly under the prefix, ``prefixes``
    the names of the sub-directories (without trailing slash).
    """

    contents: List[str]
    prefixes: List[str]


def _check_prefix(prefix: str, allow_empty: bool = False):
    if not isinstance(prefix, str):
        raise TypeError(f"prefix must be a string, got {type(prefix)!r}")
    if allow_empty and prefix == "":
        return
    if not prefix.endswith("/"):
        raise ValueError(f"prefix must end with '/', got {prefix!r}")


def _list_dir_from_keys(keys: List[str], prefix: str) -> ListDirResult:
    contents = set()
    prefixes = set()
    for key in keys:
        if key.startswith(prefix) and len(key) > len(prefix):
            trail = key[len(prefix):]
            name, sep, _ = trail.partition("/")
            if sep:
                prefixes.add(name)
            else:
                contents.add(name)
    return ListDirResult(sorted(contents), sorted(prefixes))


class Store(abc.ABC):
    """Abstract base class for store implementations.

    Only ``get``, ``set``, ``delete`` and ``keys`` need implementing; the
    listing methods are derived from ``keys`` and backends with a native
    directory listing may override them.
    """

    _valid_key_characters = set(ascii_letters + digits + "/.-_")

    def _valid_key(self, key: str) -> bool:
        """
        Verify that a key conforms to the storage key rules.

        A key is any string containing only character in the range a-z, A-Z,
        0-9, or in the set /.-_ it will return True if that's the case, False
        otherwise.
        """
        if not isinstance(key, str) or not key.isascii():
            return False
        if set(key) - self._valid_key_characters:
            return False
        return True

    def _validate_key(self, key: str):
        """
        Keys can only start with the prefix meta/, data/ or be exactly
        zarr.json, and must not end with /.
        """
        if not self._valid_key(key):
            raise ValueError(
                f"Keys must be ascii strings and may only contain the "
                f"characters {''.join(sorted(self._valid_key_characters))}"
            )

        if not key.startswith("data/") and not key.startswith("meta/") and key != ZARR_JSON:
            raise ValueError("keys starts with unexpected value: `{}`".format(key))

        if key.endswith('/'):
            raise ValueError("keys may not end in /")

    @abc.abstractmethod
    async def get(self, key: str) -> bytes:
        """Return the value stored under `key`, raising KeyError if absent."""

    @abc.abstractmethod
    async def set(self, key: str, value: BytesLike) -> None:
        """Store `value` under `key`, replacing any previous value."""

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        """Remove `key`. Removing a missing key is not an error."""

    @abc.abstractmethod
    async def keys(self) -> List[str]:
        """Return every key in the store."""

    async def exists(self, key: str) -> bool:
        try:
            await self.get(key)
        except KeyError:
            return False
        return True

    async def list_prefix(self, prefix: str) -> List[str]:
        _check_prefix(prefix)
        return sorted(k[len(prefix):] for k in await self.keys() if k.startswith(prefix))

    async def list_dir(self, prefix: str = "") -> ListDirResult:
        _check_prefix(prefix, allow_empty=True)
        return _list_dir_from_keys(await self.keys(), prefix)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class KVStore(Store):
    """Wraps a synchronous ``MutableMapping`` so it can be used as a store.

    Parameters
    ----------
    mutablemapping : MutableMapping
        Mapping from string keys to bytes-like values.

    Examples
    --------
    >>> import zarrita
    >>> h = zarrita.create_hierarchy(zarrita.KVStore(dict()))

    """

    def __init__(self, mutablemapping: MutableMapping):
        self._mutable_mapping = mutablemapping

    async def get(self, key: str) -> bytes:
        return self._mutable_mapping[key]

    async def set(self, key: str, value: BytesLike) -> None:
        self._validate_key(key)
        self._mutable_mapping[key] = ensure_bytes(value)

    async def delete(self, key: str) -> None:
        try:
            del self._mutable_mapping[key]
        except KeyError:
            pass

    async def keys(self) -> List[str]:
        return list(self._mutable_mapping.keys())

    async def exists(self, key: str) -> bool:
        return key in self._mutable_mapping

    def __repr__(self) -> str:
        return f"<{type(self).__name__}: \n{repr(self._mutable_mapping)}\n at {hex(id(self))}>"


class MemoryStore(KVStore):
    """Store class that uses a dictionary to hold data in memory."""

    def __init__(self, root: Optional[Dict[str, bytes]] = None):
        super().__init__(root if root is not None else dict())

    def __repr__(self) -> str:
        return "MemoryStore()"


class LocalStore(Store):
    """Storage class using directories and files on a standard file system.

    Parameters
    ----------
    root : str or pathlib.Path
        Location of directory to use as the root of the storage hierarchy.
    auto_mkdir : bool, optional
        Create parent directories of a key when writing it.

    Notes
    -----
    File I/O runs in the event loop's default executor. Values are written to
    a temporary file which is then moved into place, so readers never see a
    partially written value.

    """

    def __init__(self, root: Union[Path, str], auto_mkdir: bool = True):
        self.root = Path(root).resolve()
        self.auto_mkdir = auto_mkdir

    def _fromfile(self, path: Path) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    def _tofile(self, path: Path, value: bytes):
        if self.auto_mkdir:
            path.parent.mkdir(parents=True, exist_ok=True)

        # note we're not using tempfile.NamedTemporaryFile to avoid restrictive file permissions
        temp_path = path.with_name(path.name + "." + uuid.uuid4().hex + ".partial")
        try:
            with open(temp_path, mode="wb") as f:
                f.write(value)
            os.replace(temp_path, path)
        finally:
            if temp_path.exists():  # pragma: no cover
                os.remove(temp_path)

    def _keys(self, prefix: str = "") -> List[str]:
        out = []
        for dirpath, _, filenames in os.walk(self.root / prefix):
            rel = os.path.relpath(dirpath, self.root)
            for f in filenames:
                if f.endswith(".partial"):
                    continue
                if rel == os.curdir:
                    out.append(f)
                else:
                    out.append("/".join((rel.replace("\\", "/"), f)))
        return out

    def _list_dir(self, prefix: str) -> ListDirResult:
        dir_path = self.root / prefix if prefix else self.root
        contents = []
        prefixes = []
        try:
            with os.scandir(dir_path) as it:
                for entry in it:
                    if entry.is_dir():
                        prefixes.append(entry.name)
                    elif not entry.name.endswith(".partial"):
                        contents.append(entry.name)
        except (FileNotFoundError, NotADirectoryError):
            pass
        return ListDirResult(sorted(contents), sorted(prefixes))

    async def get(self, key: str) -> bytes:
        path = self.root / key
        try:
            return await to_thread(self._fromfile, path)
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise KeyError(key)

    async def set(self, key: str, value: BytesLike) -> None:
        self._validate_key(key)
        await to_thread(self._tofile, self.root / key, ensure_bytes(value))

    async def delete(self, key: str) -> None:
        path = self.root / key
        await to_thread(path.unlink, True)

    async def exists(self, key: str) -> bool:
        path = self.root / key
        return await to_thread(path.is_file)

    async def keys(self) -> List[str]:
        return await to_thread(self._keys)

    async def list_prefix(self, prefix: str) -> List[str]:
        _check_prefix(prefix)
        # only walk the directory the prefix names
        keys = await to_thread(self._keys, prefix)
        return sorted(k[len(prefix):] for k in keys)

    async def list_dir(self, prefix: str = "") -> ListDirResult:
        _check_prefix(prefix, allow_empty=True)
        return await to_thread(self._list_dir, prefix)

    def __eq__(self, other):
        return isinstance(other, LocalStore) and self.root == other.root

    def __repr__(self) -> str:
        return f"LocalStore({str(self.root)!r})"


class RemoteStore(Store):
    """Store backed by any asynchronous fsspec file system (HTTP, S3, GCS, ...).

    Parameters
    ----------
    url : str
        Root URL of the hierarchy, e.g. ``"s3://bucket/data.zr3"``.
    **storage_options
        Passed on to the fsspec file system.

    """

    def __init__(self, url: str, **storage_options: Any):
        self.url = url.rstrip("/")
        self.storage_options = storage_options
        # test instantiate file system
        self.make_fs()

    def make_fs(self) -> Tuple[Any, str]:
        fs, root = fsspec.core.url_to_fs(self.url, asynchronous=True, **self.storage_options)
        if not fs.async_impl:
            raise TypeError(f"file system for {self.url!r} does not support async operations")
        return fs, root.rstrip("/")

    async def get(self, key: str) -> bytes:
        fs, root = self.make_fs()
        try:
            return await fs._cat_file(f"{root}/{key}")
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise KeyError(key)

    async def set(self, key: str, value: BytesLike) -> None:
        self._validate_key(key)
        fs, root = self.make_fs()
        await fs._pipe_file(f"{root}/{key}", ensure_bytes(value))

    async def delete(self, key: str) -> None:
        fs, root = self.make_fs()
        path = f"{root}/{key}"
        if await fs._exists(path):
            await fs._rm(path)

    async def exists(self, key: str) -> bool:
        fs, root = self.make_fs()
        return await fs._isfile(f"{root}/{key}")

    async def _find(self, prefix: str = "") -> List[str]:
        fs, root = self.make_fs()
        try:
            paths = await fs._find(f"{root}/{prefix}".rstrip("/"))
        except FileNotFoundError:
            return []
        return [p[len(root) + 1:] for p in paths if p.startswith(root + "/" + prefix)]

    async def keys(self) -> List[str]:
        return await self._find()

    async def list_prefix(self, prefix: str) -> List[str]:
        _check_prefix(prefix)
        return sorted(k[len(prefix):] for k in await self._find(prefix))

    async def list_dir(self, prefix: str = "") -> ListDirResult:
        _check_prefix(prefix, allow_empty=True)
        fs, root = self.make_fs()
        try:
            entries = await fs._ls(f"{root}/{prefix}".rstrip("/"), detail=True)
        except FileNotFoundError:
            return ListDirResult([], [])
        contents = []
        prefixes = []
        for entry in entries:
            name = entry["name"].rstrip("/").rsplit("/", 1)[-1]
            if entry["type"] == "directory":
                prefixes.append(name)
            else:
                contents.append(name)
        return ListDirResult(sorted(contents), sorted(prefixes))

    def __repr__(self) -> str:
        return f"RemoteStore({self.url!r})"


StoreLike = Union[Store, MutableMapping, Path, str]


def normalize_store_arg(store: Optional[StoreLike], **storage_options) -> Store:
    """Turn the `store` argument accepted by the public API into a Store.

    ``None`` gives a new :class:`MemoryStore`, a mapping is wrapped in a
    :class:`KVStore`, a local path gives a :class:`LocalStore` and a URL with
    a protocol gives a :class:`RemoteStore`.
    """
    if store is None:
        return MemoryStore()
    elif isinstance(store, Store):
        return store
    elif isinstance(store, MutableMapping):
        return KVStore(store)
    elif isinstance(store, Path):
        return LocalStore(store)
    elif isinstance(store, str):
        if "://" in store and not store.startswith("file://"):
            return RemoteStore(store, **storage_options)
        if store.startswith("file://"):
            store = store[len("file://"):]
        return LocalStore(store)
    raise TypeError(f"unsupported store type: {type(store)!r}")
