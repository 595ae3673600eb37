import json
import numbers
import sys
from string import ascii_letters, digits
from typing import Any, Dict, Optional, Tuple

import numpy as np
from asciitree import BoxStyle, LeftAligned
from asciitree.traversal import Traversal
from numcodecs.compat import ensure_text

# characters allowed in a node name
_valid_name_characters = frozenset(ascii_letters + digits + "._-")

LITTLE_ENDIAN_OS = sys.byteorder == "little"


def json_dumps(o: Any) -> bytes:
    """Write JSON in a consistent, human-readable way."""
    return json.dumps(o, indent=4, sort_keys=True, ensure_ascii=True,
                      separators=(',', ': ')).encode('ascii')


def json_loads(s) -> Dict[str, Any]:
    """Read JSON in a consistent way."""
    return json.loads(ensure_text(s, 'ascii'))


def normalize_path(path: str) -> str:
    """Check a hierarchy path and return it in absolute form.

    Relative paths are treated as relative to the root, so ``"foo/bar"``
    becomes ``"/foo/bar"``. Each segment must be non-empty, may only contain
    the characters ``a-z A-Z 0-9 . _ -`` and must not consist only of periods.

    >>> normalize_path("foo/bar")
    '/foo/bar'
    >>> normalize_path("/")
    '/'

    """
    if not isinstance(path, str):
        raise TypeError(f"path must be a string, got {type(path)!r}")
    if len(path) == 0:
        raise ValueError("path must not be empty")

    if path[0] != "/":
        path = "/" + path

    if len(path) > 1:
        for segment in path[1:].split("/"):
            if len(segment) == 0:
                raise ValueError(f"path {path!r} has an empty segment")
            invalid = set(segment) - _valid_name_characters
            if invalid:
                raise ValueError(
                    f"invalid path character(s) {''.join(sorted(invalid))!r} in {path!r}"
                )
            if all(c == "." for c in segment):
                raise ValueError(f"path segment {segment!r} not allowed")

    return path


def normalize_shape(shape) -> Tuple[int, ...]:
    """Convenience function to normalize the `shape` argument."""

    if shape is None:
        raise TypeError('shape is None')

    # handle 1D convenience form
    if isinstance(shape, numbers.Integral):
        shape = (shape,)

    if not all(isinstance(s, numbers.Integral) for s in shape):
        raise ValueError(f'invalid array shape, got: {shape!r}')

    # normalize
    shape = tuple(int(s) for s in shape)
    if any(s < 1 for s in shape):
        raise ValueError(f'array shape must be positive, got: {shape!r}')
    return shape


def normalize_chunks(chunks, shape: Tuple[int, ...]) -> Tuple[int, ...]:
    """Convenience function to normalize the `chunks` argument for an array
    with the given `shape`."""

    if chunks is None:
        raise TypeError('chunk_shape is None')

    # handle 1D convenience form
    if isinstance(chunks, numbers.Integral):
        chunks = (chunks,)

    if not all(isinstance(c, numbers.Integral) for c in chunks):
        raise ValueError(f'chunk_shape must be integer or sequence of integers, got: {chunks!r}')

    chunks = tuple(int(c) for c in chunks)
    if len(chunks) != len(shape):
        raise ValueError('chunk_shape and shape have different numbers of dimensions: '
                         f'{len(chunks)} != {len(shape)}')
    if any(c < 1 for c in chunks):
        raise ValueError(f'chunk_shape must be positive, got: {chunks!r}')
    return chunks


def normalize_chunk_separator(sep: str) -> str:
    if sep in (".", "/"):
        return sep
    else:
        raise ValueError(
            "chunk separator must be either '.' or '/', found: %r" % sep)


def normalize_fill_value(fill_value, dtype: np.dtype):

    if fill_value is None:
        # no fill value
        pass
    else:
        try:
            fill_value = np.array(fill_value, dtype=dtype)[()]
        except Exception as e:
            # re-raise with our own error message to be helpful
            raise ValueError('fill_value {!r} is not valid for dtype {}; nested '
                             'exception: {}'.format(fill_value, dtype, e))

    return fill_value


class TreeNode(object):
    """A node of a rendered hierarchy tree.

    Parameters
    ----------
    text : str
        Label drawn for this node.
    children : list of TreeNode, optional
        Child nodes, drawn in the given order.

    """

    def __init__(self, text: str, children=None):
        self.text = text
        self.children = list(children or [])

    def get_children(self):
        return self.children

    def get_text(self):
        return self.text


class TreeTraversal(Traversal):

    def get_children(self, node):
        return node.get_children()

    def get_root(self, tree):
        return tree

    def get_text(self, node):
        return node.get_text()


class TreeViewer(object):

    def __init__(self, root: TreeNode, level: Optional[int] = None):

        self.root = root
        self.level = level

        self.text_kwargs = dict(
            horiz_len=2,
            label_space=1,
            indent=1
        )

        self.bytes_kwargs = dict(
            UP_AND_RIGHT="+",
            HORIZONTAL="-",
            VERTICAL="|",
            VERTICAL_AND_RIGHT="+"
        )

        self.unicode_kwargs = dict(
            UP_AND_RIGHT="└",
            HORIZONTAL="─",
            VERTICAL="│",
            VERTICAL_AND_RIGHT="├"
        )

    def _pruned(self, node: TreeNode, depth: int = 0) -> TreeNode:
        if self.level is not None and depth >= self.level:
            return TreeNode(node.text)
        return TreeNode(node.text, [self._pruned(c, depth + 1) for c in node.children])

    def __bytes__(self):
        drawer = LeftAligned(
            traverse=TreeTraversal(),
            draw=BoxStyle(gfx=self.bytes_kwargs, **self.text_kwargs)
        )
        result = drawer(self._pruned(self.root))

        # Unicode characters slip in on Python 3.
        # So we need to straighten that out first.
        result = result.encode()

        return result

    def __str__(self):
        drawer = LeftAligned(
            traverse=TreeTraversal(),
            draw=BoxStyle(gfx=self.unicode_kwargs, **self.text_kwargs)
        )
        return drawer(self._pruned(self.root))

    def __repr__(self):
        return self.__str__()
