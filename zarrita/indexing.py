from __future__ import annotations

import itertools
import numbers
from typing import Iterator, List, NamedTuple, Optional, Tuple, Union

from zarrita.common import ChunkCoords, Selection, product
from zarrita.errors import err_boundscheck, err_negative_step, err_too_many_indices


def is_integer(x) -> bool:
    return isinstance(x, numbers.Integral) and not isinstance(x, bool)


def is_slice(s) -> bool:
    return isinstance(s, slice)


def ensure_tuple(v) -> tuple:
    if not isinstance(v, tuple):
        v = (v,)
    return v


def ceildiv(a: int, b: int) -> int:
    return -(-a // b)


def normalize_integer_selection(dim_sel: int, dim_len: int) -> int:

    # normalize type to int
    dim_sel = int(dim_sel)

    # handle wraparound
    if dim_sel < 0:
        dim_sel = dim_len + dim_sel

    # handle out of bounds
    if dim_sel >= dim_len or dim_sel < 0:
        err_boundscheck(dim_len)

    return dim_sel


def replace_ellipsis(selection: Selection, shape: ChunkCoords) -> tuple:
    """Expand `selection` to one item per dimension of `shape`.

    ``None`` items become ``slice(None)``, a single ``Ellipsis`` is replaced by
    as many full slices as needed, and missing trailing dimensions are filled
    with full slices.
    """

    selection = ensure_tuple(selection)

    # count number of ellipsis present
    n_ellipsis = sum(1 for i in selection if i is Ellipsis)

    if n_ellipsis > 1:
        # more than 1 is an error
        raise IndexError("an index can only have a single ellipsis ('...')")

    elif n_ellipsis == 1:
        # locate the ellipsis, count how many items to left and right
        n_items_l = selection.index(Ellipsis)  # items to left of ellipsis
        n_items_r = len(selection) - (n_items_l + 1)  # items to right of ellipsis
        n_items = len(selection) - 1  # all non-ellipsis items

        if n_items >= len(shape):
            # ellipsis does nothing, just remove it
            selection = tuple(i for i in selection if i is not Ellipsis)

        else:
            # replace ellipsis with as many slices are needed for number of dims
            new_item = selection[:n_items_l] + ((slice(None),) * (len(shape) - n_items))
            if n_items_r:
                new_item += selection[-n_items_r:]
            selection = new_item

    # null means the whole dimension
    selection = tuple(slice(None) if s is None else s for s in selection)

    # fill out selection if not completely specified
    if len(selection) < len(shape):
        selection += (slice(None),) * (len(shape) - len(selection))

    # check selection not too long
    if len(selection) > len(shape):
        err_too_many_indices(selection, shape)

    return selection


class ChunkDimProjection(NamedTuple):
    """A mapping from chunk to output array for a single dimension.

    Parameters
    ----------
    dim_chunk_ix
        Index of chunk.
    dim_chunk_sel
        Selection of items from chunk array.
    dim_out_sel
        Selection of items in target (output) array, None when the dimension
        is dropped by an integer selection.

    """

    dim_chunk_ix: int
    dim_chunk_sel: Union[int, slice]
    dim_out_sel: Optional[slice]


class IntDimIndexer(object):

    def __init__(self, dim_sel: int, dim_len: int, dim_chunk_len: int):

        # normalize
        dim_sel = normalize_integer_selection(dim_sel, dim_len)

        # store attributes
        self.dim_sel = dim_sel
        self.dim_len = dim_len
        self.dim_chunk_len = dim_chunk_len
        self.nitems = 1

    def __iter__(self) -> Iterator[ChunkDimProjection]:
        dim_chunk_ix = self.dim_sel // self.dim_chunk_len
        dim_offset = dim_chunk_ix * self.dim_chunk_len
        dim_chunk_sel = self.dim_sel - dim_offset
        dim_out_sel = None
        yield ChunkDimProjection(dim_chunk_ix, dim_chunk_sel, dim_out_sel)


class SliceDimIndexer(object):

    def __init__(self, dim_sel: slice, dim_len: int, dim_chunk_len: int):

        # normalize
        self.start, self.stop, self.step = dim_sel.indices(dim_len)
        if self.step < 1:
            err_negative_step()

        # store attributes
        self.dim_len = dim_len
        self.dim_chunk_len = dim_chunk_len
        self.nitems = max(0, ceildiv((self.stop - self.start), self.step))
        self.nchunks = ceildiv(self.dim_len, self.dim_chunk_len)

    def __iter__(self) -> Iterator[ChunkDimProjection]:

        if self.nitems == 0:
            return

        # figure out the range of chunks holding the first and last selected items
        last = self.start + (self.nitems - 1) * self.step
        dim_chunk_ix_from = self.start // self.dim_chunk_len
        dim_chunk_ix_to = last // self.dim_chunk_len + 1

        # iterate over chunks in range
        for dim_chunk_ix in range(dim_chunk_ix_from, dim_chunk_ix_to):

            # compute offsets for chunk within overall array
            dim_offset = dim_chunk_ix * self.dim_chunk_len
            dim_limit = min(self.dim_len, (dim_chunk_ix + 1) * self.dim_chunk_len)

            # determine chunk length, accounting for trailing chunk
            dim_chunk_len = dim_limit - dim_offset

            if self.start < dim_offset:
                # selection starts before current chunk
                dim_chunk_sel_start = 0
                remainder = (dim_offset - self.start) % self.step
                if remainder:
                    dim_chunk_sel_start += self.step - remainder
                # compute number of previous items, provides offset into output array
                dim_out_offset = ceildiv((dim_offset - self.start), self.step)

            else:
                # selection starts within current chunk
                dim_chunk_sel_start = self.start - dim_offset
                dim_out_offset = 0

            if self.stop > dim_limit:
                # selection ends after current chunk
                dim_chunk_sel_stop = dim_chunk_len

            else:
                # selection ends within current chunk
                dim_chunk_sel_stop = self.stop - dim_offset

            dim_chunk_sel = slice(dim_chunk_sel_start, dim_chunk_sel_stop, self.step)
            dim_chunk_nitems = max(0, ceildiv((dim_chunk_sel_stop - dim_chunk_sel_start),
                                              self.step))
            if dim_chunk_nitems == 0:
                # step jumps over this chunk
                continue
            dim_out_sel = slice(dim_out_offset, dim_out_offset + dim_chunk_nitems)

            yield ChunkDimProjection(dim_chunk_ix, dim_chunk_sel, dim_out_sel)


class ChunkProjection(NamedTuple):
    """A mapping of items from chunk to output array. Can be used to extract items from the
    chunk array for loading into an output array. Can also be used to extract items from a
    value array for setting/updating in a chunk array.

    Parameters
    ----------
    chunk_coords
        Indices of chunk.
    chunk_selection
        Selection of items from chunk array.
    out_selection
        Selection of items in target (output) array.

    """

    chunk_coords: ChunkCoords
    chunk_selection: Tuple[Union[int, slice], ...]
    out_selection: Tuple[slice, ...]


class BasicIndexer(object):
    """Decompose a selection into the chunks it touches.

    Parameters
    ----------
    selection : int, slice, None, Ellipsis or tuple of those
        The requested region, one item per dimension.
    shape : tuple of ints
        Shape of the array.
    chunk_shape : tuple of ints
        Shape of one chunk; must have the same length as `shape`.

    Attributes
    ----------
    shape : tuple of ints
        Shape of the selection result. Dimensions selected with an integer
        are dropped, so a selection of all integers gives ``()``.

    Iterating the indexer yields one :class:`ChunkProjection` per touched
    chunk, in row-major order of chunk coordinates.

    Examples
    --------
    >>> indexer = BasicIndexer((slice(1, 3), 2), shape=(4, 4), chunk_shape=(2, 2))
    >>> indexer.shape
    (2,)
    >>> [p.chunk_coords for p in indexer]
    [(0, 1), (1, 1)]

    """

    def __init__(self, selection: Selection, shape: ChunkCoords, chunk_shape: ChunkCoords):

        if len(shape) != len(chunk_shape):
            raise ValueError('chunk_shape and shape have different numbers of dimensions')

        # handle ellipsis and nulls
        selection = replace_ellipsis(selection, shape)

        # setup per-dimension indexers
        dim_indexers: List[Union[IntDimIndexer, SliceDimIndexer]] = []
        for dim_sel, dim_len, dim_chunk_len in zip(selection, shape, chunk_shape):

            if is_integer(dim_sel):
                dim_indexer = IntDimIndexer(dim_sel, dim_len, dim_chunk_len)

            elif is_slice(dim_sel):
                dim_indexer = SliceDimIndexer(dim_sel, dim_len, dim_chunk_len)

            else:
                raise IndexError('unsupported selection item for basic indexing; '
                                 'expected integer or slice, got {!r}'
                                 .format(type(dim_sel)))

            dim_indexers.append(dim_indexer)

        self.dim_indexers = dim_indexers
        self.shape = tuple(s.nitems for s in self.dim_indexers
                           if not isinstance(s, IntDimIndexer))

    def __iter__(self) -> Iterator[ChunkProjection]:
        for dim_projections in itertools.product(*self.dim_indexers):

            chunk_coords = tuple(p.dim_chunk_ix for p in dim_projections)
            chunk_selection = tuple(p.dim_chunk_sel for p in dim_projections)
            out_selection = tuple(p.dim_out_sel for p in dim_projections
                                  if p.dim_out_sel is not None)

            yield ChunkProjection(chunk_coords, chunk_selection, out_selection)


def get_strides(shape: ChunkCoords, order: str = "C") -> Tuple[int, ...]:
    """Element strides of a contiguous buffer with the given `shape`.

    >>> get_strides((2, 3, 4))
    (12, 4, 1)

    """
    if order != "C":
        raise NotImplementedError(f"only C memory order is supported, got {order!r}")
    return tuple(product(shape[i + 1:]) for i in range(len(shape)))


def is_total_slice(item, shape: ChunkCoords) -> bool:
    """Determine whether `item` specifies a complete slice of array with the
    given `shape`. Used to skip reading back a chunk that is about to be
    overwritten entirely."""

    # N.B., assume shape is normalized
    if item == slice(None):
        return True
    if isinstance(item, slice):
        item = (item,)
    if isinstance(item, tuple):
        return all(
            (
                isinstance(dim_sel, slice)
                and (
                    (dim_sel == slice(None))
                    or (
                        (dim_sel.stop - dim_sel.start == dim_len)
                        and (dim_sel.step in [1, None])
                    )
                )
            )
            for dim_sel, dim_len in zip(item, shape)
        )
    else:
        raise TypeError("expected slice or tuple of slices, found %r" % item)


def all_chunk_coords(shape: ChunkCoords, chunk_shape: ChunkCoords) -> Iterator[ChunkCoords]:
    return itertools.product(*(range(0, ceildiv(s, c)) for s, c in zip(shape, chunk_shape)))
