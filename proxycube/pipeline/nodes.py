"""Pending operations – the nodes of a deferred chain.

A chain is a singly-linked list from the newest node back to the root
:class:`ReadOp` through ``parent``.  Nodes are frozen: appending creates a
new node that points at the old tail, so any number of chains can branch
off a shared ancestor without copying or locking.

Each node declares whether it is *cell-independent*: whether its value for
one spatial cell depends only on that cell.  Only chains made entirely of
cell-independent nodes may be downsampled before they run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterator

import numpy as np
import xarray as xr

from proxycube.dimensions import Dimension, DimensionKind
from proxycube.ops.raster import apply as _apply
from proxycube.ops.raster import reduce_dimension
from proxycube.types import Extent, Resolution

logger = logging.getLogger(__name__)


class PendingOp:
    """Base class of chain nodes."""

    parent: "PendingOp | None"

    @property
    def cell_independent(self) -> bool:
        raise NotImplementedError

    @property
    def halo(self) -> int:
        """Neighbouring cells the operation reads on each side of a cell."""
        return 0

    def output_dims(self, dims: tuple[Dimension, ...]) -> tuple[Dimension, ...]:
        """Dimensions after this node, given the dimensions before it."""
        return dims

    def execute(self, data: xr.DataArray, *, x_dim: str, y_dim: str) -> xr.DataArray:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class ReadOp(PendingOp):
    """Read a region of the source.

    The root node covers the whole source at native resolution.  Later
    ``ReadOp`` nodes narrow the region (a crop); the planner folds them into
    the single read issued at consumption, so a crop restricts what every
    node of the chain sees, wherever it was appended.
    """

    region: Extent | None = None
    resolution: Resolution | None = None
    parent: PendingOp | None = field(default=None, repr=False)

    @property
    def cell_independent(self) -> bool:
        return True

    @property
    def is_root(self) -> bool:
        return self.parent is None

    def output_dims(self, dims: tuple[Dimension, ...]) -> tuple[Dimension, ...]:
        if self.region is None:
            return dims
        bounds = {"x": (self.region.west, self.region.east), "y": (self.region.south, self.region.north)}
        return tuple(
            _crop_dimension(d, *bounds[d.axis]) if d.is_spatial else d  # type: ignore[index]
            for d in dims
        )

    def execute(self, data: xr.DataArray, *, x_dim: str, y_dim: str) -> xr.DataArray:
        # crops are folded into the single source read; the block already
        # covers the region (plus any halo the later nodes need)
        return data

    def describe(self) -> str:
        return f"Read(region={self.region}, resolution={self.resolution})"


def _crop_dimension(dim: Dimension, low: float, high: float) -> Dimension:
    centres = dim.coords().astype(np.float64)
    mask = (centres >= low) & (centres <= high)
    count = int(mask.sum())
    if count == 0:
        raise ValueError(
            f"Crop range [{low}, {high}] selects no cells of dimension {dim.name!r} "
            f"(bounds {dim.bounds})."
        )
    first = int(np.argmax(mask))
    if dim.kind is DimensionKind.REGULAR:
        return replace(dim, length=count, offset=float(dim.offset) + first * float(dim.delta))  # type: ignore[arg-type]
    return replace(dim, length=count, values=tuple(np.asarray(dim.values)[mask].tolist()))


# ---------------------------------------------------------------------------
# Apply
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class ApplyOp(PendingOp):
    """A pixel function or a window/block function.

    Parameters
    ----------
    function : callable
        With ``block=False``: ``f(values, context=...)`` applied element-wise,
        or per subarray along *over*.  With ``block=True``: ``f(DataArray)``
        returning a ``DataArray``.
    over : tuple[str, ...]
        Dimensions the pixel function sees as a whole.
    independent : bool
        Explicit cell-independence tag.
    halo_cells : int
        Neighbourhood radius a context-dependent function needs.
    dims_out : tuple[Dimension, ...] | None
        Dimensions after a block function that changes them (e.g. drops the
        bands dimension).  ``None`` keeps the input dimensions.
    """

    function: Callable[..., Any] = field(default=None, repr=False)  # type: ignore[assignment]
    over: tuple[str, ...] = ()
    independent: bool = True
    halo_cells: int = 0
    block: bool = False
    dims_out: tuple[Dimension, ...] | None = field(default=None, repr=False)
    context: Any = field(default=None, repr=False)
    name: str | None = None
    parent: PendingOp | None = field(default=None, repr=False)

    @property
    def cell_independent(self) -> bool:
        return self.independent

    @property
    def halo(self) -> int:
        return self.halo_cells

    def output_dims(self, dims: tuple[Dimension, ...]) -> tuple[Dimension, ...]:
        return dims if self.dims_out is None else self.dims_out

    def execute(self, data: xr.DataArray, *, x_dim: str, y_dim: str) -> xr.DataArray:
        if self.block:
            return self.function(data)
        return _apply(data, self.function, over=self.over, context=self.context)

    def describe(self) -> str:
        label = self.name or getattr(self.function, "__name__", "function")
        tag = "cell-independent" if self.independent else f"context-dependent(halo={self.halo_cells})"
        return f"Apply({label}, over={list(self.over)}, {tag})"


# ---------------------------------------------------------------------------
# Reduce
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class ReduceOp(PendingOp):
    """Collapse *dimensions* with *reducer*.

    A reduction over a spatial dimension combines many cells into one, so it
    is context-dependent; reductions over other dimensions are evaluated
    per spatial cell and commute with spatial downsampling.
    """

    dimensions: tuple[str, ...] = ()
    reducer: Callable[..., Any] = field(default=None, repr=False)  # type: ignore[assignment]
    reducer_name: str = ""
    spatial: bool = False
    context: Any = field(default=None, repr=False)
    parent: PendingOp | None = field(default=None, repr=False)

    @property
    def cell_independent(self) -> bool:
        return not self.spatial

    def output_dims(self, dims: tuple[Dimension, ...]) -> tuple[Dimension, ...]:
        return tuple(d for d in dims if d.name not in self.dimensions)

    def execute(self, data: xr.DataArray, *, x_dim: str, y_dim: str) -> xr.DataArray:
        return reduce_dimension(data, self.reducer, dimension=list(self.dimensions), context=self.context)

    def describe(self) -> str:
        return f"Reduce({self.reducer_name}, dimensions={list(self.dimensions)})"


# ---------------------------------------------------------------------------
# Chain helpers
# ---------------------------------------------------------------------------


def iter_chain(tail: PendingOp) -> Iterator[PendingOp]:
    """Yield the nodes of the chain ending at *tail*, newest first."""
    node: PendingOp | None = tail
    while node is not None:
        yield node
        node = node.parent


def chain_to_list(tail: PendingOp) -> list[PendingOp]:
    """The chain ending at *tail* in the order the operations were requested."""
    nodes = list(iter_chain(tail))
    nodes.reverse()
    return nodes
