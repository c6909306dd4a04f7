"""Read planning – decide how little of the source a consumption needs.

The rule: if every pending node is cell-independent, the source can be read
directly at the requested output shape, because downsampling commutes with
the chain.  Otherwise the read happens at native resolution, padded by the
chain's halo so window functions see their full neighbourhood, and the
result is downsampled after the chain has run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from proxycube.dimensions import Dimension, spatial_extent
from proxycube.exceptions import UnsupportedReorder
from proxycube.pipeline.nodes import PendingOp, ReadOp
from proxycube.types import Extent, Resolution

logger = logging.getLogger(__name__)

DOWNSAMPLE_MODES = ("auto", "at_read", "after_chain")


@dataclass(frozen=True)
class ReadPlan:
    """What to read, and what is left to do after the chain has run.

    Attributes
    ----------
    region : Extent | None
        Region passed to the source (``None`` = everything).
    shape : Resolution | None
        Output shape passed to the source (``None`` = native).
    target_extent : Extent | None
        Extent of the final result; differs from *region* by the halo.
    target_shape : Resolution | None
        Shape to downsample to after the chain, when not done at read.
    halo : int
        Cells of padding added on each side of *target_extent*.
    """

    region: Extent | None
    shape: Resolution | None
    target_extent: Extent | None
    target_shape: Resolution | None
    halo: int = 0

    @property
    def downsample_at_read(self) -> bool:
        return self.shape is not None


def check_resolution(resolution: Resolution | None) -> Resolution | None:
    if resolution is None:
        return None
    try:
        rows, cols = (int(v) for v in resolution)
    except (TypeError, ValueError):
        raise TypeError(f"resolution must be a (rows, cols) pair, got {resolution!r}") from None
    if rows <= 0 or cols <= 0:
        raise ValueError(f"resolution must be positive, got {resolution!r}")
    return (rows, cols)


def plan_read(
    source_dims: Sequence[Dimension],
    chain: Sequence[PendingOp],
    resolution: Resolution | None = None,
    extent: Extent | None = None,
    downsample: str = "auto",
) -> ReadPlan:
    """Build the :class:`ReadPlan` for consuming *chain* at *resolution* over *extent*.

    Parameters
    ----------
    source_dims : sequence of Dimension
        Dimensions probed from the source.
    chain : sequence of PendingOp
        Pending nodes, root first.
    resolution : Resolution | None
        Requested output shape.  Falls back to the resolution of the most
        recent ``ReadOp`` that carries one.
    extent : Extent | None
        Requested output extent, intersected with every crop in the chain.
    downsample : str
        ``"auto"`` picks read-time downsampling whenever it is safe,
        ``"at_read"`` insists on it, ``"after_chain"`` never uses it.

    Raises
    ------
    UnsupportedReorder
        ``downsample="at_read"`` with a context-dependent node in the chain.
    ValueError
        Unknown *downsample* mode, or an extent outside the source.
    """
    if downsample not in DOWNSAMPLE_MODES:
        raise ValueError(f"Unknown downsample mode {downsample!r}. Choose from {list(DOWNSAMPLE_MODES)}")

    reads = [op for op in chain if isinstance(op, ReadOp)]
    if resolution is None:
        resolution = next((op.resolution for op in reversed(reads) if op.resolution is not None), None)
    resolution = check_resolution(resolution)

    blocking = [op for op in chain if not op.cell_independent]
    if downsample == "at_read" and blocking:
        raise UnsupportedReorder(
            f"Cannot downsample before {blocking[0].describe()}: it depends on "
            f"neighbouring cells and must run at native resolution."
        )

    region = extent
    for op in reads:
        if op.region is not None:
            region = op.region if region is None else region.intersection(op.region)

    source_bounds = spatial_extent(source_dims)
    if region is not None and source_bounds is not None:
        if not Extent(*source_bounds).intersects(region):
            raise ValueError(f"Extent {region} lies outside the source extent {source_bounds}.")

    at_read = resolution is not None and not blocking and downsample != "after_chain"
    halo = sum(op.halo for op in chain)
    read_region = region
    if halo and region is not None:
        read_region = region.pad(*_halo_padding(source_dims, halo))

    plan = ReadPlan(
        region=read_region,
        shape=resolution if at_read else None,
        target_extent=region,
        target_shape=None if at_read else resolution,
        halo=halo,
    )
    if blocking and resolution is not None:
        logger.debug(
            "Native-resolution read forced by %s", ", ".join(op.describe() for op in blocking)
        )
    logger.debug("Read plan: %s", plan)
    return plan


def _halo_padding(dims: Sequence[Dimension], halo: int) -> tuple[float, float]:
    sizes = {}
    for dim in dims:
        if dim.is_spatial:
            sizes[dim.axis] = dim.cell_size or 0.0
    return (halo * sizes.get("x", 0.0), halo * sizes.get("y", 0.0))
