"""Chain interpreter – one bounded read, then every node in order."""

from __future__ import annotations

import logging
from typing import Sequence

import xarray as xr

from proxycube.io.source import RasterSource
from proxycube.ops.raster import decimate, filter_bbox
from proxycube.pipeline.nodes import PendingOp, ReduceOp
from proxycube.pipeline.planner import ReadPlan

logger = logging.getLogger(__name__)


def execute_chain(
    source: RasterSource,
    chain: Sequence[PendingOp],
    plan: ReadPlan,
    *,
    x_dim: str = "x",
    y_dim: str = "y",
) -> xr.DataArray:
    """Read the block described by *plan* and run *chain* over it.

    The source is read exactly once.  Halo padding is cropped back to the
    target extent before the first reduction over a spatial dimension, or
    at the end of the chain.  A :class:`~proxycube.exceptions.ReadError`
    raised by the source propagates unchanged and is not retried.
    """
    logger.info("Reading %s region=%s shape=%s", source.handle, plan.region, plan.shape)
    block = source.read_region(plan.region, plan.shape)

    # the halo must be cropped while both spatial dims still exist, so
    # before any reduction over them
    halo_pending = bool(plan.halo) and plan.target_extent is not None
    for op in chain:
        if halo_pending and _reduces_spatial(op, x_dim, y_dim):
            block = _crop_halo(block, plan, x_dim=x_dim, y_dim=y_dim)
            halo_pending = False
        block = op.execute(block, x_dim=x_dim, y_dim=y_dim)
        logger.debug("%s -> dims=%s", op.describe(), dict(block.sizes))

    if halo_pending:
        block = _crop_halo(block, plan, x_dim=x_dim, y_dim=y_dim)
    if plan.target_shape is not None:
        block = decimate(block, plan.target_shape, x_dim=x_dim, y_dim=y_dim)

    # dask-backed chains are computed here, not by the caller
    return block.compute()


def _reduces_spatial(op: PendingOp, x_dim: str, y_dim: str) -> bool:
    return isinstance(op, ReduceOp) and any(d in (x_dim, y_dim) for d in op.dimensions)


def _crop_halo(block: xr.DataArray, plan: ReadPlan, *, x_dim: str, y_dim: str) -> xr.DataArray:
    if x_dim not in block.dims or y_dim not in block.dims:
        return block
    logger.debug("Cropping halo of %d cells to %s", plan.halo, plan.target_extent)
    return filter_bbox(block, plan.target_extent, x_dim=x_dim, y_dim=y_dim)
