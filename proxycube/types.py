"""Core type aliases and value types for proxycube."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import xarray as xr

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

RasterCube = xr.DataArray
"""A realized raster data cube – always an xarray DataArray (numpy or dask-backed)."""

Resolution = Tuple[int, int]
"""Target output shape ``(rows, cols)`` over the requested extent."""


# ---------------------------------------------------------------------------
# Extent
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Extent:
    """Axis-aligned bounding box in the coordinate units of a cube's CRS."""

    west: float
    south: float
    east: float
    north: float

    def __post_init__(self) -> None:
        if self.east < self.west or self.north < self.south:
            raise ValueError(
                f"Invalid extent: west={self.west}, south={self.south}, "
                f"east={self.east}, north={self.north}"
            )

    @property
    def width(self) -> float:
        return self.east - self.west

    @property
    def height(self) -> float:
        return self.north - self.south

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.west, self.south, self.east, self.north)

    def intersects(self, other: "Extent") -> bool:
        return not (
            other.west >= self.east
            or other.east <= self.west
            or other.south >= self.north
            or other.north <= self.south
        )

    def intersection(self, other: "Extent") -> "Extent":
        """Return the overlap of two extents.

        Raises
        ------
        ValueError
            If the extents do not overlap.
        """
        if not self.intersects(other):
            raise ValueError(f"Extents {self} and {other} do not intersect.")
        return Extent(
            west=max(self.west, other.west),
            south=max(self.south, other.south),
            east=min(self.east, other.east),
            north=min(self.north, other.north),
        )

    def pad(self, dx: float, dy: float) -> "Extent":
        """Grow the extent by *dx* on the x sides and *dy* on the y sides."""
        return Extent(
            west=self.west - dx,
            south=self.south - dy,
            east=self.east + dx,
            north=self.north + dy,
        )
