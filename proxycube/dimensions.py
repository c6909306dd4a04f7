"""Dimension descriptors – the metadata half of a data cube.

A :class:`Dimension` describes one axis of a cube without holding any pixel
values: its name, length, and how an index maps to a coordinate.  Proxy
cubes carry only these descriptors until they are consumed.

Usage::

    from proxycube.dimensions import Dimension, DimensionKind

    x = Dimension("x", DimensionKind.REGULAR, 10000, offset=300000.0, delta=10.0,
                  refsys="EPSG:32633", axis="x")
    x.coords()[:2]   # cell centres: 300005., 300015.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from typing import Any, Iterable, Sequence

import numpy as np
import pandas as pd
import xarray as xr

from proxycube.exceptions import DimensionMismatch

logger = logging.getLogger(__name__)

SPATIAL_AXES = ("x", "y")


class DimensionKind(str, enum.Enum):
    """How the index of a dimension maps to coordinate values."""

    REGULAR = "regular"
    IRREGULAR = "irregular"
    GEOMETRY = "geometry"
    CATEGORICAL = "categorical"


@dataclass(frozen=True)
class Dimension:
    """One axis of a data cube.

    Parameters
    ----------
    name : str
        Dimension name as used on the xarray side.
    kind : DimensionKind
        ``REGULAR`` dimensions are an affine mapping ``offset + i * delta``
        where ``offset`` is the outer edge of the first cell.  All other kinds
        list one value per index in ``values``.
    length : int
        Number of cells.  Fixed once created.
    offset, delta : float | None
        Affine mapping of a ``REGULAR`` dimension.
    values : tuple | None
        Coordinates, labels or geometries, exactly ``length`` of them.
    refsys : str | None
        Reference system tag (e.g. ``"EPSG:4326"``).
    axis : str | None
        Role of the dimension: ``"x"``, ``"y"``, ``"t"`` or ``"bands"``.
    """

    name: str
    kind: DimensionKind
    length: int
    offset: float | None = None
    delta: float | None = None
    values: tuple | None = None
    refsys: str | None = None
    axis: str | None = None

    def __post_init__(self) -> None:
        if self.length < 0:
            raise ValueError(f"Dimension {self.name!r} has negative length {self.length}")
        if self.kind is DimensionKind.REGULAR:
            if self.offset is None or self.delta is None:
                raise ValueError(
                    f"Regular dimension {self.name!r} needs both offset and delta."
                )
            if self.delta == 0:
                raise ValueError(f"Regular dimension {self.name!r} has zero delta.")
        else:
            if self.values is None or len(self.values) != self.length:
                got = None if self.values is None else len(self.values)
                raise ValueError(
                    f"{self.kind.value.capitalize()} dimension {self.name!r} needs "
                    f"exactly {self.length} values, got {got}."
                )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_spatial(self) -> bool:
        return self.axis in SPATIAL_AXES

    @property
    def cell_size(self) -> float | None:
        """Absolute size of one cell, when it is known."""
        if self.kind is DimensionKind.REGULAR:
            return abs(float(self.delta))  # type: ignore[arg-type]
        if self.kind is DimensionKind.IRREGULAR and self.length >= 2:
            coords = np.asarray(self.values, dtype=np.float64)
            return float(np.min(np.abs(np.diff(coords))))
        return None

    @property
    def bounds(self) -> tuple[float, float]:
        """``(low, high)`` outer edges along this dimension."""
        if self.kind is DimensionKind.REGULAR:
            a = float(self.offset)  # type: ignore[arg-type]
            b = a + self.length * float(self.delta)  # type: ignore[arg-type]
            return (min(a, b), max(a, b))
        if self.kind is DimensionKind.IRREGULAR and self.length > 0:
            coords = np.asarray(self.values, dtype=np.float64)
            half = (self.cell_size or 0.0) / 2
            return (float(coords.min()) - half, float(coords.max()) + half)
        raise DimensionMismatch(f"Dimension {self.name!r} ({self.kind.value}) has no numeric bounds.")

    def coords(self) -> np.ndarray:
        """Coordinate values, cell centres for ``REGULAR`` dimensions."""
        if self.kind is DimensionKind.REGULAR:
            return float(self.offset) + (np.arange(self.length) + 0.5) * float(self.delta)  # type: ignore[arg-type]
        return np.asarray(self.values)

    def __repr__(self) -> str:
        if self.kind is DimensionKind.REGULAR:
            mapping = f"offset={self.offset}, delta={self.delta}"
        else:
            mapping = f"values=[{len(self.values or ())}]"
        return f"<Dimension {self.name!r} {self.kind.value} n={self.length} {mapping}>"


# ---------------------------------------------------------------------------
# Helpers over dimension tuples
# ---------------------------------------------------------------------------


def dimension_names(dims: Iterable[Dimension]) -> list[str]:
    return [d.name for d in dims]


def find_dimension(dims: Sequence[Dimension], name: str) -> Dimension:
    """Return the dimension called *name*.

    Raises
    ------
    DimensionMismatch
        If no dimension has that name.
    """
    for dim in dims:
        if dim.name == name:
            return dim
    raise DimensionMismatch(
        f"A dimension with the specified name '{name}' does not exist. "
        f"Available dimensions: {dimension_names(dims)}"
    )


def require_dimensions(dims: Sequence[Dimension], names: Iterable[str]) -> None:
    """Fail with :class:`DimensionMismatch` unless all *names* are in *dims*."""
    available = dimension_names(dims)
    missing = [n for n in names if n not in available]
    if missing:
        raise DimensionMismatch(
            f"Dimension(s) {missing} do not exist. Available dimensions: {available}"
        )


def cell_count(dims: Iterable[Dimension]) -> int:
    return int(np.prod([d.length for d in dims], dtype=np.int64))


def spatial_extent(dims: Sequence[Dimension]) -> tuple[float, float, float, float] | None:
    """``(west, south, east, north)`` of the spatial dimensions, if both exist."""
    x = next((d for d in dims if d.axis == "x"), None)
    y = next((d for d in dims if d.axis == "y"), None)
    if x is None or y is None:
        return None
    west, east = x.bounds
    south, north = y.bounds
    return (west, south, east, north)


# ---------------------------------------------------------------------------
# Inference from xarray
# ---------------------------------------------------------------------------


def dimensions_from_dataarray(
    data: xr.DataArray,
    *,
    x_dim: str = "x",
    y_dim: str = "y",
    bands_dim: str = "bands",
) -> tuple[Dimension, ...]:
    """Describe every dimension of *data* without loading its values.

    The CRS is taken from ``data.attrs["crs"]`` or, when rioxarray has
    written one, from ``data.rio.crs``.
    """
    refsys = _dataarray_crs(data)
    dims: list[Dimension] = []
    for name in data.dims:
        name = str(name)
        axis = {x_dim: "x", y_dim: "y", bands_dim: "bands"}.get(name)
        dims.append(
            _describe(name, data.sizes[name], data.coords.get(name), axis, refsys)
        )
    return tuple(dims)


def _describe(
    name: str,
    length: int,
    coord: xr.DataArray | None,
    axis: str | None,
    refsys: str | None,
) -> Dimension:
    spatial_refsys = refsys if axis in SPATIAL_AXES else None

    if coord is None:
        # Bare index dimension: cell i spans [i, i + 1).
        return Dimension(name, DimensionKind.REGULAR, length, offset=0.0, delta=1.0,
                         refsys=spatial_refsys, axis=axis)

    values = coord.values
    if axis == "bands" or values.dtype.kind in ("U", "S"):
        return Dimension(name, DimensionKind.CATEGORICAL, length,
                         values=tuple(values.tolist()), axis=axis)

    if values.dtype.kind == "O":
        if length and all(hasattr(v, "geom_type") for v in values):
            return Dimension(name, DimensionKind.GEOMETRY, length, values=tuple(values),
                             refsys=refsys, axis=axis)
        return Dimension(name, DimensionKind.CATEGORICAL, length,
                         values=tuple(values.tolist()), axis=axis)

    if pd.api.types.is_datetime64_any_dtype(values.dtype):
        return Dimension(name, DimensionKind.IRREGULAR, length,
                         values=tuple(pd.DatetimeIndex(values)), axis=axis or "t")

    if length >= 2:
        steps = np.diff(values.astype(np.float64))
        step = float(steps[0])
        if step != 0 and np.allclose(steps, step, rtol=1e-6, atol=0):
            return Dimension(name, DimensionKind.REGULAR, length,
                             offset=float(values[0]) - step / 2, delta=step,
                             refsys=spatial_refsys, axis=axis)

    return Dimension(name, DimensionKind.IRREGULAR, length,
                     values=tuple(values.tolist()), refsys=spatial_refsys, axis=axis)


def _dataarray_crs(data: xr.DataArray) -> str | None:
    crs = data.attrs.get("crs")
    if crs is not None:
        return str(crs)
    try:
        rio_crs = data.rio.crs
    except AttributeError:
        # rioxarray accessor not registered
        return None
    return rio_crs.to_string() if rio_crs is not None else None


# ---------------------------------------------------------------------------
# Reprojection
# ---------------------------------------------------------------------------


def reproject(
    dimension: Dimension | tuple[Dimension, Dimension],
    target_crs: int | str,
) -> Any:
    """Re-express dimension descriptors in *target_crs*.

    * A single ``GEOMETRY`` dimension: every geometry is transformed with
      pyproj.  Returns a new :class:`Dimension`.
    * An ``(x, y)`` pair of ``REGULAR`` dimensions: the target grid is
      computed with :func:`rasterio.warp.calculate_default_transform`.
      Returns a new ``(x, y)`` pair.

    Raises
    ------
    DimensionMismatch
        For any other input, or when a dimension has no ``refsys``.
    """
    dst = f"EPSG:{target_crs}" if isinstance(target_crs, int) else target_crs

    if isinstance(dimension, Dimension):
        if dimension.kind is not DimensionKind.GEOMETRY:
            raise DimensionMismatch(
                f"Only geometry dimensions can be reprojected on their own; "
                f"{dimension.name!r} is {dimension.kind.value}. Pass an (x, y) pair."
            )
        return _reproject_geometries(dimension, dst)

    x_dim, y_dim = dimension
    if x_dim.kind is not DimensionKind.REGULAR or y_dim.kind is not DimensionKind.REGULAR:
        raise DimensionMismatch("Grid reprojection needs two regular dimensions.")
    if x_dim.axis != "x" or y_dim.axis != "y":
        raise DimensionMismatch(
            f"Expected an (x, y) pair, got axes ({x_dim.axis!r}, {y_dim.axis!r})."
        )
    return _reproject_grid(x_dim, y_dim, dst)


def _reproject_geometries(dim: Dimension, dst: str) -> Dimension:
    from pyproj import Transformer
    from shapely.ops import transform

    if dim.refsys is None:
        raise DimensionMismatch(f"Dimension {dim.name!r} has no reference system.")
    transformer = Transformer.from_crs(dim.refsys, dst, always_xy=True)
    geoms = tuple(transform(transformer.transform, g) for g in dim.values or ())
    return replace(dim, values=geoms, refsys=dst)


def _reproject_grid(x_dim: Dimension, y_dim: Dimension, dst: str) -> tuple[Dimension, Dimension]:
    from rasterio.warp import calculate_default_transform

    src = x_dim.refsys or y_dim.refsys
    if src is None:
        raise DimensionMismatch(
            f"Dimensions {x_dim.name!r}/{y_dim.name!r} have no reference system."
        )
    left, right = x_dim.bounds
    bottom, top = y_dim.bounds
    transform, width, height = calculate_default_transform(
        src, dst, x_dim.length, y_dim.length,
        left=left, bottom=bottom, right=right, top=top,
    )
    logger.debug("Reprojected grid %s -> %s: %dx%d", src, dst, height, width)
    new_x = replace(x_dim, length=int(width), offset=transform.c, delta=transform.a, refsys=dst)
    new_y = replace(y_dim, length=int(height), offset=transform.f, delta=transform.e, refsys=dst)
    return new_x, new_y
