"""Raster operations – eager xarray / dask implementations.

These functions operate on realized (or dask-backed) ``xr.DataArray``
blocks.  The pipeline executor calls them when a proxy cube is consumed,
and :class:`~proxycube.datacube.DataCube` exposes them as fluent methods.
"""

from __future__ import annotations

import importlib
from typing import Any, Callable, Sequence

import numpy as np
import pandas as pd
import xarray as xr

from proxycube.exceptions import (
    BandExists,
    DimensionAmbiguous,
    DimensionMismatch,
    KernelDimensionsUneven,
    NirBandAmbiguous,
    RedBandAmbiguous,
)
from proxycube.types import Extent, RasterCube, Resolution

# ---------------------------------------------------------------------------
# NDVI
# ---------------------------------------------------------------------------


def check_ndvi_bands(
    band_labels: Sequence[Any],
    *,
    nir: str,
    red: str,
    target_band: str | None = None,
) -> None:
    """Validate band labels for :func:`ndvi` without touching any data.

    Raises
    ------
    NirBandAmbiguous
        If the NIR band cannot be found.
    RedBandAmbiguous
        If the red band cannot be found.
    BandExists
        If *target_band* already exists as a label in the bands dimension.
    """
    labels = list(band_labels)
    if nir not in labels:
        raise NirBandAmbiguous(
            f"The NIR band '{nir}' can't be resolved. "
            f"Available bands: {labels}. "
            f"Please specify the NIR band name."
        )
    if red not in labels:
        raise RedBandAmbiguous(
            f"The red band '{red}' can't be resolved. "
            f"Available bands: {labels}. "
            f"Please specify the red band name."
        )
    if target_band is not None and target_band in labels:
        raise BandExists(f"A band with the name '{target_band}' already exists.")


def ndvi(
    data: RasterCube,
    *,
    nir: str = "nir",
    red: str = "red",
    target_band: str | None = None,
    bands_dim: str = "bands",
) -> RasterCube:
    """Compute the Normalized Difference Vegetation Index ``(nir - red) / (nir + red)``.

    The result depends only on the band values of each cell, so it commutes
    with spatial downsampling.

    Parameters
    ----------
    data : RasterCube
        Raster cube with a *bands_dim* dimension holding at least the
        *nir* and *red* bands.
    nir, red : str
        Band labels for the near-infrared and red channels.
    target_band : str | None
        If given, the NDVI is appended as a new band with this name and
        the bands dimension is kept.  If ``None`` (default) the bands
        dimension is dropped.

    Raises
    ------
    DimensionAmbiguous
        If *bands_dim* is not present in the data cube.
    """
    if bands_dim not in data.dims:
        raise DimensionAmbiguous(
            f"Dimension of type 'bands' ('{bands_dim}') is not available. "
            f"Available dimensions: {list(data.dims)}"
        )
    check_ndvi_bands(
        data.coords[bands_dim].values.tolist(), nir=nir, red=red, target_band=target_band
    )

    nir_data = data.sel({bands_dim: nir}).astype(np.float32)
    red_data = data.sel({bands_dim: red}).astype(np.float32)

    # NaN where the denominator vanishes; NaN inputs stay NaN.
    denominator = nir_data + red_data
    result = xr.where(denominator != 0, (nir_data - red_data) / denominator, np.nan)
    result = result.astype(np.float32)
    result.attrs = dict(data.attrs)

    if target_band is not None:
        result = result.expand_dims({bands_dim: [target_band]})
        result = xr.concat(
            [data.astype(np.float32), result.transpose(*data.dims)],
            dim=bands_dim,
            coords="minimal",
            join="override",
        )
        result.attrs = dict(data.attrs)
    else:
        result.name = "ndvi"

    return result


# ---------------------------------------------------------------------------
# filter_bbox
# ---------------------------------------------------------------------------


def filter_bbox(
    data: RasterCube,
    extent: Extent,
    *,
    x_dim: str = "x",
    y_dim: str = "y",
) -> RasterCube:
    """Restrict a raster cube to the cells whose centres fall inside *extent*.

    Handles both ascending and descending y coordinates.
    """
    y_coords = data.coords[y_dim].values
    if len(y_coords) < 2 or y_coords[0] < y_coords[-1]:
        y_slice = slice(extent.south, extent.north)
    else:
        y_slice = slice(extent.north, extent.south)

    x_coords = data.coords[x_dim].values
    if len(x_coords) < 2 or x_coords[0] < x_coords[-1]:
        x_slice = slice(extent.west, extent.east)
    else:
        x_slice = slice(extent.east, extent.west)

    return data.sel({x_dim: x_slice, y_dim: y_slice})


# ---------------------------------------------------------------------------
# decimate (nearest-cell downsampling)
# ---------------------------------------------------------------------------


def nearest_indices(size: int, target: int) -> np.ndarray:
    """Source index sampled for each of *target* output cells.

    Output cell ``i`` covers source cells ``[i * size / target, (i + 1) * size / target)``
    and takes the one under its centre, which is the rule GDAL applies for
    nearest-neighbour decimated reads.
    """
    if target <= 0:
        raise ValueError(f"Target size must be positive, got {target}")
    idx = np.floor((np.arange(target) + 0.5) * size / target).astype(np.int64)
    return np.clip(idx, 0, size - 1)


def decimate(
    data: RasterCube,
    shape: Resolution,
    *,
    x_dim: str = "x",
    y_dim: str = "y",
) -> RasterCube:
    """Resample the spatial dimensions of *data* to *shape* ``(rows, cols)``.

    Uses :func:`nearest_indices`, so for any cell-independent function ``f``
    ``decimate(f(data)) == f(decimate(data))``.  Regular coordinates are
    relabelled to the centres of the output cells.  Spatial dimensions that
    are not present (e.g. reduced away) are skipped.
    """
    rows, cols = shape
    result = data
    for dim, target in ((y_dim, rows), (x_dim, cols)):
        if dim not in result.dims:
            continue
        size = result.sizes[dim]
        if size == target:
            continue
        result = result.isel({dim: nearest_indices(size, target)})
        if dim in data.coords:
            result = result.assign_coords({dim: _resampled_centres(data.coords[dim].values, target)})
    result.attrs = dict(data.attrs)
    return result


def _resampled_centres(coords: np.ndarray, target: int) -> np.ndarray:
    if len(coords) < 2 or coords.dtype.kind not in "fiu":
        return coords[nearest_indices(len(coords), target)]
    step = float(coords[1] - coords[0])
    edge = float(coords[0]) - step / 2
    new_step = step * len(coords) / target
    return edge + (np.arange(target) + 0.5) * new_step


# ---------------------------------------------------------------------------
# apply (per-cell or per-subarray function)
# ---------------------------------------------------------------------------


def apply(
    data: RasterCube,
    process: Callable[..., Any],
    *,
    over: Sequence[str] = (),
    context: Any = None,
) -> RasterCube:
    """Apply *process* to every cell, or to every subarray along *over*.

    With an empty *over* the function is applied element-wise through
    :func:`xarray.apply_ufunc` (dask-safe).  Otherwise *process* receives one
    array per combination of the remaining dimensions, with the *over*
    dimensions as its trailing axes, and must return an array of the same
    shape.

    Parameters
    ----------
    process : callable
        Function ``f(x, context=...) -> x``.
    over : sequence of str
        Dimensions the function sees as a whole.
    context
        Optional extra data forwarded to *process*.
    """
    missing = [d for d in over if d not in data.dims]
    if missing:
        raise DimensionMismatch(
            f"Dimension(s) {missing} do not exist. Available dimensions: {list(data.dims)}"
        )
    kwargs = {"context": context} if context is not None else {}
    if not over:
        return xr.apply_ufunc(
            process,
            data,
            kwargs=kwargs,
            dask="parallelized",
            output_dtypes=[data.dtype],
            keep_attrs=True,
        )

    core = list(over)
    result = xr.apply_ufunc(
        process,
        data,
        kwargs=kwargs,
        input_core_dims=[core],
        output_core_dims=[core],
        vectorize=True,
        dask="parallelized",
        dask_gufunc_kwargs={"allow_rechunk": True},
        output_dtypes=[data.dtype],
        keep_attrs=True,
    )
    return result.transpose(*data.dims)


# ---------------------------------------------------------------------------
# reduce_dimension
# ---------------------------------------------------------------------------


# Built-in reducer names mapped to numpy functions.  NaN propagates, so
# absent cells are never silently skipped.
_BUILTIN_REDUCERS: dict[str, Callable[..., Any]] = {
    "mean": np.mean,
    "average": np.mean,
    "sum": np.sum,
    "min": np.min,
    "max": np.max,
    "median": np.median,
    "std": np.std,
    "var": np.var,
    "prod": np.prod,
    "any": np.any,
    "all": np.all,
    "count": lambda x, axis=None: np.sum(np.isfinite(x), axis=axis),
}


def resolve_reducer(reducer: str | Callable[..., Any]) -> Callable[..., Any]:
    """Resolve *reducer* to a callable.

    Accepts a callable (returned as-is), a built-in name (``"mean"``,
    ``"sum"``, ...) or a dotted Python path (e.g. ``"numpy.nanmean"``).

    Raises
    ------
    TypeError
        If *reducer* is neither a string nor a callable.
    ValueError
        If the string cannot be resolved to a callable.
    """
    if callable(reducer):
        return reducer

    if not isinstance(reducer, str):
        raise TypeError(
            f"reducer must be a callable or a string, got {type(reducer)!r}"
        )

    builtin = _BUILTIN_REDUCERS.get(reducer)
    if builtin is not None:
        return builtin

    module_path, _, func_name = reducer.rpartition(".")
    if module_path:
        try:
            func = getattr(importlib.import_module(module_path), func_name, None)
        except ImportError:
            func = None
        if callable(func):
            return func

    raise ValueError(
        f"Unknown reducer {reducer!r}. Use a callable, a built-in name "
        f"({', '.join(sorted(_BUILTIN_REDUCERS))}), or a dotted Python "
        f"path like 'numpy.nanmean'."
    )


def reduce_dimension(
    data: RasterCube,
    reducer: str | Callable[..., Any],
    *,
    dimension: str | Sequence[str],
    context: Any = None,
) -> RasterCube:
    """Collapse one or more dimensions by applying a reducer function.

    The reducer receives the values along *dimension* for each remaining
    cell and must return a single value.  The reduced dimensions are
    dropped; the others keep their order and length.

    Raises
    ------
    DimensionMismatch
        If a *dimension* does not exist.
    ValueError
        If a string *reducer* cannot be resolved to a callable.
    """
    dims = [dimension] if isinstance(dimension, str) else list(dimension)
    missing = [d for d in dims if d not in data.dims]
    if missing:
        raise DimensionMismatch(
            f"Dimension(s) {missing} do not exist. "
            f"Available dimensions: {list(data.dims)}"
        )

    reduce_fn = resolve_reducer(reducer)

    if context is not None:
        def _wrapper(values: np.ndarray, axis: int | tuple[int, ...] | None = None) -> np.ndarray:
            return reduce_fn(values, axis=axis, context=context)

        return data.reduce(_wrapper, dim=dims, keep_attrs=True)
    return data.reduce(reduce_fn, dim=dims, keep_attrs=True)


# ---------------------------------------------------------------------------
# apply_kernel
# ---------------------------------------------------------------------------

# Border mode names mapped to scipy.ndimage mode names
_BORDER_MODE_MAP: dict[str, str] = {
    "replicate": "nearest",
    "reflect": "reflect",
    "reflect_pixel": "mirror",
    "wrap": "wrap",
}


def check_kernel(kernel: Any) -> np.ndarray:
    """Return *kernel* as a 2-D float array with odd side lengths.

    Raises
    ------
    KernelDimensionsUneven
        If the kernel is not 2-D or a side has an even length.
    """
    kernel_arr = np.asarray(kernel, dtype=np.float64)
    if kernel_arr.ndim != 2:
        raise KernelDimensionsUneven("The kernel must be a two-dimensional array.")
    if kernel_arr.shape[0] % 2 == 0 or kernel_arr.shape[1] % 2 == 0:
        raise KernelDimensionsUneven(
            "Each dimension of the kernel must have an uneven number of elements."
        )
    return kernel_arr


def apply_kernel(
    data: RasterCube,
    *,
    kernel: Any,
    factor: float = 1.0,
    border: float | str = 0,
    replace_invalid: float = 0.0,
    x_dim: str = "x",
    y_dim: str = "y",
) -> RasterCube:
    """Apply a 2-D spatial convolution kernel to each ``(y, x)`` slice.

    Every output cell depends on its neighbours, so this operation must run
    at native resolution.

    Parameters
    ----------
    kernel : array-like
        2-D array of convolution weights with odd side lengths.
    factor : float
        Multiplicative factor applied to each convolved value.
    border : float | str
        A number fills borders with that constant; ``"replicate"``,
        ``"reflect"``, ``"reflect_pixel"`` or ``"wrap"`` pick a strategy.
    replace_invalid : float
        Value substituted for NaN / Inf *inside the convolution only*.
        Cells that were NaN on input are NaN on output.

    Raises
    ------
    KernelDimensionsUneven
        If either kernel dimension has an even number of elements.
    DimensionMismatch
        If the spatial dimensions are not found.
    """
    from scipy.ndimage import convolve

    kernel_arr = check_kernel(kernel)

    for dim in (y_dim, x_dim):
        if dim not in data.dims:
            raise DimensionMismatch(
                f"A dimension with the specified name '{dim}' does not exist. "
                f"Available dimensions: {list(data.dims)}"
            )

    if isinstance(border, str):
        scipy_mode = _BORDER_MODE_MAP.get(border)
        if scipy_mode is None:
            raise ValueError(
                f"Unknown border mode {border!r}. Choose from: "
                f"{list(_BORDER_MODE_MAP)} or a numeric constant."
            )
        cval = 0.0
    else:
        scipy_mode = "constant"
        cval = float(border)

    def _convolve_slice(arr: np.ndarray) -> np.ndarray:
        valid = np.isfinite(arr)
        filled = np.where(valid, arr, replace_invalid)
        out = convolve(filled, kernel_arr, mode=scipy_mode, cval=cval) * factor
        return np.where(valid, out, np.nan)

    spatial_dims = [y_dim, x_dim]
    result = xr.apply_ufunc(
        _convolve_slice,
        data.astype(np.float64),
        input_core_dims=[spatial_dims],
        output_core_dims=[spatial_dims],
        vectorize=True,
        dask="parallelized",
        dask_gufunc_kwargs={"allow_rechunk": True},
        output_dtypes=[np.float64],
        keep_attrs=True,
    )
    return result.transpose(*data.dims)


# ---------------------------------------------------------------------------
# resample_spatial
# ---------------------------------------------------------------------------

# gdalwarp resampling names accepted by resample_spatial
RESAMPLE_METHODS = (
    "near", "bilinear", "cubic", "cubicspline", "lanczos", "average",
    "mode", "max", "min", "med", "q1", "q3", "sum", "rms",
)


def resample_spatial(
    data: RasterCube,
    *,
    resolution: float | Sequence[float] = 0,
    projection: int | str | None = None,
    method: str = "near",
    x_dim: str = "x",
    y_dim: str = "y",
) -> RasterCube:
    """Warp the spatial dimensions of a realized cube to a new grid.

    Used on consumed blocks (``consume(crs=...)``), never on the source:
    the source is always read in its own CRS.  Backed by ``rioxarray``; the
    source CRS comes from ``data.attrs["crs"]`` or rioxarray metadata.

    Parameters
    ----------
    resolution : float | sequence of float
        Target cell size in units of the target CRS, one number or
        ``(x_res, y_res)``.  ``0`` lets GDAL choose.
    projection : int | str | None
        Target CRS (EPSG code or any string pyproj accepts).  ``None``
        keeps the current CRS.
    method : str
        gdalwarp resampling name, one of :data:`RESAMPLE_METHODS`.

    Raises
    ------
    ValueError
        For an unknown *method*.
    DimensionMismatch
        If the spatial dimensions are not found.
    """
    import rioxarray  # noqa: F401
    from rasterio.enums import Resampling

    if projection is None and not np.any(resolution):
        return data
    if method not in RESAMPLE_METHODS:
        raise ValueError(
            f"Unknown resampling method {method!r}. Choose from {list(RESAMPLE_METHODS)}"
        )
    missing = [d for d in (y_dim, x_dim) if d not in data.dims]
    if missing:
        raise DimensionMismatch(
            f"Dimension(s) {missing} do not exist. Available dimensions: {list(data.dims)}"
        )

    # gdalwarp's "near" and "cubicspline" are spelled differently in rasterio
    resampling = Resampling[{"near": "nearest", "cubicspline": "cubic_spline"}.get(method, method)]
    if isinstance(resolution, (int, float)):
        cell_size = (float(resolution), float(resolution)) if resolution else None
    else:
        res_x, res_y = (float(v) for v in resolution)
        cell_size = (res_x, res_y) if res_x > 0 and res_y > 0 else None

    attrs = {k: v for k, v in data.attrs.items() if k != "crs"}
    src_crs = data.attrs.get("crs")
    data = data.rio.set_spatial_dims(x_dim=x_dim, y_dim=y_dim)
    if data.rio.crs is None:
        data = data.rio.write_crs(src_crs or "EPSG:4326")
    dst_crs = data.rio.crs if projection is None else (
        f"EPSG:{projection}" if isinstance(projection, int) else projection
    )

    others = [d for d in data.dims if d not in (x_dim, y_dim)]
    warped = _warp(
        data.transpose(*others, y_dim, x_dim), others,
        x_dim=x_dim, y_dim=y_dim, dst_crs=dst_crs, cell_size=cell_size, resampling=resampling,
    )
    warped = _rename_spatial_dims(warped, x_dim, y_dim).transpose(*others, y_dim, x_dim)
    crs = warped.rio.crs
    warped.attrs = {**attrs, **({"crs": crs.to_string()} if crs is not None else {})}
    return warped


def _rename_spatial_dims(data: RasterCube, x_dim: str, y_dim: str) -> RasterCube:
    # rio.reproject names its output dimensions "x" and "y"
    rename = {
        old: new for old, new in (("x", x_dim), ("y", y_dim))
        if old != new and old in data.dims and new not in data.dims
    }
    return data.rename(rename) if rename else data


def _warp(data: RasterCube, others: list[str], **kwargs: Any) -> RasterCube:
    # rioxarray warps (y, x) and (band, y, x) arrays; split along the
    # leading dimensions until one non-spatial dimension is left
    if len(others) <= 1:
        grid = data.rio.set_spatial_dims(x_dim=kwargs["x_dim"], y_dim=kwargs["y_dim"])
        return grid.rio.reproject(
            kwargs["dst_crs"], resolution=kwargs["cell_size"], resampling=kwargs["resampling"]
        )
    first = others[0]
    parts = [
        _warp(data.isel({first: i}, drop=True), others[1:], **kwargs)
        for i in range(data.sizes[first])
    ]
    index = pd.Index(data[first].values, name=first) if first in data.coords else first
    return xr.concat(parts, dim=index)
