"""Raster sources – the external I/O layer a proxy cube reads through.

A source answers two questions: which dimensions does the resource have
(:meth:`RasterSource.probe`), and what are the values inside a region at a
given output shape (:meth:`RasterSource.read_region`).  proxycube never
parses a file format itself; :class:`RasterioSource` delegates to GDAL via
**rasterio**, :class:`ArraySource` wraps an array that is already in memory
(or dask-backed).
"""

from __future__ import annotations

import logging
import math
import uuid
from typing import Any, Protocol, runtime_checkable

import numpy as np
import xarray as xr

from proxycube.config import ProxyCubeConfig, get_config
from proxycube.dimensions import Dimension, DimensionKind, dimensions_from_dataarray
from proxycube.exceptions import ReadError, SourceUnavailable
from proxycube.ops.raster import decimate, filter_bbox
from proxycube.types import Extent, Resolution

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class RasterSource(Protocol):
    """Protocol for readable raster resources.

    Implementations must be read-only and safe to share between proxy cubes
    and between threads.
    """

    handle: str

    def probe(self) -> tuple[Dimension, ...]:
        ...

    def read_region(self, extent: Extent | None, shape: Resolution | None) -> xr.DataArray:
        ...


# ---------------------------------------------------------------------------
# rasterio / GDAL
# ---------------------------------------------------------------------------


class RasterioSource:
    """A GDAL-readable raster (file path, URL, ``/vsizip/`` archive member, ...).

    Every call opens its own dataset, so one instance can serve concurrent
    readers.

    Parameters
    ----------
    handle : str
        Anything :func:`rasterio.open` accepts.
    band_names : list[str] | None
        Labels for the bands dimension.  Defaults to the band descriptions
        stored in the file, falling back to ``"1"``, ``"2"``, ...
    config : ProxyCubeConfig | None
        Dimension names and read resampling.  Uses :func:`get_config` when
        ``None``.
    """

    def __init__(
        self,
        handle: str,
        *,
        band_names: list[str] | None = None,
        config: ProxyCubeConfig | None = None,
    ) -> None:
        self.handle = str(handle)
        self.band_names = band_names
        self.config = config or get_config()

    def __repr__(self) -> str:
        return f"RasterioSource({self.handle!r})"

    def probe(self) -> tuple[Dimension, ...]:
        """Read the header and describe the ``(bands, y, x)`` grid.

        Raises
        ------
        SourceUnavailable
            If GDAL cannot open the resource.
        """
        import rasterio
        from rasterio.errors import RasterioIOError

        try:
            with rasterio.open(self.handle) as ds:
                crs = ds.crs.to_string() if ds.crs is not None else None
                transform = ds.transform
                labels = self._labels(ds)
                width, height = ds.width, ds.height
        except RasterioIOError as exc:
            raise SourceUnavailable(f"Cannot open raster {self.handle!r}: {exc}") from exc

        if transform.b != 0 or transform.d != 0:
            raise SourceUnavailable(
                f"Raster {self.handle!r} has a rotated geotransform, which is not supported."
            )

        cfg = self.config
        return (
            Dimension(cfg.bands_dim, DimensionKind.CATEGORICAL, len(labels),
                      values=tuple(labels), axis="bands"),
            Dimension(cfg.y_dim, DimensionKind.REGULAR, height,
                      offset=transform.f, delta=transform.e, refsys=crs, axis="y"),
            Dimension(cfg.x_dim, DimensionKind.REGULAR, width,
                      offset=transform.c, delta=transform.a, refsys=crs, axis="x"),
        )

    def read_region(self, extent: Extent | None, shape: Resolution | None) -> xr.DataArray:
        """Read *extent* resampled to *shape* in one ``DatasetReader.read`` call.

        Nodata cells come back as NaN.

        Raises
        ------
        ReadError
            On any I/O failure, including a resource that disappeared after
            it was probed.
        """
        import rasterio
        from rasterio.enums import Resampling
        from rasterio.errors import RasterioIOError
        from rasterio.transform import Affine
        from rasterio.windows import Window

        try:
            with rasterio.open(self.handle) as ds:
                full = Window(0, 0, ds.width, ds.height)
                window = full if extent is None else _centre_window(ds.transform, extent, ds.width, ds.height)
                if window is None:
                    raise ReadError(f"Region {extent} selects no cells of raster {self.handle!r}")
                rows, cols = shape if shape is not None else (int(window.height), int(window.width))
                masked = ds.read(
                    window=window,
                    out_shape=(ds.count, rows, cols),
                    resampling=getattr(Resampling, self.config.read_resampling),
                    masked=True,
                )
                transform = ds.window_transform(window) @ Affine.scale(
                    window.width / cols, window.height / rows
                )
                labels = self._labels(ds)
                crs = ds.crs.to_string() if ds.crs is not None else None
        except (RasterioIOError, OSError) as exc:
            raise ReadError(f"Failed reading {self.handle!r}: {exc}") from exc

        values = np.ma.filled(masked.astype(np.float64), np.nan)
        cfg = self.config
        data = xr.DataArray(
            values,
            dims=[cfg.bands_dim, cfg.y_dim, cfg.x_dim],
            coords={
                cfg.bands_dim: labels,
                cfg.y_dim: transform.f + (np.arange(rows) + 0.5) * transform.e,
                cfg.x_dim: transform.c + (np.arange(cols) + 0.5) * transform.a,
            },
        )
        if crs is not None:
            data.attrs["crs"] = crs
        return data

    def _labels(self, ds: Any) -> list[str]:
        if self.band_names is not None:
            if len(self.band_names) != ds.count:
                raise SourceUnavailable(
                    f"{len(self.band_names)} band names given for {ds.count} bands "
                    f"in {self.handle!r}"
                )
            return list(self.band_names)
        descriptions = list(ds.descriptions or ())
        if len(descriptions) == ds.count and all(descriptions) and len(set(descriptions)) == ds.count:
            return [str(d) for d in descriptions]
        return [str(i) for i in range(1, ds.count + 1)]


def _centre_window(transform: Any, extent: Extent, width: int, height: int) -> Any:
    """Window of the cells whose centres fall inside *extent*, or ``None``.

    Same selection rule as :func:`~proxycube.ops.raster.filter_bbox`, so a
    GeoTIFF read and an in-memory crop return the same cells.
    """
    from rasterio.windows import Window

    # fractional index of the cell whose centre sits on each edge
    cols = sorted(((extent.west - transform.c) / transform.a - 0.5,
                   (extent.east - transform.c) / transform.a - 0.5))
    rows = sorted(((extent.north - transform.f) / transform.e - 0.5,
                   (extent.south - transform.f) / transform.e - 0.5))
    col_start, col_stop = max(0, math.ceil(cols[0])), min(width, math.floor(cols[1]) + 1)
    row_start, row_stop = max(0, math.ceil(rows[0])), min(height, math.floor(rows[1]) + 1)
    if col_stop <= col_start or row_stop <= row_start:
        return None
    return Window(col_start, row_start, col_stop - col_start, row_stop - row_start)


# ---------------------------------------------------------------------------
# In-memory / dask-backed arrays
# ---------------------------------------------------------------------------


class ArraySource:
    """Serve reads from an ``xr.DataArray``.

    Used to lift a realized cube into a proxy chain, and to wrap
    dask-backed arrays whose blocks are only computed when read.
    """

    def __init__(
        self,
        data: xr.DataArray,
        *,
        handle: str | None = None,
        config: ProxyCubeConfig | None = None,
    ) -> None:
        self.data = data
        self.handle = handle or f"memory://{data.name or 'array'}-{uuid.uuid4().hex[:8]}"
        self.config = config or get_config()

    def __repr__(self) -> str:
        return f"ArraySource({self.handle!r}, dims={tuple(self.data.dims)})"

    def probe(self) -> tuple[Dimension, ...]:
        cfg = self.config
        return dimensions_from_dataarray(
            self.data, x_dim=cfg.x_dim, y_dim=cfg.y_dim, bands_dim=cfg.bands_dim
        )

    def read_region(self, extent: Extent | None, shape: Resolution | None) -> xr.DataArray:
        cfg = self.config
        data = self.data
        spatial = cfg.x_dim in data.dims and cfg.y_dim in data.dims
        if extent is not None and spatial:
            data = filter_bbox(data, extent, x_dim=cfg.x_dim, y_dim=cfg.y_dim)
        if shape is not None and spatial:
            data = decimate(data, shape, x_dim=cfg.x_dim, y_dim=cfg.y_dim)
        try:
            return data.compute()
        except OSError as exc:
            raise ReadError(f"Failed reading {self.handle!r}: {exc}") from exc


# ---------------------------------------------------------------------------
# Module-level convenience
# ---------------------------------------------------------------------------


def resolve_source(
    source: Any,
    *,
    adapter: RasterSource | None = None,
    config: ProxyCubeConfig | None = None,
) -> RasterSource:
    """Turn a handle into a :class:`RasterSource`.

    An explicit *adapter* wins.  ``RasterSource`` instances pass through,
    ``xr.DataArray`` objects become :class:`ArraySource`, anything else is
    treated as a GDAL handle for :class:`RasterioSource`.
    """
    if adapter is not None:
        return adapter
    if isinstance(source, xr.DataArray):
        return ArraySource(source, config=config)
    if isinstance(source, RasterSource):
        return source
    return RasterioSource(str(source), config=config)


def probe(handle: Any, *, adapter: RasterSource | None = None) -> tuple[Dimension, ...]:
    """Describe the dimensions of *handle* without reading pixel values."""
    return resolve_source(handle, adapter=adapter).probe()


def read_region(
    handle: Any,
    region: Extent | None,
    resolution: Resolution | None,
    *,
    adapter: RasterSource | None = None,
) -> xr.DataArray:
    """Read *region* of *handle* at the output shape *resolution*."""
    source = resolve_source(handle, adapter=adapter)
    logger.info("Reading %s region=%s shape=%s", source.handle, region, resolution)
    return source.read_region(region, resolution)
