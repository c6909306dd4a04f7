"""DataCube – fluent wrapper around a realized raster cube.

Usage::

    import proxycube

    cube = proxycube.open("scene.tif", materialize=True)
    result = cube.ndvi(nir="nir", red="red").compute()

A ``DataCube`` is what consuming a :class:`~proxycube.proxy.ProxyCube`
produces.  Its methods run eagerly; call :meth:`DataCube.lazy` to continue
with a deferred chain instead.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Mapping

import numpy as np
import pandas as pd
import xarray as xr

from proxycube.config import ProxyCubeConfig, get_config
from proxycube.dimensions import Dimension, dimensions_from_dataarray
from proxycube.exceptions import DimensionMismatch
from proxycube.types import Extent, RasterCube

if TYPE_CHECKING:
    from proxycube.proxy import ProxyCube


class DataCube:
    """Immutable wrapper around a realized ``xr.DataArray``.

    Methods return **new** ``DataCube`` instances so that the original is
    never mutated.
    """

    def __init__(self, data: RasterCube, *, config: ProxyCubeConfig | None = None) -> None:
        if not isinstance(data, xr.DataArray):
            raise TypeError(f"DataCube wraps an xarray.DataArray, got {type(data).__name__}")
        self._data = data
        self._config = config or get_config()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def data(self) -> RasterCube:
        """Access the underlying xarray DataArray."""
        return self._data

    @property
    def config(self) -> ProxyCubeConfig:
        return self._config

    @property
    def dims(self) -> tuple[Dimension, ...]:
        cfg = self._config
        return dimensions_from_dataarray(
            self._data, x_dim=cfg.x_dim, y_dim=cfg.y_dim, bands_dim=cfg.bands_dim
        )

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self._data.shape)

    # ------------------------------------------------------------------
    # Raster operations
    # ------------------------------------------------------------------

    def ndvi(self, *, nir: str = "nir", red: str = "red", target_band: str | None = None) -> "DataCube":
        """Compute NDVI over the bands dimension."""
        from proxycube.ops.raster import ndvi as _ndvi

        return self._wrap(
            _ndvi(self._data, nir=nir, red=red, target_band=target_band,
                  bands_dim=self._config.bands_dim)
        )

    def filter_bbox(self, extent: Extent) -> "DataCube":
        """Keep the cells whose centres fall inside *extent*."""
        from proxycube.ops.raster import filter_bbox as _fb

        cfg = self._config
        return self._wrap(_fb(self._data, extent, x_dim=cfg.x_dim, y_dim=cfg.y_dim))

    def apply(
        self,
        process: Callable[..., Any],
        *,
        over: tuple[str, ...] = (),
        context: Any = None,
    ) -> "DataCube":
        """Apply a function element-wise, or per subarray along *over*."""
        from proxycube.ops.raster import apply as _apply

        return self._wrap(_apply(self._data, process, over=over, context=context))

    def reduce_dimension(
        self,
        reducer: str | Callable[..., Any],
        *,
        dimension: str | list[str],
        context: Any = None,
    ) -> "DataCube":
        """Collapse *dimension* with *reducer*."""
        from proxycube.ops.raster import reduce_dimension as _reduce

        return self._wrap(_reduce(self._data, reducer, dimension=dimension, context=context))

    def apply_kernel(
        self,
        kernel: Any,
        *,
        factor: float = 1.0,
        border: float | str = 0,
        replace_invalid: float = 0.0,
    ) -> "DataCube":
        """Convolve every ``(y, x)`` slice with *kernel*."""
        from proxycube.ops.raster import apply_kernel as _ak

        cfg = self._config
        return self._wrap(
            _ak(self._data, kernel=kernel, factor=factor, border=border,
                replace_invalid=replace_invalid, x_dim=cfg.x_dim, y_dim=cfg.y_dim)
        )

    def resample_spatial(
        self,
        *,
        resolution: float | list[float] = 0,
        projection: int | str | None = None,
        method: str = "near",
    ) -> "DataCube":
        """Resample and/or reproject spatial dimensions (needs ``rioxarray``)."""
        from proxycube.ops.raster import resample_spatial as _rs

        cfg = self._config
        return self._wrap(
            _rs(self._data, resolution=resolution, projection=projection, method=method,
                x_dim=cfg.x_dim, y_dim=cfg.y_dim)
        )

    # ------------------------------------------------------------------
    # Attributes as a categorical dimension
    # ------------------------------------------------------------------

    def split(self, dim: str | None = None) -> dict[str, "DataCube"]:
        """Split along *dim* (default: the bands dimension) into one cube per label."""
        dim = dim or self._config.bands_dim
        if dim not in self._data.dims:
            raise DimensionMismatch(
                f"A dimension with the specified name '{dim}' does not exist. "
                f"Available dimensions: {list(self._data.dims)}"
            )
        return {
            str(label): self._wrap(self._data.sel({dim: label}, drop=True).rename(str(label)))
            for label in self._data.coords[dim].values
        }

    @classmethod
    def merge(
        cls,
        cubes: Mapping[str, "DataCube"],
        dim: str | None = None,
        *,
        config: ProxyCubeConfig | None = None,
    ) -> "DataCube":
        """Stack cubes sharing all dimensions into one, labelled along *dim*."""
        if not cubes:
            raise ValueError("merge() needs at least one cube.")
        config = config or next(iter(cubes.values())).config
        dim = dim or config.bands_dim
        arrays = [c.data for c in cubes.values()]
        first = arrays[0]
        for name, arr in zip(cubes, arrays):
            if arr.dims != first.dims or arr.shape != first.shape:
                raise DimensionMismatch(
                    f"Cube {name!r} has dims {dict(arr.sizes)}, expected {dict(first.sizes)}."
                )
            if dim in arr.dims:
                raise DimensionMismatch(f"Cube {name!r} already has a {dim!r} dimension.")
        merged = xr.concat(
            [a.rename(None) for a in arrays],
            dim=pd.Index(list(cubes), name=dim),
            coords="minimal",
            join="override",
        )
        merged.attrs = dict(first.attrs)
        return cls(merged, config=config)

    # ------------------------------------------------------------------
    # Materialisation / consumers
    # ------------------------------------------------------------------

    def compute(self) -> "DataCube":
        """Materialise dask-backed data into memory."""
        if self._data.chunks is not None:
            return self._wrap(self._data.compute())
        return self

    def lazy(self) -> "ProxyCube":
        """Continue with a deferred chain over this cube's values."""
        from proxycube.io.source import ArraySource
        from proxycube.proxy import ProxyCube

        source = ArraySource(self._data, config=self._config)
        return ProxyCube(source, source.probe(), config=self._config)

    def plot(self, *args: Any, **kwargs: Any) -> Any:
        """Delegate to :meth:`xarray.DataArray.plot`."""
        return self._data.plot(*args, **kwargs)

    def to_raster(self, path: str | Path, **kwargs: Any) -> Path:
        """Write the cube as a GeoTIFF through rioxarray.

        The cube must be ``(y, x)`` or ``(bands, y, x)``.  NaN is written as
        nodata; extra keyword arguments go to ``rio.to_raster``.
        """
        import rioxarray  # noqa: F401

        cfg = self._config
        data = self._data
        extra = [d for d in data.dims if d not in (cfg.x_dim, cfg.y_dim)]
        if len(extra) > 1:
            raise DimensionMismatch(
                f"to_raster() writes (bands, y, x) cubes; reduce {extra[1:]} first."
            )
        data = data.transpose(*extra, cfg.y_dim, cfg.x_dim)
        crs = data.attrs.get("crs")
        data = data.copy()
        data.attrs = {k: v for k, v in data.attrs.items() if k != "crs"}
        if extra:
            data.attrs["long_name"] = tuple(str(v) for v in data.coords[extra[0]].values)
        data = data.rio.set_spatial_dims(x_dim=cfg.x_dim, y_dim=cfg.y_dim)
        if crs is not None and data.rio.crs is None:
            data = data.rio.write_crs(crs)
        if np.issubdtype(data.dtype, np.floating):
            data = data.rio.write_nodata(np.nan, encoded=False)
        path = Path(path)
        data.rio.to_raster(path, **kwargs)
        return path

    # ------------------------------------------------------------------
    # Dunder helpers
    # ------------------------------------------------------------------

    def __repr__(self) -> str:
        return f"<DataCube {dict(self._data.sizes)} dtype={self._data.dtype}>"

    def _wrap(self, data: RasterCube) -> "DataCube":
        return DataCube(data, config=self._config)
