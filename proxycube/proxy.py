"""Proxy cubes – deferred reading and computing.

Opening a large raster returns a :class:`ProxyCube`: the source has been
probed for its dimensions, but no pixel has been read.  Every transform
appends a node to a pending chain and returns a new proxy.  Nothing runs
until a consumer asks for a result at a concrete resolution and extent::

    import proxycube
    from proxycube import Extent

    scene = proxycube.open("S2_scene.tif")              # 10980 x 10980, nothing read
    ndvi = scene.ndvi(nir="B08", red="B04")              # recorded, not evaluated
    preview = ndvi.consume(resolution=(500, 500))        # reads 500 x 500 cells
    detail = ndvi.consume(extent=Extent(600000, 5090000, 610000, 5100000))

Because NDVI only looks at the bands of each cell, the first consumption
asks GDAL for a 500 x 500 overview instead of the full scene.  A kernel
(``apply_kernel``) needs neighbouring cells, so a chain containing one is
read at native resolution and downsampled afterwards.
"""

from __future__ import annotations

import logging
import math
from functools import partial
from pathlib import Path
from typing import Any, Callable, MutableMapping, Sequence

from proxycube.config import ProxyCubeConfig, get_config
from proxycube.datacube import DataCube
from proxycube.dimensions import (
    Dimension,
    DimensionKind,
    cell_count,
    dimension_names,
    find_dimension,
    require_dimensions,
)
from proxycube.exceptions import (
    DimensionAmbiguous,
    DimensionMismatch,
    ReadError,
    SourceUnavailable,
    UnsupportedReorder,
)
from proxycube.io.source import RasterSource, resolve_source
from proxycube.ops import raster as raster_ops
from proxycube.pipeline.executor import execute_chain
from proxycube.pipeline.nodes import ApplyOp, PendingOp, ReadOp, ReduceOp, chain_to_list
from proxycube.pipeline.planner import check_resolution, plan_read
from proxycube.types import Extent, Resolution

logger = logging.getLogger(__name__)


class ProxyCube:
    """A data cube whose values are read and computed on consumption.

    A proxy holds a read-only source, the dimensions probed from it, and
    the tail of its pending chain.  Proxies are immutable: builder methods
    return a new proxy sharing the source and every earlier node.
    """

    def __init__(
        self,
        source: RasterSource,
        source_dims: Sequence[Dimension],
        tail: PendingOp | None = None,
        *,
        dims: Sequence[Dimension] | None = None,
        config: ProxyCubeConfig | None = None,
    ) -> None:
        self._source = source
        self._source_dims = tuple(source_dims)
        self._tail = tail if tail is not None else ReadOp()
        self._config = config or get_config()
        if dims is None:
            dims = self._source_dims
            for op in chain_to_list(self._tail):
                dims = op.output_dims(tuple(dims))
        self._dims = tuple(dims)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def source(self) -> RasterSource:
        return self._source

    @property
    def source_dims(self) -> tuple[Dimension, ...]:
        """Dimensions of the source, before any pending operation."""
        return self._source_dims

    @property
    def dims(self) -> tuple[Dimension, ...]:
        """Dimensions the cube will have once consumed at native resolution."""
        return self._dims

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(d.length for d in self._dims)

    @property
    def tail(self) -> PendingOp:
        return self._tail

    @property
    def chain(self) -> tuple[PendingOp, ...]:
        """Pending operations in the order they were requested."""
        return tuple(chain_to_list(self._tail))

    @property
    def cell_independent(self) -> bool:
        """Whether the whole chain may be downsampled before it runs."""
        return all(op.cell_independent for op in self.chain)

    @property
    def config(self) -> ProxyCubeConfig:
        return self._config

    # ------------------------------------------------------------------
    # Chain builders
    # ------------------------------------------------------------------

    def crop(self, extent: Extent, *, resolution: Resolution | None = None) -> "ProxyCube":
        """Narrow the region to read.  *resolution* becomes the default output shape."""
        if not isinstance(extent, Extent):
            extent = Extent(*extent)
        node = ReadOp(region=extent, resolution=check_resolution(resolution), parent=self._tail)
        return self._append(node, node.output_dims(self._dims))

    def apply(
        self,
        function: Callable[..., Any],
        over: Sequence[str] = (),
        *,
        cell_independent: bool,
        halo: int = 0,
        context: Any = None,
        name: str | None = None,
    ) -> "ProxyCube":
        """Append a per-cell or per-subarray function.  *function* is not called.

        Parameters
        ----------
        function : callable
            ``f(values, context=...) -> values`` returning the input shape.
        over : sequence of str
            Dimensions the function receives as a whole (empty: element-wise).
        cell_independent : bool
            Explicit tag: ``True`` when the value of a cell depends only on
            that cell (and on the *over* dimensions, which must not be
            spatial).  ``False`` forces a native-resolution read.
        halo : int
            Neighbouring cells a context-dependent function needs on each side.

        Raises
        ------
        DimensionMismatch
            If *over* names a dimension the cube does not have.
        UnsupportedReorder
            If a function over spatial dimensions is tagged cell-independent.
        """
        if not callable(function):
            raise TypeError(f"function must be callable, got {type(function).__name__}")
        over = tuple(over)
        require_dimensions(self._dims, over)
        spatial = [name_ for name_ in over if find_dimension(self._dims, name_).is_spatial]
        if cell_independent and spatial:
            raise UnsupportedReorder(
                f"A function over spatial dimension(s) {spatial} sees neighbouring "
                f"cells and cannot be tagged cell-independent."
            )
        if halo < 0:
            raise ValueError(f"halo must be >= 0, got {halo}")
        if cell_independent and halo:
            raise ValueError("A cell-independent function cannot need a halo.")
        node = ApplyOp(
            function=function,
            over=over,
            independent=bool(cell_independent),
            halo_cells=int(halo),
            context=context,
            name=name,
            parent=self._tail,
        )
        return self._append(node, self._dims)

    def reduce(
        self,
        dimensions: str | Sequence[str],
        reducer: str | Callable[..., Any] = "mean",
        *,
        context: Any = None,
    ) -> "ProxyCube":
        """Append a reduction dropping *dimensions*.  *reducer* is resolved, not run.

        Raises
        ------
        DimensionMismatch
            If a dimension does not exist.
        ValueError
            If *dimensions* is empty or *reducer* is an unknown name.
        """
        dims = (dimensions,) if isinstance(dimensions, str) else tuple(dimensions)
        if not dims:
            raise ValueError("reduce() needs at least one dimension.")
        require_dimensions(self._dims, dims)
        reduce_fn = raster_ops.resolve_reducer(reducer)
        node = ReduceOp(
            dimensions=dims,
            reducer=reduce_fn,
            reducer_name=reducer if isinstance(reducer, str) else getattr(reducer, "__name__", "reducer"),
            spatial=any(find_dimension(self._dims, d).is_spatial for d in dims),
            context=context,
            parent=self._tail,
        )
        return self._append(node, node.output_dims(self._dims))

    def ndvi(self, *, nir: str = "nir", red: str = "red", target_band: str | None = None) -> "ProxyCube":
        """Append an NDVI computation over the bands dimension.

        Band labels are validated now, against the probed band names.
        """
        bands_dim = self._config.bands_dim
        try:
            bands = find_dimension(self._dims, bands_dim)
        except DimensionMismatch:
            raise DimensionAmbiguous(
                f"Dimension of type 'bands' ('{bands_dim}') is not available. "
                f"Available dimensions: {dimension_names(self._dims)}"
            ) from None
        raster_ops.check_ndvi_bands(bands.values or (), nir=nir, red=red, target_band=target_band)

        if target_band is None:
            dims_out = tuple(d for d in self._dims if d.name != bands_dim)
        else:
            labels = tuple(bands.values or ()) + (target_band,)
            extended = Dimension(bands_dim, DimensionKind.CATEGORICAL, len(labels),
                                 values=labels, axis="bands")
            dims_out = tuple(extended if d.name == bands_dim else d for d in self._dims)

        node = ApplyOp(
            function=partial(raster_ops.ndvi, nir=nir, red=red, target_band=target_band,
                             bands_dim=bands_dim),
            over=(bands_dim,),
            independent=True,
            block=True,
            dims_out=dims_out,
            name="ndvi",
            parent=self._tail,
        )
        return self._append(node, dims_out)

    def apply_kernel(
        self,
        kernel: Any,
        *,
        factor: float = 1.0,
        border: float | str = 0,
        replace_invalid: float = 0.0,
    ) -> "ProxyCube":
        """Append a spatial convolution.  Forces a native-resolution read.

        Raises
        ------
        KernelDimensionsUneven
            If the kernel is not 2-D with odd side lengths.
        DimensionMismatch
            If the cube has no spatial dimensions.
        """
        kernel_arr = raster_ops.check_kernel(kernel)
        cfg = self._config
        require_dimensions(self._dims, (cfg.y_dim, cfg.x_dim))
        node = ApplyOp(
            function=partial(raster_ops.apply_kernel, kernel=kernel_arr, factor=factor,
                             border=border, replace_invalid=replace_invalid,
                             x_dim=cfg.x_dim, y_dim=cfg.y_dim),
            over=(cfg.y_dim, cfg.x_dim),
            independent=False,
            halo_cells=max(kernel_arr.shape) // 2,
            block=True,
            name="apply_kernel",
            parent=self._tail,
        )
        return self._append(node, self._dims)

    # ------------------------------------------------------------------
    # Consumption
    # ------------------------------------------------------------------

    def consume(
        self,
        resolution: Resolution | None = None,
        extent: Extent | None = None,
        *,
        downsample: str = "auto",
        crs: int | str | None = None,
        cache: MutableMapping | None = None,
    ) -> DataCube:
        """Read and compute the chain for *extent* at *resolution*.

        Parameters
        ----------
        resolution : tuple[int, int] | None
            Output shape ``(rows, cols)`` over the extent; ``None`` means
            native resolution.
        extent : Extent | None
            Output extent in the source CRS; ``None`` means everything.
        downsample : str
            ``"auto"``, ``"at_read"`` or ``"after_chain"``; see
            :func:`~proxycube.pipeline.planner.plan_read`.
        crs : int | str | None
            Reproject the result to this CRS.
        cache : MutableMapping | None
            Reuse results across calls with identical arguments.  Without a
            cache every call reads the source again.

        Raises
        ------
        ReadError
            If the source read fails.  The proxy stays usable.
        UnsupportedReorder
            ``downsample="at_read"`` with a context-dependent chain.
        """
        if extent is not None and not isinstance(extent, Extent):
            extent = Extent(*extent)
        key = None
        if cache is not None:
            key = (self._tail, self._source.handle, resolution and tuple(resolution), extent, downsample, crs)
            hit = cache.get(key)
            if hit is not None:
                logger.debug("Cache hit for %s", self)
                return hit

        chain = chain_to_list(self._tail)
        plan = plan_read(self._source_dims, chain, resolution, extent, downsample)
        cfg = self._config
        data = execute_chain(self._source, chain, plan, x_dim=cfg.x_dim, y_dim=cfg.y_dim)
        if crs is not None:
            data = raster_ops.resample_spatial(data, projection=crs, x_dim=cfg.x_dim, y_dim=cfg.y_dim)

        result = DataCube(data, config=cfg)
        if cache is not None:
            cache[key] = result
        return result

    materialize = consume

    def plot(self, extent: Extent | None = None, **kwargs: Any) -> Any:
        """Consume at a display-sized resolution and plot the result."""
        return self.consume(self.display_resolution(extent), extent).plot(**kwargs)

    def write(
        self,
        path: str | Path,
        resolution: Resolution | None = None,
        extent: Extent | None = None,
        **kwargs: Any,
    ) -> Path:
        """Consume (native resolution by default) and write a GeoTIFF."""
        return self.consume(resolution, extent).to_raster(path, **kwargs)

    def display_resolution(self, extent: Extent | None = None) -> Resolution | None:
        """Largest shape within ``config.display_shape`` keeping the aspect ratio."""
        x = next((d for d in self._dims if d.axis == "x"), None)
        y = next((d for d in self._dims if d.axis == "y"), None)
        if x is None or y is None:
            return None
        rows, cols = y.length, x.length
        if extent is not None and y.cell_size and x.cell_size:
            rows = max(1, round(extent.height / y.cell_size))
            cols = max(1, round(extent.width / x.cell_size))
        max_rows, max_cols = self._config.display_shape
        scale = max(rows / max_rows, cols / max_cols, 1.0)
        return (max(1, math.ceil(rows / scale)), max(1, math.ceil(cols / scale)))

    # ------------------------------------------------------------------
    # Dunder helpers
    # ------------------------------------------------------------------

    def __repr__(self) -> str:
        sizes = {d.name: d.length for d in self._dims}
        pending = [op.describe() for op in self.chain[1:]]
        return f"<ProxyCube {self._source.handle} {sizes} pending={pending}>"

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _append(self, node: PendingOp, dims: Sequence[Dimension]) -> "ProxyCube":
        logger.debug("Appending %s to %s", node.describe(), self._source.handle)
        return ProxyCube(self._source, self._source_dims, node, dims=dims, config=self._config)


# ---------------------------------------------------------------------------
# Module-level pipeline API
# ---------------------------------------------------------------------------


def open(
    source: Any,
    materialize: bool = False,
    *,
    adapter: RasterSource | None = None,
    config: ProxyCubeConfig | None = None,
) -> DataCube | ProxyCube:
    """Open a raster resource.

    Parameters
    ----------
    source : str | Path | xr.DataArray | RasterSource
        GDAL handle (path, URL, ``/vsizip/...``), in-memory array, or source.
    materialize : bool
        Read eagerly and return a :class:`DataCube`, unless the cube has more
        than ``config.proxy_cell_threshold`` cells.
    adapter : RasterSource | None
        Explicit source implementation; *source* is then ignored.

    Raises
    ------
    SourceUnavailable
        If the resource cannot be opened.
    """
    cfg = config or get_config()
    src = resolve_source(source, adapter=adapter, config=cfg)
    dims = src.probe()
    cells = cell_count(dims)
    if materialize and cells <= cfg.proxy_cell_threshold:
        logger.info("Materializing %s (%d cells)", src.handle, cells)
        try:
            data = src.read_region(None, None)
        except ReadError as exc:
            raise SourceUnavailable(f"Cannot read {src.handle!r}: {exc}") from exc
        return DataCube(data, config=cfg)
    if materialize:
        logger.info(
            "%s has %d cells (threshold %d); returning a proxy",
            src.handle, cells, cfg.proxy_cell_threshold,
        )
    return ProxyCube(src, dims, config=cfg)


def apply(
    cube: DataCube | ProxyCube,
    function: Callable[..., Any],
    over: Sequence[str] = (),
    *,
    cell_independent: bool,
    halo: int = 0,
    context: Any = None,
) -> ProxyCube:
    """Append *function* to the pending chain of *cube*; see :meth:`ProxyCube.apply`."""
    return _as_proxy(cube).apply(
        function, over, cell_independent=cell_independent, halo=halo, context=context
    )


def reduce(
    cube: DataCube | ProxyCube,
    dimensions: str | Sequence[str],
    reducer: str | Callable[..., Any] = "mean",
    *,
    context: Any = None,
) -> ProxyCube:
    """Append a reduction to the pending chain of *cube*; see :meth:`ProxyCube.reduce`."""
    return _as_proxy(cube).reduce(dimensions, reducer, context=context)


def consume(
    cube: DataCube | ProxyCube,
    resolution: Resolution | None = None,
    extent: Extent | None = None,
    **kwargs: Any,
) -> DataCube:
    """Execute the pending chain of *cube*; see :meth:`ProxyCube.consume`."""
    return _as_proxy(cube).consume(resolution, extent, **kwargs)


def _as_proxy(cube: DataCube | ProxyCube) -> ProxyCube:
    if isinstance(cube, ProxyCube):
        return cube
    if isinstance(cube, DataCube):
        return cube.lazy()
    raise TypeError(f"Expected a DataCube or ProxyCube, got {type(cube).__name__}")
