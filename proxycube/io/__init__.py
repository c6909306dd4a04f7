"""I/O sub-package – raster sources (rasterio, in-memory arrays, STAC items)."""

from proxycube.io.source import (
    ArraySource,
    RasterioSource,
    RasterSource,
    probe,
    read_region,
    resolve_source,
)
from proxycube.io.stac import StacItemSource

__all__ = [
    "ArraySource",
    "RasterSource",
    "RasterioSource",
    "StacItemSource",
    "probe",
    "read_region",
    "resolve_source",
]
