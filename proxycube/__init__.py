"""proxycube – deferred raster data cubes: build a chain, read only what a consumer needs."""

from proxycube.config import ProxyCubeConfig, get_config, set_config
from proxycube.datacube import DataCube
from proxycube.dimensions import Dimension, DimensionKind, reproject
from proxycube.exceptions import (
    BandExists,
    DimensionAmbiguous,
    DimensionMismatch,
    KernelDimensionsUneven,
    NirBandAmbiguous,
    ReadError,
    RedBandAmbiguous,
    SourceUnavailable,
    UnsupportedReorder,
)
from proxycube.proxy import ProxyCube, apply, consume, open, reduce
from proxycube.types import Extent, RasterCube, Resolution

__all__ = [
    "DataCube",
    "Dimension",
    "DimensionKind",
    "Extent",
    "ProxyCube",
    "ProxyCubeConfig",
    "RasterCube",
    "Resolution",
    # pipeline API
    "apply",
    "consume",
    "open",
    "reduce",
    "reproject",
    "get_config",
    "set_config",
    # exceptions
    "BandExists",
    "DimensionAmbiguous",
    "DimensionMismatch",
    "KernelDimensionsUneven",
    "NirBandAmbiguous",
    "ReadError",
    "RedBandAmbiguous",
    "SourceUnavailable",
    "UnsupportedReorder",
]

__version__ = "0.1.0"
