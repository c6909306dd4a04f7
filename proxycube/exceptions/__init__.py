"""proxycube exceptions."""

from proxycube.exceptions.bands import (
    BandExists,
    DimensionAmbiguous,
    NirBandAmbiguous,
    RedBandAmbiguous,
)
from proxycube.exceptions.general import (
    DimensionMismatch,
    KernelDimensionsUneven,
    UnsupportedReorder,
)
from proxycube.exceptions.source import ReadError, SourceUnavailable

__all__ = [
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
