"""Exceptions raised while resolving band labels for band-math operations."""


class DimensionAmbiguous(Exception):
    """The cube has no bands dimension to pick the input bands from."""


class NirBandAmbiguous(Exception):
    """The requested near-infrared band label is not present on the bands dimension."""


class RedBandAmbiguous(Exception):
    """The requested red band label is not present on the bands dimension."""


class BandExists(Exception):
    """The target band label would shadow an existing band."""
