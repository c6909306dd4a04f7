"""Chain-building exceptions."""


class DimensionMismatch(Exception):
    """An operation references a dimension the cube does not have."""


class UnsupportedReorder(Exception):
    """A context-dependent operation conflicts with a downsample-first read."""


class KernelDimensionsUneven(Exception):
    """Each dimension of the kernel must have an uneven number of elements."""
