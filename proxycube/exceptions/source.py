"""Source I/O exceptions."""


class SourceUnavailable(Exception):
    """The raster resource cannot be opened (missing file, corrupt header, ...)."""


class ReadError(Exception):
    """Reading pixel data from an opened resource failed."""
