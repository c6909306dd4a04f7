"""Eager raster operations used by realized cubes and by the chain executor."""
