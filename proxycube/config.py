"""Library configuration.

Values come from keyword arguments, from the environment
(``PROXYCUBE_*`` variables, see :meth:`ProxyCubeConfig.from_env`), or from
the defaults below.  The process-wide instance is returned by
:func:`get_config` and can be replaced with :func:`set_config`; every public
operation also accepts an explicit ``config=`` override.
"""

from __future__ import annotations

import os
from typing import Optional, Tuple

from pydantic import BaseModel, Field, field_validator

# Cells above which ``open(..., materialize=True)`` still returns a proxy.
DEFAULT_PROXY_CELL_THRESHOLD = 100_000_000
DEFAULT_READ_RESAMPLING = "nearest"
DEFAULT_DISPLAY_SHAPE = (1000, 1000)

_ENV_PREFIX = "PROXYCUBE_"

# Resampling names accepted for decimated reads (gdalwarp vocabulary).
READ_RESAMPLING_METHODS = (
    "nearest",
    "bilinear",
    "cubic",
    "cubic_spline",
    "lanczos",
    "average",
    "mode",
)


class ProxyCubeConfig(BaseModel):
    """Settings for opening, reading and displaying proxy cubes.

    Configuration Fields:
    ---------------------
    proxy_cell_threshold: Cell count above which ``open`` never reads eagerly.
    read_resampling: Resampling used by sources for decimated reads.
        Only ``"nearest"`` keeps downsample-at-read exactly equivalent to
        downsampling after a cell-independent chain.
    display_shape: Largest ``(rows, cols)`` a plot consumes.
    x_dim, y_dim, bands_dim: Dimension names produced by the sources.
    """

    model_config = {"frozen": True}

    proxy_cell_threshold: int = Field(default=DEFAULT_PROXY_CELL_THRESHOLD, gt=0)
    read_resampling: str = DEFAULT_READ_RESAMPLING
    display_shape: Tuple[int, int] = DEFAULT_DISPLAY_SHAPE
    x_dim: str = "x"
    y_dim: str = "y"
    bands_dim: str = "bands"

    @field_validator("read_resampling")
    @classmethod
    def _check_resampling(cls, value: str) -> str:
        if value not in READ_RESAMPLING_METHODS:
            raise ValueError(
                f"Unknown read resampling {value!r}. "
                f"Choose from {list(READ_RESAMPLING_METHODS)}"
            )
        return value

    @field_validator("display_shape")
    @classmethod
    def _check_display_shape(cls, value: Tuple[int, int]) -> Tuple[int, int]:
        if value[0] <= 0 or value[1] <= 0:
            raise ValueError(f"display_shape must be positive, got {value}")
        return value

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "ProxyCubeConfig":
        """Build a config from ``PROXYCUBE_*`` environment variables."""
        env = os.environ if environ is None else environ
        values: dict = {}
        for name in ("proxy_cell_threshold", "read_resampling", "x_dim", "y_dim", "bands_dim"):
            raw = env.get(_ENV_PREFIX + name.upper())
            if raw is not None and raw.strip():
                values[name] = raw.strip()
        raw_shape = env.get(_ENV_PREFIX + "DISPLAY_SHAPE")
        if raw_shape:
            rows, _, cols = raw_shape.lower().partition("x")
            values["display_shape"] = (int(rows), int(cols))
        return cls(**values)


_config: Optional[ProxyCubeConfig] = None


def get_config() -> ProxyCubeConfig:
    """Return the process-wide configuration, reading the environment once."""
    global _config
    if _config is None:
        _config = ProxyCubeConfig.from_env()
    return _config


def set_config(config: Optional[ProxyCubeConfig]) -> None:
    """Replace the process-wide configuration (``None`` re-reads the environment)."""
    global _config
    _config = config
