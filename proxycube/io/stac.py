"""STAC source – a STAC Item whose raster assets form the bands of one cube.

Satellite scenes are usually published one band per Cloud-Optimized
GeoTIFF.  :class:`StacItemSource` resolves the Item with **pystac** and reads
each selected asset through a :class:`~proxycube.io.source.RasterioSource`,
stacking them along the bands dimension.
"""

from __future__ import annotations

import logging
from typing import Any

import pandas as pd
import pystac
import xarray as xr

from proxycube.config import ProxyCubeConfig, get_config
from proxycube.dimensions import Dimension, DimensionKind
from proxycube.exceptions import SourceUnavailable
from proxycube.io.source import RasterioSource
from proxycube.types import Extent, Resolution

logger = logging.getLogger(__name__)

_RASTER_MEDIA_PREFIXES = ("image/tiff", "image/vnd.stac.geotiff", "image/jp2")


class StacItemSource:
    """Expose the raster assets of a STAC Item as a ``(bands, y, x)`` source.

    Parameters
    ----------
    item : pystac.Item | dict | str
        An Item object, inline STAC JSON, or a path / URL to an Item.
    assets : list[str] | None
        Asset keys to use as bands, in order.  ``None`` selects every asset
        with a raster media type or the ``data`` role.
    """

    def __init__(
        self,
        item: pystac.Item | dict | str,
        *,
        assets: list[str] | None = None,
        config: ProxyCubeConfig | None = None,
    ) -> None:
        self.config = config or get_config()
        self.item = _resolve_item(item)
        self.handle = self.item.get_self_href() or f"stac://{self.item.id}"
        keys = assets if assets is not None else _raster_asset_keys(self.item)
        missing = [k for k in keys if k not in self.item.assets]
        if missing:
            raise SourceUnavailable(
                f"Item {self.item.id!r} has no asset(s) {missing}. "
                f"Available assets: {sorted(self.item.assets)}"
            )
        if not keys:
            raise SourceUnavailable(f"Item {self.item.id!r} has no raster assets.")
        self.asset_keys = list(keys)
        self._sources = {
            key: RasterioSource(_asset_href(self.item.assets[key]), config=self.config)
            for key in self.asset_keys
        }

    def __repr__(self) -> str:
        return f"StacItemSource({self.item.id!r}, assets={self.asset_keys})"

    def probe(self) -> tuple[Dimension, ...]:
        """Probe every asset and check they share one single-band grid."""
        grids = {}
        for key, source in self._sources.items():
            bands, y_dim, x_dim = source.probe()
            if bands.length != 1:
                raise SourceUnavailable(
                    f"Asset {key!r} of item {self.item.id!r} has {bands.length} bands; "
                    f"only single-band assets can be stacked."
                )
            grids[key] = (y_dim, x_dim)
        grid = grids[self.asset_keys[0]]
        for key, other in grids.items():
            if other != grid:
                raise SourceUnavailable(
                    f"Asset {key!r} of item {self.item.id!r} is not on the same grid "
                    f"as {self.asset_keys[0]!r}."
                )
        bands_dim = Dimension(
            self.config.bands_dim, DimensionKind.CATEGORICAL, len(self.asset_keys),
            values=tuple(self.asset_keys), axis="bands",
        )
        return (bands_dim, *grid)

    def read_region(self, extent: Extent | None, shape: Resolution | None) -> xr.DataArray:
        bands_dim = self.config.bands_dim
        blocks = []
        for key, source in self._sources.items():
            logger.debug("Reading asset %s of %s", key, self.item.id)
            blocks.append(source.read_region(extent, shape).isel({bands_dim: 0}, drop=True))
        data = xr.concat(blocks, dim=pd.Index(self.asset_keys, name=bands_dim))
        data.attrs = dict(blocks[0].attrs)
        return data


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _resolve_item(item: Any) -> pystac.Item:
    if isinstance(item, pystac.Item):
        return item
    try:
        if isinstance(item, dict):
            return pystac.Item.from_dict(item)
        obj = pystac.read_file(str(item))
    except (OSError, ValueError, KeyError, pystac.STACError) as exc:
        raise SourceUnavailable(f"Cannot read STAC item {item!r}: {exc}") from exc
    if not isinstance(obj, pystac.Item):
        raise SourceUnavailable(f"STAC resource {item!r} is a {type(obj).__name__}, not an Item.")
    return obj


def _raster_asset_keys(item: pystac.Item) -> list[str]:
    keys = []
    for key, asset in item.assets.items():
        media_type = asset.media_type or ""
        if media_type.startswith(_RASTER_MEDIA_PREFIXES) or "data" in (asset.roles or []):
            keys.append(key)
    return keys


def _asset_href(asset: pystac.Asset) -> str:
    return asset.get_absolute_href() or asset.href
