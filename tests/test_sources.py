"""Tests for raster sources (rasterio, in-memory, STAC)."""

import numpy as np
import pystac
import pytest
import rasterio
import xarray as xr
from datetime import datetime
from rasterio.transform import from_origin

from proxycube.dimensions import DimensionKind
from proxycube.exceptions import ReadError, SourceUnavailable
from proxycube.io.source import (
    ArraySource,
    RasterioSource,
    RasterSource,
    probe,
    read_region,
    resolve_source,
)
from proxycube.io.stac import StacItemSource
from proxycube.types import Extent


def _write_geotiff(path, data: np.ndarray, *, descriptions=None, nodata=None) -> str:
    """Write a (bands, rows, cols) array on a 1 m grid with its origin at (0, rows)."""
    count, rows, cols = data.shape
    with rasterio.open(
        path, "w", driver="GTiff", width=cols, height=rows, count=count,
        dtype=data.dtype, crs="EPSG:32633", transform=from_origin(0, rows, 1, 1),
        nodata=nodata,
    ) as dst:
        dst.write(data)
        for i, desc in enumerate(descriptions or (), start=1):
            dst.set_band_description(i, desc)
    return str(path)


def _make_scene(rows: int = 20, cols: int = 20) -> np.ndarray:
    return np.arange(2 * rows * cols, dtype=np.float32).reshape(2, rows, cols) + 1


def _make_array() -> xr.DataArray:
    return xr.DataArray(
        np.arange(64, dtype=np.float64).reshape(1, 8, 8),
        dims=["bands", "y", "x"],
        coords={"bands": ["b1"], "y": 7.5 - np.arange(8), "x": np.arange(8) + 0.5},
    )


# ---------------------------------------------------------------------------
# RasterioSource
# ---------------------------------------------------------------------------


class TestRasterioSource:
    def test_probe(self, tmp_path):
        path = _write_geotiff(tmp_path / "scene.tif", _make_scene(), descriptions=["red", "nir"])
        bands, y, x = RasterioSource(path).probe()
        assert bands.kind is DimensionKind.CATEGORICAL
        assert bands.values == ("red", "nir")
        assert (y.length, x.length) == (20, 20)
        assert y.offset == 20.0 and y.delta == -1.0
        assert x.refsys == "EPSG:32633"

    def test_probe_default_band_labels(self, tmp_path):
        path = _write_geotiff(tmp_path / "scene.tif", _make_scene())
        bands, _, _ = RasterioSource(path).probe()
        assert bands.values == ("1", "2")

    def test_probe_explicit_band_names(self, tmp_path):
        path = _write_geotiff(tmp_path / "scene.tif", _make_scene())
        bands, _, _ = RasterioSource(path, band_names=["red", "nir"]).probe()
        assert bands.values == ("red", "nir")

    def test_probe_missing_file(self, tmp_path):
        with pytest.raises(SourceUnavailable, match="Cannot open"):
            RasterioSource(str(tmp_path / "missing.tif")).probe()

    def test_probe_corrupt_file(self, tmp_path):
        path = tmp_path / "corrupt.tif"
        path.write_bytes(b"this is not a tiff")
        with pytest.raises(SourceUnavailable):
            RasterioSource(str(path)).probe()

    def test_read_native(self, tmp_path):
        scene = _make_scene()
        path = _write_geotiff(tmp_path / "scene.tif", scene, descriptions=["red", "nir"])
        block = RasterioSource(path).read_region(None, None)
        assert block.dims == ("bands", "y", "x")
        np.testing.assert_array_equal(block.values, scene)
        assert block.coords["x"].values[0] == 0.5
        assert block.coords["y"].values[0] == 19.5
        assert block.attrs["crs"] == "EPSG:32633"

    def test_read_region_window(self, tmp_path):
        scene = _make_scene()
        path = _write_geotiff(tmp_path / "scene.tif", scene)
        block = RasterioSource(path).read_region(Extent(5, 5, 15, 15), None)
        assert block.shape == (2, 10, 10)
        np.testing.assert_array_equal(block.values, scene[:, 5:15, 5:15])

    def test_read_decimated(self, tmp_path):
        path = _write_geotiff(tmp_path / "scene.tif", _make_scene())
        block = RasterioSource(path).read_region(None, (5, 4))
        assert block.shape == (2, 5, 4)
        np.testing.assert_allclose(block.coords["x"].values, [2.5, 7.5, 12.5, 17.5])
        np.testing.assert_allclose(block.coords["y"].values, [18.0, 14.0, 10.0, 6.0, 2.0])

    def test_nodata_becomes_nan(self, tmp_path):
        scene = _make_scene()
        scene[0, 0, 0] = -9999
        path = _write_geotiff(tmp_path / "scene.tif", scene, nodata=-9999)
        block = RasterioSource(path).read_region(None, None)
        assert np.isnan(block.values[0, 0, 0])
        assert np.isfinite(block.values[1, 0, 0])

    def test_read_after_file_removed(self, tmp_path):
        path = tmp_path / "scene.tif"
        source = RasterioSource(_write_geotiff(path, _make_scene()))
        source.probe()
        path.unlink()
        with pytest.raises(ReadError):
            source.read_region(None, (2, 2))

    def test_read_region_selects_cells_by_centre(self, tmp_path):
        scene = _make_scene()
        path = _write_geotiff(tmp_path / "scene.tif", scene)
        block = RasterioSource(path).read_region(Extent(0.6, 0.6, 4.4, 4.4), None)
        assert block.shape == (2, 3, 3)
        np.testing.assert_allclose(block.coords["x"].values, [1.5, 2.5, 3.5])
        np.testing.assert_allclose(block.coords["y"].values, [3.5, 2.5, 1.5])
        np.testing.assert_array_equal(block.values, scene[:, 16:19, 1:4])

    def test_read_region_matches_array_source(self, tmp_path):
        path = _write_geotiff(tmp_path / "scene.tif", _make_scene())
        source = RasterioSource(path)
        extent = Extent(2.3, 7.7, 11.5, 13.2)
        from_file = source.read_region(extent, None)
        in_memory = ArraySource(source.read_region(None, None)).read_region(extent, None)
        xr.testing.assert_allclose(from_file, in_memory)

    def test_read_region_without_cells(self, tmp_path):
        path = _write_geotiff(tmp_path / "scene.tif", _make_scene())
        with pytest.raises(ReadError, match="selects no cells"):
            RasterioSource(path).read_region(Extent(30, 30, 40, 40), None)

    def test_is_raster_source(self, tmp_path):
        assert isinstance(RasterioSource(str(tmp_path / "x.tif")), RasterSource)


# ---------------------------------------------------------------------------
# ArraySource
# ---------------------------------------------------------------------------


class TestArraySource:
    def test_probe(self):
        bands, y, x = ArraySource(_make_array()).probe()
        assert bands.values == ("b1",)
        assert y.kind is DimensionKind.REGULAR

    def test_read_region_and_shape(self):
        block = ArraySource(_make_array()).read_region(Extent(0, 0, 4, 4), (2, 2))
        assert block.shape == (1, 2, 2)
        np.testing.assert_allclose(block.coords["x"].values, [1.0, 3.0])

    def test_read_computes_dask(self):
        source = ArraySource(_make_array().chunk({"x": 4}))
        block = source.read_region(None, None)
        assert block.chunks is None

    def test_handle(self):
        assert ArraySource(_make_array(), handle="memory://a").handle == "memory://a"
        assert ArraySource(_make_array()).handle.startswith("memory://")


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


class TestResolveSource:
    def test_dataarray(self):
        assert isinstance(resolve_source(_make_array()), ArraySource)

    def test_path(self, tmp_path):
        assert isinstance(resolve_source(tmp_path / "a.tif"), RasterioSource)

    def test_source_passes_through(self):
        source = ArraySource(_make_array())
        assert resolve_source(source) is source

    def test_adapter_wins(self):
        adapter = ArraySource(_make_array())
        assert resolve_source("ignored.tif", adapter=adapter) is adapter

    def test_probe_and_read_region(self, tmp_path):
        path = _write_geotiff(tmp_path / "scene.tif", _make_scene())
        assert len(probe(path)) == 3
        assert read_region(path, Extent(0, 0, 10, 10), (2, 2)).shape == (2, 2, 2)


# ---------------------------------------------------------------------------
# StacItemSource
# ---------------------------------------------------------------------------


def _make_item(tmp_path) -> pystac.Item:
    scene = _make_scene()
    item = pystac.Item(
        id="scene-1",
        geometry={"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]]},
        bbox=[0, 0, 1, 1],
        datetime=datetime(2023, 6, 1),
        properties={},
    )
    for i, key in enumerate(["red", "nir"]):
        href = _write_geotiff(tmp_path / f"{key}.tif", scene[i : i + 1])
        item.add_asset(key, pystac.Asset(href=href, media_type=pystac.MediaType.GEOTIFF, roles=["data"]))
    item.add_asset("thumbnail", pystac.Asset(href="thumb.png", media_type=pystac.MediaType.PNG))
    return item


class TestStacItemSource:
    def test_selects_raster_assets(self, tmp_path):
        source = StacItemSource(_make_item(tmp_path))
        assert source.asset_keys == ["red", "nir"]

    def test_probe(self, tmp_path):
        bands, y, x = StacItemSource(_make_item(tmp_path)).probe()
        assert bands.values == ("red", "nir")
        assert (y.length, x.length) == (20, 20)

    def test_read_region(self, tmp_path):
        block = StacItemSource(_make_item(tmp_path)).read_region(Extent(0, 0, 10, 10), (5, 5))
        assert block.dims == ("bands", "y", "x")
        assert block.shape == (2, 5, 5)
        assert list(block.coords["bands"].values) == ["red", "nir"]

    def test_from_dict(self, tmp_path):
        source = StacItemSource(_make_item(tmp_path).to_dict(), assets=["nir"])
        assert source.probe()[0].values == ("nir",)

    def test_assets_on_different_grids(self, tmp_path):
        item = _make_item(tmp_path)
        small = _write_geotiff(tmp_path / "small.tif", _make_scene(10, 10)[:1])
        item.assets["nir"].href = small
        with pytest.raises(SourceUnavailable, match="same grid"):
            StacItemSource(item).probe()

    def test_missing_asset(self, tmp_path):
        with pytest.raises(SourceUnavailable, match="B08"):
            StacItemSource(_make_item(tmp_path), assets=["B08"])

    def test_unreadable_item(self, tmp_path):
        with pytest.raises(SourceUnavailable):
            StacItemSource(str(tmp_path / "missing.json"))
