"""Tests for the DataCube fluent wrapper."""

import numpy as np
import pandas as pd
import pytest
import rasterio
import xarray as xr

from proxycube import DataCube, Extent, ProxyCube
from proxycube.exceptions import DimensionMismatch


def _make_raster_da() -> xr.DataArray:
    np.random.seed(0)
    return xr.DataArray(
        np.random.rand(2, 2, 4, 4).astype(np.float32),
        dims=["time", "bands", "y", "x"],
        coords={
            "time": pd.date_range("2023-01-01", periods=2, freq="ME"),
            "bands": ["red", "nir"],
            "y": 3.5 - np.arange(4),
            "x": np.arange(4) + 0.5,
        },
        attrs={"crs": "EPSG:32633"},
    )


class TestDataCubeRaster:
    def test_wraps_dataarray_only(self):
        with pytest.raises(TypeError):
            DataCube(np.zeros((2, 2)))  # type: ignore[arg-type]

    def test_dims(self):
        cube = DataCube(_make_raster_da())
        assert [d.name for d in cube.dims] == ["time", "bands", "y", "x"]
        assert cube.shape == (2, 2, 4, 4)

    def test_ndvi_fluent(self):
        cube = DataCube(_make_raster_da())
        result = cube.ndvi(nir="nir", red="red")
        assert isinstance(result, DataCube)
        assert "bands" not in result.data.dims

    def test_filter_bbox_fluent(self):
        result = DataCube(_make_raster_da()).filter_bbox(Extent(0, 0, 2, 2))
        assert result.data.sizes["x"] == 2
        assert result.data.sizes["y"] == 2

    def test_apply_fluent(self):
        cube = DataCube(_make_raster_da())
        result = cube.apply(lambda x: x * 10)
        np.testing.assert_allclose(result.data.values, cube.data.values * 10)

    def test_reduce_dimension_fluent(self):
        result = DataCube(_make_raster_da()).reduce_dimension("mean", dimension="time")
        assert result.data.dims == ("bands", "y", "x")

    def test_apply_kernel_fluent(self):
        result = DataCube(_make_raster_da()).apply_kernel(np.ones((3, 3)) / 9)
        assert result.shape == (2, 2, 4, 4)

    def test_immutability(self):
        da = _make_raster_da()
        original_values = da.values.copy()
        cube = DataCube(da)
        cube.apply(lambda x: x * 100)
        np.testing.assert_array_equal(cube.data.values, original_values)

    def test_compute(self):
        cube = DataCube(_make_raster_da().chunk({"x": 2}))
        assert cube.compute().data.chunks is None
        eager = DataCube(_make_raster_da())
        assert eager.compute() is eager

    def test_repr(self):
        assert "DataCube" in repr(DataCube(_make_raster_da()))


class TestAttributesAsDimension:
    def test_split(self):
        parts = DataCube(_make_raster_da()).split()
        assert list(parts) == ["red", "nir"]
        assert parts["red"].data.dims == ("time", "y", "x")
        assert parts["red"].data.name == "red"

    def test_split_missing_dim(self):
        with pytest.raises(DimensionMismatch):
            DataCube(_make_raster_da()).split("attribute")

    def test_merge_restores_split(self):
        cube = DataCube(_make_raster_da())
        merged = DataCube.merge(cube.split())
        assert merged.data.dims == ("bands", "time", "y", "x")
        xr.testing.assert_allclose(merged.data.transpose(*cube.data.dims), cube.data)

    def test_merge_mismatched(self):
        cube = DataCube(_make_raster_da())
        parts = cube.split()
        parts["nir"] = DataCube(parts["nir"].data.isel(x=slice(0, 2)))
        with pytest.raises(DimensionMismatch, match="nir"):
            DataCube.merge(parts)

    def test_merge_existing_dim(self):
        cube = DataCube(_make_raster_da())
        with pytest.raises(DimensionMismatch, match="already"):
            DataCube.merge({"a": cube, "b": cube})

    def test_merge_empty(self):
        with pytest.raises(ValueError):
            DataCube.merge({})


class TestConsumers:
    def test_lazy(self):
        proxy = DataCube(_make_raster_da()).lazy()
        assert isinstance(proxy, ProxyCube)
        assert proxy.shape == (2, 2, 4, 4)
        result = proxy.reduce("time").consume()
        assert result.data.dims == ("bands", "y", "x")

    def test_to_raster(self, tmp_path):
        cube = DataCube(_make_raster_da()).reduce_dimension("mean", dimension="time")
        path = cube.to_raster(tmp_path / "out.tif")
        with rasterio.open(path) as ds:
            assert ds.count == 2
            assert ds.descriptions == ("red", "nir")
            assert ds.crs.to_epsg() == 32633
            np.testing.assert_allclose(ds.read(2), cube.data.sel(bands="nir").values, rtol=1e-6)

    def test_to_raster_needs_three_dims(self, tmp_path):
        with pytest.raises(DimensionMismatch, match="reduce"):
            DataCube(_make_raster_da()).to_raster(tmp_path / "out.tif")

    def test_to_raster_nan_nodata(self, tmp_path):
        da = _make_raster_da().isel(time=0, bands=0, drop=True).astype(np.float64)
        da.values[0, 0] = np.nan
        path = DataCube(da).to_raster(tmp_path / "nan.tif")
        with rasterio.open(path) as ds:
            assert np.isnan(ds.nodata)
            assert np.isnan(ds.read(1)[0, 0])
