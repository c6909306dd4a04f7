import logging
import sys

import numpy as np

import proxycube
from proxycube import Extent

logging.basicConfig(level=logging.INFO)

# Any GDAL handle works: a local GeoTIFF, a COG URL, a /vsizip/ archive member.
# The file needs bands described as "red" and "nir" (or pass band_names via a RasterioSource).
handle = sys.argv[1] if len(sys.argv) > 1 else "S2_scene.tif"

scene = proxycube.open(handle)
print(f"Opened {scene}")

# Nothing is read yet: both chains are recorded only
ndvi = scene.ndvi(nir="nir", red="red")
smoothed = ndvi.apply_kernel(np.ones((3, 3)), factor=1 / 9)

# NDVI is cell-independent, so this asks GDAL for 500 x 500 cells directly
preview = ndvi.consume(resolution=(500, 500))
print(f"Preview: {preview}")

# The kernel needs neighbours: native-resolution read of the sub-region (plus a 1-cell halo)
west, east = scene.dims[2].bounds
south, north = scene.dims[1].bounds
detail_extent = Extent(west, south, west + (east - west) / 10, south + (north - south) / 10)
detail = smoothed.consume(extent=detail_extent)
print(f"Smoothed detail: {detail}")

path = ndvi.write("ndvi_preview.tif", resolution=(500, 500))
print(f"Wrote {path}")
