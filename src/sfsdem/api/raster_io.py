from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import rasterio
from rasterio.errors import RasterioIOError

from sfsdem.core.geometry import Datum, GeoReference
from sfsdem.errors import DataError

logger = logging.getLogger(__name__)

DEFAULT_DEM_NODATA = -32768.0


@dataclass
class DemRaster:
    """
    Heights shaped (rows, cols), indexed heights[row, col].

    `heights` is the only mutable piece: the solver owns it while solving.
    """

    heights: np.ndarray
    georef: GeoReference
    nodata: float
    dtype: str = "float32"

    @property
    def cols(self) -> int:
        return int(self.heights.shape[1])

    @property
    def rows(self) -> int:
        return int(self.heights.shape[0])


def load_dem(path: Path) -> DemRaster:
    path = Path(path)
    try:
        with rasterio.open(path) as src:
            heights = src.read(1).astype(np.float64)
            transform = src.transform
            crs = src.crs
            nodata = src.nodata
            dtype = src.dtypes[0]
    except RasterioIOError as e:
        raise DataError(f"Could not read DEM: {path}") from e

    if crs is None and transform.is_identity:
        raise DataError(f"The input DEM has no georeference: {path}")
    rows, cols = heights.shape
    if rows < 3 or cols < 3:
        raise DataError(f"The input DEM must be at least 3x3, got {cols}x{rows}: {path}")

    if nodata is None:
        nodata = DEFAULT_DEM_NODATA
    else:
        logger.info("Found DEM nodata value: %s", nodata)

    georef = GeoReference(transform=transform, width=cols, height=rows, crs=crs, datum=Datum.from_crs(crs))
    return DemRaster(heights=heights, georef=georef, nodata=float(nodata), dtype=str(dtype))


def write_raster(
    path: Path,
    array: np.ndarray,
    georef: GeoReference,
    nodata: float | None,
    dtype: str = "float32",
) -> Path:
    """Write a single-band GeoTIFF co-registered with `georef`."""
    path = Path(path)
    array = np.asarray(array)
    profile = {
        "driver": "GTiff",
        "height": int(array.shape[0]),
        "width": int(array.shape[1]),
        "count": 1,
        "dtype": dtype,
        "transform": georef.transform,
        "nodata": nodata,
    }
    if georef.crs is not None:
        profile["crs"] = georef.crs
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(array.astype(dtype), 1)
    return path
