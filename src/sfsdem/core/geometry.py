from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import cached_property
from typing import Any

import numpy as np
from rasterio.crs import CRS
from rasterio.transform import Affine
from rasterio.warp import transform as warp_transform

logger = logging.getLogger(__name__)

MOON_RADIUS_M = 1737400.0
WGS84_A = 6378137.0
WGS84_B = 6356752.314245

# Best-effort process-wide counter: only the first no-data hit is reported.
_nodata_error_count = 0


@dataclass(frozen=True)
class Datum:
    semi_major_axis: float
    semi_minor_axis: float
    name: str = ""

    @classmethod
    def sphere(cls, radius: float, name: str = "") -> "Datum":
        return cls(float(radius), float(radius), name)

    @classmethod
    def moon(cls) -> "Datum":
        return cls.sphere(MOON_RADIUS_M, "D_MOON")

    @classmethod
    def from_crs(cls, crs: CRS | None) -> "Datum":
        """
        Ellipsoid carried by `crs` (PROJ parameters R, a/b, a/rf or a named
        WGS84 datum). Falls back to the lunar sphere.
        """
        if crs is None:
            return cls.moon()
        params: dict[str, Any] = crs.to_dict()
        if "R" in params:
            return cls.sphere(float(params["R"]), "sphere")
        if "a" in params:
            a = float(params["a"])
            if "b" in params:
                b = float(params["b"])
            elif "rf" in params and float(params["rf"]) != 0.0:
                b = a * (1.0 - 1.0 / float(params["rf"]))
            else:
                b = a
            return cls(a, b, "custom")
        if str(params.get("datum", params.get("ellps", ""))).upper() == "WGS84":
            return cls(WGS84_A, WGS84_B, "WGS84")
        logger.debug("No ellipsoid found in %s, assuming the lunar sphere.", crs)
        return cls.moon()

    @property
    def proj_params(self) -> dict[str, Any]:
        return {"proj": "longlat", "a": self.semi_major_axis, "b": self.semi_minor_axis, "no_defs": True}

    def geodetic_to_cartesian(self, lon_deg: np.ndarray, lat_deg: np.ndarray, h: np.ndarray) -> np.ndarray:
        """(lon, lat, height above the ellipsoid) -> planet-centred xyz, shape (..., 3)."""
        lon = np.radians(np.asarray(lon_deg, dtype=np.float64))
        lat = np.radians(np.asarray(lat_deg, dtype=np.float64))
        h = np.asarray(h, dtype=np.float64)
        a = self.semi_major_axis
        e2 = 1.0 - (self.semi_minor_axis / a) ** 2
        sin_lat = np.sin(lat)
        cos_lat = np.cos(lat)
        n = a / np.sqrt(1.0 - e2 * sin_lat * sin_lat)
        x = (n + h) * cos_lat * np.cos(lon)
        y = (n + h) * cos_lat * np.sin(lon)
        z = (n * (1.0 - e2) + h) * sin_lat
        return np.stack(np.broadcast_arrays(x, y, z), axis=-1)


@dataclass(frozen=True)
class GeoReference:
    """
    Raster index <-> map point <-> (lon, lat) mapping of a DEM.

    Pixel (col, row) refers to the pixel centre. Map points are in CRS units
    (degrees for a geographic CRS); projected CRSs are reprojected to
    longitude/latitude on the same datum.
    """

    transform: Affine
    width: int
    height: int
    crs: CRS | None = None
    datum: Datum = Datum.moon()

    def pixel_to_point(self, col, row) -> tuple[np.ndarray, np.ndarray]:
        col = np.asarray(col, dtype=np.float64) + 0.5
        row = np.asarray(row, dtype=np.float64) + 0.5
        t = self.transform
        return t.a * col + t.b * row + t.c, t.d * col + t.e * row + t.f

    @property
    def is_projected(self) -> bool:
        return self.crs is not None and bool(self.crs.is_projected)

    def point_to_lonlat(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        if not self.is_projected:
            return x, y
        shape = np.shape(x)
        lonlat_crs = CRS.from_dict(self.datum.proj_params)
        lon, lat = warp_transform(self.crs, lonlat_crs, np.ravel(x).tolist(), np.ravel(y).tolist())
        return np.asarray(lon, dtype=np.float64).reshape(shape), np.asarray(lat, dtype=np.float64).reshape(shape)

    def pixel_to_lonlat(self, col, row) -> tuple[np.ndarray, np.ndarray]:
        x, y = self.pixel_to_point(col, row)
        return self.point_to_lonlat(x, y)

    @cached_property
    def grid_lonlat(self) -> tuple[np.ndarray, np.ndarray]:
        """(lon, lat) of every DEM node, each shaped (height, width)."""
        cols, rows = np.meshgrid(np.arange(self.width), np.arange(self.height))
        lon, lat = self.pixel_to_lonlat(cols, rows)
        lon.setflags(write=False)
        lat.setflags(write=False)
        return lon, lat

    def grid_spacing(self) -> float:
        """Average distance between adjacent columns, in map units, from the grid extent."""
        ul = np.array(self.pixel_to_point(0, 0), dtype=np.float64)
        lr = np.array(self.pixel_to_point(self.width - 1, self.height - 1), dtype=np.float64)
        return float(np.linalg.norm(ul - lr) / np.hypot(self.width - 1, self.height - 1))


@dataclass(frozen=True)
class SurfaceSample:
    base: np.ndarray  # (N,3) cartesian point at the centre sample
    normal: np.ndarray  # (N,3) unit normal
    valid: np.ndarray  # (N,) bool


def _report_nodata_once() -> None:
    global _nodata_error_count
    if _nodata_error_count == 0:
        logger.error("sfs cannot handle DEMs with no-data.")
    _nodata_error_count += 1


def estimate_surface(
    center_h: np.ndarray,
    right_h: np.ndarray,
    top_h: np.ndarray,
    cols: np.ndarray,
    rows: np.ndarray,
    georef: GeoReference,
    nodata: float,
) -> SurfaceSample:
    """
    Cartesian base point and surface normal at cells (cols, rows) from the
    heights at (col, row), (col+1, row) and (col, row+1).

    The normal is -normalize((right - base) x (top - base)). Cells touching a
    no-data sample, or whose +1 neighbours fall outside the grid, are invalid
    and carry NaN geometry.
    """
    cols = np.asarray(cols, dtype=np.intp)
    rows = np.asarray(rows, dtype=np.intp)
    center_h = np.asarray(center_h, dtype=np.float64)
    right_h = np.asarray(right_h, dtype=np.float64)
    top_h = np.asarray(top_h, dtype=np.float64)

    inside = (cols >= 0) & (rows >= 0) & (cols < georef.width - 1) & (rows < georef.height - 1)
    has_nodata = (center_h == nodata) | (right_h == nodata) | (top_h == nodata)
    if np.any(has_nodata & inside):
        _report_nodata_once()
    valid = inside & ~has_nodata & np.isfinite(center_h) & np.isfinite(right_h) & np.isfinite(top_h)

    c = np.where(inside, cols, 0)
    r = np.where(inside, rows, 0)
    lon, lat = georef.grid_lonlat
    datum = georef.datum
    base = datum.geodetic_to_cartesian(lon[r, c], lat[r, c], center_h)
    right = datum.geodetic_to_cartesian(lon[r, c + 1], lat[r, c + 1], right_h)
    top = datum.geodetic_to_cartesian(lon[r + 1, c], lat[r + 1, c], top_h)

    n = np.cross(right - base, top - base)
    with np.errstate(divide="ignore", invalid="ignore"):
        normal = -n / np.linalg.norm(n, axis=-1, keepdims=True)
    valid &= np.all(np.isfinite(normal), axis=-1)

    base = np.where(valid[..., None], base, np.nan)
    normal = np.where(valid[..., None], normal, np.nan)
    return SurfaceSample(base=base, normal=normal, valid=valid)
