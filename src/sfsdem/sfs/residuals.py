from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

import numpy as np

from sfsdem.core.camera import SunCameraModel
from sfsdem.core.geometry import GeoReference, estimate_surface
from sfsdem.core.image_io import BilinearImage
from sfsdem.core.reflectance import GlobalParams, ModelParams, compute_reflectance

FAILED_RESIDUAL = 1e20

# Neighbourhood of a grid point (c, r), with heights u(col, row):
#
#   tl   = u(c-1, r+1)  top    = u(c, r+1)  tr    = u(c+1, r+1)
#   left = u(c-1, r  )  center = u(c, r  )  right = u(c+1, r  )
#   bl   = u(c-1, r-1)  bottom = u(c, r-1)  br    = u(c+1, r-1)
STENCIL_OFFSETS: tuple[tuple[str, int, int], ...] = (
    ("tl", -1, 1),
    ("top", 0, 1),
    ("tr", 1, 1),
    ("left", -1, 0),
    ("center", 0, 0),
    ("right", 1, 0),
    ("bl", -1, -1),
    ("bottom", 0, -1),
    ("br", 1, -1),
)


@dataclass(frozen=True)
class Stencil:
    """The 9 heights around each evaluated cell, one array entry per cell."""

    tl: np.ndarray
    top: np.ndarray
    tr: np.ndarray
    left: np.ndarray
    center: np.ndarray
    right: np.ndarray
    bl: np.ndarray
    bottom: np.ndarray
    br: np.ndarray

    @classmethod
    def from_grid(cls, heights: np.ndarray, cols: np.ndarray, rows: np.ndarray) -> "Stencil":
        cols = np.asarray(cols, dtype=np.intp)
        rows = np.asarray(rows, dtype=np.intp)
        return cls(**{name: heights[rows + dr, cols + dc] for name, dc, dr in STENCIL_OFFSETS})

    def values(self) -> tuple[np.ndarray, ...]:
        return tuple(getattr(self, name) for name, _dc, _dr in STENCIL_OFFSETS)


@dataclass(frozen=True)
class ResidualResult:
    values: np.ndarray  # (N, dim)
    success: np.ndarray  # (N,) bool


@dataclass(frozen=True)
class IntensitySample:
    reflectance: np.ndarray
    intensity: np.ndarray
    valid: np.ndarray


@dataclass(frozen=True)
class IntensityResidual:
    """
    Brightness mismatch at a cell: I(project(base)) - (a0 * reflectance + a1).

    All members are read-only views; `evaluate` is a pure function of its
    arguments and can be called concurrently.
    """

    georef: GeoReference
    nodata: float
    model_params: ModelParams
    global_params: GlobalParams
    image: BilinearImage
    camera: SunCameraModel

    dim: ClassVar[int] = 1

    def sample(
        self,
        cols: np.ndarray,
        rows: np.ndarray,
        center: np.ndarray,
        right: np.ndarray,
        top: np.ndarray,
    ) -> IntensitySample:
        surface = estimate_surface(center, right, top, cols, rows, self.georef, self.nodata)
        refl = compute_reflectance(surface.normal, surface.base, self.model_params, self.global_params)

        pix = self.camera.point_to_pixel(surface.base)
        u = pix[..., 0]
        v = pix[..., 1]
        valid = surface.valid & self.image.contains(u, v)

        intensity = np.where(valid, self.image.sample(u, v), 0.0)
        reflectance = np.where(valid, refl.reflectance, 0.0)
        return IntensitySample(reflectance=reflectance, intensity=intensity, valid=valid)

    def evaluate(self, cols: np.ndarray, rows: np.ndarray, stencil: Stencil, brightness: np.ndarray) -> ResidualResult:
        a0, a1 = (float(a) for a in np.asarray(brightness, dtype=np.float64).reshape(2))
        s = self.sample(cols, rows, stencil.center, stencil.right, stencil.top)
        res = np.where(s.valid, s.intensity - (a0 * s.reflectance + a1), FAILED_RESIDUAL)
        return ResidualResult(values=res.reshape(-1, 1), success=s.valid)


@dataclass(frozen=True)
class SmoothnessResidual:
    """
    Weighted second-order finite differences (u_xx, u_xy, u_yx, u_yy) of
    the heights, with `grid_size` the spacing between adjacent columns.
    """

    smoothness_weight: float
    grid_size: float
    nodata: float | None = None

    dim: ClassVar[int] = 4

    def evaluate(self, stencil: Stencil) -> ResidualResult:
        gs = self.grid_size * self.grid_size
        u_xx = (stencil.left + stencil.right - 2.0 * stencil.center) / gs
        u_xy = (stencil.tr + stencil.bl - stencil.tl - stencil.br) / 4.0 / gs
        u_yy = (stencil.top + stencil.bottom - 2.0 * stencil.center) / gs
        res = self.smoothness_weight * np.stack([u_xx, u_xy, u_xy, u_yy], axis=-1)

        success = np.all(np.isfinite(res), axis=-1)
        if self.nodata is not None:
            for h in stencil.values():
                success &= h != self.nodata
        res = np.where(success[:, None], res, FAILED_RESIDUAL)
        return ResidualResult(values=res, success=success)


def compute_reflectance_and_intensity(
    heights: np.ndarray, residual: IntensityResidual
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Reflectance, measured intensity and validity rasters for the whole grid.

    Cells in the last column or row have no +1 neighbour and stay invalid
    (reflectance and intensity 0).
    """
    rows_n, cols_n = heights.shape
    reflectance = np.zeros_like(heights, dtype=np.float64)
    intensity = np.zeros_like(heights, dtype=np.float64)
    valid = np.zeros(heights.shape, dtype=bool)

    rows, cols = np.mgrid[0 : rows_n - 1, 0 : cols_n - 1]
    rows = rows.ravel()
    cols = cols.ravel()
    s = residual.sample(cols, rows, heights[rows, cols], heights[rows, cols + 1], heights[rows + 1, cols])
    reflectance[rows, cols] = s.reflectance
    intensity[rows, cols] = s.intensity
    valid[rows, cols] = s.valid
    return reflectance, intensity, valid
