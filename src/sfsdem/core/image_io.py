from __future__ import annotations

import warnings
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import rasterio
from PIL import Image
from rasterio.errors import NotGeoreferencedWarning, RasterioIOError

from sfsdem.errors import DataError


def load_image(path: str | Path) -> np.ndarray:
    """
    Load band 1 of a radiance image as float64, shaped (rows, cols).

    Primary backend is rasterio/GDAL (GeoTIFF, ISIS cubes, float rasters).
    Pillow is used as a fallback for formats the GDAL build cannot open.
    """
    p = Path(path)
    if not p.exists():
        raise DataError(f"Could not read image: {p}")
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", NotGeoreferencedWarning)
            with rasterio.open(p) as src:
                return src.read(1).astype(np.float64)
    except RasterioIOError:
        # Fall back to Pillow below.
        pass

    try:
        with Image.open(p) as im:
            if im.mode not in ("F", "I", "I;16", "L"):
                im = im.convert("L")
            return np.asarray(im, dtype=np.float64)
    except OSError as e:
        raise DataError(f"Could not read image: {p}") from e


@dataclass(frozen=True)
class BilinearImage:
    """Read-only image sampled at continuous pixel coordinates (u=col, v=row)."""

    pixels: np.ndarray  # (rows, cols)

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "BilinearImage":
        pixels = np.array(arr, dtype=np.float64, copy=True)
        pixels.setflags(write=False)
        return cls(pixels=pixels)

    @property
    def cols(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def rows(self) -> int:
        return int(self.pixels.shape[0])

    def contains(self, u: np.ndarray, v: np.ndarray) -> np.ndarray:
        """Pixels whose bilinear footprint lies inside the image: [0, cols-1) x [0, rows-1)."""
        u = np.asarray(u, dtype=np.float64)
        v = np.asarray(v, dtype=np.float64)
        return (u >= 0.0) & (u < self.cols - 1) & (v >= 0.0) & (v < self.rows - 1)

    def sample(self, u: np.ndarray, v: np.ndarray) -> np.ndarray:
        """Bilinear interpolation; coordinates outside the image are clamped to the border."""
        H, W = self.pixels.shape
        x = np.clip(np.nan_to_num(np.asarray(u, dtype=np.float64)), 0.0, W - 1.0)
        y = np.clip(np.nan_to_num(np.asarray(v, dtype=np.float64)), 0.0, H - 1.0)

        x0 = np.floor(x).astype(np.intp)
        y0 = np.floor(y).astype(np.intp)
        x1 = np.clip(x0 + 1, 0, W - 1)
        y1 = np.clip(y0 + 1, 0, H - 1)

        wx = x - x0
        wy = y - y0

        Ia = self.pixels[y0, x0]
        Ib = self.pixels[y0, x1]
        Ic = self.pixels[y1, x0]
        Id = self.pixels[y1, x1]

        wa = (1.0 - wx) * (1.0 - wy)
        wb = wx * (1.0 - wy)
        wc = (1.0 - wx) * wy
        wd = wx * wy
        return wa * Ia + wb * Ib + wc * Ic + wd * Id
