from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BrightnessParams:
    """Affine map from physical reflectance to sensor intensity: I ~ a0 * R + a1."""

    a0: float
    a1: float

    def as_array(self) -> np.ndarray:
        return np.array([self.a0, self.a1], dtype=np.float64)

    def apply(self, reflectance: np.ndarray) -> np.ndarray:
        return self.a0 * np.asarray(reflectance, dtype=np.float64) + self.a1


def image_stats(values: np.ndarray, valid: np.ndarray | None = None) -> tuple[float, float]:
    """Mean and population standard deviation over valid entries; (0, 0) when there are none."""
    values = np.asarray(values, dtype=np.float64)
    mask = np.isfinite(values)
    if valid is not None:
        mask &= np.asarray(valid, dtype=bool)
    if not np.any(mask):
        return 0.0, 0.0
    sel = values[mask]
    return float(np.mean(sel)), float(np.std(sel))


def calibrate_brightness(reflectance: np.ndarray, intensity: np.ndarray, valid: np.ndarray) -> BrightnessParams:
    """
    Closed-form a0, a1 matching the first two moments of intensity and
    calibrated reflectance over the valid cells:

      a0 = std(I) / std(R),  a1 = mean(I) - a0 * mean(R)

    A constant reflectance field carries no scale information; a0 is then 1.
    """
    mask = np.asarray(valid, dtype=bool) & np.isfinite(reflectance) & np.isfinite(intensity)
    img_mean, img_std = image_stats(intensity, mask)
    ref_mean, ref_std = image_stats(reflectance, mask)
    if ref_std > 0.0:
        a0 = img_std / ref_std
    else:
        logger.warning("Reflectance is constant over the DEM; using a unit brightness scale.")
        a0 = 1.0
    return BrightnessParams(a0=float(a0), a1=float(img_mean - a0 * ref_mean))
