from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from sfsdem.api.raster_io import write_raster
from sfsdem.core.stats import image_stats
from sfsdem.sfs.problem import SfsContext

logger = logging.getLogger(__name__)

INTENSITY_NODATA = 0.0


def summarize_intensity(context: SfsContext, heights: np.ndarray) -> dict[str, np.ndarray | float]:
    """Measured and calibrated computed intensity rasters at `heights`, with their mean/stdev."""
    if context.brightness is None:
        raise ValueError("brightness parameters are not calibrated")
    reflectance, intensity, valid = context.reflectance_and_intensity(heights)
    computed = np.where(valid, context.brightness.apply(reflectance), 0.0)
    img_mean, img_std = image_stats(intensity, valid)
    ref_mean, ref_std = image_stats(computed, valid)
    return {
        "measured": intensity,
        "computed": computed,
        "img_mean": img_mean,
        "img_std": img_std,
        "ref_mean": ref_mean,
        "ref_std": ref_std,
    }


class IterationObserver:
    """
    Writes diagnostics after each accepted solver step:

      <prefix>-final-DEM-<i>.tif           current heights (DEM georeference and no-data)
      <prefix>-measured-intensity-<i>.tif  image sampled at the projected cells
      <prefix>-computed-intensity-<i>.tif  a0 * reflectance + a1

    It only reads the context; the heights it receives are a read-only copy.
    """

    def __init__(self, context: SfsContext, output_prefix: str | Path) -> None:
        self.context = context
        self.output_prefix = str(output_prefix)
        self.written: list[Path] = []

    @property
    def dem_dtype(self) -> str:
        """Refined heights are fractional; integer DEMs are written as float32."""
        return "float64" if self.context.dem.dtype == "float64" else "float32"

    def path_for(self, kind: str, iteration: int) -> Path:
        return Path(f"{self.output_prefix}-{kind}-{iteration}.tif")

    def __call__(self, iteration: int, heights: np.ndarray) -> None:
        logger.info("Finished iteration: %d", iteration)
        dem = self.context.dem
        georef = dem.georef

        out_dem = self.path_for("final-DEM", iteration)
        logger.info("Writing: %s", out_dem)
        self.written.append(write_raster(out_dem, heights, georef, dem.nodata, dtype=self.dem_dtype))

        stats = summarize_intensity(self.context, heights)

        out_measured = self.path_for("measured-intensity", iteration)
        logger.info("Writing: %s", out_measured)
        self.written.append(write_raster(out_measured, stats["measured"], georef, INTENSITY_NODATA))

        out_computed = self.path_for("computed-intensity", iteration)
        logger.info("Writing: %s", out_computed)
        self.written.append(write_raster(out_computed, stats["computed"], georef, INTENSITY_NODATA))

        logger.info("img mean and std: %g %g", stats["img_mean"], stats["img_std"])
        logger.info("ref mean and std: %g %g", stats["ref_mean"], stats["ref_std"])
