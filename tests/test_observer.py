from pathlib import Path

import numpy as np
import rasterio

from sfsdem.sfs.observer import IterationObserver, summarize_intensity
from sfsdem.sfs.problem import SfsProblem
from synthetic import bumpy_heights, make_context, ramp_image


def test_observer_writes_coregistered_rasters(tmp_path: Path):
    ctx = make_context(bumpy_heights(6), image=ramp_image())
    SfsProblem(ctx).build()
    before = ctx.dem.heights.copy()

    observer = IterationObserver(ctx, tmp_path / "run")
    heights = ctx.dem.heights + 0.25
    observer(3, heights)

    names = sorted(p.name for p in tmp_path.iterdir())
    assert names == ["run-computed-intensity-3.tif", "run-final-DEM-3.tif", "run-measured-intensity-3.tif"]

    with rasterio.open(tmp_path / "run-final-DEM-3.tif") as src:
        np.testing.assert_array_equal(src.read(1), heights)
        assert src.transform == ctx.dem.georef.transform
        assert src.nodata == ctx.dem.nodata

    with rasterio.open(tmp_path / "run-measured-intensity-3.tif") as src:
        measured = src.read(1)
        assert src.nodata == 0.0
    # Last row/column have no +1 neighbour.
    assert np.all(measured[-1, :] == 0.0)
    assert np.all(measured[:-1, :-1] > 0.0)

    np.testing.assert_array_equal(ctx.dem.heights, before)


def test_summarize_intensity_uses_calibration():
    ctx = make_context(bumpy_heights(6), image=ramp_image())
    a = ctx.calibrate()
    stats = summarize_intensity(ctx, ctx.dem.heights)
    # At the calibration heights the first two moments agree.
    assert abs(stats["img_mean"] - stats["ref_mean"]) < 1e-9
    assert abs(stats["img_std"] - stats["ref_std"]) < 1e-9
    reflectance, _intensity, valid = ctx.reflectance_and_intensity()
    np.testing.assert_allclose(stats["computed"][valid], a.a0 * reflectance[valid] + a.a1)


def test_refined_heights_of_an_integer_dem_keep_their_fraction(tmp_path: Path):
    ctx = make_context(np.full((5, 5), 100.0), image=ramp_image())
    ctx.dem.dtype = "int16"
    ctx.calibrate()
    heights = ctx.dem.heights.copy()
    heights[2, 2] = 103.4

    observer = IterationObserver(ctx, tmp_path / "run")
    assert observer.dem_dtype == "float32"
    observer(0, heights)

    with rasterio.open(tmp_path / "run-final-DEM-0.tif") as src:
        assert src.dtypes[0] == "float32"
        assert src.nodata == ctx.dem.nodata
        assert src.read(1)[2, 2] == np.float32(103.4)
