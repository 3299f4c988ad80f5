import numpy as np
import pytest

from sfsdem.core.stats import calibrate_brightness, image_stats


def test_image_stats_ignores_invalid_cells():
    values = np.array([[1.0, 2.0, 100.0], [3.0, np.nan, 4.0]])
    valid = np.array([[True, True, False], [True, True, True]])
    mean, std = image_stats(values, valid)
    assert mean == pytest.approx(2.5)
    assert std == pytest.approx(np.std([1.0, 2.0, 3.0, 4.0]))
    assert image_stats(values, np.zeros_like(valid)) == (0.0, 0.0)


def test_calibration_matches_first_two_moments():
    rng = np.random.default_rng(0)
    reflectance = rng.uniform(0.2, 1.2, size=(20, 30))
    intensity = 0.3 + 0.02 * rng.normal(size=(20, 30)) + 1.7 * reflectance
    valid = rng.uniform(size=(20, 30)) > 0.1
    # Garbage in invalid cells must not matter.
    intensity[~valid] = 1e6

    a = calibrate_brightness(reflectance, intensity, valid)
    img_mean, img_std = image_stats(intensity, valid)
    ref_mean, ref_std = image_stats(reflectance, valid)
    assert img_std == pytest.approx(a.a0 * ref_std, rel=1e-12)
    assert img_mean == pytest.approx(a.a0 * ref_mean + a.a1, rel=1e-12)
    np.testing.assert_allclose(a.apply(reflectance[valid]).mean(), img_mean, rtol=1e-12)


def test_constant_reflectance_uses_unit_scale():
    reflectance = np.full((4, 4), 0.5)
    intensity = np.full((4, 4), 0.25)
    a = calibrate_brightness(reflectance, intensity, np.ones((4, 4), dtype=bool))
    assert a.a0 == 1.0
    assert a.a1 == -0.25
