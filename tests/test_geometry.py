import warnings

import numpy as np
import pytest
from rasterio.crs import CRS

from sfsdem.core.geometry import MOON_RADIUS_M, WGS84_A, Datum, estimate_surface
from synthetic import NODATA, SPACING_DEG, make_georef


def test_geodetic_to_cartesian_axes():
    d = Datum.moon()
    xyz = d.geodetic_to_cartesian(np.array([0.0, 90.0, 0.0]), np.array([0.0, 0.0, 90.0]), np.array([10.0, 0.0, 0.0]))
    np.testing.assert_allclose(xyz[0], [MOON_RADIUS_M + 10.0, 0.0, 0.0], atol=1e-6)
    np.testing.assert_allclose(xyz[1], [0.0, MOON_RADIUS_M, 0.0], atol=1e-6)
    np.testing.assert_allclose(xyz[2], [0.0, 0.0, MOON_RADIUS_M], atol=1e-6)


def test_datum_from_crs():
    assert Datum.from_crs(None).semi_major_axis == MOON_RADIUS_M
    sphere = Datum.from_crs(CRS.from_proj4("+proj=longlat +R=3396190 +no_defs"))
    assert sphere.semi_major_axis == sphere.semi_minor_axis == 3396190.0
    wgs84 = Datum.from_crs(CRS.from_epsg(4326))
    assert wgs84.semi_major_axis == pytest.approx(WGS84_A)
    assert wgs84.semi_minor_axis < wgs84.semi_major_axis


def test_grid_spacing_and_pixel_centres():
    georef = make_georef(5, 5)
    assert georef.grid_spacing() == pytest.approx(SPACING_DEG, rel=1e-12)
    lon, lat = georef.pixel_to_lonlat(2, 2)
    assert float(lon) == pytest.approx(0.0, abs=1e-15)
    assert float(lat) == pytest.approx(0.0, abs=1e-15)
    glon, glat = georef.grid_lonlat
    assert glon.shape == (5, 5)
    # North up: latitude decreases with the row index.
    assert glat[0, 0] > glat[1, 0]


def test_pixel_to_point_matches_affine_without_warnings():
    georef = make_georef(4, 3)
    cols, rows = np.meshgrid(np.arange(4), np.arange(3))
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        x, y = georef.pixel_to_point(cols, rows)
    t = georef.transform
    for c, r in [(0, 0), (3, 2), (1, 2)]:
        ex, ey = t * (c + 0.5, r + 0.5)
        assert x[r, c] == pytest.approx(ex, abs=1e-15)
        assert y[r, c] == pytest.approx(ey, abs=1e-15)


def test_flat_dem_normals_point_outward():
    georef = make_georef(5, 5)
    cols, rows = np.meshgrid(np.arange(4), np.arange(4))
    cols = cols.ravel()
    rows = rows.ravel()
    h = np.full(cols.shape, 100.0)
    s = estimate_surface(h, h, h, cols, rows, georef, NODATA)
    assert s.valid.all()
    np.testing.assert_allclose(np.linalg.norm(s.normal, axis=-1), 1.0, atol=1e-12)
    radial = s.base / np.linalg.norm(s.base, axis=-1, keepdims=True)
    # Facet normals of a flat (constant height) DEM are close to the radial direction.
    assert np.all(np.sum(s.normal * radial, axis=-1) > 0.9999)


def test_nodata_sample_invalidates_cell():
    georef = make_georef(5, 5)
    cols = np.array([1, 2, 3])
    rows = np.array([1, 1, 1])
    center = np.array([100.0, NODATA, 100.0])
    right = np.array([100.0, 100.0, 100.0])
    top = np.array([100.0, 100.0, NODATA])
    s = estimate_surface(center, right, top, cols, rows, georef, NODATA)
    np.testing.assert_array_equal(s.valid, [True, False, False])
    assert np.all(np.isnan(s.normal[1:]))


def test_last_column_has_no_neighbour():
    georef = make_georef(5, 5)
    h = np.array([100.0])
    s = estimate_surface(h, h, h, np.array([4]), np.array([0]), georef, NODATA)
    assert not s.valid[0]
