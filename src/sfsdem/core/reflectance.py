"""
Photometric reflectance laws for planetary surfaces.

All functions are vectorized: normals and points are (..., 3) arrays in the
planet-centred cartesian frame, sun/viewer positions are (3,).
"""
from __future__ import annotations

import enum
from dataclasses import dataclass

import numpy as np

from sfsdem.errors import ModelInvariantError

UNIT_NORMAL_TOL = 1e-4
# Below this value of mu0 the sun is too low for a reliable inversion.
LUNAR_LAMBERT_MIN_MU0 = 0.3
# McEwen limb-darkening polynomial in the phase angle (degrees).
MCEWEN_A = -0.019
MCEWEN_B = 0.000242
MCEWEN_C = -0.00000146


class ReflectanceType(enum.Enum):
    NONE = "none"
    LAMBERT = "lambert"
    LUNAR_LAMBERT = "lunar_lambert"

    @classmethod
    def parse(cls, value: "str | ReflectanceType") -> "ReflectanceType":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("-", "_")
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(f"unknown reflectance type {value!r} (expected none|lambert|lunar_lambert)")


@dataclass(frozen=True)
class GlobalParams:
    reflectance_type: ReflectanceType = ReflectanceType.LUNAR_LAMBERT
    phase_coeff_c1: float = 1.383488
    phase_coeff_c2: float = 0.501149


@dataclass(frozen=True)
class ModelParams:
    """Per-image geometry: sun and camera positions relative to the planet centre."""

    sun_position: np.ndarray  # (3,)
    camera_position: np.ndarray  # (3,)

    @classmethod
    def from_vectors(cls, sun_position, camera_position) -> "ModelParams":
        sun = np.asarray(sun_position, dtype=np.float64).reshape(3).copy()
        cam = np.asarray(camera_position, dtype=np.float64).reshape(3).copy()
        sun.setflags(write=False)
        cam.setflags(write=False)
        return cls(sun_position=sun, camera_position=cam)


@dataclass(frozen=True)
class ReflectanceResult:
    reflectance: np.ndarray
    phase_angle: np.ndarray  # radians


def _unit_directions(target: np.ndarray, xyz: np.ndarray) -> np.ndarray:
    d = np.asarray(target, dtype=np.float64).reshape(3) - np.asarray(xyz, dtype=np.float64)
    return d / np.linalg.norm(d, axis=-1, keepdims=True)


def _dot(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.sum(a * b, axis=-1)


def check_unit_normals(normal: np.ndarray) -> None:
    len2 = _dot(normal, normal)
    finite = np.isfinite(len2)
    if np.any(np.abs(len2[finite] - 1.0) > UNIT_NORMAL_TOL):
        raise ModelInvariantError("Expecting unit normal in the reflectance computation.")


def phase_angle(sun_position: np.ndarray, view_position: np.ndarray, xyz: np.ndarray) -> np.ndarray:
    """Angle between the sun and viewer directions as seen from `xyz` (radians)."""
    cos_alpha = _dot(_unit_directions(sun_position, xyz), _unit_directions(view_position, xyz))
    return np.arccos(np.clip(cos_alpha, -1.0, 1.0))


def lambert_reflectance(sun_position: np.ndarray, xyz: np.ndarray, normal: np.ndarray) -> np.ndarray:
    """Cosine between the sun direction and the normal. Not clamped."""
    return _dot(_unit_directions(sun_position, xyz), np.asarray(normal, dtype=np.float64))


def lunar_lambert_reflectance(
    sun_position: np.ndarray,
    view_position: np.ndarray,
    xyz: np.ndarray,
    normal: np.ndarray,
    phase_coeff_c1: float,
    phase_coeff_c2: float,
) -> ReflectanceResult:
    """
    Lunar-Lambert law with McEwen's limb-darkening polynomial L(alpha):

      R = 2 L mu0 / (mu0 + mu) + (1 - L) mu0

    multiplied by the phase correction exp(-C1 alpha) + C2, which dims points
    where the sun is nearly behind the camera. Cells with mu0 < 0.3 return 0;
    emission angles above 90 degrees clip mu to 0.
    """
    normal = np.asarray(normal, dtype=np.float64)
    check_unit_normals(normal)

    sun_dir = _unit_directions(sun_position, xyz)
    view_dir = _unit_directions(view_position, xyz)

    mu0 = _dot(sun_dir, normal)
    mu = np.maximum(_dot(view_dir, normal), 0.0)

    alpha = np.arccos(np.clip(_dot(sun_dir, view_dir), -1.0, 1.0))
    deg_alpha = np.degrees(alpha)
    L = 1.0 + MCEWEN_A * deg_alpha + MCEWEN_B * deg_alpha**2 + MCEWEN_C * deg_alpha**3

    denom = mu0 + mu
    with np.errstate(divide="ignore", invalid="ignore"):
        refl = 2.0 * L * mu0 / denom + (1.0 - L) * mu0
    refl = np.where(denom == 0.0, 0.0, refl)
    refl = np.where(refl <= 0.0, 0.0, refl)
    refl = refl * (np.exp(-float(phase_coeff_c1) * alpha) + float(phase_coeff_c2))
    refl = np.where(refl < 0.0, 0.0, refl)
    refl = np.where(mu0 < LUNAR_LAMBERT_MIN_MU0, 0.0, refl)
    return ReflectanceResult(reflectance=refl, phase_angle=alpha)


def compute_reflectance(
    normal: np.ndarray,
    xyz: np.ndarray,
    model_params: ModelParams,
    global_params: GlobalParams,
) -> ReflectanceResult:
    normal = np.asarray(normal, dtype=np.float64)
    xyz = np.asarray(xyz, dtype=np.float64)
    kind = global_params.reflectance_type

    if kind is ReflectanceType.LUNAR_LAMBERT:
        return lunar_lambert_reflectance(
            model_params.sun_position,
            model_params.camera_position,
            xyz,
            normal,
            global_params.phase_coeff_c1,
            global_params.phase_coeff_c2,
        )

    alpha = phase_angle(model_params.sun_position, model_params.camera_position, xyz)
    if kind is ReflectanceType.LAMBERT:
        check_unit_normals(normal)
        return ReflectanceResult(
            reflectance=lambert_reflectance(model_params.sun_position, xyz, normal),
            phase_angle=alpha,
        )
    return ReflectanceResult(reflectance=np.ones(normal.shape[:-1], dtype=np.float64), phase_angle=alpha)
