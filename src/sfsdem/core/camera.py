from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import numpy as np

from sfsdem.core.reflectance import ModelParams
from sfsdem.errors import DataError, ModelInvariantError

PINHOLE_SCHEMA = "sfsdem.camera.pinhole.v0"
REQUIRED_CAPABILITIES = ("sun_position", "camera_center", "point_to_pixel")


@runtime_checkable
class SunCameraModel(Protocol):
    """Camera that knows where the sun and the spacecraft were at acquisition time."""

    def sun_position(self) -> np.ndarray: ...

    def camera_center(self) -> np.ndarray: ...

    def point_to_pixel(self, xyz: np.ndarray) -> np.ndarray: ...


def require_sun_camera(camera: Any) -> SunCameraModel:
    """Resolve the capability set once at load time instead of failing later on use."""
    missing = [name for name in REQUIRED_CAPABILITIES if not callable(getattr(camera, name, None))]
    if missing:
        raise ModelInvariantError(
            f"Camera model {type(camera).__name__} lacks required capabilities: {', '.join(missing)}"
        )
    return camera


@dataclass(frozen=True)
class PinholeOrbitCamera:
    """
    Frame camera in the planet-centred frame.

    X_cam = R (X - C); u = f X_cam/Z_cam + cx, v = f Y_cam/Z_cam + cy.
    Points at or behind the image plane have no projection.
    """

    center: np.ndarray  # (3,) metres
    rotation: np.ndarray  # (3,3) world -> camera
    focal_px: float
    cx: float
    cy: float
    sun: np.ndarray  # (3,) metres

    def sun_position(self) -> np.ndarray:
        return self.sun.copy()

    def camera_center(self) -> np.ndarray:
        return self.center.copy()

    def point_to_pixel(self, xyz: np.ndarray) -> np.ndarray:
        """Project (...,3) points to (...,2) pixels; NaN where the point is behind the camera."""
        xyz = np.asarray(xyz, dtype=np.float64)
        p_cam = (xyz - self.center) @ self.rotation.T
        z = p_cam[..., 2]
        with np.errstate(divide="ignore", invalid="ignore"):
            u = self.focal_px * p_cam[..., 0] / z + self.cx
            v = self.focal_px * p_cam[..., 1] / z + self.cy
        behind = ~(z > 0.0)
        u = np.where(behind, np.nan, u)
        v = np.where(behind, np.nan, v)
        return np.stack([u, v], axis=-1)


def _vector(data: dict[str, Any], key: str, shape: tuple[int, ...], path: Path) -> np.ndarray:
    if key not in data:
        raise DataError(f"{path}: missing key {key}")
    try:
        arr = np.asarray(data[key], dtype=np.float64).reshape(shape)
    except (TypeError, ValueError) as e:
        raise DataError(f"{path}: {key} must be a numeric array of shape {shape}") from e
    if not np.all(np.isfinite(arr)):
        raise DataError(f"{path}: {key} has non-finite values")
    return arr


def parse_pinhole_camera(data: dict[str, Any], path: Path = Path("<camera>")) -> PinholeOrbitCamera:
    if str(data.get("schema_version")) != PINHOLE_SCHEMA:
        raise DataError(f"{path}: schema_version must be {PINHOLE_SCHEMA}")
    center = _vector(data, "center_m", (3,), path)
    rotation = _vector(data, "rotation_world_to_cam", (3, 3), path)
    if not np.allclose(rotation @ rotation.T, np.eye(3), atol=1e-6):
        raise DataError(f"{path}: rotation_world_to_cam is not orthonormal")
    focal = float(_vector(data, "focal_px", (1,), path)[0])
    if focal <= 0.0:
        raise DataError(f"{path}: focal_px must be > 0")
    cx, cy = _vector(data, "principal_point_px", (2,), path)
    sun = _vector(data, "sun_position_m", (3,), path)
    return PinholeOrbitCamera(center=center, rotation=rotation, focal_px=focal, cx=float(cx), cy=float(cy), sun=sun)


def load_camera(path: Path, session_type: str = "pinhole") -> SunCameraModel:
    path = Path(path)
    if session_type != "pinhole":
        raise ModelInvariantError(f"Unsupported camera session: {session_type}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise DataError(f"Could not read camera file: {path}") from e
    except json.JSONDecodeError as e:
        raise DataError(f"Malformed camera file {path}: {e}") from e
    return require_sun_camera(parse_pinhole_camera(data, path))


def save_pinhole_camera(path: Path, camera: PinholeOrbitCamera) -> Path:
    path = Path(path)
    meta = {
        "schema_version": PINHOLE_SCHEMA,
        "center_m": np.asarray(camera.center, dtype=np.float64).tolist(),
        "rotation_world_to_cam": np.asarray(camera.rotation, dtype=np.float64).tolist(),
        "focal_px": float(camera.focal_px),
        "principal_point_px": [float(camera.cx), float(camera.cy)],
        "sun_position_m": np.asarray(camera.sun, dtype=np.float64).tolist(),
    }
    path.write_text(json.dumps(meta, indent=2, sort_keys=True), encoding="utf-8")
    return path


def model_params_from_camera(
    camera: SunCameraModel,
    *,
    sun_override: np.ndarray | None = None,
    camera_override: np.ndarray | None = None,
) -> ModelParams:
    sun = camera.sun_position() if sun_override is None else sun_override
    cam = camera.camera_center() if camera_override is None else camera_override
    return ModelParams.from_vectors(sun, cam)
