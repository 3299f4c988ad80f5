from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sfsdem.core.reflectance import GlobalParams, ReflectanceType
from sfsdem.errors import ConfigurationError

DEFAULT_MAX_ITERATIONS = 100
DEFAULT_SMOOTHNESS_WEIGHT = 1.0
# Empirical Lunar-Lambert phase correction coefficients.
DEFAULT_PHASE_COEFFS = (1.383488, 0.501149)
SESSION_TYPES = ("pinhole",)


@dataclass(frozen=True)
class SfsOptions:
    input_dem: Path
    output_prefix: str
    input_images: tuple[Path, ...]
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    smoothness_weight: float = DEFAULT_SMOOTHNESS_WEIGHT
    threads: int = 0
    session_type: str = "pinhole"
    cameras: tuple[Path, ...] = field(default_factory=tuple)
    sun_positions: Path | None = None
    spacecraft_positions: Path | None = None
    reflectance_type: ReflectanceType = ReflectanceType.LUNAR_LAMBERT
    phase_coeffs: tuple[float, float] = DEFAULT_PHASE_COEFFS
    verbose: bool = False

    @property
    def global_params(self) -> GlobalParams:
        return GlobalParams(
            reflectance_type=self.reflectance_type,
            phase_coeff_c1=float(self.phase_coeffs[0]),
            phase_coeff_c2=float(self.phase_coeffs[1]),
        )

    def camera_path(self, index: int) -> Path:
        """Camera description for image `index`: explicit `--cameras` entry or `<image>.json`."""
        if self.cameras:
            return self.cameras[index]
        return self.input_images[index].with_suffix(".json")

    def create_output_dir(self) -> Path:
        out_dir = Path(self.output_prefix).parent
        out_dir.mkdir(parents=True, exist_ok=True)
        return out_dir


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigurationError(msg)


def _optional_path(value: Any) -> Path | None:
    if value is None or str(value) == "":
        return None
    return Path(value)


def parse_options(data: dict[str, Any]) -> SfsOptions:
    """
    Validate a flat option mapping (argparse namespace `vars()` or a plain dict).

    Every failure raises `ConfigurationError` naming the offending option,
    before any file is touched.
    """
    input_dem = data.get("input_dem")
    _require(input_dem is not None and str(input_dem) != "", "Missing input DEM (--input-dem).")

    output_prefix = data.get("output_prefix")
    _require(output_prefix is not None and str(output_prefix) != "", "Missing output prefix (--output-prefix).")

    images = data.get("input_images") or []
    _require(len(images) > 0, "Missing input images.")

    try:
        max_iterations = int(data.get("max_iterations", DEFAULT_MAX_ITERATIONS))
    except (TypeError, ValueError) as e:
        raise ConfigurationError("--max-iterations must be an integer") from e
    _require(max_iterations >= 0, "The number of iterations must be non-negative (--max-iterations).")

    try:
        smoothness_weight = float(data.get("smoothness_weight", DEFAULT_SMOOTHNESS_WEIGHT))
    except (TypeError, ValueError) as e:
        raise ConfigurationError("--smoothness-weight must be a real number") from e
    _require(
        math.isfinite(smoothness_weight) and smoothness_weight >= 0.0,
        "--smoothness-weight must be finite and >= 0",
    )

    threads = int(data.get("threads") or 0)
    _require(threads >= 0, "--threads must be >= 0")

    session_type = str(data.get("session_type") or "pinhole")
    _require(session_type in SESSION_TYPES, f"--session-type must be one of {', '.join(SESSION_TYPES)}")

    cameras = tuple(Path(c) for c in (data.get("cameras") or []))
    _require(
        not cameras or len(cameras) == len(images),
        f"--cameras expects one camera per image ({len(images)}), got {len(cameras)}",
    )

    refl_raw = data.get("reflectance_type", ReflectanceType.LUNAR_LAMBERT)
    try:
        reflectance_type = ReflectanceType.parse(refl_raw)
    except ValueError as e:
        raise ConfigurationError(f"--reflectance-type: {e}") from e

    coeffs = data.get("phase_coeffs") or DEFAULT_PHASE_COEFFS
    _require(len(coeffs) == 2, "--phase-coeffs expects two values: C1 C2")
    c1, c2 = float(coeffs[0]), float(coeffs[1])
    _require(math.isfinite(c1) and math.isfinite(c2), "--phase-coeffs must be finite")

    return SfsOptions(
        input_dem=Path(input_dem),
        output_prefix=str(output_prefix),
        input_images=tuple(Path(p) for p in images),
        max_iterations=max_iterations,
        smoothness_weight=smoothness_weight,
        threads=threads,
        session_type=session_type,
        cameras=cameras,
        sun_positions=_optional_path(data.get("sun_positions")),
        spacecraft_positions=_optional_path(data.get("spacecraft_positions")),
        reflectance_type=reflectance_type,
        phase_coeffs=(c1, c2),
        verbose=bool(data.get("verbose", False)),
    )
