from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

SETTINGS_SCHEMA_VERSION = "stereosurvey.settings.v0"


class SettingsValidationError(ValueError):
    pass


@dataclass(frozen=True)
class ProjectionSettings:
    """
    Numerical tolerances and defaults of the stereo projection engine.

    Distances are metres, angles degrees.
    """

    undistort_max_iterations: int = 20
    undistort_tolerance: float = 1e-12
    degenerate_epsilon: float = 1e-12
    parallel_epsilon: float = 1e-6
    epipolar_near_m: float = 0.4
    epipolar_far_m: float = 10.0
    correspondence_threshold_deg: float = 45.0

    def to_dict(self) -> dict[str, Any]:
        return {"schema_version": SETTINGS_SCHEMA_VERSION, **asdict(self)}


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise SettingsValidationError(msg)


def _as_int(raw: Any, name: str) -> int:
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise SettingsValidationError(f"{name} must be an integer, got {raw!r}")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise SettingsValidationError(f"{name} must be an integer, got {raw!r}") from exc


def _as_float(raw: Any, name: str) -> float:
    if isinstance(raw, bool):
        raise SettingsValidationError(f"{name} must be a number, got {raw!r}")
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise SettingsValidationError(f"{name} must be a number, got {raw!r}") from exc


def load_projection_settings(path: Path) -> ProjectionSettings:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SettingsValidationError(f"{path}: invalid JSON ({exc})") from exc
    return parse_projection_settings(data)


def parse_projection_settings(data: dict[str, Any]) -> ProjectionSettings:
    _require(isinstance(data, dict), "settings must be a JSON object")
    schema_version = data.get("schema_version", SETTINGS_SCHEMA_VERSION)
    _require(schema_version == SETTINGS_SCHEMA_VERSION, f"schema_version must be {SETTINGS_SCHEMA_VERSION}")

    d = ProjectionSettings()
    iterations = _as_int(data.get("undistort_max_iterations", d.undistort_max_iterations), "undistort_max_iterations")
    _require(iterations >= 1, "undistort_max_iterations must be >= 1")

    tolerance = _as_float(data.get("undistort_tolerance", d.undistort_tolerance), "undistort_tolerance")
    degenerate = _as_float(data.get("degenerate_epsilon", d.degenerate_epsilon), "degenerate_epsilon")
    parallel = _as_float(data.get("parallel_epsilon", d.parallel_epsilon), "parallel_epsilon")
    _require(tolerance > 0.0 and degenerate > 0.0 and parallel > 0.0, "tolerances must be > 0")

    near = _as_float(data.get("epipolar_near_m", d.epipolar_near_m), "epipolar_near_m")
    far = _as_float(data.get("epipolar_far_m", d.epipolar_far_m), "epipolar_far_m")
    _require(near > 0.0, "epipolar_near_m must be > 0")
    _require(far > near, "epipolar_far_m must be greater than epipolar_near_m")

    threshold = _as_float(data.get("correspondence_threshold_deg", d.correspondence_threshold_deg), "correspondence_threshold_deg")
    _require(0.0 < threshold < 180.0, "correspondence_threshold_deg must be in (0, 180)")

    return ProjectionSettings(
        undistort_max_iterations=iterations,
        undistort_tolerance=tolerance,
        degenerate_epsilon=degenerate,
        parallel_epsilon=parallel,
        epipolar_near_m=near,
        epipolar_far_m=far,
        correspondence_threshold_deg=threshold,
    )
