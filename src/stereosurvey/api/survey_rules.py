from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from stereosurvey.api.results import RuleCheck, SurveyRulesResult
from stereosurvey.settings import SettingsValidationError


@dataclass(frozen=True)
class SurveyRules:
    """
    Acceptance rules of a survey. Distances in metres relative to the rig centre, RMS in mm.

    Horizontal limits are measured to the left (negative x) and right (positive x) of the centre,
    vertical limits above (negative y) and below (positive y) it.
    """

    active: bool = False
    range_rule_active: bool = False
    range_min: float = 0.0
    range_max: float = 0.0
    rms_rule_active: bool = False
    rms_max_mm: float = 0.0
    horizontal_rule_active: bool = False
    horizontal_left: float = 0.0
    horizontal_right: float = 0.0
    vertical_rule_active: bool = False
    vertical_top: float = 0.0
    vertical_bottom: float = 0.0

    @property
    def range_limits(self) -> tuple[float, float] | None:
        """(min, max) when the range rule is in force, else None."""
        if self.active and self.range_rule_active:
            return self.range_min, self.range_max
        return None


class _Measured(Protocol):
    def range_from_camera_system_centre(self) -> float | None: ...

    def x_offset_from_camera_system_centre(self) -> float | None: ...

    def y_offset_from_camera_system_centre(self) -> float | None: ...

    def ray_gap(self, which: bool | None = None) -> float | None: ...


_KEYS = {
    # snake_case: PascalCase (survey files)
    "active": "SurveyRulesActive",
    "range_rule_active": "RangeRuleActive",
    "range_min": "RangeMin",
    "range_max": "RangeMax",
    "rms_rule_active": "RMSRuleActive",
    "rms_max_mm": "RMSMax",
    "horizontal_rule_active": "HorizontalRangeRuleActive",
    "horizontal_left": "HorizontalRangeLeft",
    "horizontal_right": "HorizontalRangeRight",
    "vertical_rule_active": "VerticalRangeRuleActive",
    "vertical_top": "VerticalRangeTop",
    "vertical_bottom": "VerticalRangeBottom",
}


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise SettingsValidationError(msg)


def _as_bool(raw: Any, name: str) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str) and raw.strip().lower() in ("true", "false"):
        return raw.strip().lower() == "true"
    raise SettingsValidationError(f"{name} must be true or false, got {raw!r}")


def _as_float(raw: Any, name: str) -> float:
    # bool is an int subclass; a flag in a distance slot is a mistake.
    if isinstance(raw, bool):
        raise SettingsValidationError(f"{name} must be a number, got {raw!r}")
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise SettingsValidationError(f"{name} must be a number, got {raw!r}") from exc


def parse_survey_rules(data: dict[str, Any]) -> SurveyRules:
    _require(isinstance(data, dict), "survey rules must be a JSON object")
    if "SurveyRulesData" in data:
        outer = data
        _require(isinstance(data["SurveyRulesData"], dict), "SurveyRulesData must be a JSON object")
        data = dict(data["SurveyRulesData"])
        data.setdefault("SurveyRulesActive", outer.get("SurveyRulesActive", False))

    values: dict[str, Any] = {}
    for key, legacy in _KEYS.items():
        if key in data:
            values[key] = data[key]
        elif legacy in data:
            values[key] = data[legacy]

    kwargs: dict[str, Any] = {}
    for key, raw in values.items():
        kwargs[key] = _as_bool(raw, key) if key.endswith("active") else _as_float(raw, key)
    rules = SurveyRules(**kwargs)

    if rules.range_rule_active:
        _require(0.0 <= rules.range_min < rules.range_max, "range rule needs 0 <= range_min < range_max")
    if rules.rms_rule_active:
        _require(rules.rms_max_mm > 0.0, "rms_max_mm must be > 0")
    if rules.horizontal_rule_active:
        _require(rules.horizontal_left >= 0.0 and rules.horizontal_right >= 0.0, "horizontal limits must be >= 0")
    if rules.vertical_rule_active:
        _require(rules.vertical_top >= 0.0 and rules.vertical_bottom >= 0.0, "vertical limits must be >= 0")
    return rules


def load_survey_rules(path: Path) -> SurveyRules:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SettingsValidationError(f"{path}: invalid JSON ({exc})") from exc
    return parse_survey_rules(data)


def evaluate_rules(
    rules: SurveyRules,
    *,
    range_m: float | None,
    x_offset: float | None,
    y_offset: float | None,
    rms_m: float | None,
) -> SurveyRulesResult:
    checks: list[RuleCheck] = []

    if not (rules.active and rules.range_rule_active) or range_m is None:
        checks.append(RuleCheck("range", None))
    elif range_m < rules.range_min:
        checks.append(RuleCheck("range", False, f"Range {range_m:.2f}m < min {rules.range_min:.2f}m"))
    elif range_m > rules.range_max:
        checks.append(RuleCheck("range", False, f"Range {range_m:.2f}m > max {rules.range_max:.2f}m"))
    else:
        checks.append(RuleCheck("range", True))

    if not (rules.active and rules.rms_rule_active) or rms_m is None:
        checks.append(RuleCheck("rms", None))
    else:
        rms_mm = rms_m * 1000.0
        ok = rms_mm <= rules.rms_max_mm
        checks.append(RuleCheck("rms", ok, "" if ok else f"RMS {rms_mm:.1f}mm > max {rules.rms_max_mm:.1f}mm"))

    if not (rules.active and rules.horizontal_rule_active) or x_offset is None:
        checks.append(RuleCheck("horizontal", None))
    elif x_offset < -rules.horizontal_left:
        checks.append(RuleCheck("horizontal", False, f"X {x_offset:.2f}m beyond left {rules.horizontal_left:.2f}m"))
    elif x_offset > rules.horizontal_right:
        checks.append(RuleCheck("horizontal", False, f"X {x_offset:.2f}m beyond right {rules.horizontal_right:.2f}m"))
    else:
        checks.append(RuleCheck("horizontal", True))

    if not (rules.active and rules.vertical_rule_active) or y_offset is None:
        checks.append(RuleCheck("vertical", None))
    elif y_offset < -rules.vertical_top:
        checks.append(RuleCheck("vertical", False, f"Y {y_offset:.2f}m beyond top {rules.vertical_top:.2f}m"))
    elif y_offset > rules.vertical_bottom:
        checks.append(RuleCheck("vertical", False, f"Y {y_offset:.2f}m beyond bottom {rules.vertical_bottom:.2f}m"))
    else:
        checks.append(RuleCheck("vertical", True))

    return SurveyRulesResult(checks=tuple(checks))


def apply_rules(rules: SurveyRules, projection: _Measured) -> SurveyRulesResult:
    """
    Evaluate `rules` against the current measurement (or stereo point) of `projection`.

    The RMS rule is checked against the worst ray gap (metres, compared in mm).
    """
    return evaluate_rules(
        rules,
        range_m=projection.range_from_camera_system_centre(),
        x_offset=projection.x_offset_from_camera_system_centre(),
        y_offset=projection.y_offset_from_camera_system_centre(),
        rms_m=projection.ray_gap(None),
    )
