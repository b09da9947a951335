from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Literal, Union

Pixel = tuple[float, float]
Side = Literal["left", "right"]


@dataclass
class PointSlots:
    """The four operator picks of a measurement; any slot may be empty."""

    left_a: Pixel | None = None
    left_b: Pixel | None = None
    right_a: Pixel | None = None
    right_b: Pixel | None = None

    def has_measurement(self) -> bool:
        return None not in (self.left_a, self.left_b, self.right_a, self.right_b)

    def has_stereo_point(self) -> bool:
        return (self.left_a is not None and self.right_a is not None) or (
            self.left_b is not None and self.right_b is not None
        )

    def single_pick(self) -> tuple[Side, Pixel] | None:
        for side, p in (("left", self.left_a), ("left", self.left_b), ("right", self.right_a), ("right", self.right_b)):
            if p is not None:
                return side, p
        return None

    def is_empty(self) -> bool:
        return self.single_pick() is None


@dataclass(frozen=True)
class RuleCheck:
    name: str
    passed: bool | None
    message: str = ""


@dataclass(frozen=True)
class SurveyRulesResult:
    checks: tuple[RuleCheck, ...]

    @property
    def passed(self) -> bool:
        return all(c.passed is not False for c in self.checks)

    @property
    def text(self) -> str:
        failed = [c.message for c in self.checks if c.passed is False]
        return "; ".join(failed) if failed else "Passed"

    def check(self, name: str) -> RuleCheck | None:
        for c in self.checks:
            if c.name == name:
                return c
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "text": self.text,
            "checks": {c.name: c.passed for c in self.checks},
        }


@dataclass(frozen=True)
class MeasurementResult:
    """Length between two triangulated points and their position relative to the rig centre."""

    kind: Literal["measurement"]
    length: float
    range: float
    x_offset: float
    y_offset: float
    rms: float
    rms_a: float
    rms_b: float
    reprojection_error: float
    point_a: tuple[float, float, float]
    point_b: tuple[float, float, float]
    midpoint: tuple[float, float, float]
    calibration_id: str | None = None
    rules: SurveyRulesResult | None = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["rules"] = None if self.rules is None else self.rules.to_dict()
        return d


@dataclass(frozen=True)
class StereoPointResult:
    """A single triangulated point."""

    kind: Literal["stereo_point"]
    point: tuple[float, float, float]
    range: float
    x_offset: float
    y_offset: float
    rms: float
    reprojection_error: float
    calibration_id: str | None = None
    rules: SurveyRulesResult | None = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["rules"] = None if self.rules is None else self.rules.to_dict()
        return d


@dataclass(frozen=True)
class PointResult:
    """A pick on one camera only; no 3D information."""

    kind: Literal["point"]
    side: Side
    pixel: Pixel

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


ProjectionResult = Union[MeasurementResult, StereoPointResult, PointResult]


@dataclass(frozen=True)
class EpipolarLine:
    """
    Line a*x + b*y + c = 0 in the undistorted pixel space of `side`.
    """

    side: Side
    a: float
    b: float
    c: float
    focal_length: float
    baseline: float
    principal_point_left: Pixel
    principal_point_right: Pixel

    def distance(self, point: Pixel) -> float:
        x, y = point
        return abs(self.a * x + self.b * y + self.c) / (self.a * self.a + self.b * self.b) ** 0.5

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EpipolarPoints:
    """Distorted pixels on `side` for a pick back-projected to near, middle and far distances (metres)."""

    side: Side
    near: Pixel | None
    middle: Pixel | None
    far: Pixel | None
    near_distance: float
    middle_distance: float
    far_distance: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
