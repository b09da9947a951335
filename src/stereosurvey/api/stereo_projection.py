from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum

import numpy as np

from stereosurvey.api.calibration_set import StereoCalibrationSet
from stereosurvey.api.results import (
    EpipolarLine,
    EpipolarPoints,
    MeasurementResult,
    Pixel,
    PointResult,
    PointSlots,
    ProjectionResult,
    StereoPointResult,
)
from stereosurvey.api.survey_rules import SurveyRules, apply_rules
from stereosurvey.calibration import CalibrationData
from stereosurvey.core.geometry import (
    CameraModel,
    fundamental_matrix,
    projection_matrix,
    ray_gap,
    triangulate_dlt,
)
from stereosurvey.settings import ProjectionSettings

logger = logging.getLogger(__name__)


class ProjectionState(str, Enum):
    EMPTY = "empty"
    POINTS_LOADED = "points_loaded"
    COMPUTED = "computed"


@dataclass(frozen=True, eq=False)
class StereoRig:
    """
    Geometry derived from one calibration record at the live frame size.

    Convention: the left camera frame is the reference, X_R = R X_L + t, so the right
    optical centre in the left frame is -R^T t and the rig centre is halfway between.
    """

    record: CalibrationData
    left: CameraModel
    right: CameraModel
    R: np.ndarray
    t: np.ndarray
    P_left: np.ndarray
    P_right: np.ndarray
    F: np.ndarray

    @classmethod
    def from_record(cls, record: CalibrationData) -> "StereoRig":
        left = record.left.camera_model()
        right = record.right.camera_model()
        R = np.asarray(record.stereo.R, dtype=np.float64)
        t = np.asarray(record.stereo.t, dtype=np.float64)
        return cls(
            record=record,
            left=left,
            right=right,
            R=R,
            t=t,
            P_left=projection_matrix(left.K),
            P_right=projection_matrix(right.K, R, t),
            F=fundamental_matrix(left.K, right.K, R, t),
        )

    @property
    def right_centre(self) -> np.ndarray:
        return self.record.stereo.right_centre_in_left

    @property
    def centre(self) -> np.ndarray:
        return 0.5 * self.right_centre

    @property
    def baseline(self) -> float:
        return float(np.linalg.norm(self.t))


@dataclass(frozen=True)
class TriangulatedPoint:
    """One triangulated correspondence (left camera frame, metres)."""

    xyz: np.ndarray
    ray_gap: float
    reprojection_error: float


def _check_pixel(p, name: str) -> Pixel | None:
    if p is None:
        return None
    try:
        x, y = (float(v) for v in p)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an (x, y) pair") from exc
    if not (math.isfinite(x) and math.isfinite(y)):
        raise ValueError(f"{name} must be finite")
    return x, y


def _vec3(a: np.ndarray) -> tuple[float, float, float]:
    return float(a[0]), float(a[1]), float(a[2])


class StereoProjection:
    """
    Stereo measurement engine.

    Bind a calibration set and the live frame size, load the operator's picks
    (Left A/B, Right A/B) and query length, range, offsets and error estimates.
    Results are computed lazily and cached until the points, frame size or
    calibration change. Missing inputs and degenerate geometry give None.
    """

    def __init__(self, settings: ProjectionSettings | None = None) -> None:
        self.settings = settings if settings is not None else ProjectionSettings()
        self._calibration: StereoCalibrationSet | None = None
        self._rules: SurveyRules | None = None
        self._frame_size: tuple[int, int] | None = None
        self._points = PointSlots()
        self._rig: StereoRig | None = None
        self._rig_index: int | None = None
        self._point_a: TriangulatedPoint | None = None
        self._point_b: TriangulatedPoint | None = None
        self._computed = False

    # ---- binding -------------------------------------------------------------

    def set_frame_size(self, width: int, height: int) -> None:
        width, height = int(width), int(height)
        if width <= 0 or height <= 0:
            raise ValueError(f"frame size must be > 0, got {width}x{height}")
        if self._frame_size != (width, height):
            self._frame_size = (width, height)
            self._invalidate_rig()

    def reset_frame_size(self) -> None:
        self._frame_size = None
        self._invalidate_rig()

    @property
    def frame_size(self) -> tuple[int, int] | None:
        return self._frame_size

    def set_calibration_data(self, calibration: StereoCalibrationSet | CalibrationData) -> None:
        if isinstance(calibration, CalibrationData):
            calibration = StereoCalibrationSet.single(calibration)
        if not isinstance(calibration, StereoCalibrationSet):
            raise TypeError(f"expected StereoCalibrationSet, got {type(calibration).__name__}")
        self._calibration = calibration
        self._invalidate_rig()

    def clear_calibration_data(self) -> None:
        self._calibration = None
        self._invalidate_rig()

    def set_survey_rules(self, rules: SurveyRules) -> None:
        self._rules = rules

    def clear_survey_rules(self) -> None:
        self._rules = None

    def calibration_id(self) -> str | None:
        rig = self.rig()
        return None if rig is None else rig.record.calibration_id

    def _invalidate_rig(self) -> None:
        self._rig = None
        self._rig_index = None
        self._discard_results()

    def _select_index(self) -> int | None:
        cal = self._calibration
        if cal is None or len(cal) == 0:
            return None
        if self._frame_size is None:
            return cal.preferred_index if cal.preferred_index is not None else 0
        return cal.preferred_index_for(*self._frame_size)

    def _rig_for(self, record: CalibrationData) -> StereoRig:
        if self._frame_size is not None and record.resolution is not None and not record.frame_size_matches(*self._frame_size):
            record = record.scaled_to(*self._frame_size)
        return StereoRig.from_record(record)

    def rig(self) -> StereoRig | None:
        """Geometry of the calibration record in use, or None without calibration."""
        if self._rig is None:
            i = self._select_index()
            if i is None:
                return None
            self._rig = self._rig_for(self._calibration[i])
            self._rig_index = i
        return self._rig

    # ---- points --------------------------------------------------------------

    @property
    def state(self) -> ProjectionState:
        if self._points.is_empty():
            return ProjectionState.EMPTY
        if self._computed:
            return ProjectionState.COMPUTED
        return ProjectionState.POINTS_LOADED

    @property
    def points(self) -> PointSlots:
        return PointSlots(**vars(self._points))

    def points_load(
        self,
        left_a: Pixel | PointSlots | None = None,
        left_b: Pixel | None = None,
        right_a: Pixel | None = None,
        right_b: Pixel | None = None,
    ) -> bool:
        """
        Store the picks (any may be None) and discard cached results.
        Returns True when the picks are enough for a stereo point or a measurement.
        """
        if isinstance(left_a, PointSlots):
            slots = left_a
            left_a, left_b, right_a, right_b = slots.left_a, slots.left_b, slots.right_a, slots.right_b
        self._points = PointSlots(
            left_a=_check_pixel(left_a, "left_a"),
            left_b=_check_pixel(left_b, "left_b"),
            right_a=_check_pixel(right_a, "right_a"),
            right_b=_check_pixel(right_b, "right_b"),
        )
        self._discard_results()
        return self._points.has_measurement() or self._points.has_stereo_point()

    def points_clear(self) -> None:
        self._points = PointSlots()
        self._discard_results()

    def _discard_results(self) -> None:
        self._point_a = None
        self._point_b = None
        self._computed = False

    # ---- triangulation -------------------------------------------------------

    def triangulate(self, rig: StereoRig, left_px: Pixel, right_px: Pixel) -> TriangulatedPoint | None:
        """Undistort a left/right pick pair and triangulate it with `rig`. None when degenerate."""
        s = self.settings
        uv_l = rig.left.undistort_pixels(np.asarray(left_px), iterations=s.undistort_max_iterations, tol=s.undistort_tolerance)
        uv_r = rig.right.undistort_pixels(np.asarray(right_px), iterations=s.undistort_max_iterations, tol=s.undistort_tolerance)
        if not (np.all(np.isfinite(uv_l)) and np.all(np.isfinite(uv_r))):
            logger.debug("Pick outside the invertible distortion region: %s / %s", left_px, right_px)
            return None

        xyz = triangulate_dlt(rig.P_left, rig.P_right, uv_l, uv_r, eps=s.degenerate_epsilon)[0]
        if not np.all(np.isfinite(xyz)) or xyz[2] <= 0.0:
            logger.debug("Degenerate triangulation for %s / %s", left_px, right_px)
            return None

        d_left = rig.left.ray_directions_cam(uv_l)
        d_right = rig.R.T @ rig.right.ray_directions_cam(uv_r)
        gap = ray_gap(np.zeros(3), d_left, rig.right_centre, d_right, parallel_eps=s.parallel_epsilon)

        reproj_l = rig.left.project(xyz, distort=False)[0]
        reproj_r = rig.right.project(rig.R @ xyz + rig.t, distort=False)[0]
        err = 0.5 * (float(np.linalg.norm(reproj_l - uv_l)) + float(np.linalg.norm(reproj_r - uv_r)))
        return TriangulatedPoint(xyz=xyz, ray_gap=gap, reprojection_error=err)

    def _compute(self) -> bool:
        if self._computed:
            return True
        rig = self.rig()
        if rig is None:
            return False
        p = self._points
        a = self.triangulate(rig, p.left_a, p.right_a) if p.left_a is not None and p.right_a is not None else None
        b = self.triangulate(rig, p.left_b, p.right_b) if p.left_b is not None and p.right_b is not None else None
        if a is None and b is None:
            return False
        self._point_a, self._point_b = a, b
        self._computed = True
        return True

    def _target(self) -> np.ndarray | None:
        """Measurement midpoint, or the single stereo point."""
        if not self._compute():
            return None
        a, b = self._point_a, self._point_b
        if a is not None and b is not None:
            return 0.5 * (a.xyz + b.xyz)
        if self._points.has_measurement():
            return None
        return (a if a is not None else b).xyz

    # ---- measurements --------------------------------------------------------

    def measurement(self) -> float | None:
        """Distance in metres between the triangulated A and B points."""
        if not self._points.has_measurement() or not self._compute():
            return None
        if self._point_a is None or self._point_b is None:
            return None
        length = float(np.linalg.norm(self._point_a.xyz - self._point_b.xyz))
        self._log_alternative_lengths(length)
        return length

    def _log_alternative_lengths(self, length: float) -> None:
        if not logger.isEnabledFor(logging.DEBUG) or self._calibration is None or self._frame_size is None:
            return
        rig = self.rig()
        logger.debug("Length %.1fmm with calibration %r", length * 1000.0, rig.record.description)
        p = self._points
        for i in self._calibration.matching_indices(*self._frame_size):
            if i == self._rig_index:
                continue
            alt = self._rig_for(self._calibration[i])
            a = self.triangulate(alt, p.left_a, p.right_a)
            b = self.triangulate(alt, p.left_b, p.right_b)
            if a is not None and b is not None:
                alt_length = float(np.linalg.norm(a.xyz - b.xyz))
                logger.debug("Length %.1fmm with alternative calibration %r", alt_length * 1000.0, alt.record.description)

    def range_from_camera_system_centre(self) -> float | None:
        """Distance in metres from the rig centre to the measurement midpoint (or stereo point)."""
        target = self._target()
        if target is None:
            return None
        return float(np.linalg.norm(target - self._rig.centre))

    def x_offset_from_camera_system_centre(self) -> float | None:
        target = self._target()
        if target is None:
            return None
        return float(target[0] - self._rig.centre[0])

    def y_offset_from_camera_system_centre(self) -> float | None:
        target = self._target()
        if target is None:
            return None
        return float(target[1] - self._rig.centre[1])

    def _pick(self, which: bool | None) -> list[TriangulatedPoint] | None:
        if not self._compute():
            return None
        if which is True:
            chosen = [self._point_a]
        elif which is False:
            chosen = [self._point_b]
        else:
            chosen = [self._point_a, self._point_b]
        chosen = [c for c in chosen if c is not None]
        return chosen or None

    def rms(self, which: bool | None = None) -> float | None:
        """
        Mean reprojection error in pixels of the triangulated points in both cameras.

        which=True: point A only, False: point B only, None: all triangulated points.
        """
        chosen = self._pick(which)
        if chosen is None:
            return None
        return float(np.mean([c.reprojection_error for c in chosen]))

    def reprojection_error(self, which: bool | None = None) -> float | None:
        return self.rms(which)

    def ray_gap(self, which: bool | None = None) -> float | None:
        """
        Shortest distance in metres between the left and right viewing rays.

        which=True: point A, False: point B, None: worst of the triangulated points.
        """
        chosen = self._pick(which)
        if chosen is None:
            return None
        return max(c.ray_gap for c in chosen)

    def compute(self) -> ProjectionResult | None:
        """Result for the current picks: a measurement, a stereo point or a single-camera point."""
        p = self._points
        rules = None
        length = self.measurement()
        if length is not None:
            a, b = self._point_a, self._point_b
            if self._rules is not None and self._rules.active:
                rules = apply_rules(self._rules, self)
            return MeasurementResult(
                kind="measurement",
                length=length,
                range=self.range_from_camera_system_centre(),
                x_offset=self.x_offset_from_camera_system_centre(),
                y_offset=self.y_offset_from_camera_system_centre(),
                rms=self.rms(None),
                rms_a=a.reprojection_error,
                rms_b=b.reprojection_error,
                reprojection_error=self.reprojection_error(None),
                point_a=_vec3(a.xyz),
                point_b=_vec3(b.xyz),
                midpoint=_vec3(0.5 * (a.xyz + b.xyz)),
                calibration_id=self.calibration_id(),
                rules=rules,
            )

        if not p.has_measurement() and self._target() is not None:
            point = self._point_a if self._point_a is not None else self._point_b
            if self._rules is not None and self._rules.active:
                rules = apply_rules(self._rules, self)
            return StereoPointResult(
                kind="stereo_point",
                point=_vec3(point.xyz),
                range=self.range_from_camera_system_centre(),
                x_offset=self.x_offset_from_camera_system_centre(),
                y_offset=self.y_offset_from_camera_system_centre(),
                rms=point.reprojection_error,
                reprojection_error=point.reprojection_error,
                calibration_id=self.calibration_id(),
                rules=rules,
            )

        pick = p.single_pick()
        if pick is None:
            return None
        return PointResult(kind="point", side=pick[0], pixel=pick[1])

    # ---- epipolar ------------------------------------------------------------

    def calculate_epipolar_line(self, true_left_false_right: bool, point: Pixel) -> EpipolarLine | None:
        """
        Epipolar line on the other camera for a pick on the left (True) or right (False) camera.

        The line a*x + b*y + c = 0 lives in the other camera's undistorted pixels, with (a, b)
        scaled to unit length so that |a*x + b*y + c| is a pixel distance.
        """
        point = _check_pixel(point, "point")
        rig = self.rig()
        if rig is None:
            return None
        s = self.settings
        source = rig.left if true_left_false_right else rig.right
        uv = source.undistort_pixels(np.asarray(point), iterations=s.undistort_max_iterations, tol=s.undistort_tolerance)
        x = np.array([uv[0], uv[1], 1.0], dtype=np.float64)
        line = rig.F @ x if true_left_false_right else rig.F.T @ x
        n = float(np.hypot(line[0], line[1]))
        if not np.isfinite(n) or n < s.degenerate_epsilon:
            return None
        line = line / n
        return EpipolarLine(
            side="right" if true_left_false_right else "left",
            a=float(line[0]),
            b=float(line[1]),
            c=float(line[2]),
            focal_length=rig.left.fx,
            baseline=rig.baseline,
            principal_point_left=(rig.left.cx, rig.left.cy),
            principal_point_right=(rig.right.cx, rig.right.cy),
        )

    def epipolar_distances(self) -> tuple[float, float, float]:
        """(near, middle, far) distances in metres used for epipolar points."""
        near, far = self.settings.epipolar_near_m, self.settings.epipolar_far_m
        limits = self._rules.range_limits if self._rules is not None else None
        if limits is not None:
            # A zero minimum range would put the near point on the camera centre.
            near = limits[0] if limits[0] > 0.0 else near
            far = limits[1]
        return near, 0.5 * (near + far), far

    def calculate_epipolar_points(self, true_left_false_right: bool, point: Pixel) -> EpipolarPoints | None:
        """
        Distorted pixels on the other camera where the pick would appear at the near, middle
        and far distances (depth along the source camera's optical axis).
        """
        point = _check_pixel(point, "point")
        rig = self.rig()
        if rig is None:
            return None
        s = self.settings
        source, target = (rig.left, rig.right) if true_left_false_right else (rig.right, rig.left)
        uv = source.undistort_pixels(np.asarray(point), iterations=s.undistort_max_iterations, tol=s.undistort_tolerance)
        x, y = source.pixel_to_normalized(uv[0], uv[1])

        near, middle, far = self.epipolar_distances()
        out: list[Pixel | None] = []
        for depth in (near, middle, far):
            P_s = np.array([float(x) * depth, float(y) * depth, depth], dtype=np.float64)
            P_t = rig.R @ P_s + rig.t if true_left_false_right else rig.R.T @ (P_s - rig.t)
            if P_t[2] <= 0.0:
                out.append(None)
                continue
            px = target.project(P_t, distort=True)[0]
            out.append((float(px[0]), float(px[1])) if np.all(np.isfinite(px)) else None)

        return EpipolarPoints(
            side="right" if true_left_false_right else "left",
            near=out[0],
            middle=out[1],
            far=out[2],
            near_distance=near,
            middle_distance=middle,
            far_distance=far,
        )
