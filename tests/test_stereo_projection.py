from __future__ import annotations

import logging

import numpy as np
import pytest

from stereosurvey.api.calibration_set import StereoCalibrationSet
from stereosurvey.api.results import MeasurementResult, PointResult, StereoPointResult
from stereosurvey.api.stereo_projection import ProjectionState, StereoProjection
from stereosurvey.api.survey_rules import SurveyRules

from conftest import make_record, project_pair

POINT_A = np.array([-0.25, -0.15, 3.0])
POINT_B = np.array([0.05, -0.10, 3.2])


def _projection(record, frame_size=(3840, 2160)) -> StereoProjection:
    proj = StereoProjection()
    proj.set_calibration_data(StereoCalibrationSet.single(record))
    proj.set_frame_size(*frame_size)
    return proj


def _load_ab(proj: StereoProjection, record, a=POINT_A, b=POINT_B, scale: float = 1.0) -> None:
    la, ra = project_pair(record, a)
    lb, rb = project_pair(record, b)
    s = lambda p: (p[0] * scale, p[1] * scale)  # noqa: E731
    assert proj.points_load(s(la), s(lb), s(ra), s(rb))


def _centre(record) -> np.ndarray:
    return -0.5 * record.stereo.R.T @ record.stereo.t


def test_measurement_recovers_known_length_and_position(record) -> None:
    proj = _projection(record)
    _load_ab(proj, record)
    assert proj.state is ProjectionState.POINTS_LOADED

    length = proj.measurement()
    assert length is not None
    assert abs(length - np.linalg.norm(POINT_A - POINT_B)) < 1e-6
    assert proj.state is ProjectionState.COMPUTED

    mid = 0.5 * (POINT_A + POINT_B)
    centre = _centre(record)
    assert abs(proj.range_from_camera_system_centre() - np.linalg.norm(mid - centre)) < 1e-6
    assert abs(proj.x_offset_from_camera_system_centre() - (mid[0] - centre[0])) < 1e-6
    assert abs(proj.y_offset_from_camera_system_centre() - (mid[1] - centre[1])) < 1e-6


def test_exact_correspondences_have_no_error(record) -> None:
    proj = _projection(record)
    _load_ab(proj, record)
    assert proj.rms(None) < 1e-6
    assert proj.rms(True) < 1e-6
    assert proj.rms(False) < 1e-6
    assert proj.reprojection_error(None) == proj.rms(None)
    assert proj.ray_gap(None) < 1e-7


def test_noisy_pick_raises_error_estimates(record) -> None:
    proj = _projection(record)
    la, ra = project_pair(record, POINT_A)
    lb, rb = project_pair(record, POINT_B)
    proj.points_load(la, lb, (ra[0], ra[1] + 8.0), rb)
    assert proj.rms(True) > 1.0
    assert proj.rms(False) < 1e-6
    assert proj.rms(None) == pytest.approx(0.5 * (proj.rms(True) + proj.rms(False)))
    assert proj.ray_gap(None) == proj.ray_gap(True) > 1e-4


def test_range_is_computed_lazily(record) -> None:
    proj = _projection(record)
    _load_ab(proj, record)
    assert proj.range_from_camera_system_centre() is not None
    assert proj.state is ProjectionState.COMPUTED


def test_measurement_is_idempotent(record) -> None:
    proj = _projection(record)
    _load_ab(proj, record)
    assert proj.measurement() == proj.measurement()


def test_points_clear_returns_to_empty(record) -> None:
    proj = _projection(record)
    _load_ab(proj, record)
    assert proj.measurement() is not None
    proj.points_clear()
    assert proj.state is ProjectionState.EMPTY
    assert proj.measurement() is None
    assert proj.rms() is None
    assert proj.compute() is None
    _load_ab(proj, record)
    assert proj.measurement() is not None


def test_missing_inputs_give_none(record) -> None:
    proj = StereoProjection()
    _load_ab(proj, record)
    assert proj.measurement() is None
    assert proj.range_from_camera_system_centre() is None
    assert proj.calculate_epipolar_line(True, (100.0, 100.0)) is None
    assert proj.state is ProjectionState.POINTS_LOADED

    proj = _projection(record)
    la, ra = project_pair(record, POINT_A)
    lb, _ = project_pair(record, POINT_B)
    assert proj.points_load(la, lb, ra, None)
    assert proj.measurement() is None
    # Three picks fall back to the complete A pair.
    assert abs(proj.range_from_camera_system_centre() - np.linalg.norm(POINT_A - _centre(record))) < 1e-6
    assert isinstance(proj.compute(), StereoPointResult)


def test_point_behind_the_rig_is_degenerate(record) -> None:
    proj = _projection(record)
    la, ra = project_pair(record, np.array([0.2, 0.1, -3.0]))
    lb, rb = project_pair(record, POINT_B)
    proj.points_load(la, lb, ra, rb)
    assert proj.measurement() is None


def test_pick_beyond_the_distortion_fold_is_degenerate(record) -> None:
    proj = _projection(record)
    la, _ = project_pair(record, POINT_A)
    lb, rb = project_pair(record, POINT_B)
    proj.points_load(la, lb, (3700.0, 2100.0), rb)
    assert proj.measurement() is None
    assert proj.calculate_epipolar_line(False, (100.0, 100.0)) is None


def test_invalid_arguments_raise(record) -> None:
    proj = _projection(record)
    with pytest.raises(ValueError):
        proj.points_load((float("nan"), 1.0))
    with pytest.raises(ValueError):
        proj.set_frame_size(0, 1080)
    with pytest.raises(TypeError):
        proj.set_calibration_data("calibration.json")


def test_frame_size_rescales_calibration(record) -> None:
    full = _projection(record)
    _load_ab(full, record)
    half = _projection(record, frame_size=(1920, 1080))
    _load_ab(half, record, scale=0.5)
    assert abs(half.measurement() - full.measurement()) < 1e-6
    assert half.rig().record.resolution == (1920, 1080)


def test_changing_frame_size_discards_results(record) -> None:
    proj = _projection(record)
    _load_ab(proj, record)
    proj.measurement()
    proj.set_frame_size(1920, 1080)
    assert proj.state is ProjectionState.POINTS_LOADED


def test_alternative_calibrations_are_logged(record, caplog) -> None:
    other = make_record(t=[-0.95, 0.0, 0.1], calibration_id="4k-alt", description="4K rig (redo)")
    proj = StereoProjection()
    proj.set_calibration_data(StereoCalibrationSet(records=(record, other), preferred_index=0))
    proj.set_frame_size(3840, 2160)
    _load_ab(proj, record)
    with caplog.at_level(logging.DEBUG, logger="stereosurvey.api.stereo_projection"):
        proj.measurement()
    assert "alternative calibration '4K rig (redo)'" in caplog.text
    assert proj.calibration_id() == "rig-4k"


def test_compute_measurement_with_rules(record) -> None:
    proj = _projection(record)
    proj.set_survey_rules(SurveyRules(active=True, range_rule_active=True, range_min=0.5, range_max=2.0))
    _load_ab(proj, record)
    result = proj.compute()
    assert isinstance(result, MeasurementResult)
    assert result.length == proj.measurement()
    assert result.calibration_id == "rig-4k"
    assert result.rules is not None and not result.rules.passed
    assert result.rules.check("range").passed is False
    assert result.to_dict()["rules"]["passed"] is False


def test_compute_stereo_point(record) -> None:
    proj = _projection(record)
    la, ra = project_pair(record, POINT_A)
    assert proj.points_load(la, None, ra, None)
    result = proj.compute()
    assert isinstance(result, StereoPointResult)
    assert np.linalg.norm(np.asarray(result.point) - POINT_A) < 1e-6
    assert abs(result.range - np.linalg.norm(POINT_A - _centre(record))) < 1e-6
    assert result.rules is None


def test_compute_single_camera_point(record) -> None:
    proj = _projection(record)
    assert not proj.points_load(None, None, (1200.0, 800.0), None)
    result = proj.compute()
    assert isinstance(result, PointResult)
    assert result.side == "right"
    assert result.pixel == (1200.0, 800.0)


def test_epipolar_line_contains_true_correspondence(record) -> None:
    proj = _projection(record)
    la, ra = project_pair(record, POINT_A)
    right_undistorted = record.right.camera_model().project(record.stereo.R @ POINT_A + record.stereo.t, distort=False)[0]
    left_undistorted = record.left.camera_model().project(POINT_A, distort=False)[0]

    line = proj.calculate_epipolar_line(True, la)
    assert line.side == "right"
    assert line.distance(tuple(right_undistorted)) < 1e-6
    assert abs(line.a * line.a + line.b * line.b - 1.0) < 1e-12
    assert abs(line.baseline - record.stereo.baseline) < 1e-12
    assert line.focal_length == record.left.K[0, 0]

    line = proj.calculate_epipolar_line(False, ra)
    assert line.side == "left"
    assert line.distance(tuple(left_undistorted)) < 1e-6


def test_epipolar_points_lie_at_requested_depths(record) -> None:
    proj = _projection(record)
    la, ra = project_pair(record, POINT_A)

    pts = proj.calculate_epipolar_points(True, la)
    assert (pts.near_distance, pts.middle_distance, pts.far_distance) == (0.4, 5.2, 10.0)
    rig = proj.rig()
    for depth, px in ((pts.middle_distance, pts.middle), (pts.far_distance, pts.far)):
        p = proj.triangulate(rig, la, px)
        assert abs(p.xyz[2] - depth) < 1e-6

    pts = proj.calculate_epipolar_points(False, ra)
    assert pts.side == "left"
    p = proj.triangulate(rig, pts.far, ra)
    assert abs((rig.R @ p.xyz + rig.t)[2] - pts.far_distance) < 1e-6


def test_epipolar_points_follow_range_rule(record) -> None:
    proj = _projection(record)
    proj.set_survey_rules(SurveyRules(active=True, range_rule_active=True, range_min=1.0, range_max=7.0))
    assert proj.epipolar_distances() == (1.0, 4.0, 7.0)
    proj.set_survey_rules(SurveyRules(active=False, range_rule_active=True, range_min=1.0, range_max=7.0))
    assert proj.epipolar_distances() == (0.4, 5.2, 10.0)
