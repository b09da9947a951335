from __future__ import annotations

import numpy as np
import pytest

from stereosurvey.core.distortion import BrownDistortion
from stereosurvey.core.geometry import distort_point, undistort_point


def test_survey_pixel_roundtrip_within_hundredth_pixel(record) -> None:
    cam = record.left.camera_model()
    p = (965.427490234375, 336.97113037109375)
    u = undistort_point(cam, p)
    assert u is not None
    back = distort_point(cam, u)
    assert back is not None
    assert abs(back[0] - p[0]) < 0.01
    assert abs(back[1] - p[1]) < 0.01
    # Barrel distortion pushes this corner-ish pick outwards once undistorted.
    assert np.hypot(u[0] - cam.cx, u[1] - cam.cy) > np.hypot(p[0] - cam.cx, p[1] - cam.cy)


def test_undistort_inverts_distort_with_tangential_and_rational_terms() -> None:
    d = BrownDistortion(k1=-0.28, k2=0.09, p1=1.2e-3, p2=-8e-4, k3=-0.01, k4=0.05, k5=0.01, k6=0.002)
    rng = np.random.default_rng(0)
    x = rng.uniform(-0.6, 0.6, size=(500,))
    y = rng.uniform(-0.4, 0.4, size=(500,))
    xd, yd = d.distort(x, y)
    x2, y2 = d.undistort(xd, yd)
    assert np.max(np.abs(x2 - x)) < 1e-10
    assert np.max(np.abs(y2 - y)) < 1e-10


def test_jacobian_matches_finite_differences() -> None:
    d = BrownDistortion(k1=-0.2, k2=0.05, p1=1e-3, p2=2e-3, k3=0.01)
    x, y, h = 0.31, -0.22, 1e-7
    j_xx, j_xy, j_yx, j_yy = d.jacobian(x, y)
    xp, yp = d.distort(x + h, y)
    xm, ym = d.distort(x - h, y)
    assert abs((xp - xm) / (2 * h) - j_xx) < 1e-6
    assert abs((yp - ym) / (2 * h) - j_yx) < 1e-6
    xp, yp = d.distort(x, y + h)
    xm, ym = d.distort(x, y - h)
    assert abs((xp - xm) / (2 * h) - j_xy) < 1e-6
    assert abs((yp - ym) / (2 * h) - j_yy) < 1e-6


def test_from_coefficients_pads_and_validates() -> None:
    d = BrownDistortion.from_coefficients([-0.1, 0.02, 0.0, 0.0])
    assert d.k3 == 0.0 and not d.is_rational
    with pytest.raises(ValueError):
        BrownDistortion.from_coefficients([0.1, 0.2, 0.3, 0.4, 0.5, 0.6])


def test_in_frame_roundtrip_or_none_on_both_cameras(record) -> None:
    for side in (record.left, record.right):
        cam = side.camera_model()
        for u in np.linspace(0.0, 3839.0, 17):
            for v in np.linspace(0.0, 2159.0, 10):
                und = undistort_point(cam, (u, v))
                if und is None:
                    continue
                back = distort_point(cam, und)
                assert back is not None
                assert abs(back[0] - u) < 0.01 and abs(back[1] - v) < 0.01


def test_left_survey_camera_is_invertible_over_the_frame(record) -> None:
    cam = record.left.camera_model()
    uv = np.stack(np.meshgrid(np.linspace(0.0, 3839.0, 17), np.linspace(0.0, 2159.0, 10)), axis=-1)
    assert np.all(np.isfinite(cam.undistort_pixels(uv)))


def test_pixels_beyond_the_fold_have_no_inverse(record) -> None:
    # k2 = -0.314 caps the distorted radius of the right camera below the frame corners.
    cam = record.right.camera_model()
    for p in ((3700.0, 2100.0), (300.0, 1900.0), (100.0, 100.0)):
        assert undistort_point(cam, p) is None
    assert undistort_point(cam, (1900.0, 1100.0)) is not None


def test_undistort_marks_unreachable_points_nan() -> None:
    d = BrownDistortion(k2=-0.3)
    # The distorted radius peaks near 0.72, so 0.9 cannot be reached.
    x, y = d.undistort(np.array([0.1, 0.9]), np.array([0.0, 0.0]))
    assert np.isfinite(x[0]) and np.isnan(x[1]) and np.isnan(y[1])
    assert bool(d.folded(1.2, 0.0)) and not bool(d.folded(0.3, 0.0))


def test_distort_past_the_fold_gives_none(record) -> None:
    cam = record.right.camera_model()
    far = cam.normalized_to_pixel(1.2, 0.0)
    assert distort_point(cam, (float(far[0]), float(far[1]))) is None


def test_missing_camera_gives_none() -> None:
    assert undistort_point(None, (10.0, 20.0)) is None
    assert distort_point(None, (10.0, 20.0)) is None


def test_projection_matches_opencv(record) -> None:
    cv2 = pytest.importorskip("cv2")

    cam = record.right.camera_model()
    rng = np.random.default_rng(3)
    xyz = np.stack(
        [rng.uniform(-1.0, 1.0, 50), rng.uniform(-0.6, 0.6, 50), rng.uniform(2.0, 8.0, 50)],
        axis=-1,
    )
    ours = cam.project(xyz)
    ref, _ = cv2.projectPoints(xyz.reshape(-1, 1, 3), np.zeros(3), np.zeros(3), cam.K, record.right.dist)
    assert np.max(np.abs(ours - ref.reshape(-1, 2))) < 1e-6
