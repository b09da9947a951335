from __future__ import annotations

import numpy as np
import pytest

from stereosurvey.calibration import CalibrationData, CameraCalibration, StereoCameraCalibration

# Intrinsics of a 4K underwater survey rig.
K_LEFT = [[2457.533252328369, 0.0, 1961.0459617442594], [0.0, 2457.533252328369, 1066.7420961488095], [0.0, 0.0, 1.0]]
K_RIGHT = [[2464.932755231347, 0.0, 1846.818121472416], [0.0, 2464.932755231347, 1056.838296512517], [0.0, 0.0, 1.0]]
DIST_LEFT = [-0.1108799674189081, 0.15009199756706943, 0.0, 0.0, 0.0]
DIST_RIGHT = [-0.00929409571254929, -0.3140186182028748, 0.0, 0.0, 0.0]
T_RIG = [-0.9603758615013508, 0.003068960505464242, 0.11147148203752219]


def yaw(deg: float) -> np.ndarray:
    a = np.deg2rad(deg)
    c, s = np.cos(a), np.sin(a)
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]], dtype=np.float64)


def make_record(
    *,
    resolution: tuple[int, int] = (3840, 2160),
    R: np.ndarray | None = None,
    t=T_RIG,
    calibration_id: str | None = "rig-4k",
    description: str = "4K rig",
) -> CalibrationData:
    return CalibrationData(
        left=CameraCalibration(K=K_LEFT, dist=DIST_LEFT, image_size=resolution, rms=0.21),
        right=CameraCalibration(K=K_RIGHT, dist=DIST_RIGHT, image_size=resolution, rms=0.24),
        stereo=StereoCameraCalibration(R=yaw(6.0) if R is None else R, t=t, rms=0.31),
        calibration_id=calibration_id,
        description=description,
    )


def project_pair(record: CalibrationData, xyz: np.ndarray) -> tuple[tuple[float, float], tuple[float, float]]:
    """Distorted left/right pixels of a left-frame point."""
    xyz = np.asarray(xyz, dtype=np.float64)
    uv_l = record.left.camera_model().project(xyz)[0]
    uv_r = record.right.camera_model().project(record.stereo.R @ xyz + record.stereo.t)[0]
    return (float(uv_l[0]), float(uv_l[1])), (float(uv_r[0]), float(uv_r[1]))


@pytest.fixture
def record() -> CalibrationData:
    return make_record()


@pytest.fixture
def survey_record_dict() -> dict:
    return {
        "CalibrationID": "5f1c2a9e-7d3b-4a8e-9c11-0b6f2d4e8a10",
        "Description": "Survey rig 4K",
        "LeftCalibrationCameraData": {
            "RMS": 0.21,
            "CameraMatrix": K_LEFT,
            "DistortionCoefficients": [DIST_LEFT],
            "ImageSize": [[3840, 2160]],
            "ImageTotal": 40,
            "ImageUseable": 37,
            "CameraID": "GX-L",
        },
        "RightCalibrationCameraData": {
            "RMS": 0.24,
            "CameraMatrix": K_RIGHT,
            "DistortionCoefficients": [DIST_RIGHT],
            "ImageSize": [[3840, 2160]],
            "ImageTotal": 40,
            "ImageUseable": 36,
            "CameraID": "GX-R",
        },
        "CalibrationStereoCameraData": {
            "RMS": 0.31,
            "Rotation": yaw(6.0).tolist(),
            "Translation": [T_RIG],
            "ImageTotal": 40,
            "ImageUseable": 35,
        },
    }
