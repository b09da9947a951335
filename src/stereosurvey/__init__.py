from stereosurvey import calibration, settings
from stereosurvey.api import (
    StereoCalibrationSet,
    StereoProjection,
    SurveyRules,
    ensure_correct_correspondence,
    load_calibration_set,
    save_calibration_set,
)
from stereosurvey.calibration import CalibrationData, CalibrationValidationError
from stereosurvey.core.geometry import distort_point, undistort_point
from stereosurvey.settings import ProjectionSettings

__all__ = [
    "calibration",
    "settings",
    "CalibrationData",
    "CalibrationValidationError",
    "ProjectionSettings",
    "StereoCalibrationSet",
    "StereoProjection",
    "SurveyRules",
    "ensure_correct_correspondence",
    "load_calibration_set",
    "save_calibration_set",
    "undistort_point",
    "distort_point",
]
