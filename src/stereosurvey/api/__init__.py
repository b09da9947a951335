from stereosurvey.api.calibration_io import load_calibration_data, load_calibration_set, save_calibration_set
from stereosurvey.api.calibration_set import StereoCalibrationSet
from stereosurvey.api.correspondence import ensure_correct_correspondence
from stereosurvey.api.results import (
    EpipolarLine,
    EpipolarPoints,
    MeasurementResult,
    PointResult,
    PointSlots,
    StereoPointResult,
    SurveyRulesResult,
)
from stereosurvey.api.stereo_projection import ProjectionState, StereoProjection
from stereosurvey.api.survey_rules import SurveyRules, apply_rules, load_survey_rules, parse_survey_rules

__all__ = [
    "StereoProjection",
    "ProjectionState",
    "StereoCalibrationSet",
    "load_calibration_set",
    "load_calibration_data",
    "save_calibration_set",
    "ensure_correct_correspondence",
    "PointSlots",
    "MeasurementResult",
    "StereoPointResult",
    "PointResult",
    "EpipolarLine",
    "EpipolarPoints",
    "SurveyRules",
    "SurveyRulesResult",
    "apply_rules",
    "load_survey_rules",
    "parse_survey_rules",
]
