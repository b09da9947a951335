from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from stereosurvey.api.calibration_set import StereoCalibrationSet
from stereosurvey.calibration import (
    CALIBRATION_SCHEMA_VERSION,
    CalibrationData,
    CalibrationValidationError,
    calibration_data_to_dict,
    is_calibio_document,
    parse_calibio_document,
    parse_calibration_data,
)

logger = logging.getLogger(__name__)


def _opt_index(x: Any) -> int | None:
    if x is None:
        return None
    try:
        i = int(x)
    except (TypeError, ValueError) as exc:
        raise CalibrationValidationError(f"preferred index must be an integer, got {x!r}") from exc
    # Survey files use -1 for "no preference".
    return None if i < 0 else i


def parse_calibration_set(data: Any) -> StereoCalibrationSet:
    """
    Build a calibration set from any supported JSON layout:

      - native: {"schema_version": "stereosurvey.calibration.v0", "preferred_index", "records": [...]}
      - survey: {"PreferredCalibrationDataIndex", "CalibrationDataList": [...]}
      - a single record (native or survey layout)
      - a Calib.IO export
    """
    if not isinstance(data, dict):
        raise CalibrationValidationError("calibration document must be a JSON object")

    if "schema_version" in data:
        if data["schema_version"] != CALIBRATION_SCHEMA_VERSION:
            raise CalibrationValidationError(f"unsupported calibration schema {data['schema_version']!r}")
        records = data.get("records")
        if not isinstance(records, list):
            raise CalibrationValidationError("records must be a list")
        return StereoCalibrationSet(
            records=tuple(parse_calibration_data(r) for r in records),
            preferred_index=_opt_index(data.get("preferred_index")),
        )

    if "CalibrationDataList" in data:
        records = data["CalibrationDataList"]
        if not isinstance(records, list):
            raise CalibrationValidationError("CalibrationDataList must be a list")
        return StereoCalibrationSet(
            records=tuple(parse_calibration_data(r) for r in records),
            preferred_index=_opt_index(data.get("PreferredCalibrationDataIndex")),
        )

    if is_calibio_document(data):
        return StereoCalibrationSet.single(parse_calibio_document(data))

    return StereoCalibrationSet.single(parse_calibration_data(data))


def load_calibration_set(path: Path) -> StereoCalibrationSet:
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"calibration file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise CalibrationValidationError(f"{path}: invalid JSON ({exc})") from exc
    try:
        cal_set = parse_calibration_set(data)
    except CalibrationValidationError as exc:
        raise CalibrationValidationError(f"{path}: {exc}") from exc
    logger.info("Loaded %d calibration record(s) from %s", len(cal_set), path)
    return cal_set


def load_calibration_data(path: Path, width: int | None = None, height: int | None = None) -> CalibrationData:
    """Load a file and return the record selected for the frame size (or the preferred/first record)."""
    cal_set = load_calibration_set(path)
    if len(cal_set) == 0:
        raise CalibrationValidationError(f"{path}: no calibration records")
    if width is not None and height is not None:
        record = cal_set.get_preferred_calibration_data(width, height)
        if record is not None:
            return record
    return cal_set[cal_set.preferred_index or 0]


def save_calibration_set(path: Path, cal_set: StereoCalibrationSet) -> Path:
    """Write `cal_set` in the native schema."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    doc: dict[str, Any] = {
        "schema_version": CALIBRATION_SCHEMA_VERSION,
        "preferred_index": cal_set.preferred_index,
        "records": [calibration_data_to_dict(r) for r in cal_set],
    }
    path.write_text(json.dumps(doc, indent=2, sort_keys=True), encoding="utf-8")
    return path
