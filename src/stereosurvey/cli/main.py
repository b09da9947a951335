from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from stereosurvey.api.calibration_io import load_calibration_set
from stereosurvey.api.correspondence import ensure_correct_correspondence
from stereosurvey.api.results import PointSlots
from stereosurvey.api.stereo_projection import StereoProjection
from stereosurvey.api.survey_rules import load_survey_rules
from stereosurvey.calibration import CalibrationValidationError
from stereosurvey.settings import ProjectionSettings, SettingsValidationError, load_projection_settings


def _projection(args: argparse.Namespace) -> StereoProjection:
    settings = load_projection_settings(args.settings) if args.settings else ProjectionSettings()
    proj = StereoProjection(settings)
    proj.set_calibration_data(load_calibration_set(args.calibration))
    proj.set_frame_size(*args.frame_size)
    if getattr(args, "rules", None):
        proj.set_survey_rules(load_survey_rules(args.rules))
    return proj


def _print_json(obj: dict) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


def _validate_calibration(args: argparse.Namespace) -> int:
    cal_set = load_calibration_set(args.calibration)
    records = []
    for i, r in enumerate(cal_set):
        records.append(
            {
                "index": i,
                "calibration_id": r.calibration_id,
                "description": r.description,
                "resolution": None if r.resolution is None else list(r.resolution),
                "baseline_m": r.stereo.baseline,
                "rms_left": r.left.rms,
                "rms_right": r.right.rms,
                "rms_stereo": r.stereo.rms,
            }
        )
    _print_json({"preferred_index": cal_set.preferred_index, "records": records})
    return 0


def _measure(args: argparse.Namespace) -> int:
    proj = _projection(args)
    slots = PointSlots(
        left_a=tuple(args.left_a) if args.left_a else None,
        left_b=tuple(args.left_b) if args.left_b else None,
        right_a=tuple(args.right_a) if args.right_a else None,
        right_b=tuple(args.right_b) if args.right_b else None,
    )
    swapped = False
    if args.fix_correspondence:
        swapped = ensure_correct_correspondence(slots, proj.settings.correspondence_threshold_deg)
    proj.points_load(slots)
    result = proj.compute()
    if result is None:
        print("error: no picks", file=sys.stderr)
        return 1
    out = result.to_dict()
    out["right_swapped"] = swapped
    _print_json(out)
    return 0


def _epipolar(args: argparse.Namespace) -> int:
    proj = _projection(args)
    from_left = args.side == "left"
    line = proj.calculate_epipolar_line(from_left, tuple(args.point))
    points = proj.calculate_epipolar_points(from_left, tuple(args.point))
    if line is None or points is None:
        print("error: epipolar geometry unavailable", file=sys.stderr)
        return 1
    _print_json({"line": line.to_dict(), "points": points.to_dict()})
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="stereosurvey")
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (stderr).",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    val = sub.add_parser("validate-calibration", help="Load a calibration file and summarize its records.")
    val.add_argument("calibration", type=Path)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("calibration", type=Path)
        p.add_argument("--frame-size", type=int, nargs=2, metavar=("W", "H"), required=True)
        p.add_argument("--settings", type=Path, default=None, help="Projection settings JSON.")

    meas = sub.add_parser("measure", help="Triangulate picks and print the measurement as JSON.")
    add_common(meas)
    meas.add_argument("--left-a", type=float, nargs=2, metavar=("X", "Y"))
    meas.add_argument("--left-b", type=float, nargs=2, metavar=("X", "Y"))
    meas.add_argument("--right-a", type=float, nargs=2, metavar=("X", "Y"))
    meas.add_argument("--right-b", type=float, nargs=2, metavar=("X", "Y"))
    meas.add_argument("--fix-correspondence", action="store_true", help="Swap right A/B if the line angles disagree.")
    meas.add_argument("--rules", type=Path, default=None, help="Survey rules JSON.")

    epi = sub.add_parser("epipolar", help="Epipolar line and near/middle/far points on the other camera.")
    add_common(epi)
    epi.add_argument("--side", type=str, required=True, choices=["left", "right"], help="Camera of the pick.")
    epi.add_argument("--point", type=float, nargs=2, metavar=("X", "Y"), required=True)
    epi.add_argument("--rules", type=Path, default=None, help="Survey rules JSON (range rule sets the distances).")

    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")

    try:
        if args.cmd == "validate-calibration":
            return _validate_calibration(args)
        if args.cmd == "measure":
            return _measure(args)
        if args.cmd == "epipolar":
            return _epipolar(args)
    except (FileNotFoundError, CalibrationValidationError, SettingsValidationError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    raise AssertionError(f"Unhandled cmd: {args.cmd}")