from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

import numpy as np

from stereosurvey.core.distortion import BrownDistortion
from stereosurvey.core.geometry import CameraModel

CALIBRATION_SCHEMA_VERSION = "stereosurvey.calibration.v0"


class CalibrationValidationError(ValueError):
    pass


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise CalibrationValidationError(msg)


def _frozen_array(x: Any, shape: tuple[int, ...], name: str) -> np.ndarray:
    try:
        a = np.array(x, dtype=np.float64).reshape(shape)
    except (TypeError, ValueError) as exc:
        raise CalibrationValidationError(f"{name} must be a {shape} numeric array") from exc
    _require(bool(np.all(np.isfinite(a))), f"{name} must be finite")
    a.setflags(write=False)
    return a


def _image_size(x: Any, name: str) -> tuple[int, int] | None:
    if x is None:
        return None
    try:
        flat = np.array(x, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError) as exc:
        raise CalibrationValidationError(f"{name} must be [width, height]") from exc
    _require(flat.size == 2, f"{name} must be [width, height]")
    _require(bool(np.all(np.isfinite(flat))), f"{name} values must be finite")
    w, h = int(flat[0]), int(flat[1])
    _require(w > 0 and h > 0, f"{name} values must be > 0")
    return (w, h)


@dataclass(frozen=True, eq=False)
class CameraCalibration:
    """Intrinsics of one camera: K (3x3), OpenCV distortion vector, native resolution."""

    K: np.ndarray
    dist: np.ndarray
    image_size: tuple[int, int] | None = None
    rms: float | None = None
    camera_id: str | None = None
    image_total: int | None = None
    image_useable: int | None = None

    def __post_init__(self) -> None:
        K = _frozen_array(self.K, (3, 3), "CameraMatrix")
        _require(K[0, 0] > 0.0 and K[1, 1] > 0.0, "CameraMatrix focal lengths must be > 0")
        _require(np.allclose(K[2], [0.0, 0.0, 1.0]), "CameraMatrix last row must be [0, 0, 1]")
        try:
            dist = np.array(self.dist, dtype=np.float64).reshape(-1)
        except (TypeError, ValueError) as exc:
            raise CalibrationValidationError("DistortionCoefficients must be numeric") from exc
        _require(dist.size in (4, 5, 8), f"DistortionCoefficients must have 4, 5 or 8 values, got {dist.size}")
        dist = _frozen_array(dist, (dist.size,), "DistortionCoefficients")
        object.__setattr__(self, "K", K)
        object.__setattr__(self, "dist", dist)
        object.__setattr__(self, "image_size", _image_size(self.image_size, "ImageSize"))

    def distortion(self) -> BrownDistortion:
        return BrownDistortion.from_coefficients(self.dist)

    def camera_model(self) -> CameraModel:
        w, h = self.image_size if self.image_size is not None else (None, None)
        return CameraModel(K=self.K, distortion=self.distortion(), width_px=w, height_px=h)

    def scaled_to(self, width: int, height: int) -> "CameraCalibration":
        """Intrinsics rescaled to another image size. Requires a known native size."""
        _require(self.image_size is not None, "cannot rescale a camera without ImageSize")
        sx = width / self.image_size[0]
        sy = height / self.image_size[1]
        K = np.diag([sx, sy, 1.0]) @ self.K
        return replace(self, K=K, image_size=(int(width), int(height)))


@dataclass(frozen=True, eq=False)
class StereoCameraCalibration:
    """
    Extrinsics of the rig: X_R = R X_L + t (metres).
    """

    R: np.ndarray
    t: np.ndarray
    rms: float | None = None
    image_total: int | None = None
    image_useable: int | None = None

    def __post_init__(self) -> None:
        R = _frozen_array(self.R, (3, 3), "Rotation")
        _require(np.allclose(R @ R.T, np.eye(3), atol=1e-6), "Rotation must be orthonormal")
        _require(abs(float(np.linalg.det(R)) - 1.0) < 1e-6, "Rotation must have determinant +1")
        t = _frozen_array(self.t, (3,), "Translation")
        _require(float(np.linalg.norm(t)) > 0.0, "Translation must be non-zero")
        object.__setattr__(self, "R", R)
        object.__setattr__(self, "t", t)

    @property
    def baseline(self) -> float:
        return float(np.linalg.norm(self.t))

    @property
    def right_centre_in_left(self) -> np.ndarray:
        return -self.R.T @ self.t


@dataclass(frozen=True, eq=False)
class CalibrationData:
    """One complete stereo calibration record."""

    left: CameraCalibration
    right: CameraCalibration
    stereo: StereoCameraCalibration
    resolution: tuple[int, int] | None = None
    calibration_id: str | None = None
    description: str = ""

    def __post_init__(self) -> None:
        resolution = self.resolution if self.resolution is not None else self.left.image_size
        object.__setattr__(self, "resolution", _image_size(resolution, "resolution"))

    def frame_size_matches(self, width: int, height: int) -> bool:
        return self.resolution is not None and self.resolution == (int(width), int(height))

    @property
    def aspect_ratio(self) -> float | None:
        if self.resolution is None:
            return None
        return self.resolution[0] / self.resolution[1]

    def scaled_to(self, width: int, height: int) -> "CalibrationData":
        """Copy whose intrinsics are rescaled to a different frame size."""
        _require(width > 0 and height > 0, "frame size must be > 0")
        if self.frame_size_matches(width, height):
            return self
        _require(self.resolution is not None, "cannot rescale a record without a resolution")
        left = self.left if self.left.image_size is not None else replace(self.left, image_size=self.resolution)
        right = self.right if self.right.image_size is not None else replace(self.right, image_size=self.resolution)
        return replace(
            self,
            left=left.scaled_to(width, height),
            right=right.scaled_to(width, height),
            resolution=(int(width), int(height)),
        )


def _opt_float(x: Any, name: str = "value") -> float | None:
    if x is None:
        return None
    try:
        return float(x)
    except (TypeError, ValueError) as exc:
        raise CalibrationValidationError(f"{name} must be a number, got {x!r}") from exc


def _opt_int(x: Any, name: str = "value") -> int | None:
    if x is None:
        return None
    try:
        return int(x)
    except (TypeError, ValueError) as exc:
        raise CalibrationValidationError(f"{name} must be an integer, got {x!r}") from exc


def _opt_str(x: Any) -> str | None:
    return None if x is None else str(x)


def parse_calibration_data(data: dict[str, Any]) -> CalibrationData:
    """
    Parse one calibration record, native (snake_case) or survey (PascalCase) layout.
    """
    _require(isinstance(data, dict), "calibration record must be a JSON object")
    if "LeftCalibrationCameraData" in data:
        return _parse_survey_record(data)
    return _parse_native_record(data)


def _parse_native_camera(d: Any, side: str) -> CameraCalibration:
    _require(isinstance(d, dict), f"{side} camera is required")
    _require("K" in d, f"{side}.K is required")
    _require("dist" in d, f"{side}.dist is required")
    return CameraCalibration(
        K=d["K"],
        dist=d["dist"],
        image_size=d.get("image_size"),
        rms=_opt_float(d.get("rms"), f"{side}.rms"),
        camera_id=_opt_str(d.get("camera_id")),
        image_total=_opt_int(d.get("image_total"), f"{side}.image_total"),
        image_useable=_opt_int(d.get("image_useable"), f"{side}.image_useable"),
    )


def _parse_native_record(data: dict[str, Any]) -> CalibrationData:
    stereo = data.get("stereo")
    _require(isinstance(stereo, dict), "stereo is required")
    _require("R" in stereo and "t" in stereo, "stereo.R and stereo.t are required")
    return CalibrationData(
        left=_parse_native_camera(data.get("left"), "left"),
        right=_parse_native_camera(data.get("right"), "right"),
        stereo=StereoCameraCalibration(
            R=stereo["R"],
            t=stereo["t"],
            rms=_opt_float(stereo.get("rms"), "stereo.rms"),
            image_total=_opt_int(stereo.get("image_total"), "stereo.image_total"),
            image_useable=_opt_int(stereo.get("image_useable"), "stereo.image_useable"),
        ),
        resolution=data.get("resolution"),
        calibration_id=_opt_str(data.get("calibration_id")),
        description=str(data.get("description", "")),
    )


def _parse_survey_camera(d: Any, side: str) -> CameraCalibration:
    _require(isinstance(d, dict), f"{side} is required")
    _require(d.get("CameraMatrix") is not None, f"{side}.CameraMatrix is required")
    _require(d.get("DistortionCoefficients") is not None, f"{side}.DistortionCoefficients is required")
    return CameraCalibration(
        K=d["CameraMatrix"],
        dist=d["DistortionCoefficients"],
        image_size=d.get("ImageSize"),
        rms=_opt_float(d.get("RMS"), f"{side}.RMS"),
        camera_id=_opt_str(d.get("CameraID")),
        image_total=_opt_int(d.get("ImageTotal"), f"{side}.ImageTotal"),
        image_useable=_opt_int(d.get("ImageUseable"), f"{side}.ImageUseable"),
    )


def _parse_survey_record(data: dict[str, Any]) -> CalibrationData:
    stereo = data.get("CalibrationStereoCameraData")
    _require(isinstance(stereo, dict), "CalibrationStereoCameraData is required")
    _require(stereo.get("Rotation") is not None, "CalibrationStereoCameraData.Rotation is required")
    _require(stereo.get("Translation") is not None, "CalibrationStereoCameraData.Translation is required")
    return CalibrationData(
        left=_parse_survey_camera(data.get("LeftCalibrationCameraData"), "LeftCalibrationCameraData"),
        right=_parse_survey_camera(data.get("RightCalibrationCameraData"), "RightCalibrationCameraData"),
        stereo=StereoCameraCalibration(
            R=stereo["Rotation"],
            t=stereo["Translation"],
            rms=_opt_float(stereo.get("RMS"), "CalibrationStereoCameraData.RMS"),
            image_total=_opt_int(stereo.get("ImageTotal"), "CalibrationStereoCameraData.ImageTotal"),
            image_useable=_opt_int(stereo.get("ImageUseable"), "CalibrationStereoCameraData.ImageUseable"),
        ),
        calibration_id=_opt_str(data.get("CalibrationID")),
        description=str(data.get("Description") or ""),
    )


def _calibio_val(params: dict[str, Any], key: str) -> float:
    entry = params.get(key)
    if isinstance(entry, dict):
        return _opt_float(entry.get("val", 0.0), f"parameters.{key}")
    return 0.0


def is_calibio_document(data: Any) -> bool:
    try:
        name = data["Calibration"]["cameras"][0]["model"]["polymorphic_name"]
    except (KeyError, IndexError, TypeError):
        return False
    return isinstance(name, str)


def parse_calibio_document(data: dict[str, Any], calibration_id: str | None = None) -> CalibrationData:
    """
    Parse a two-camera Calib.IO export (libCalib::CameraModelOpenCV).

    The second camera's transform holds the left->right rotation vector and translation.
    """
    from scipy.spatial.transform import Rotation as Rot

    _require(is_calibio_document(data), "not a Calib.IO calibration document")
    cameras = data["Calibration"]["cameras"]
    _require(
        cameras[0]["model"]["polymorphic_name"] == "libCalib::CameraModelOpenCV",
        "only libCalib::CameraModelOpenCV camera models are supported",
    )
    _require(len(cameras) == 2, f"expected 2 cameras, got {len(cameras)}")

    parsed: list[CameraCalibration] = []
    for i, cam in enumerate(cameras):
        model = cam.get("model", {}).get("ptr_wrapper", {}).get("data", {})
        params = model.get("parameters")
        _require(isinstance(params, dict), f"cameras[{i}] parameters are required")
        f = _calibio_val(params, "f")
        ar = _calibio_val(params, "ar") if "ar" in params else 1.0
        K = [[f, 0.0, _calibio_val(params, "cx")], [0.0, f * ar, _calibio_val(params, "cy")], [0.0, 0.0, 1.0]]
        dist = [_calibio_val(params, k) for k in ("k1", "k2", "p1", "p2", "k3")]
        size = model.get("CameraModelCRT", {}).get("CameraModelBase", {}).get("imageSize")
        image_size = None
        if isinstance(size, dict) and size.get("width") is not None and size.get("height") is not None:
            image_size = (_opt_int(size["width"], "imageSize.width"), _opt_int(size["height"], "imageSize.height"))
        parsed.append(CameraCalibration(K=K, dist=dist, image_size=image_size))

    transform = cameras[1].get("transform")
    _require(isinstance(transform, dict), "cameras[1].transform is required")
    rot = transform.get("rotation") or {}
    trans = transform.get("translation") or {}
    rvec = np.array([_opt_float(rot.get(k, 0.0), f"rotation.{k}") for k in ("rx", "ry", "rz")], dtype=np.float64)
    t = [_opt_float(trans.get(k, 0.0), f"translation.{k}") for k in ("x", "y", "z")]

    return CalibrationData(
        left=parsed[0],
        right=parsed[1],
        stereo=StereoCameraCalibration(R=Rot.from_rotvec(rvec).as_matrix(), t=t),
        calibration_id=calibration_id,
        description="Calib.IO import",
    )


def calibration_data_to_dict(cal: CalibrationData) -> dict[str, Any]:
    def cam(c: CameraCalibration) -> dict[str, Any]:
        out: dict[str, Any] = {"K": c.K.tolist(), "dist": c.dist.tolist()}
        if c.image_size is not None:
            out["image_size"] = list(c.image_size)
        for key in ("rms", "camera_id", "image_total", "image_useable"):
            if getattr(c, key) is not None:
                out[key] = getattr(c, key)
        return out

    stereo: dict[str, Any] = {"R": cal.stereo.R.tolist(), "t": cal.stereo.t.tolist()}
    for key in ("rms", "image_total", "image_useable"):
        if getattr(cal.stereo, key) is not None:
            stereo[key] = getattr(cal.stereo, key)

    out: dict[str, Any] = {"left": cam(cal.left), "right": cam(cal.right), "stereo": stereo, "description": cal.description}
    if cal.resolution is not None:
        out["resolution"] = list(cal.resolution)
    if cal.calibration_id is not None:
        out["calibration_id"] = cal.calibration_id
    return out
