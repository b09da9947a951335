from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from stereosurvey.core.distortion import BrownDistortion


def _as_uv(uv: np.ndarray) -> np.ndarray:
    uv = np.asarray(uv, dtype=np.float64)
    if uv.shape[-1] != 2:
        raise ValueError(f"pixel coordinates must have a trailing dimension of 2, got shape {uv.shape}")
    return uv


@dataclass(frozen=True)
class CameraModel:
    """
    Pinhole camera with Brown-Conrady distortion, in pixel units.

    `K` is the 3x3 intrinsic matrix (fx, fy, cx, cy and optional skew). Normalized
    coordinates are x=X/Z, y=Y/Z in the camera frame; "undistorted pixels" are the
    normalized coordinates mapped back through K without distortion.
    """

    K: np.ndarray  # (3,3)
    distortion: BrownDistortion
    width_px: int | None = None
    height_px: int | None = None

    @property
    def fx(self) -> float:
        return float(self.K[0, 0])

    @property
    def fy(self) -> float:
        return float(self.K[1, 1])

    @property
    def cx(self) -> float:
        return float(self.K[0, 2])

    @property
    def cy(self) -> float:
        return float(self.K[1, 2])

    @property
    def skew(self) -> float:
        return float(self.K[0, 1])

    def pixel_to_normalized(self, u: np.ndarray, v: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        u = np.asarray(u, dtype=np.float64)
        v = np.asarray(v, dtype=np.float64)
        y = (v - self.cy) / self.fy
        x = (u - self.cx - self.skew * y) / self.fx
        return x, y

    def normalized_to_pixel(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        return self.fx * x + self.skew * y + self.cx, self.fy * y + self.cy

    def undistort_pixels(self, uv_px: np.ndarray, *, iterations: int = 20, tol: float = 1e-12) -> np.ndarray:
        """Distorted pixels (...,2) -> undistorted pixels (...,2)."""
        uv_px = _as_uv(uv_px)
        xd, yd = self.pixel_to_normalized(uv_px[..., 0], uv_px[..., 1])
        x, y = self.distortion.undistort(xd, yd, iterations=iterations, tol=tol)
        u, v = self.normalized_to_pixel(x, y)
        return np.stack([u, v], axis=-1)

    def distort_pixels(self, uv_px: np.ndarray) -> np.ndarray:
        """Undistorted pixels (...,2) -> distorted pixels (...,2). NaN past the distortion fold."""
        uv_px = _as_uv(uv_px)
        x, y = self.pixel_to_normalized(uv_px[..., 0], uv_px[..., 1])
        xd, yd = self._distort_valid(x, y)
        u, v = self.normalized_to_pixel(xd, yd)
        return np.stack([u, v], axis=-1)

    def _distort_valid(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        xd, yd = self.distortion.distort(x, y)
        bad = self.distortion.folded(x, y)
        return np.where(bad, np.nan, xd), np.where(bad, np.nan, yd)

    def ray_directions_cam(self, uv_undistorted_px: np.ndarray) -> np.ndarray:
        """Unit viewing rays in the camera frame for undistorted pixels (...,2)."""
        uv = _as_uv(uv_undistorted_px)
        x, y = self.pixel_to_normalized(uv[..., 0], uv[..., 1])
        dirs = np.stack([x, y, np.ones_like(x)], axis=-1)
        norms = np.linalg.norm(dirs, axis=-1, keepdims=True)
        return dirs / norms

    def project(self, XYZ_cam: np.ndarray, *, distort: bool = True) -> np.ndarray:
        """
        Project camera-frame points (N,3) to pixels (N,2).
        Points with Z too close to zero, or past the distortion fold, map to NaN.
        """
        XYZ_cam = np.asarray(XYZ_cam, dtype=np.float64).reshape(-1, 3)
        Z = XYZ_cam[:, 2]
        uv = np.full((XYZ_cam.shape[0], 2), np.nan, dtype=np.float64)
        good = np.isfinite(Z) & (np.abs(Z) > 1e-12)
        if not np.any(good):
            return uv
        x = XYZ_cam[good, 0] / Z[good]
        y = XYZ_cam[good, 1] / Z[good]
        if distort:
            x, y = self._distort_valid(x, y)
        uv[good, 0], uv[good, 1] = self.normalized_to_pixel(x, y)
        return uv


def undistort_point(
    camera: CameraModel | None,
    distorted_point: tuple[float, float],
    *,
    iterations: int = 20,
    tol: float = 1e-12,
) -> tuple[float, float] | None:
    """Undistort one pixel. Returns None when no camera calibration is available."""
    if camera is None:
        return None
    uv = camera.undistort_pixels(np.asarray(distorted_point, dtype=np.float64).reshape(2), iterations=iterations, tol=tol)
    if not np.all(np.isfinite(uv)):
        return None
    return float(uv[0]), float(uv[1])


def distort_point(camera: CameraModel | None, undistorted_point: tuple[float, float]) -> tuple[float, float] | None:
    """Re-apply lens distortion to one undistorted pixel. Returns None without a camera."""
    if camera is None:
        return None
    uv = camera.distort_pixels(np.asarray(undistorted_point, dtype=np.float64).reshape(2))
    if not np.all(np.isfinite(uv)):
        return None
    return float(uv[0]), float(uv[1])


def projection_matrix(K: np.ndarray, R: np.ndarray | None = None, t: np.ndarray | None = None) -> np.ndarray:
    """P = K [R | t] (identity pose when R/t are omitted)."""
    K = np.asarray(K, dtype=np.float64).reshape(3, 3)
    R = np.eye(3) if R is None else np.asarray(R, dtype=np.float64).reshape(3, 3)
    t = np.zeros((3,)) if t is None else np.asarray(t, dtype=np.float64).reshape(3)
    return K @ np.hstack([R, t[:, None]])


def triangulate_dlt(
    P1: np.ndarray,
    P2: np.ndarray,
    uv1_px: np.ndarray,
    uv2_px: np.ndarray,
    *,
    eps: float = 1e-12,
) -> np.ndarray:
    """
    Linear (DLT) triangulation of corresponding undistorted pixels.

    Each view contributes the rows v*P[2]-P[1] and P[0]-u*P[2]; the homogeneous
    point is the right singular vector of the smallest singular value.
    Returns XYZ (N,3); rows whose homogeneous scale |w| < eps are NaN.
    """
    P1 = np.asarray(P1, dtype=np.float64).reshape(3, 4)
    P2 = np.asarray(P2, dtype=np.float64).reshape(3, 4)
    uv1 = _as_uv(uv1_px).reshape(-1, 2)
    uv2 = _as_uv(uv2_px).reshape(-1, 2)
    if uv1.shape[0] != uv2.shape[0]:
        raise ValueError("uv1_px and uv2_px must have the same length")

    A = np.empty((uv1.shape[0], 4, 4), dtype=np.float64)
    A[:, 0] = uv1[:, 1, None] * P1[2] - P1[1]
    A[:, 1] = P1[0] - uv1[:, 0, None] * P1[2]
    A[:, 2] = uv2[:, 1, None] * P2[2] - P2[1]
    A[:, 3] = P2[0] - uv2[:, 0, None] * P2[2]

    _, _, Vt = np.linalg.svd(A)
    Xh = Vt[:, -1, :]
    w = Xh[:, 3]
    ok = np.abs(w) >= eps
    xyz = np.full((uv1.shape[0], 3), np.nan, dtype=np.float64)
    xyz[ok] = Xh[ok, :3] / w[ok, None]
    return xyz


def ray_gap(o1: np.ndarray, d1: np.ndarray, o2: np.ndarray, d2: np.ndarray, *, parallel_eps: float = 1e-6) -> float:
    """
    Shortest distance between the lines o1 + s d1 and o2 + t d2.

    Nearly parallel rays (|d1 x d2| < parallel_eps) fall back to the distance from
    o2 to the first line.
    """
    o1 = np.asarray(o1, dtype=np.float64).reshape(3)
    o2 = np.asarray(o2, dtype=np.float64).reshape(3)
    d1 = np.asarray(d1, dtype=np.float64).reshape(3)
    d2 = np.asarray(d2, dtype=np.float64).reshape(3)
    w = o2 - o1
    cross = np.cross(d1, d2)
    n = float(np.linalg.norm(cross))
    if n < parallel_eps:
        return float(np.linalg.norm(np.cross(w, d1)) / np.linalg.norm(d1))
    return float(abs(np.dot(w, cross)) / n)


def skew_symmetric(v: np.ndarray) -> np.ndarray:
    x, y, z = (float(c) for c in np.asarray(v, dtype=np.float64).reshape(3))
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]], dtype=np.float64)


def essential_matrix(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """E = [t]x R for the convention X_R = R X_L + t."""
    return skew_symmetric(t) @ np.asarray(R, dtype=np.float64).reshape(3, 3)


def fundamental_matrix(K_left: np.ndarray, K_right: np.ndarray, R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """
    F = K_R^-T E K_L^-1, so that x_R^T F x_L = 0 for undistorted pixels.
    F x_L is the epipolar line in the right image, F^T x_R the line in the left image.
    """
    E = essential_matrix(R, t)
    K_left_inv = np.linalg.inv(np.asarray(K_left, dtype=np.float64).reshape(3, 3))
    K_right_inv = np.linalg.inv(np.asarray(K_right, dtype=np.float64).reshape(3, 3))
    return K_right_inv.T @ E @ K_left_inv
