from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class BrownDistortion:
    """
    Brown-Conrady distortion on normalized camera coordinates (x=X/Z, y=Y/Z).

    Parameters follow OpenCV naming and ordering (k1, k2, p1, p2, k3, k4, k5, k6):
      radial: k1, k2, k3 (numerator) and k4, k5, k6 (rational denominator)
      tangential: p1, p2
    """

    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0
    k3: float = 0.0
    k4: float = 0.0
    k5: float = 0.0
    k6: float = 0.0

    @classmethod
    def from_coefficients(cls, coeffs) -> "BrownDistortion":
        """
        Build from an OpenCV-style coefficient vector of length 4, 5 or 8.
        Missing trailing terms are zero.
        """
        c = np.asarray(coeffs, dtype=np.float64).reshape(-1)
        if c.size not in (4, 5, 8):
            raise ValueError(f"distortion coefficients must have 4, 5 or 8 values, got {c.size}")
        if not np.all(np.isfinite(c)):
            raise ValueError("distortion coefficients must be finite")
        full = np.zeros((8,), dtype=np.float64)
        full[: c.size] = c
        return cls(*(float(v) for v in full))

    @property
    def is_rational(self) -> bool:
        return bool(self.k4 or self.k5 or self.k6)

    def _radial(self, r2: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        # Returns (radial factor, d radial / d r2).
        num = 1.0 + r2 * (self.k1 + r2 * (self.k2 + r2 * self.k3))
        dnum = self.k1 + r2 * (2.0 * self.k2 + 3.0 * self.k3 * r2)
        if not self.is_rational:
            return num, dnum
        den = 1.0 + r2 * (self.k4 + r2 * (self.k5 + r2 * self.k6))
        dden = self.k4 + r2 * (2.0 * self.k5 + 3.0 * self.k6 * r2)
        return num / den, (dnum * den - num * dden) / (den * den)

    def distort(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        r2 = x * x + y * y
        radial, _ = self._radial(r2)
        xy = x * y
        x_tan = 2.0 * self.p1 * xy + self.p2 * (r2 + 2.0 * x * x)
        y_tan = self.p1 * (r2 + 2.0 * y * y) + 2.0 * self.p2 * xy
        return x * radial + x_tan, y * radial + y_tan

    def jacobian(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        Partial derivatives of distort() at (x, y).
        Returns (dxd/dx, dxd/dy, dyd/dx, dyd/dy).
        """
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        radial, g = self._radial(x * x + y * y)
        cross = 2.0 * x * y * g + 2.0 * self.p1 * x + 2.0 * self.p2 * y
        j_xx = radial + 2.0 * x * x * g + 2.0 * self.p1 * y + 6.0 * self.p2 * x
        j_yy = radial + 2.0 * y * y * g + 6.0 * self.p1 * y + 2.0 * self.p2 * x
        return j_xx, cross, cross, j_yy

    def undistort(
        self,
        xd: np.ndarray,
        yd: np.ndarray,
        iterations: int = 20,
        tol: float = 1e-12,
        max_residual: float = 1e-9,
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Inverse of distort() by Newton iteration, seeded with the distorted coordinates.

        Stops once every update is below `tol` (normalized units). Where the Jacobian
        is singular the step falls back to the plain fixed-point update. Entries whose
        final residual exceeds `max_residual`, or whose solution lies past the fold of
        the radial polynomial, are NaN.
        """
        xd = np.asarray(xd, dtype=np.float64)
        yd = np.asarray(yd, dtype=np.float64)
        x = xd.copy()
        y = yd.copy()
        for _ in range(int(iterations)):
            x_est, y_est = self.distort(x, y)
            ex = xd - x_est
            ey = yd - y_est
            a, b, c, d = self.jacobian(x, y)
            det = a * d - b * c
            ok = np.abs(det) > 1e-15
            safe = np.where(ok, det, 1.0)
            dx = np.where(ok, (d * ex - b * ey) / safe, ex)
            dy = np.where(ok, (a * ey - c * ex) / safe, ey)
            x = x + dx
            y = y + dy
            step = np.max(np.abs(np.concatenate([np.ravel(dx), np.ravel(dy)]))) if np.size(dx) else 0.0
            if not np.isfinite(step) or step < tol:
                break

        # No inverse (distorted radius beyond the fold) or a root on the folded branch.
        x_est, y_est = self.distort(x, y)
        residual = np.hypot(x_est - xd, y_est - yd)
        bad = ~(residual <= max_residual) | self.folded(x, y)
        return np.where(bad, np.nan, x), np.where(bad, np.nan, y)

    def folded(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        """
        True outside the invertible region around the principal point: where the Jacobian
        determinant is <= 0, or where the radial factor is <= 0 (the image flips through
        the centre).
        """
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        radial, _ = self._radial(x * x + y * y)
        a, b, c, d = self.jacobian(x, y)
        return ~((a * d - b * c > 0.0) & (radial > 0.0))

