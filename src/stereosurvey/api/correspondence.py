from __future__ import annotations

import logging
import math

from stereosurvey.api.results import Pixel, PointSlots

logger = logging.getLogger(__name__)


def line_angle_deg(a: Pixel, b: Pixel) -> float:
    """Angle of the segment a->b in image coordinates, degrees in (-180, 180]."""
    return math.degrees(math.atan2(b[1] - a[1], b[0] - a[0]))


def ensure_correct_correspondence(points: PointSlots, threshold_deg: float = 45.0) -> bool:
    """
    Swap the right-camera A/B picks when the A->B direction disagrees between cameras.

    The raw difference of the two angles is compared with `threshold_deg` (no wrap-around),
    so segments close to the +/-180 degree boundary may be swapped even though they agree.
    Returns True if the right picks were swapped. Incomplete picks are left untouched.
    """
    if not points.has_measurement():
        return False
    left = line_angle_deg(points.left_a, points.left_b)
    right = line_angle_deg(points.right_a, points.right_b)
    if abs(left - right) > threshold_deg:
        logger.debug("Swapping right picks: left angle %.1f deg, right angle %.1f deg", left, right)
        points.right_a, points.right_b = points.right_b, points.right_a
        return True
    return False
