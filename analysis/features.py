from __future__ import annotations

from math import acos, degrees, isfinite, sqrt
from typing import Optional, Sequence

import numpy as np

from pose.backend import Landmark, PoseLandmark


LEFT = "left"
RIGHT = "right"

# Shin shorter than this (normalized units) is treated as a degenerate detection
SHIN_LENGTH_EPS = 0.01

_SIDE_GROUPS = {
    LEFT: (
        PoseLandmark.LEFT_SHOULDER,
        PoseLandmark.LEFT_HIP,
        PoseLandmark.LEFT_KNEE,
        PoseLandmark.LEFT_ANKLE,
    ),
    RIGHT: (
        PoseLandmark.RIGHT_SHOULDER,
        PoseLandmark.RIGHT_HIP,
        PoseLandmark.RIGHT_KNEE,
        PoseLandmark.RIGHT_ANKLE,
    ),
}


def _finite(*points: Optional[Landmark]) -> bool:
    for p in points:
        if p is None:
            return False
        if not (isfinite(p.x) and isfinite(p.y) and isfinite(p.z)):
            return False
    return True


def angle(a: Optional[Landmark], b: Optional[Landmark], c: Optional[Landmark]) -> Optional[float]:
    """
    Returns the angle at point B (in degrees) for triangle (A,B,C), computed in 3D.

    - If any point is None or has non-finite coordinates, returns None
    - If either ray from B has zero length, returns None
    """
    if not _finite(a, b, c):
        return None

    bax, bay, baz = a.x - b.x, a.y - b.y, a.z - b.z
    bcx, bcy, bcz = c.x - b.x, c.y - b.y, c.z - b.z
    n1 = sqrt(bax * bax + bay * bay + baz * baz)
    n2 = sqrt(bcx * bcx + bcy * bcy + bcz * bcz)
    if n1 <= 1e-12 or n2 <= 1e-12:
        return None

    cos_theta = (bax * bcx + bay * bcy + baz * bcz) / (n1 * n2)
    # Clamp due to numerical errors
    cos_theta = max(-1.0, min(1.0, cos_theta))
    return degrees(acos(cos_theta))


def vertical_angle(a: Optional[Landmark], b: Optional[Landmark]) -> Optional[float]:
    """
    Angle (degrees) between the 2D vector a->b and image-up (0, -1).

    0 means b is straight above a; used for torso lean with a=hip, b=shoulder.
    """
    if not _finite(a, b):
        return None
    vx = b.x - a.x
    vy = b.y - a.y
    norm = float(np.hypot(vx, vy))
    if norm <= 1e-12:
        return None
    cos_theta = max(-1.0, min(1.0, -vy / norm))
    return degrees(acos(cos_theta))


def midpoint(a: Optional[Landmark], b: Optional[Landmark]) -> Optional[Landmark]:
    if not _finite(a, b):
        return None
    return Landmark(
        x=(a.x + b.x) / 2.0,
        y=(a.y + b.y) / 2.0,
        z=(a.z + b.z) / 2.0,
        visibility=min(a.visibility, b.visibility),
    )


def spine_angle(landmarks: Sequence[Landmark]) -> Optional[float]:
    """Lean of the shoulder midpoint over the hip midpoint, from vertical."""
    shoulders = midpoint(
        _get(landmarks, PoseLandmark.LEFT_SHOULDER), _get(landmarks, PoseLandmark.RIGHT_SHOULDER)
    )
    hips = midpoint(_get(landmarks, PoseLandmark.LEFT_HIP), _get(landmarks, PoseLandmark.RIGHT_HIP))
    return vertical_angle(hips, shoulders)


def horizontal_offset(a: Optional[Landmark], b: Optional[Landmark]) -> Optional[float]:
    """Signed horizontal offset a.x - b.x (normalized units), None if inputs invalid."""
    if not _finite(a, b):
        return None
    return float(a.x - b.x)


def knee_forward_ratio(
    knee: Optional[Landmark],
    ankle: Optional[Landmark],
    toe: Optional[Landmark] = None,
    hip: Optional[Landmark] = None,
) -> Optional[float]:
    """
    How far the knee travels past the ankle, in shin lengths.

    The sign follows the direction the foot points (toe relative to ankle, or the
    hip relative to the ankle when the toe is not tracked), so positive always
    means "knee ahead of the ankle". Returns None for a degenerate shin.
    """
    if not _finite(knee, ankle):
        return None

    direction = 1.0
    if _finite(toe):
        direction = 1.0 if (toe.x - ankle.x) >= 0 else -1.0
    elif _finite(hip):
        direction = 1.0 if (hip.x - ankle.x) >= 0 else -1.0

    shin = float(np.hypot(knee.x - ankle.x, knee.y - ankle.y))
    if shin <= SHIN_LENGTH_EPS:
        return None
    return (knee.x - ankle.x) * direction / shin


def _get(landmarks: Sequence[Landmark], idx: int) -> Optional[Landmark]:
    if idx >= len(landmarks):
        return None
    return landmarks[idx]


def _mean_visibility(landmarks: Sequence[Landmark], indices: Sequence[int]) -> float:
    vis = []
    for idx in indices:
        lm = _get(landmarks, idx)
        vis.append(lm.visibility if lm is not None and isfinite(lm.visibility) else 0.0)
    return float(sum(vis) / len(vis))


def choose_primary_side(landmarks: Sequence[Landmark]) -> str:
    """Pick the body side whose shoulder/hip/knee/ankle are more visible; ties favour left."""
    left_score = _mean_visibility(landmarks, _SIDE_GROUPS[LEFT])
    right_score = _mean_visibility(landmarks, _SIDE_GROUPS[RIGHT])
    return LEFT if left_score >= right_score else RIGHT
