from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple

import pytest

from pose.backend import Landmark, PoseFrame, PoseLandmark, NUM_LANDMARKS


THIGH = 0.2
SHIN = 0.2
TORSO = 0.25
ANKLE = (0.5, 0.9)


def side_squat_landmarks(knee_deg: float, torso_lean_deg: float = 0.0) -> List[Landmark]:
    """
    Side-view squat pose with both legs overlapping: vertical shin, thigh folded
    back by the knee angle, torso leaning forward by torso_lean_deg.
    """
    L = PoseLandmark
    ax, ay = ANKLE
    kx, ky = ax, ay - SHIN
    theta = math.radians(knee_deg)
    hx, hy = kx - THIGH * math.sin(theta), ky + THIGH * math.cos(theta)
    lean = math.radians(torso_lean_deg)
    sx, sy = hx + TORSO * math.sin(lean), hy - TORSO * math.cos(lean)

    pts = [Landmark(x=0.5, y=0.1, z=0.0, visibility=0.9) for _ in range(NUM_LANDMARKS)]

    def put(idx: int, x: float, y: float) -> None:
        pts[idx] = Landmark(x=x, y=y, z=0.0, visibility=1.0)

    for side in ("LEFT", "RIGHT"):
        put(L[f"{side}_ANKLE"], ax, ay)
        put(L[f"{side}_HEEL"], ax - 0.02, ay)
        put(L[f"{side}_FOOT_INDEX"], ax + 0.05, ay)
        put(L[f"{side}_KNEE"], kx, ky)
        put(L[f"{side}_HIP"], hx, hy)
        put(L[f"{side}_SHOULDER"], sx, sy)
        put(L[f"{side}_ELBOW"], sx, sy + 0.12)
        put(L[f"{side}_WRIST"], sx, sy + 0.24)
    return pts


def side_squat_frame(knee_deg: float, torso_lean_deg: float = 0.0) -> PoseFrame:
    return PoseFrame(landmarks=side_squat_landmarks(knee_deg, torso_lean_deg))


def squat_rep_frames(
    start_ms: float = 0.0,
    step_ms: float = 33.0,
    hold: int = 30,
    bottom_deg: float = 90.0,
) -> List[Tuple[float, Optional[PoseFrame]]]:
    """Standing -> half way -> bottom -> half way -> standing, each held for `hold` frames."""
    seq: Sequence[float] = (170.0, 130.0, bottom_deg, 130.0, 170.0)
    out: List[Tuple[float, Optional[PoseFrame]]] = []
    t = start_ms
    for deg in seq:
        for _ in range(hold):
            out.append((t, side_squat_frame(deg)))
            t += step_ms
    return out


@pytest.fixture
def squat_frame():
    return side_squat_frame


@pytest.fixture
def squat_rep():
    return squat_rep_frames


@pytest.fixture
def squat_landmarks():
    return side_squat_landmarks
