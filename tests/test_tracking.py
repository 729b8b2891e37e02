from __future__ import annotations

from dataclasses import replace

import pytest

from analysis.tracking import MetricSmoother, PoseTracker
from analysis.utils import SQUAT
from pose.backend import PoseFrame, PoseLandmark


STEP_MS = 33.0


def _two_sided_frame(build, visible: str) -> PoseFrame:
    """Left side stands upright, right side leans 40 degrees; `visible` side is the clearer one."""
    left = build(170.0, torso_lean_deg=0.0)
    right = build(170.0, torso_lean_deg=40.0)
    pts = list(left)
    for lm in PoseLandmark:
        if lm.name.startswith("RIGHT_"):
            pts[lm] = right[lm]
        if lm.name.startswith("LEFT_") or lm.name.startswith("RIGHT_"):
            vis = 1.0 if lm.name.startswith(visible.upper() + "_") else 0.4
            pts[lm] = replace(pts[lm], visibility=vis)
    return PoseFrame(landmarks=pts)


def test_metric_smoother_lags_and_restarts_after_reset():
    smoother = MetricSmoother()
    smoother.update(0.0, {"torso_angle": 0.0})
    lagged = smoother.update(33.0, {"torso_angle": 40.0})["torso_angle"]
    assert 0.0 < lagged < 40.0

    smoother.reset()
    assert smoother.update(66.0, {"torso_angle": 40.0})["torso_angle"] == pytest.approx(40.0)
    assert smoother.update(99.0, {"torso_angle": None}) == {"torso_angle": None}


def test_side_switch_restarts_metric_filters(squat_landmarks):
    tracker = PoseTracker(SQUAT, ["knee_angle", "torso_angle"])
    t = 0.0
    for _ in range(30):
        snap = tracker.process(_two_sided_frame(squat_landmarks, "left"), t)
        t += STEP_MS
    assert snap.side == "left"
    assert snap.get("torso_angle") == pytest.approx(0.0, abs=1e-6)

    snap = tracker.process(_two_sided_frame(squat_landmarks, "right"), t)
    assert snap.side == "right"
    # no left-side history blended into the first right-side reading
    assert snap.get("torso_angle") == pytest.approx(40.0, abs=1e-6)


def test_no_person_frame_resets_all_filters(squat_frame):
    tracker = PoseTracker(SQUAT, ["knee_angle"])
    t = 0.0
    for _ in range(30):
        tracker.process(squat_frame(170.0), t)
        t += STEP_MS
    lagging = tracker.process(squat_frame(90.0), t).get("knee_angle")
    assert lagging > 100.0

    assert tracker.process(None, t + STEP_MS) is None
    fresh = tracker.process(squat_frame(90.0), t + 2 * STEP_MS)
    assert fresh.get("knee_angle") == pytest.approx(90.0, abs=1e-6)
    assert fresh.phase == "bottom"


def test_unsmoothed_tracker_reports_raw_values(squat_frame):
    tracker = PoseTracker(SQUAT, ["knee_angle"], smooth_metrics=False)
    assert tracker.metric_smoother is None
    tracker.process(squat_frame(170.0), 0.0)
    snap = tracker.process(squat_frame(170.0), STEP_MS)
    assert snap.get("knee_angle") == pytest.approx(170.0, abs=1e-6)
