from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, Mapping, Optional, Sequence, Tuple

from pose.backend import Landmark, PoseFrame, PoseLandmark
from .features import (
    LEFT,
    angle,
    choose_primary_side,
    horizontal_offset,
    knee_forward_ratio,
    spine_angle,
    vertical_angle,
)
from .phases import classify_phase
from .utils import ExercisePattern


logger = logging.getLogger(__name__)

# Left/right readings further apart than this are treated as a tracking disagreement
ELBOW_MISMATCH_DEG = 35.0
KNEE_ALIGNED_TOL = 0.05


@dataclass(frozen=True)
class JointAngles:
    """Joint angles in degrees; None where the joint could not be measured."""

    left_knee: Optional[float] = None
    right_knee: Optional[float] = None
    left_elbow: Optional[float] = None
    right_elbow: Optional[float] = None
    left_hip: Optional[float] = None
    right_hip: Optional[float] = None
    left_shoulder: Optional[float] = None
    right_shoulder: Optional[float] = None
    spine: Optional[float] = None


def _lm(landmarks: Sequence[Landmark], idx: int) -> Optional[Landmark]:
    return landmarks[idx] if idx < len(landmarks) else None


def compute_joint_angles(landmarks: Sequence[Landmark]) -> JointAngles:
    L = PoseLandmark

    def tri(a: int, b: int, c: int) -> Optional[float]:
        return angle(_lm(landmarks, a), _lm(landmarks, b), _lm(landmarks, c))

    return JointAngles(
        left_knee=tri(L.LEFT_HIP, L.LEFT_KNEE, L.LEFT_ANKLE),
        right_knee=tri(L.RIGHT_HIP, L.RIGHT_KNEE, L.RIGHT_ANKLE),
        left_elbow=tri(L.LEFT_SHOULDER, L.LEFT_ELBOW, L.LEFT_WRIST),
        right_elbow=tri(L.RIGHT_SHOULDER, L.RIGHT_ELBOW, L.RIGHT_WRIST),
        left_hip=tri(L.LEFT_SHOULDER, L.LEFT_HIP, L.LEFT_KNEE),
        right_hip=tri(L.RIGHT_SHOULDER, L.RIGHT_HIP, L.RIGHT_KNEE),
        left_shoulder=tri(L.LEFT_HIP, L.LEFT_SHOULDER, L.LEFT_ELBOW),
        right_shoulder=tri(L.RIGHT_HIP, L.RIGHT_SHOULDER, L.RIGHT_ELBOW),
        spine=spine_angle(landmarks),
    )


class MetricKey(str, Enum):
    KNEE_ANGLE = "knee_angle"
    LEFT_KNEE_ANGLE = "left_knee_angle"
    RIGHT_KNEE_ANGLE = "right_knee_angle"
    KNEE_DEPTH = "knee_depth"
    HIP_ANGLE = "hip_angle"
    LEFT_HIP_ANGLE = "left_hip_angle"
    RIGHT_HIP_ANGLE = "right_hip_angle"
    HIP_HINGE = "hip_hinge"
    ELBOW_ANGLE = "elbow_angle"
    LEFT_ELBOW_ANGLE = "left_elbow_angle"
    RIGHT_ELBOW_ANGLE = "right_elbow_angle"
    SHOULDER_ANGLE = "shoulder_angle"
    LEFT_SHOULDER_ANGLE = "left_shoulder_angle"
    RIGHT_SHOULDER_ANGLE = "right_shoulder_angle"
    SPINE_ANGLE = "spine_angle"
    BACK_ANGLE = "back_angle"
    TORSO_ANGLE = "torso_angle"
    KNEE_SYMMETRY = "knee_symmetry"
    ELBOW_SYMMETRY = "elbow_symmetry"
    SHOULDER_SYMMETRY = "shoulder_symmetry"
    KNEE_FORWARD_RATIO = "knee_forward_ratio"
    KNEE_OVER_TOE = "knee_over_toe"
    KNEE_ALIGNMENT = "knee_alignment"
    DEPTH = "depth"
    BODY_ANGLE = "body_angle"
    WRIST_SHOULDER_OFFSET = "wrist_shoulder_offset"
    REP_INTERVAL_MS = "rep_interval_ms"


# Metrics fed from rep events rather than computed from a frame
INJECTED_METRICS: FrozenSet[str] = frozenset({MetricKey.REP_INTERVAL_MS.value})


@dataclass(frozen=True)
class _Context:
    angles: JointAngles
    landmarks: Sequence[Landmark]
    world: Optional[Sequence[Landmark]]
    side: str

    def side_lm(self, joint: str, *, prefer_world: bool = False) -> Optional[Landmark]:
        idx = PoseLandmark[f"{self.side.upper()}_{joint}"]
        source = self.world if (prefer_world and self.world is not None) else self.landmarks
        return _lm(source, idx)


# Bilateral combination rules


def _either_min(left: Optional[float], right: Optional[float]) -> Optional[float]:
    vals = [v for v in (left, right) if v is not None]
    return min(vals) if vals else None


def _either_max(left: Optional[float], right: Optional[float]) -> Optional[float]:
    vals = [v for v in (left, right) if v is not None]
    return max(vals) if vals else None


def _either_mean(left: Optional[float], right: Optional[float]) -> Optional[float]:
    vals = [v for v in (left, right) if v is not None]
    return sum(vals) / len(vals) if vals else None


def _abs_diff(left: Optional[float], right: Optional[float]) -> Optional[float]:
    if left is None or right is None:
        return None
    return abs(left - right)


def _elbow(left: Optional[float], right: Optional[float]) -> Optional[float]:
    if left is None or right is None:
        return left if right is None else right
    # A large disagreement usually means one forearm is occluded; the straighter reading is kept
    if abs(left - right) > ELBOW_MISMATCH_DEG:
        return max(left, right)
    return (left + right) / 2.0


def _knee_offsets(ctx: _Context) -> Tuple[Optional[float], Optional[float]]:
    L = PoseLandmark
    left = horizontal_offset(_lm(ctx.landmarks, L.LEFT_KNEE), _lm(ctx.landmarks, L.LEFT_ANKLE))
    right = horizontal_offset(_lm(ctx.landmarks, L.RIGHT_KNEE), _lm(ctx.landmarks, L.RIGHT_ANKLE))
    return left, right


def _knee_over_toe(ctx: _Context) -> Optional[float]:
    left, right = _knee_offsets(ctx)
    if left is None and right is None:
        return None
    avg = (abs(left or 0.0) + abs(right or 0.0)) / 2.0
    return max(0.0, 100.0 - avg * 500.0)


def _knee_alignment(ctx: _Context) -> Optional[float]:
    left, right = _knee_offsets(ctx)
    if left is None or right is None:
        return None
    return 100.0 if abs(left) < KNEE_ALIGNED_TOL and abs(right) < KNEE_ALIGNED_TOL else 50.0


def _depth(ctx: _Context) -> Optional[float]:
    knee = ctx.angles.left_knee if ctx.angles.left_knee is not None else ctx.angles.right_knee
    if knee is None:
        return None
    # 180 deg (straight leg) maps to 0 %, 90 deg to 100 %
    return max(0.0, min(100.0, (180.0 - knee) / 0.9))


def _knee_forward(ctx: _Context) -> Optional[float]:
    return knee_forward_ratio(
        ctx.side_lm("KNEE"), ctx.side_lm("ANKLE"), ctx.side_lm("FOOT_INDEX"), ctx.side_lm("HIP")
    )


def _body_angle(ctx: _Context) -> Optional[float]:
    return angle(
        ctx.side_lm("SHOULDER", prefer_world=True),
        ctx.side_lm("HIP", prefer_world=True),
        ctx.side_lm("ANKLE", prefer_world=True),
    )


def _wrist_shoulder_offset(ctx: _Context) -> Optional[float]:
    offset = horizontal_offset(ctx.side_lm("WRIST"), ctx.side_lm("SHOULDER"))
    return abs(offset) if offset is not None else None


K = MetricKey
_HANDLERS: Dict[MetricKey, Callable[[_Context], Optional[float]]] = {
    # Depth purposes: the more flexed knee
    K.KNEE_ANGLE: lambda c: _either_min(c.angles.left_knee, c.angles.right_knee),
    K.LEFT_KNEE_ANGLE: lambda c: c.angles.left_knee,
    K.RIGHT_KNEE_ANGLE: lambda c: c.angles.right_knee,
    K.KNEE_DEPTH: lambda c: _either_mean(c.angles.left_knee, c.angles.right_knee),
    K.HIP_ANGLE: lambda c: _either_min(c.angles.left_hip, c.angles.right_hip),
    K.LEFT_HIP_ANGLE: lambda c: c.angles.left_hip,
    K.RIGHT_HIP_ANGLE: lambda c: c.angles.right_hip,
    K.HIP_HINGE: lambda c: _either_mean(c.angles.left_hip, c.angles.right_hip),
    K.ELBOW_ANGLE: lambda c: _elbow(c.angles.left_elbow, c.angles.right_elbow),
    K.LEFT_ELBOW_ANGLE: lambda c: c.angles.left_elbow,
    K.RIGHT_ELBOW_ANGLE: lambda c: c.angles.right_elbow,
    # Raised arm reads higher
    K.SHOULDER_ANGLE: lambda c: _either_max(c.angles.left_shoulder, c.angles.right_shoulder),
    K.LEFT_SHOULDER_ANGLE: lambda c: c.angles.left_shoulder,
    K.RIGHT_SHOULDER_ANGLE: lambda c: c.angles.right_shoulder,
    K.SPINE_ANGLE: lambda c: c.angles.spine,
    K.BACK_ANGLE: lambda c: c.angles.spine,
    K.TORSO_ANGLE: lambda c: vertical_angle(c.side_lm("HIP"), c.side_lm("SHOULDER")),
    K.KNEE_SYMMETRY: lambda c: _abs_diff(c.angles.left_knee, c.angles.right_knee),
    K.ELBOW_SYMMETRY: lambda c: _abs_diff(c.angles.left_elbow, c.angles.right_elbow),
    K.SHOULDER_SYMMETRY: lambda c: _abs_diff(c.angles.left_shoulder, c.angles.right_shoulder),
    K.KNEE_FORWARD_RATIO: _knee_forward,
    K.KNEE_OVER_TOE: _knee_over_toe,
    K.KNEE_ALIGNMENT: _knee_alignment,
    K.DEPTH: _depth,
    K.BODY_ANGLE: _body_angle,
    K.WRIST_SHOULDER_OFFSET: _wrist_shoulder_offset,
    K.REP_INTERVAL_MS: lambda c: None,
}


def _check_handlers() -> None:
    missing = [k.value for k in MetricKey if k not in _HANDLERS]
    if missing:
        raise RuntimeError(f"metric handlers missing for: {', '.join(missing)}")


_check_handlers()


def is_known_metric(metric_key: str) -> bool:
    try:
        MetricKey(metric_key)
    except ValueError:
        return False
    return True


def extract(
    metric_key: str,
    angles: JointAngles,
    landmarks: Sequence[Landmark],
    *,
    side: Optional[str] = None,
    world_landmarks: Optional[Sequence[Landmark]] = None,
) -> Optional[float]:
    """
    Compute one metric value for the current frame.

    Returns None when the metric cannot be measured or when metric_key is not a
    known MetricKey (the caller excludes it from aggregation and scoring).
    """
    try:
        key = MetricKey(metric_key)
    except ValueError:
        logger.debug("unmapped metric %r", metric_key)
        return None

    ctx = _Context(
        angles=angles,
        landmarks=landmarks,
        world=world_landmarks,
        side=side or choose_primary_side(landmarks),
    )
    value = _HANDLERS[key](ctx)
    if value is None or value != value:  # NaN guard
        return None
    return float(value)


@dataclass(frozen=True)
class MetricsSnapshot:
    values: Mapping[str, Optional[float]]
    phase: str
    side: Optional[str] = LEFT
    angle_source: str = "normalized"
    unmapped: Tuple[str, ...] = field(default=())

    def get(self, metric_key: str) -> Optional[float]:
        return self.values.get(metric_key)

    def with_values(self, values: Mapping[str, Optional[float]], phase: str) -> "MetricsSnapshot":
        return replace(self, values=dict(values), phase=phase)


class MetricExtractor:
    """
    Builds per-frame MetricsSnapshots for a fixed set of metric keys.

    Unknown keys are reported once (warning) at construction and always yield None.
    """

    def __init__(self, metric_keys: Iterable[str], pattern: ExercisePattern) -> None:
        self.pattern = pattern
        keys = [pattern.primary_metric]
        for k in metric_keys:
            if k not in keys:
                keys.append(k)
        self.metric_keys: Tuple[str, ...] = tuple(keys)
        self.unmapped: Tuple[str, ...] = tuple(k for k in keys if not is_known_metric(k))
        for k in self.unmapped:
            logger.warning("unmapped metric %r: it will be reported as missing", k)

    def snapshot(self, frame: PoseFrame) -> MetricsSnapshot:
        use_world = frame.world_landmarks is not None
        angle_landmarks = frame.world_landmarks if use_world else frame.landmarks
        angles = compute_joint_angles(angle_landmarks)
        side = choose_primary_side(frame.landmarks)

        values: Dict[str, Optional[float]] = {}
        for key in self.metric_keys:
            if key in INJECTED_METRICS or key in self.unmapped:
                values[key] = None
                continue
            values[key] = extract(
                key,
                angles,
                frame.landmarks,
                side=side,
                world_landmarks=frame.world_landmarks,
            )

        return MetricsSnapshot(
            values=values,
            phase=classify_phase(values.get(self.pattern.primary_metric), self.pattern),
            side=side,
            angle_source="world" if use_world else "normalized",
            unmapped=self.unmapped,
        )
