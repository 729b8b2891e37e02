from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


DECREASE = "decrease"
INCREASE = "increase"

# Margin (degrees) applied to the neutral/active thresholds so that values
# hovering at a boundary do not flip the state every frame
DEFAULT_HYSTERESIS_DEG = 10.0

# Named phase bands, checked in order. For "decrease" patterns a band matches when
# value > bound; for "increase" patterns when value < bound. The last band catches the rest.
SQUAT_PHASE_BANDS: Tuple[Tuple[str, float], ...] = (
    ("standing", 165.0),
    ("start", 140.0),
    ("mid", 110.0),
    ("bottom", -math.inf),
)

PUSHUP_PHASE_BANDS: Tuple[Tuple[str, float], ...] = (
    ("up", 150.0),
    ("mid", 100.0),
    ("bottom", -math.inf),
)

PRESS_PHASE_BANDS: Tuple[Tuple[str, float], ...] = (
    ("down", 45.0),
    ("start", 90.0),
    ("mid", 140.0),
    ("top", math.inf),
)

CURL_PHASE_BANDS: Tuple[Tuple[str, float], ...] = (
    ("down", 150.0),
    ("mid", 70.0),
    ("top", -math.inf),
)

HOLD_PHASE_BANDS: Tuple[Tuple[str, float], ...] = (
    ("hold", 15.0),
    ("break", math.inf),
)


@dataclass(frozen=True)
class ExercisePattern:
    """
    Per-exercise configuration of the phase classifier and rep counter.

    neutral/active are primary-metric values (degrees for angles). With direction
    "decrease" the active phase is reached by flexing (angle going down), with
    "increase" by extending. Durations are in milliseconds.
    """

    code: str
    primary_metric: str
    neutral: float = 160.0
    active: float = 100.0
    direction: str = DECREASE
    min_duration_ms: float = 800.0
    min_active_ms: float = 200.0
    hysteresis: float = DEFAULT_HYSTERESIS_DEG
    phase_bands: Tuple[Tuple[str, float], ...] = SQUAT_PHASE_BANDS
    is_time_based: bool = False
    hold_max: Optional[float] = None
    aliases: Tuple[str, ...] = field(default=(), compare=False)

    def __post_init__(self) -> None:
        if self.direction not in (DECREASE, INCREASE):
            raise ValueError(f"{self.code}: direction must be 'decrease' or 'increase'")
        if self.min_duration_ms < 0 or self.min_active_ms < 0 or self.hysteresis < 0:
            raise ValueError(f"{self.code}: durations and hysteresis must be >= 0")
        if not self.phase_bands:
            raise ValueError(f"{self.code}: phase_bands must not be empty")
        if self.is_time_based:
            if self.hold_max is None:
                raise ValueError(f"{self.code}: time-based patterns need hold_max")
            return
        if self.direction == DECREASE and not self.neutral > self.active:
            raise ValueError(f"{self.code}: decrease pattern needs neutral > active")
        if self.direction == INCREASE and not self.neutral < self.active:
            raise ValueError(f"{self.code}: increase pattern needs neutral < active")


# Default thresholds (degrees) per exercise.
SQUAT = ExercisePattern(
    code="squat",
    primary_metric="knee_angle",
    neutral=160.0,
    active=100.0,
    min_duration_ms=800.0,
    min_active_ms=200.0,
    aliases=("side_squat",),
)

PUSH_UP = ExercisePattern(
    code="push_up",
    primary_metric="elbow_angle",
    neutral=160.0,
    active=90.0,
    min_duration_ms=600.0,
    min_active_ms=150.0,
    phase_bands=PUSHUP_PHASE_BANDS,
    aliases=("pushup",),
)

LUNGE = ExercisePattern(
    code="lunge",
    primary_metric="knee_angle",  # front knee is the more flexed one
    neutral=160.0,
    active=100.0,
    min_duration_ms=1000.0,
    min_active_ms=200.0,
)

BURPEE = ExercisePattern(
    code="burpee",
    primary_metric="hip_angle",
    neutral=160.0,
    active=90.0,
    min_duration_ms=1500.0,
    min_active_ms=300.0,
)

DEADLIFT = ExercisePattern(
    code="deadlift",
    primary_metric="hip_angle",
    neutral=170.0,
    active=100.0,
    min_duration_ms=1200.0,
    min_active_ms=200.0,
)

SHOULDER_PRESS = ExercisePattern(
    code="shoulder_press",
    primary_metric="shoulder_angle",
    neutral=30.0,
    active=160.0,
    direction=INCREASE,
    min_duration_ms=800.0,
    min_active_ms=150.0,
    phase_bands=PRESS_PHASE_BANDS,
)

BICEP_CURL = ExercisePattern(
    code="bicep_curl",
    primary_metric="elbow_angle",
    neutral=160.0,
    active=45.0,
    min_duration_ms=600.0,
    min_active_ms=150.0,
    phase_bands=CURL_PHASE_BANDS,
)

# Plank is scored on time spent holding a straight torso rather than on reps
PLANK = ExercisePattern(
    code="plank",
    primary_metric="spine_angle",
    direction=INCREASE,  # bands read "below bound"
    phase_bands=HOLD_PHASE_BANDS,
    is_time_based=True,
    hold_max=15.0,
)


EXERCISE_PATTERNS: Dict[str, ExercisePattern] = {
    p.code: p
    for p in (SQUAT, PUSH_UP, LUNGE, BURPEE, DEADLIFT, SHOULDER_PRESS, BICEP_CURL, PLANK)
}


def normalize_exercise_code(code: str) -> str:
    return str(code or "").strip().lower().replace("-", "_").replace(" ", "_")
