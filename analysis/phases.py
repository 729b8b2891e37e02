from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

from .utils import DECREASE, EXERCISE_PATTERNS, ExercisePattern, normalize_exercise_code


UNKNOWN_PHASE = "unknown"


class RepState(str, Enum):
    NEUTRAL = "NEUTRAL"
    TRANSITION = "TRANSITION"
    ACTIVE = "ACTIVE"
    UNKNOWN = "UNKNOWN"


class UnknownExerciseError(ValueError):
    """Raised when no exercise pattern is registered for a code."""


def _build_alias_index() -> Dict[str, ExercisePattern]:
    index: Dict[str, ExercisePattern] = {}
    for pattern in EXERCISE_PATTERNS.values():
        index[pattern.code] = pattern
        for alias in pattern.aliases:
            index[alias] = pattern
    return index


_PATTERN_INDEX = _build_alias_index()


def get_pattern(exercise_code: str) -> ExercisePattern:
    key = normalize_exercise_code(exercise_code)
    try:
        return _PATTERN_INDEX[key]
    except KeyError:
        raise UnknownExerciseError(f"no exercise pattern registered for {exercise_code!r}") from None


def classify_state(value: Optional[float], pattern: ExercisePattern) -> RepState:
    """
    Map the primary metric value to NEUTRAL / TRANSITION / ACTIVE.

    - decrease: value >= neutral - h -> NEUTRAL, value <= active + h -> ACTIVE
    - increase: value <= neutral + h -> NEUTRAL, value >= active - h -> ACTIVE
    - anything in between is TRANSITION; None is UNKNOWN
    """
    if value is None:
        return RepState.UNKNOWN

    h = pattern.hysteresis
    if pattern.direction == DECREASE:
        if value >= pattern.neutral - h:
            return RepState.NEUTRAL
        if value <= pattern.active + h:
            return RepState.ACTIVE
        return RepState.TRANSITION

    if value <= pattern.neutral + h:
        return RepState.NEUTRAL
    if value >= pattern.active - h:
        return RepState.ACTIVE
    return RepState.TRANSITION


def classify_phase(value: Optional[float], pattern: ExercisePattern) -> str:
    """Map the primary metric value to the pattern's named phase band."""
    if value is None:
        return UNKNOWN_PHASE

    bands = pattern.phase_bands
    for name, bound in bands[:-1]:
        if pattern.direction == DECREASE and value > bound:
            return name
        if pattern.direction != DECREASE and value < bound:
            return name
    return bands[-1][0]

