from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Iterable, Optional

from analysis.phases import UnknownExerciseError, get_pattern
from analysis.utils import normalize_exercise_code


SUCCESS = "success"
INFO = "info"
WARNING = "warning"

# Worst component at or above this score means the rep is praised as a whole
GOOD_SCORE = 80.0
# Worst component below this score escalates the message to a warning
POOR_SCORE = 50.0

GENERIC_SUCCESS = "Great job! Your form is spot on."
GENERIC_WARNING = "Please correct your form."
GENERIC_INFO = "Almost there, pay a little more attention to your form."

_TEMPO = {
    "too_low": "Way too fast. Slow the movement down.",
    "low": "Try going a little slower.",
    "too_high": "Too slow. Pick up the pace a bit.",
    "high": "You can go a little faster.",
    "ok": "Good tempo!",
}

FEEDBACK_MESSAGES: Dict[str, Dict[str, Dict[str, str]]] = {
    "side_squat": {
        "depth": {
            "too_low": "You bent your knees too far. Only go down until your thighs are parallel to the floor.",
            "low": "You can sit a little less deep.",
            "too_high": "Not deep enough. Sit down further.",
            "high": "Sit a little deeper.",
            "ok": "Good squat depth!",
        },
        "hip_hinge": {
            "too_high": "You are pushing your hips back too far.",
            "high": "Push your hips back a little less.",
            "ok": "Good hip position!",
        },
        "torso_lean": {
            "too_high": "Your upper body is leaning too far forward. Keep your back more upright.",
            "high": "Keep your chest a little more upright.",
            "ok": "Good torso position!",
        },
        "knee_forward": {
            "too_high": "Your knees travel too far past your toes.",
            "high": "Your knees drift slightly forward.",
            "ok": "Good knee position!",
        },
        "tempo": _TEMPO,
    },
    "push_up": {
        "depth": {
            "too_low": "You bent your arms too far.",
            "low": "You can go down a little less.",
            "too_high": "Go lower, until your elbows reach 90 degrees!",
            "high": "Go down a little deeper.",
            "ok": "Good depth!",
        },
        "body_line": {
            "too_low": "Your body is not in a straight line. Brace your core.",
            "low": "Straighten your body a bit more.",
            "ok": "Perfect body line!",
        },
        "wrist_stack": {
            "too_high": "Your wrists are not under your shoulders. Adjust your hand position.",
            "high": "Adjust your wrists slightly.",
            "ok": "Good wrist position!",
        },
        "hip_sag": {
            "too_low": "Your hips are sagging. Lift them up.",
            "low": "Raise your hips a little.",
            "ok": "Good hip position!",
        },
        "tempo": {**_TEMPO, "too_high": "Too slow."},
    },
}

# Session summary bands, checked top-down
_SUMMARY_BANDS = (
    (90.0, "Perfect! You trained with excellent form."),
    (80.0, "Well done! Your form was very good."),
    (70.0, "Good! A little more focus and it will be perfect."),
    (60.0, "Not bad. Try to concentrate a bit more on your form."),
)
_SUMMARY_LOW = "Your form needs work. Check the exercise guide."


@dataclass(frozen=True)
class Feedback:
    type: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "message": self.message}


@lru_cache(maxsize=None)
def _messages_for(exercise_code: str) -> Dict[str, Dict[str, str]]:
    code = normalize_exercise_code(exercise_code)
    table = FEEDBACK_MESSAGES.get(code)
    if table is not None:
        return table
    try:
        pattern = get_pattern(code)
    except UnknownExerciseError:
        return {}
    # Aliases ("squat", "pushup") share the messages of their exercise pattern
    return next((t for key, t in FEEDBACK_MESSAGES.items() if get_pattern(key) is pattern), {})


def component_feedback(exercise_code: str, component_key: str, status: str) -> Optional[str]:
    return _messages_for(exercise_code).get(component_key, {}).get(status)


def select_feedback(exercise_code: str, components: Iterable) -> Feedback:
    """
    Pick the rep message from the worst-scoring (non-missing) component.

    components are objects with .key, .score and .status.
    """
    worst = None
    for comp in components:
        if comp.score is None:
            continue
        if worst is None or comp.score < worst.score:
            worst = comp

    if worst is None or worst.score >= GOOD_SCORE:
        return Feedback(SUCCESS, GENERIC_SUCCESS)

    text = component_feedback(exercise_code, worst.key, worst.status)
    if worst.score < POOR_SCORE:
        return Feedback(WARNING, text or GENERIC_WARNING)
    return Feedback(INFO, text or GENERIC_INFO)


def summary_feedback(final_score: Optional[float], total_reps: int) -> str:
    score = final_score if final_score is not None else 0.0
    text = _SUMMARY_LOW
    for bound, message in _SUMMARY_BANDS:
        if score >= bound:
            text = message
            break
    if total_reps > 0:
        text += f" {total_reps} reps completed!"
    return text
