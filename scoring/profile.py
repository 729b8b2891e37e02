from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from analysis.metrics import INJECTED_METRICS, is_known_metric
from analysis.phases import UnknownExerciseError, get_pattern
from analysis.utils import ExercisePattern, normalize_exercise_code


logger = logging.getLogger(__name__)

RuleKind = Literal["max", "min", "range"]
Aggregation = Literal["min", "max", "mean", "p05", "p95", "last"]


class ProfileError(ValueError):
    """Invalid scoring profile (bad bounds, unknown aggregation/exercise, ...)."""


class ScoringRule(BaseModel):
    """
    Scoring curve for one metric.

    - max: 100 up to ideal[1], linear down to 0 at hard[1]
    - min: 100 from ideal[0] up, linear down to 0 at hard[0]
    - range: 100 inside ideal, linear down to 0 at either hard bound
    """

    model_config = ConfigDict(frozen=True)

    kind: RuleKind
    ideal: Tuple[float, float]
    hard: Tuple[float, float]

    @model_validator(mode="after")
    def _check_bounds(self) -> "ScoringRule":
        (ia, ib), (ha, hb) = self.ideal, self.hard
        if not (ha <= ia <= ib <= hb):
            raise ValueError(
                f"bounds must satisfy hard[0] <= ideal[0] <= ideal[1] <= hard[1], got ideal={self.ideal} hard={self.hard}"
            )
        return self


class ProfileMetric(BaseModel):
    model_config = ConfigDict(frozen=True)

    metric_key: str = Field(min_length=1)
    key: Optional[str] = None
    label: Optional[str] = None
    metric_id: Optional[int] = None
    weight: float = Field(ge=0.0)
    max_score: float = Field(default=100.0, gt=0.0)
    rule: ScoringRule
    aggregation: Aggregation = "p05"
    phases: Optional[Tuple[str, ...]] = None

    @model_validator(mode="before")
    @classmethod
    def _default_key(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and not data.get("key"):
            data = {**data, "key": data.get("metric_key")}
        return data

    @property
    def component_key(self) -> str:
        return self.key or self.metric_key


class ScoringProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    exercise_code: str
    name: Optional[str] = None
    scoring_profile_id: Optional[int] = None
    metrics: Tuple[ProfileMetric, ...] = Field(min_length=1)

    @model_validator(mode="after")
    def _unique_keys(self) -> "ScoringProfile":
        seen = set()
        for m in self.metrics:
            if m.component_key in seen:
                raise ValueError(f"duplicate component key {m.component_key!r}")
            seen.add(m.component_key)
        return self

    @property
    def metric_keys(self) -> List[str]:
        out: List[str] = []
        for m in self.metrics:
            if m.metric_key not in out:
                out.append(m.metric_key)
        return out

    def pattern(self) -> ExercisePattern:
        return resolve_pattern(self.exercise_code)


def resolve_pattern(exercise_code: str) -> ExercisePattern:
    try:
        return get_pattern(exercise_code)
    except UnknownExerciseError as exc:
        raise ProfileError(str(exc)) from exc


def _warn_unmapped(profile: ScoringProfile) -> None:
    for m in profile.metrics:
        if m.metric_key not in INJECTED_METRICS and not is_known_metric(m.metric_key):
            logger.warning(
                "profile %s: unmapped metric %r in component %r will always be missing",
                profile.exercise_code,
                m.metric_key,
                m.component_key,
            )


def load_profile(data: Mapping[str, Any]) -> ScoringProfile:
    """Validate a plain-dict profile. Raises ProfileError on any configuration problem."""
    try:
        profile = ScoringProfile.model_validate(dict(data))
    except ValidationError as exc:
        raise ProfileError(f"invalid scoring profile: {exc}") from exc
    resolve_pattern(profile.exercise_code)
    _warn_unmapped(profile)
    return profile


def _metric_from_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    metric = row.get("metric") or {}
    rule = dict(row.get("rule") or {})
    return {
        "metric_key": metric.get("key"),
        "key": rule.get("key") or metric.get("key"),
        "label": metric.get("title"),
        "metric_id": metric.get("metric_id"),
        "weight": row.get("weight"),
        "max_score": row.get("max_score") if row.get("max_score") is not None else 100.0,
        "rule": {k: rule.get(k) for k in ("kind", "ideal", "hard")},
        "aggregation": rule.get("agg") or rule.get("aggregation") or "p05",
        "phases": rule.get("phases"),
    }


def profile_from_record(record: Mapping[str, Any], exercise_code: Optional[str] = None) -> ScoringProfile:
    """
    Build a profile from a database-shaped record:

        {"scoring_profile_id": 3, "name": "...", "exercise": {"code": "side_squat"},
         "scoring_profile_metric": [{"weight": "0.35", "max_score": 100,
             "rule": {"kind": "range", "ideal": [...], "hard": [...], "agg": "p05", "phases": [...]},
             "metric": {"metric_id": 1, "key": "knee_angle", "title": "Knee depth"}}]}
    """
    rows: Sequence[Mapping[str, Any]] = record.get("scoring_profile_metric") or []
    code = exercise_code or record.get("exercise_code") or (record.get("exercise") or {}).get("code")
    if not code:
        raise ProfileError("scoring profile record has no exercise code")
    return load_profile(
        {
            "exercise_code": code,
            "name": record.get("name"),
            "scoring_profile_id": record.get("scoring_profile_id"),
            "metrics": [_metric_from_row(r) for r in rows],
        }
    )


def _tempo() -> Dict[str, Any]:
    return {
        "key": "tempo",
        "label": "Tempo",
        "metric_key": "rep_interval_ms",
        "aggregation": "last",
        "weight": 0.15,
        "rule": {"kind": "range", "ideal": [800.0, 2500.0], "hard": [400.0, 5000.0]},
    }


BUILTIN_PROFILES: Dict[str, Dict[str, Any]] = {
    "side_squat": {
        "exercise_code": "side_squat",
        "name": "Side squat",
        "metrics": [
            {
                "key": "depth",
                "label": "Knee depth",
                "metric_key": "knee_angle",
                "aggregation": "p05",
                "weight": 0.35,
                "rule": {"kind": "range", "ideal": [80.0, 110.0], "hard": [70.0, 150.0]},
                "phases": ["mid", "bottom"],
            },
            {
                "key": "hip_hinge",
                "label": "Hip hinge",
                "metric_key": "hip_angle",
                "aggregation": "p05",
                "weight": 0.25,
                "rule": {"kind": "max", "ideal": [0.0, 140.0], "hard": [0.0, 160.0]},
                "phases": ["mid", "bottom"],
            },
            {
                "key": "torso_lean",
                "label": "Torso lean",
                "metric_key": "torso_angle",
                "aggregation": "p95",
                "weight": 0.25,
                "rule": {"kind": "max", "ideal": [0.0, 25.0], "hard": [0.0, 45.0]},
            },
            {
                "key": "knee_forward",
                "label": "Knee travel",
                "metric_key": "knee_forward_ratio",
                "aggregation": "p95",
                "weight": 0.15,
                "rule": {"kind": "max", "ideal": [0.0, 0.06], "hard": [0.0, 0.10]},
            },
            _tempo(),
        ],
    },
    "push_up": {
        "exercise_code": "push_up",
        "name": "Push-up",
        "metrics": [
            {
                "key": "depth",
                "label": "Elbow depth",
                "metric_key": "elbow_angle",
                "aggregation": "p05",
                "weight": 0.35,
                "rule": {"kind": "range", "ideal": [75.0, 115.0], "hard": [70.0, 140.0]},
                "phases": ["mid", "bottom"],
            },
            {
                "key": "body_line",
                "label": "Body line",
                "metric_key": "body_angle",
                "aggregation": "p05",
                "weight": 0.30,
                "rule": {"kind": "min", "ideal": [170.0, 180.0], "hard": [160.0, 180.0]},
            },
            {
                "key": "wrist_stack",
                "label": "Wrist stack",
                "metric_key": "wrist_shoulder_offset",
                "aggregation": "p95",
                "weight": 0.15,
                "rule": {"kind": "max", "ideal": [0.0, 0.05], "hard": [0.0, 0.08]},
            },
            {
                "key": "hip_sag",
                "label": "Hip sag",
                "metric_key": "hip_angle",
                "aggregation": "p05",
                "weight": 0.20,
                "rule": {"kind": "min", "ideal": [170.0, 180.0], "hard": [160.0, 180.0]},
            },
            _tempo(),
        ],
    },
}


def get_builtin_profile(exercise_code: str) -> ScoringProfile:
    data = BUILTIN_PROFILES.get(normalize_exercise_code(exercise_code))
    if data is None:
        # Aliases ("squat", "pushup") resolve through their exercise pattern
        pattern = resolve_pattern(exercise_code)
        data = next((d for code, d in BUILTIN_PROFILES.items() if get_pattern(code) is pattern), None)
    if data is None:
        raise ProfileError(f"no built-in scoring profile for {exercise_code!r}")
    return load_profile(data)
