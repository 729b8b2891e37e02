from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from analysis.metrics import MetricsSnapshot
from analysis.rep_counter import RepEvent
from .accumulator import MetricAccumulator
from .feedback import Feedback, component_feedback, select_feedback
from .profile import ProfileMetric, ScoringProfile, ScoringRule


logger = logging.getLogger(__name__)

OK = "ok"
LOW = "low"
TOO_LOW = "too_low"
HIGH = "high"
TOO_HIGH = "too_high"
MISSING = "missing"
SKIPPED = "skipped"

MIN_DENOMINATOR = 1e-9


def _clamp(v: float) -> float:
    return max(0.0, min(100.0, v))


def score_max(value: float, ideal_max: float, hard_max: float) -> Tuple[float, str]:
    if value <= ideal_max:
        return 100.0, OK
    if value >= hard_max:
        return 0.0, TOO_HIGH
    return _clamp(100.0 * (hard_max - value) / max(hard_max - ideal_max, MIN_DENOMINATOR)), HIGH


def score_min(value: float, ideal_min: float, hard_min: float) -> Tuple[float, str]:
    if value >= ideal_min:
        return 100.0, OK
    if value <= hard_min:
        return 0.0, TOO_LOW
    return _clamp(100.0 * (value - hard_min) / max(ideal_min - hard_min, MIN_DENOMINATOR)), LOW


def score_range(
    value: float, ideal_min: float, ideal_max: float, hard_min: float, hard_max: float
) -> Tuple[float, str]:
    if ideal_min <= value <= ideal_max:
        return 100.0, OK
    if value < ideal_min:
        return score_min(value, ideal_min, hard_min)
    return score_max(value, ideal_max, hard_max)


def score_component(rule: ScoringRule, value: Optional[float]) -> Tuple[Optional[float], str]:
    """Score a value against a rule. None is reported as (None, "missing")."""
    if value is None:
        return None, MISSING
    (ia, ib), (ha, hb) = rule.ideal, rule.hard
    if rule.kind == "max":
        return score_max(value, ib, hb)
    if rule.kind == "min":
        return score_min(value, ia, ha)
    return score_range(value, ia, ib, ha, hb)


@dataclass(frozen=True)
class ComponentScore:
    key: str
    metric_key: str
    value: Optional[float]
    score: Optional[float]
    scaled_score: Optional[float]
    weight: float
    status: str
    metric_id: Optional[int] = None
    label: Optional[str] = None
    feedback: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RepScoreResult:
    rep_index: int
    rep_interval_ms: Optional[float]
    total: Optional[float]
    components: Tuple[ComponentScore, ...]
    feedback: Feedback

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rep_index": self.rep_index,
            "rep_interval_ms": self.rep_interval_ms,
            "total": self.total,
            "components": [c.to_dict() for c in self.components],
            "feedback": self.feedback.to_dict(),
        }


@dataclass(frozen=True)
class FrameScore:
    total: Optional[float]
    phase: str
    components: Tuple[ComponentScore, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "phase": self.phase,
            "components": [c.to_dict() for c in self.components],
        }


def weighted_total(components: Iterable[ComponentScore]) -> Optional[float]:
    """Weighted mean over components that have a score; None when no weight is left."""
    weight_sum = 0.0
    weighted = 0.0
    for c in components:
        if c.score is None:
            continue
        weight_sum += c.weight
        weighted += c.weight * c.score
    if weight_sum <= 0.0:
        return None
    return weighted / weight_sum


class ScoringEngine:
    """
    Scores reps and single frames against a ScoringProfile.

    The engine keeps no per-rep state: accumulators come from build_accumulators()
    and are owned by the caller (the session aggregator).
    """

    def __init__(self, profile: ScoringProfile) -> None:
        self.profile = profile
        self.exercise_code = profile.exercise_code

    def build_accumulators(self) -> List[MetricAccumulator]:
        return [MetricAccumulator(m.metric_key, m.aggregation, m.phases) for m in self.profile.metrics]

    def _component(self, m: ProfileMetric, value: Optional[float]) -> ComponentScore:
        score, status = score_component(m.rule, value)
        return ComponentScore(
            key=m.component_key,
            metric_key=m.metric_key,
            value=value,
            score=score,
            scaled_score=(score * m.max_score / 100.0) if score is not None else None,
            weight=m.weight,
            status=status,
            metric_id=m.metric_id,
            label=m.label,
            feedback=component_feedback(self.exercise_code, m.component_key, status),
        )

    def score_rep(self, accumulators: Sequence[MetricAccumulator], rep_event: RepEvent) -> RepScoreResult:
        if len(accumulators) != len(self.profile.metrics):
            raise ValueError("accumulators do not match the scoring profile")

        components = tuple(self._component(m, acc.value()) for m, acc in zip(self.profile.metrics, accumulators))
        total = weighted_total(components)
        missing = [c.key for c in components if c.score is None]
        if missing:
            logger.debug("rep %d scored without %s", rep_event.rep_index, ", ".join(missing))
        return RepScoreResult(
            rep_index=rep_event.rep_index,
            rep_interval_ms=rep_event.interval_ms,
            total=total,
            components=components,
            feedback=select_feedback(self.exercise_code, components),
        )

    def score_frame(self, snapshot: MetricsSnapshot) -> FrameScore:
        """Instantaneous score; components gated out by phase are reported as skipped."""
        components: List[ComponentScore] = []
        for m in self.profile.metrics:
            if m.phases is not None and snapshot.phase not in m.phases:
                components.append(
                    ComponentScore(
                        key=m.component_key,
                        metric_key=m.metric_key,
                        value=None,
                        score=None,
                        scaled_score=None,
                        weight=m.weight,
                        status=SKIPPED,
                        metric_id=m.metric_id,
                        label=m.label,
                    )
                )
                continue
            components.append(self._component(m, snapshot.get(m.metric_key)))
        return FrameScore(total=weighted_total(components), phase=snapshot.phase, components=tuple(components))
