from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from analysis.metrics import MetricsSnapshot
from analysis.rep_counter import EventEmitter, HoldEvent, HoldTimer, RepCounter, RepEvent, RepRejected
from analysis.utils import ExercisePattern
from scoring.engine import ComponentScore, FrameScore, RepScoreResult, ScoringEngine
from scoring.feedback import summary_feedback
from scoring.profile import ScoringProfile


logger = logging.getLogger(__name__)

REP_SCORED = "rep_scored"
DEFAULT_TIMELINE_INTERVAL_MS = 1000
WORK_PHASE = "WORK"


@dataclass(frozen=True)
class FrameResult:
    frame_score: FrameScore
    rep: Optional[RepScoreResult] = None
    rejected: Optional[RepRejected] = None
    hold: Optional[HoldEvent] = None


@dataclass(frozen=True)
class SessionSummary:
    total_reps: int
    duration_sec: int
    final_score: Optional[float]
    summary_feedback: str
    avg_rep_score: Optional[float]
    best_rep: Optional[Dict[str, Any]]
    metric_results: List[Dict[str, Any]] = field(default_factory=list)
    per_metric_average: Dict[str, float] = field(default_factory=dict)
    hold_ms: Optional[float] = None


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


class _MetricTrack:
    __slots__ = ("key", "metric_key", "metric_id", "scores", "raw")

    def __init__(self, key: str, metric_key: str, metric_id: Optional[int]) -> None:
        self.key = key
        self.metric_key = metric_key
        self.metric_id = metric_id
        self.scores: List[float] = []
        self.raw: List[float] = []

    def add(self, component: ComponentScore) -> None:
        self.scores.append(component.score)
        if component.value is not None:
            self.raw.append(component.value)


def _track_components(tracks: Dict[str, _MetricTrack], components: Iterable[ComponentScore]) -> None:
    for c in components:
        if c.score is None:
            continue
        track = tracks.get(c.key)
        if track is None:
            track = tracks[c.key] = _MetricTrack(c.key, c.metric_key, c.metric_id)
        track.add(c)


class SessionAggregator:
    """
    Owns the rep counter (or hold timer), the metric accumulators and the scoring
    engine of one workout session, and buffers everything that gets exported.

    All timestamps are caller-supplied milliseconds; exported times are relative
    to the first processed frame.
    """

    def __init__(
        self,
        profile: ScoringProfile,
        pattern: Optional[ExercisePattern] = None,
        *,
        timeline_interval_ms: float = DEFAULT_TIMELINE_INTERVAL_MS,
        emitter: Optional[EventEmitter] = None,
    ) -> None:
        if timeline_interval_ms < 0:
            raise ValueError("timeline_interval_ms must be >= 0")
        self.profile = profile
        self.pattern = pattern if pattern is not None else profile.pattern()
        self.timeline_interval_ms = float(timeline_interval_ms)
        self.events = emitter if emitter is not None else EventEmitter()
        self.engine = ScoringEngine(profile)

        self.counter: Optional[RepCounter] = None
        self.hold_timer: Optional[HoldTimer] = None
        if self.pattern.is_time_based:
            self.hold_timer = HoldTimer(self.pattern, self.events)
        else:
            self.counter = RepCounter(self.pattern, self.events)
        self.reset()

    def reset(self) -> None:
        """Hard reset: drops the in-progress rep and everything buffered so far."""
        if self.counter is not None:
            self.counter.reset()
        if self.hold_timer is not None:
            self.hold_timer.reset()
        self.accumulators = self.engine.build_accumulators()

        self.start_ms: Optional[float] = None
        self.last_ms: Optional[float] = None
        self._last_sample_ms: Optional[float] = None

        self.timeline: List[Dict[str, Any]] = []
        self.rep_records: List[Dict[str, Any]] = []
        self.rep_results: List[RepScoreResult] = []
        self.set_records: List[Dict[str, Any]] = []
        self.event_log: List[Dict[str, Any]] = []
        self._frame_tracks: Dict[str, _MetricTrack] = {}
        self._rep_tracks: Dict[str, _MetricTrack] = {}

        self.current_set = 1
        self.current_set_reps = 0
        self._set_start_ms: Optional[float] = None

    # ---- clock ----

    def _tick(self, timestamp_ms: float) -> float:
        t = float(timestamp_ms)
        if self.start_ms is None:
            self.start_ms = t
            self._set_start_ms = t
        if self.last_ms is None or t > self.last_ms:
            self.last_ms = t
        return t

    def _rel(self, timestamp_ms: Optional[float]) -> float:
        if timestamp_ms is None:
            timestamp_ms = self.last_ms
        if timestamp_ms is None or self.start_ms is None:
            return 0.0
        return float(timestamp_ms) - self.start_ms

    @property
    def total_reps(self) -> int:
        return len(self.rep_records)

    @property
    def duration_ms(self) -> float:
        if self.start_ms is None or self.last_ms is None:
            return 0.0
        return self.last_ms - self.start_ms

    # ---- per frame ----

    def process(self, snapshot: MetricsSnapshot, timestamp_ms: float) -> FrameResult:
        t = self._tick(timestamp_ms)
        frame_score = self.engine.score_frame(snapshot)
        self.add_frame_score(frame_score, t)
        primary = snapshot.get(self.pattern.primary_metric)

        if self.hold_timer is not None:
            for acc in self.accumulators:
                acc.update(snapshot)
            return FrameResult(frame_score=frame_score, hold=self.hold_timer.update(primary, t))

        counter = self.counter
        was_in_progress = counter.in_progress
        outcome = counter.update(primary, t, frame_score.total)

        if counter.in_progress and not was_in_progress:
            self._reset_accumulators()
        if counter.in_progress or isinstance(outcome, RepEvent):
            for acc in self.accumulators:
                acc.update(snapshot)

        if isinstance(outcome, RepRejected):
            self._reset_accumulators()
            self.add_event("rep_rejected", {"reason": outcome.reason, "duration_ms": outcome.duration_ms}, t)
            return FrameResult(frame_score=frame_score, rejected=outcome)

        if isinstance(outcome, RepEvent):
            for acc in self.accumulators:
                if acc.metric_key == "rep_interval_ms":
                    acc.feed(outcome.interval_ms)
            result = self.engine.score_rep(self.accumulators, outcome)
            self._reset_accumulators()
            self.add_rep(result, outcome)
            self.events.emit(REP_SCORED, result)
            return FrameResult(frame_score=frame_score, rep=result)

        return FrameResult(frame_score=frame_score)

    def _reset_accumulators(self) -> None:
        for acc in self.accumulators:
            acc.reset()

    def mark_absent(self) -> None:
        """No person in view: a running hold pauses until the next frame."""
        if self.hold_timer is not None:
            self.hold_timer.pause()

    # ---- buffers ----

    def add_rep(self, result: RepScoreResult, rep_event: RepEvent) -> Dict[str, Any]:
        # A rep with no scorable component falls back to the counter's frame-score mean
        score = result.total if result.total is not None else rep_event.score
        record = {
            "rep_index": result.rep_index,
            "set_no": self.current_set,
            "timestamp_ms": self._rel(rep_event.timestamp_ms),
            "interval_ms": rep_event.interval_ms,
            "duration_ms": rep_event.duration_ms,
            "active_ms": rep_event.active_ms,
            "score": score,
            "feedback": result.feedback.to_dict(),
        }
        self.rep_records.append(record)
        self.rep_results.append(result)
        _track_components(self._rep_tracks, result.components)
        self.current_set_reps += 1
        logger.debug("rep %d scored %s", result.rep_index, score)
        return record

    def add_frame_score(self, frame_score: FrameScore, timestamp_ms: float) -> bool:
        """Append to the timeline at most once per timeline_interval_ms. Returns True when sampled."""
        if frame_score.total is None:
            return False
        t = float(timestamp_ms)
        if self._last_sample_ms is not None and t - self._last_sample_ms < self.timeline_interval_ms:
            return False
        self._last_sample_ms = t

        self.timeline.append(
            {
                "timestamp_ms": self._rel(t),
                "score": frame_score.total,
                "phase": frame_score.phase,
                "breakdown": [{"key": c.key, "score": c.score} for c in frame_score.components],
            }
        )
        _track_components(self._frame_tracks, frame_score.components)
        return True

    def complete_set(self, rest_sec: float = 0, timestamp_ms: Optional[float] = None) -> Dict[str, Any]:
        end = float(timestamp_ms) if timestamp_ms is not None else self.last_ms
        start = self._set_start_ms
        duration_ms = (end - start) if (end is not None and start is not None) else 0.0
        record = {
            "set_no": self.current_set,
            "phase": WORK_PHASE,
            "actual_reps": self.current_set_reps,
            "duration_sec": int(round(max(0.0, duration_ms) / 1000.0)),
            "rest_sec": rest_sec,
        }
        self.set_records.append(record)
        self.current_set += 1
        self.current_set_reps = 0
        self._set_start_ms = end
        return record

    def add_event(self, type: str, payload: Optional[Dict[str, Any]] = None, timestamp_ms: Optional[float] = None) -> None:
        self.event_log.append({"type": type, "payload": dict(payload or {}), "timestamp_ms": self._rel(timestamp_ms)})

    # ---- results ----

    def final_score(self) -> Optional[float]:
        if self.rep_records:
            return _mean([r["score"] for r in self.rep_records if r["score"] is not None])
        return _mean([s["score"] for s in self.timeline])

    def _tracks(self) -> Dict[str, _MetricTrack]:
        # Rep components when reps exist, else the sampled frame timeline (holds, no-rep sessions)
        return self._rep_tracks if self.rep_results else self._frame_tracks

    def per_metric_average(self) -> Dict[str, float]:
        return {tr.key: _mean(tr.scores) for tr in self._tracks().values() if tr.scores}

    def metric_results(self) -> List[Dict[str, Any]]:
        return [
            {
                "key": tr.key,
                "metric_key": tr.metric_key,
                "metric_id": tr.metric_id,
                "score": _mean(tr.scores),
                "raw": _mean(tr.raw),
            }
            for tr in self._tracks().values()
            if tr.scores
        ]

    def _best_rep(self) -> Optional[Dict[str, Any]]:
        scored = [r for r in self.rep_records if r["score"] is not None]
        if not scored:
            return None
        return max(scored, key=lambda r: r["score"])

    def finalize(self) -> SessionSummary:
        final = self.final_score()
        total = self.total_reps
        hold_ms = None
        if self.hold_timer is not None:
            self.hold_timer.stop()
            hold_ms = self.hold_timer.total_ms
        return SessionSummary(
            total_reps=total,
            duration_sec=int(round(self.duration_ms / 1000.0)),
            final_score=final,
            summary_feedback=summary_feedback(final, total),
            avg_rep_score=_mean([r["score"] for r in self.rep_records if r["score"] is not None]),
            best_rep=self._best_rep(),
            metric_results=self.metric_results(),
            per_metric_average=self.per_metric_average(),
            hold_ms=hold_ms,
        )

    def _export_sets(self, duration_sec: int) -> List[Dict[str, Any]]:
        sets = list(self.set_records)
        if not sets:
            return [
                {
                    "set_no": 1,
                    "phase": WORK_PHASE,
                    "actual_reps": self.total_reps,
                    "duration_sec": duration_sec,
                    "rest_sec": 0,
                }
            ]
        if self.current_set_reps > 0:
            # Reps after the last completed set form an open trailing set
            end = self.last_ms if self.last_ms is not None else 0.0
            start = self._set_start_ms if self._set_start_ms is not None else end
            sets.append(
                {
                    "set_no": self.current_set,
                    "phase": WORK_PHASE,
                    "actual_reps": self.current_set_reps,
                    "duration_sec": int(round(max(0.0, end - start) / 1000.0)),
                    "rest_sec": 0,
                }
            )
        return sets

    def export(self) -> Dict[str, Any]:
        summary = self.finalize()
        sets = self._export_sets(summary.duration_sec)
        stats: Dict[str, Any] = {
            "avg_rep_score": summary.avg_rep_score,
            "best_rep": summary.best_rep,
            "total_sets": len(sets),
            "per_metric_average": summary.per_metric_average,
        }
        if summary.hold_ms is not None:
            stats["hold_ms"] = summary.hold_ms
            stats["best_hold_ms"] = self.hold_timer.best_ms
        return {
            "duration_sec": summary.duration_sec,
            "total_reps": summary.total_reps,
            "final_score": summary.final_score,
            "summary_feedback": summary.summary_feedback,
            "detail": {
                "score_timeline": list(self.timeline),
                "rep_records": list(self.rep_records),
                "set_records": sets,
                "events": list(self.event_log),
                "stats": stats,
            },
            "metric_results": summary.metric_results,
        }
