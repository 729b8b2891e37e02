from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

from pose.backend import PoseFrame
from pose.smoothing import SMOOTHER_PRESETS, LandmarkSmoother, OneEuroFilter, SmootherConfig
from .metrics import MetricExtractor, MetricsSnapshot
from .phases import classify_phase
from .utils import ExercisePattern


logger = logging.getLogger(__name__)

# Metric-level filter: angles are already stable after landmark smoothing
METRIC_MIN_CUTOFF = 1.0
METRIC_BETA = 0.007


class MetricSmoother:
    """One-euro filter per metric key. Missing values pass through as None."""

    def __init__(self, min_cutoff: float = METRIC_MIN_CUTOFF, beta: float = METRIC_BETA) -> None:
        self.min_cutoff = min_cutoff
        self.beta = beta
        self._filters: Dict[str, OneEuroFilter] = {}

    def reset(self) -> None:
        self._filters.clear()

    def update(self, timestamp_ms: float, values: Dict[str, Optional[float]]) -> Dict[str, Optional[float]]:
        t = float(timestamp_ms) / 1000.0
        out: Dict[str, Optional[float]] = {}
        for key, value in values.items():
            if value is None:
                out[key] = None
                continue
            f = self._filters.get(key)
            if f is None:
                f = self._filters[key] = OneEuroFilter(self.min_cutoff, self.beta)
            out[key] = f.filter(t, value)
        return out


class PoseTracker:
    """
    Per-session capture context: landmark smoothing, metric extraction and
    metric smoothing for one exercise.

    - process(None, t) means "no person": all filters are reset and None is returned
    - A change of the primary (more visible) side resets the metric filters so a
      left-side history never bleeds into right-side readings
    - The phase is recomputed from the smoothed primary metric
    """

    def __init__(
        self,
        pattern: ExercisePattern,
        metric_keys: Iterable[str] = (),
        *,
        smoother_config: SmootherConfig = SMOOTHER_PRESETS["SMOOTH"],
        smooth_metrics: bool = True,
    ) -> None:
        self.pattern = pattern
        self.extractor = MetricExtractor(metric_keys, pattern)
        self.landmark_smoother = LandmarkSmoother(smoother_config)
        self.world_smoother = LandmarkSmoother(smoother_config)
        self.metric_smoother: Optional[MetricSmoother] = MetricSmoother() if smooth_metrics else None
        self._side: Optional[str] = None

    @property
    def metric_keys(self):
        return self.extractor.metric_keys

    def reset(self) -> None:
        self.landmark_smoother.reset()
        self.world_smoother.reset()
        if self.metric_smoother is not None:
            self.metric_smoother.reset()
        self._side = None

    def process(self, frame: Optional[PoseFrame], timestamp_ms: float) -> Optional[MetricsSnapshot]:
        if frame is None:
            if self._side is not None:
                logger.debug("tracking lost at %.0f ms", timestamp_ms)
            self.reset()
            return None

        landmarks = self.landmark_smoother.update(timestamp_ms, frame.landmarks)
        world = None
        if frame.world_landmarks is not None:
            world = self.world_smoother.update(timestamp_ms, frame.world_landmarks)
        snapshot = self.extractor.snapshot(PoseFrame(landmarks=landmarks, world_landmarks=world))

        if self._side is not None and snapshot.side != self._side:
            logger.debug("primary side switched %s -> %s", self._side, snapshot.side)
            if self.metric_smoother is not None:
                self.metric_smoother.reset()
        self._side = snapshot.side

        if self.metric_smoother is None:
            return snapshot
        values = self.metric_smoother.update(timestamp_ms, dict(snapshot.values))
        phase = classify_phase(values.get(self.pattern.primary_metric), self.pattern)
        return snapshot.with_values(values, phase)
