from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

import numpy as np

from analysis.metrics import MetricsSnapshot


AGGREGATIONS = ("min", "max", "mean", "p05", "p95", "last")
PERCENTILES = {"p05": 5.0, "p95": 95.0}


class MetricAccumulator:
    """
    Folds one metric over the frames of a rep.

    - Snapshots whose phase is not in `phases` are ignored (phases=None accepts all)
    - None values are ignored
    - p05/p95 keep every sample and use linear interpolation at read time
    """

    def __init__(self, metric_key: str, aggregation: str = "p05", phases: Optional[Iterable[str]] = None) -> None:
        if aggregation not in AGGREGATIONS:
            raise ValueError(f"unknown aggregation {aggregation!r}")
        self.metric_key = metric_key
        self.aggregation = aggregation
        self.phases = frozenset(phases) if phases is not None else None
        self.reset()

    def reset(self) -> None:
        self._min: Optional[float] = None
        self._max: Optional[float] = None
        self._sum = 0.0
        self._count = 0
        self._last: Optional[float] = None
        self._samples: List[float] = []

    @property
    def count(self) -> int:
        return self._count

    def accepts(self, phase: str) -> bool:
        return self.phases is None or phase in self.phases

    def update(self, snapshot: MetricsSnapshot) -> None:
        if not self.accepts(snapshot.phase):
            return
        self.feed(snapshot.get(self.metric_key))

    def feed(self, value: Optional[float]) -> None:
        """Fold a value directly, bypassing phase gating (for injected metrics)."""
        if value is None:
            return
        v = float(value)
        if not np.isfinite(v):
            return
        self._min = v if self._min is None else min(self._min, v)
        self._max = v if self._max is None else max(self._max, v)
        self._sum += v
        self._count += 1
        self._last = v
        if self.aggregation in PERCENTILES:
            self._samples.append(v)

    def value(self) -> Optional[float]:
        if self._count == 0:
            return None
        if self.aggregation == "min":
            return self._min
        if self.aggregation == "max":
            return self._max
        if self.aggregation == "mean":
            return self._sum / self._count
        if self.aggregation in PERCENTILES:
            return percentile(self._samples, PERCENTILES[self.aggregation])
        return self._last


def percentile(samples: Sequence[float], q: float) -> Optional[float]:
    """Linear-interpolated percentile (q in 0..100); None for no samples."""
    if not samples:
        return None
    return float(np.percentile(np.asarray(samples, dtype=float), q))
