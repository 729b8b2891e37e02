from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .backend import Landmark


def smoothing_factor(delta_time: float, cutoff: float) -> float:
    r = 2.0 * math.pi * cutoff * delta_time
    return r / (r + 1.0)


def exponential_smoothing(alpha: float, x: float, x_prev: float) -> float:
    return alpha * x + (1.0 - alpha) * x_prev


class OneEuroFilter:
    """
    One-euro adaptive low-pass filter for a single scalar signal.

    - The cutoff frequency rises with the (smoothed) speed of the signal:
      jitter is suppressed at rest, lag is reduced during fast motion
    - The first sample initializes the state and is returned unchanged
    - Non-increasing timestamps return the previous output unchanged

    Timestamps are in seconds.
    """

    def __init__(self, min_cutoff: float = 1.0, beta: float = 0.0, d_cutoff: float = 1.0) -> None:
        if min_cutoff < 0.0:
            raise ValueError("min_cutoff must be >= 0")
        if beta < 0.0:
            raise ValueError("beta must be >= 0")
        if d_cutoff <= 0.0:
            raise ValueError("d_cutoff must be > 0")
        self.min_cutoff = float(min_cutoff)
        self.beta = float(beta)
        self.d_cutoff = float(d_cutoff)

        self._t_prev: Optional[float] = None
        self._x_prev: float = 0.0
        self._dx_prev: float = 0.0

    @property
    def initialized(self) -> bool:
        return self._t_prev is not None

    @property
    def value(self) -> Optional[float]:
        return self._x_prev if self._t_prev is not None else None

    def reset(self) -> None:
        self._t_prev = None
        self._x_prev = 0.0
        self._dx_prev = 0.0

    def filter(self, t: float, x: float) -> float:
        t = float(t)
        x = float(x)
        if self._t_prev is None:
            self._t_prev = t
            self._x_prev = x
            self._dx_prev = 0.0
            return x

        delta_time = t - self._t_prev
        if delta_time <= 0.0:
            return self._x_prev

        dx = (x - self._x_prev) / delta_time
        dx_hat = exponential_smoothing(smoothing_factor(delta_time, self.d_cutoff), dx, self._dx_prev)

        cutoff = self.min_cutoff + self.beta * abs(dx_hat)
        x_hat = exponential_smoothing(smoothing_factor(delta_time, cutoff), x, self._x_prev)

        self._t_prev = t
        self._x_prev = x_hat
        self._dx_prev = dx_hat
        return x_hat


@dataclass(frozen=True)
class SmootherConfig:
    min_cutoff: float = 1.0
    beta: float = 0.5
    d_cutoff: float = 1.0


SMOOTHER_PRESETS: Dict[str, SmootherConfig] = {
    # Slow movements and static posture analysis
    "ULTRA_SMOOTH": SmootherConfig(min_cutoff=0.5, beta=0.1),
    # General exercise tracking
    "SMOOTH": SmootherConfig(min_cutoff=1.0, beta=0.5),
    # Fast movements
    "RESPONSIVE": SmootherConfig(min_cutoff=1.5, beta=1.0),
    # Close to raw
    "MINIMAL": SmootherConfig(min_cutoff=3.0, beta=2.0),
}


class _AxisFilters:
    __slots__ = ("x", "y", "z")

    def __init__(self, config: SmootherConfig) -> None:
        self.x = OneEuroFilter(config.min_cutoff, config.beta, config.d_cutoff)
        self.y = OneEuroFilter(config.min_cutoff, config.beta, config.d_cutoff)
        self.z = OneEuroFilter(config.min_cutoff, config.beta, config.d_cutoff)


class LandmarkSmoother:
    """
    Per-landmark, per-axis one-euro smoothing of a full pose.

    - x, y and z are filtered independently; visibility is passed through
    - Landmarks with non-finite coordinates are passed through and do not touch the filter state
    - Timestamps are in milliseconds (converted to seconds for the filters)
    """

    def __init__(self, config: SmootherConfig = SMOOTHER_PRESETS["SMOOTH"], num_landmarks: int = 33) -> None:
        if num_landmarks <= 0:
            raise ValueError("num_landmarks must be positive")
        self.config = config
        self.num_landmarks = int(num_landmarks)
        self._filters: List[_AxisFilters] = [_AxisFilters(config) for _ in range(self.num_landmarks)]

    def reset(self) -> None:
        for f in self._filters:
            f.x.reset()
            f.y.reset()
            f.z.reset()

    def update(self, timestamp_ms: float, landmarks: Sequence[Landmark]) -> List[Landmark]:
        if len(landmarks) != self.num_landmarks:
            raise ValueError("landmarks length does not match num_landmarks")

        t = float(timestamp_ms) / 1000.0
        out: List[Landmark] = []
        for lm, f in zip(landmarks, self._filters):
            if not (math.isfinite(lm.x) and math.isfinite(lm.y) and math.isfinite(lm.z)):
                out.append(lm)
                continue
            out.append(
                Landmark(
                    x=f.x.filter(t, lm.x),
                    y=f.y.filter(t, lm.y),
                    z=f.z.filter(t, lm.z),
                    visibility=lm.visibility,
                )
            )
        return out
