from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Union

import numpy as np

from .phases import RepState, classify_state
from .utils import ExercisePattern


logger = logging.getLogger(__name__)

REP_COMPLETE = "rep_complete"
REP_REJECTED = "rep_rejected"
HOLD_BROKEN = "hold_broken"

REASON_NO_ACTIVE = "no_active"
REASON_TOO_SHORT = "too_short"
REASON_INSUFFICIENT_ACTIVE = "insufficient_active_time"

# Trimming only kicks in with at least this many samples
TRIM_MIN_SAMPLES = 10
TRIM_FRACTION = 0.1

# Frames further apart than this are a tracking gap, not hold time
MAX_HOLD_GAP_MS = 1000.0


@dataclass(frozen=True)
class RepEvent:
    rep_index: int
    timestamp_ms: float
    interval_ms: Optional[float]
    duration_ms: float
    active_ms: float
    score: Optional[float]


@dataclass(frozen=True)
class RepRejected:
    reason: str
    timestamp_ms: float
    duration_ms: float
    active_ms: float


@dataclass(frozen=True)
class HoldEvent:
    started_ms: float
    ended_ms: float
    # Time actually held; tracking gaps inside the hold are not counted
    held_ms: float = 0.0

    @property
    def duration_ms(self) -> float:
        return self.held_ms


Listener = Callable[[object], None]


class EventEmitter:
    """Named observer lists. Listeners are called synchronously in registration order."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {}

    def on(self, name: str, fn: Listener) -> Callable[[], None]:
        self._listeners.setdefault(name, []).append(fn)

        def unsubscribe() -> None:
            self.off(name, fn)

        return unsubscribe

    def off(self, name: str, fn: Listener) -> None:
        listeners = self._listeners.get(name, [])
        if fn in listeners:
            listeners.remove(fn)

    def emit(self, name: str, payload: object) -> None:
        for fn in list(self._listeners.get(name, ())):
            fn(payload)


def trimmed_mean(samples: Sequence[float]) -> Optional[float]:
    """
    Mean of samples after dropping floor(10%) from each end of the sorted values.

    Fewer than 10 samples are averaged untrimmed. Empty input gives None.
    """
    if not samples:
        return None
    arr = np.sort(np.asarray(samples, dtype=float))
    if arr.size >= TRIM_MIN_SAMPLES:
        k = int(arr.size * TRIM_FRACTION)
        if k > 0:
            arr = arr[k:-k]
    return float(arr.mean())


@dataclass
class _RepProgress:
    started_ms: float
    had_active: bool = False
    active_entered_ms: Optional[float] = None
    active_ms: float = 0.0
    active_scores: List[float] = field(default_factory=list)
    all_scores: List[float] = field(default_factory=list)


class RepCounter:
    """
    Repetition state machine over the primary metric of one exercise pattern.

    - NEUTRAL -> TRANSITION/ACTIVE starts a rep and begins buffering frame scores
    - Time spent in ACTIVE is added to the dwell when ACTIVE is left
    - Back to NEUTRAL completes the rep when it reached ACTIVE, lasted at least
      min_duration_ms and dwelt at least min_active_ms in ACTIVE; otherwise the
      rep is rejected and its buffers are discarded
    - UNKNOWN (missing value) frames leave the state untouched

    update() returns the RepEvent / RepRejected produced by the frame (or None)
    and also emits it on the counter's EventEmitter.
    """

    def __init__(self, pattern: ExercisePattern, emitter: Optional[EventEmitter] = None) -> None:
        if pattern.is_time_based:
            raise ValueError(f"{pattern.code} is time-based; use HoldTimer")
        self.pattern = pattern
        self.events = emitter if emitter is not None else EventEmitter()
        self.reset()

    def reset(self) -> None:
        self.state = RepState.NEUTRAL
        self.count = 0
        self.rejected = 0
        self.last_rep_ms: Optional[float] = None
        self.records: List[RepEvent] = []
        self._progress: Optional[_RepProgress] = None

    @property
    def in_progress(self) -> bool:
        return self._progress is not None

    def on(self, name: str, fn: Listener) -> Callable[[], None]:
        return self.events.on(name, fn)

    def update(
        self,
        value: Optional[float],
        timestamp_ms: float,
        frame_score: Optional[float] = None,
    ) -> Optional[Union[RepEvent, RepRejected]]:
        new_state = classify_state(value, self.pattern)
        if new_state is RepState.UNKNOWN:
            return None

        t = float(timestamp_ms)
        prev = self.state
        self.state = new_state

        if prev is RepState.NEUTRAL and new_state is not RepState.NEUTRAL:
            self._progress = _RepProgress(started_ms=t)

        progress = self._progress
        if progress is None:
            return None

        if new_state is RepState.ACTIVE and prev is not RepState.ACTIVE:
            progress.had_active = True
            progress.active_entered_ms = t
        elif prev is RepState.ACTIVE and new_state is not RepState.ACTIVE:
            self._close_active(progress, t)

        if new_state is not RepState.NEUTRAL:
            if frame_score is not None:
                progress.all_scores.append(float(frame_score))
                if new_state is RepState.ACTIVE:
                    progress.active_scores.append(float(frame_score))
            return None

        return self._finish(progress, t)

    @staticmethod
    def _close_active(progress: _RepProgress, t: float) -> None:
        if progress.active_entered_ms is not None:
            progress.active_ms += max(0.0, t - progress.active_entered_ms)
            progress.active_entered_ms = None

    def _finish(self, progress: _RepProgress, t: float) -> Union[RepEvent, RepRejected]:
        self._progress = None
        duration = t - progress.started_ms

        reason: Optional[str] = None
        if not progress.had_active:
            reason = REASON_NO_ACTIVE
        elif duration < self.pattern.min_duration_ms:
            reason = REASON_TOO_SHORT
        elif progress.active_ms < self.pattern.min_active_ms:
            reason = REASON_INSUFFICIENT_ACTIVE

        if reason is not None:
            self.rejected += 1
            rejected = RepRejected(
                reason=reason, timestamp_ms=t, duration_ms=duration, active_ms=progress.active_ms
            )
            logger.debug("%s rep rejected: %s (%.0f ms)", self.pattern.code, reason, duration)
            self.events.emit(REP_REJECTED, rejected)
            return rejected

        # ACTIVE-only samples when there are any, else everything buffered since rep start
        samples = progress.active_scores or progress.all_scores
        self.count += 1
        event = RepEvent(
            rep_index=self.count,
            timestamp_ms=t,
            interval_ms=(t - self.last_rep_ms) if self.last_rep_ms is not None else None,
            duration_ms=duration,
            active_ms=progress.active_ms,
            score=trimmed_mean(samples),
        )
        self.last_rep_ms = t
        self.records.append(event)
        self.events.emit(REP_COMPLETE, event)
        return event


class HoldTimer:
    """
    Time accumulator for hold exercises (plank).

    The hold runs while the primary value stays at or below pattern.hold_max.
    Missing values pause the timer without breaking the hold, and so does a
    gap of more than max_gap_ms between frames. Only time between consecutive
    present frames is counted.
    """

    def __init__(
        self,
        pattern: ExercisePattern,
        emitter: Optional[EventEmitter] = None,
        *,
        max_gap_ms: float = MAX_HOLD_GAP_MS,
    ) -> None:
        if not pattern.is_time_based or pattern.hold_max is None:
            raise ValueError(f"{pattern.code} is not a time-based pattern")
        if max_gap_ms <= 0:
            raise ValueError("max_gap_ms must be > 0")
        self.pattern = pattern
        self.max_gap_ms = float(max_gap_ms)
        self.events = emitter if emitter is not None else EventEmitter()
        self.reset()

    def reset(self) -> None:
        self.total_ms = 0.0
        self.best_ms = 0.0
        self.holds: List[HoldEvent] = []
        self._started_ms: Optional[float] = None
        self._end_ms: Optional[float] = None
        self._last_ms: Optional[float] = None
        self._current_ms = 0.0

    @property
    def holding(self) -> bool:
        return self._started_ms is not None

    @property
    def current_ms(self) -> float:
        return self._current_ms if self._started_ms is not None else 0.0

    def pause(self) -> None:
        """Forget the last frame time so the next frame adds nothing."""
        self._last_ms = None

    def update(self, value: Optional[float], timestamp_ms: float) -> Optional[HoldEvent]:
        t = float(timestamp_ms)
        if value is None:
            self.pause()
            return None

        if value <= float(self.pattern.hold_max):
            if self._started_ms is None:
                self._started_ms = t
                self._current_ms = 0.0
            elif self._last_ms is not None and 0.0 < t - self._last_ms <= self.max_gap_ms:
                self.total_ms += t - self._last_ms
                self._current_ms += t - self._last_ms
            self._last_ms = t
            self._end_ms = t
            self.best_ms = max(self.best_ms, self._current_ms)
            return None

        return self.stop()

    def stop(self) -> Optional[HoldEvent]:
        """End the running hold at its last in-range frame."""
        if self._started_ms is None:
            return None
        end = self._end_ms if self._end_ms is not None else self._started_ms
        event = HoldEvent(started_ms=self._started_ms, ended_ms=end, held_ms=self._current_ms)
        self._started_ms = None
        self._end_ms = None
        self._last_ms = None
        self._current_ms = 0.0
        self.holds.append(event)
        self.events.emit(HOLD_BROKEN, event)
        return event
