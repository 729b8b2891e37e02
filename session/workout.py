from __future__ import annotations

import logging
import threading
from queue import Empty, Queue
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

from analysis.rep_counter import EventEmitter
from analysis.tracking import PoseTracker
from pose.backend import PoseFrame
from pose.smoothing import SMOOTHER_PRESETS, SmootherConfig
from scoring.engine import RepScoreResult
from scoring.profile import ScoringProfile
from .aggregator import DEFAULT_TIMELINE_INTERVAL_MS, REP_SCORED, FrameResult, SessionAggregator
from .recorder import DEFAULT_MODE, RecorderError, SessionHandle, SessionRecorder


logger = logging.getLogger(__name__)

PERSIST_FAILED = "persist_failed"

CREATED = "created"
ACTIVE = "active"
ENDED = "ended"
ABORTED = "aborted"

_PERSIST_ERRORS = (RecorderError, httpx.HTTPError)

_Task = Tuple[str, Callable[..., Any], tuple]


class _Dispatcher:
    """Single daemon worker that runs recorder calls in submission order."""

    def __init__(self, run: Callable[[_Task], None]) -> None:
        self._run = run
        self._queue: "Queue[Optional[_Task]]" = Queue()
        self._thread = threading.Thread(target=self._loop, name="recorder-dispatch", daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        while True:
            task = self._queue.get()
            try:
                if task is None:
                    return
                self._run(task)
            finally:
                self._queue.task_done()

    def submit(self, task: _Task) -> None:
        self._queue.put(task)

    def flush(self) -> None:
        self._queue.join()

    def discard(self) -> int:
        """Drop queued tasks that have not started yet."""
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except Empty:
                return dropped
            self._queue.task_done()
            dropped += 1

    def stop(self) -> None:
        self._queue.put(None)
        self._thread.join(timeout=5.0)


class WorkoutSession:
    """
    One live workout: tracker -> aggregator -> recorder.

    - Frames are processed synchronously; persistence is best-effort
    - A failed recorder call is logged and added to the session events as
      "persist_failed"; scoring carries on from local state
    - With async_dispatch=True recorder calls run on a background thread
    """

    def __init__(
        self,
        profile: ScoringProfile,
        *,
        recorder: Optional[SessionRecorder] = None,
        exercise_id: Optional[Any] = None,
        scoring_profile_id: Optional[Any] = None,
        mode: str = DEFAULT_MODE,
        smoother_config: SmootherConfig = SMOOTHER_PRESETS["SMOOTH"],
        smooth_metrics: bool = True,
        timeline_interval_ms: float = DEFAULT_TIMELINE_INTERVAL_MS,
        async_dispatch: bool = False,
    ) -> None:
        self.profile = profile
        self.pattern = profile.pattern()
        self.exercise_id = exercise_id if exercise_id is not None else profile.exercise_code
        self.scoring_profile_id = (
            scoring_profile_id if scoring_profile_id is not None else profile.scoring_profile_id
        )
        self.mode = mode

        self.events = EventEmitter()
        self.tracker = PoseTracker(
            self.pattern, profile.metric_keys, smoother_config=smoother_config, smooth_metrics=smooth_metrics
        )
        self.aggregator = SessionAggregator(
            profile, self.pattern, timeline_interval_ms=timeline_interval_ms, emitter=self.events
        )
        self.events.on(REP_SCORED, self._on_rep_scored)

        self.recorder = recorder
        self.handle: Optional[SessionHandle] = None
        self.state = CREATED
        self._failures: "Queue[Dict[str, Any]]" = Queue()
        self._dispatcher = _Dispatcher(self._run_task) if (async_dispatch and recorder is not None) else None

    # ---- lifecycle ----

    def start(self) -> Optional[SessionHandle]:
        if self.state == ACTIVE:
            return self.handle
        if self.state in (ENDED, ABORTED):
            raise RuntimeError(f"session is {self.state} and cannot be restarted")
        self.tracker.reset()
        self.aggregator.reset()
        self.state = ACTIVE
        if self.recorder is not None:
            try:
                self.handle = self.recorder.start_session(self.exercise_id, self.scoring_profile_id, self.mode)
            except _PERSIST_ERRORS as exc:
                logger.warning("could not open a recorder session, continuing offline: %s", exc)
                self.aggregator.add_event(PERSIST_FAILED, {"call": "start_session", "error": str(exc)})
        return self.handle

    def process_frame(self, frame: Optional[PoseFrame], timestamp_ms: float) -> Optional[FrameResult]:
        """frame=None means no person in view: smoothing restarts, nothing is scored."""
        if self.state in (ENDED, ABORTED):
            raise RuntimeError(f"session is {self.state}")
        if self.state == CREATED:
            self.start()
        self._drain_failures()
        snapshot = self.tracker.process(frame, timestamp_ms)
        if snapshot is None:
            self.aggregator.mark_absent()
            return None
        return self.aggregator.process(snapshot, timestamp_ms)

    def complete_set(self, rest_sec: float = 0, timestamp_ms: Optional[float] = None) -> Dict[str, Any]:
        if self.state in (ENDED, ABORTED):
            raise RuntimeError(f"session is {self.state}")
        record = self.aggregator.complete_set(rest_sec, timestamp_ms)
        self._persist("record_set", self._recorder_call("record_set"), record)
        return record

    def add_event(self, type: str, payload: Optional[Dict[str, Any]] = None, timestamp_ms: Optional[float] = None) -> None:
        self.aggregator.add_event(type, payload, timestamp_ms)

    def end(self) -> Dict[str, Any]:
        if self.state == ENDED:
            raise RuntimeError("session already ended")
        if self.state == ABORTED:
            raise RuntimeError("session was aborted")
        if self._dispatcher is not None:
            self._dispatcher.flush()
        self._drain_failures()

        summary = self.aggregator.export()
        self._persist("end_session", self._recorder_call("end_session"), summary)
        if self._dispatcher is not None:
            self._dispatcher.flush()
            self._dispatcher.stop()
        self._drain_failures()
        self.state = ENDED
        return summary

    def abort(self) -> None:
        """Hard stop: in-progress rep and buffers are discarded, queued recorder calls are dropped."""
        if self._dispatcher is not None:
            dropped = self._dispatcher.discard()
            if dropped:
                logger.info("abort dropped %d queued recorder call(s)", dropped)
            self._dispatcher.stop()
        self.aggregator.reset()
        self.tracker.reset()
        self.state = ABORTED

    def snapshot(self) -> Dict[str, Any]:
        agg = self.aggregator
        counter = agg.counter
        return {
            "state": self.state,
            "exercise_code": self.profile.exercise_code,
            "recorder_session_id": self.handle.session_id if self.handle is not None else None,
            "total_reps": agg.total_reps,
            "rejected_reps": counter.rejected if counter is not None else 0,
            "rep_in_progress": counter.in_progress if counter is not None else False,
            "hold_ms": agg.hold_timer.total_ms if agg.hold_timer is not None else None,
            "duration_sec": int(round(agg.duration_ms / 1000.0)),
            "final_score": agg.final_score(),
        }

    # ---- persistence ----

    def _recorder_call(self, name: str) -> Optional[Callable[..., Any]]:
        if self.recorder is None or self.handle is None:
            return None
        return getattr(self.recorder, name)

    def _on_rep_scored(self, result: RepScoreResult) -> None:
        payload = {
            "rep_index": result.rep_index,
            "rep_interval_ms": result.rep_interval_ms,
            "score": result.to_dict(),
        }
        self._persist("record_rep_event", self._recorder_call("record_rep_event"), payload)

    def _persist(self, name: str, fn: Optional[Callable[..., Any]], payload: Dict[str, Any]) -> None:
        if fn is None:
            return
        task: _Task = (name, fn, (self.handle, payload))
        if self._dispatcher is not None:
            self._dispatcher.submit(task)
        else:
            self._run_task(task)

    def _run_task(self, task: _Task) -> None:
        name, fn, args = task
        try:
            fn(*args)
        except _PERSIST_ERRORS as exc:
            logger.warning("recorder %s failed: %s", name, exc)
            self._failures.put({"call": name, "error": str(exc)})

    def _drain_failures(self) -> None:
        while True:
            try:
                failure = self._failures.get_nowait()
            except Empty:
                return
            self.aggregator.add_event(PERSIST_FAILED, failure)
