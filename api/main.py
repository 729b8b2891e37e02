from __future__ import annotations

import logging
import os
import uuid
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from analysis.metrics import MetricExtractor, MetricsSnapshot
from analysis.phases import classify_phase
from api.schemas import (
    EventRequest,
    FrameIn,
    FrameOut,
    FramesRequest,
    FramesResponse,
    LandmarkIn,
    RepOut,
    SessionCreateRequest,
    SessionCreateResponse,
    SessionStatus,
    SetRequest,
    SnapshotRequest,
    SnapshotResponse,
)
from pose.backend import PoseFrame
from pose.smoothing import SMOOTHER_PRESETS, SmootherConfig
from scoring.engine import ScoringEngine
from scoring.profile import ProfileError, ScoringProfile, get_builtin_profile, load_profile
from session.recorder import HttpRecorder, InMemoryRecorder, SessionRecorder
from session.workout import WorkoutSession


def _get_env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, str(default))).strip())
    except ValueError:
        return default


def _get_env_float(name: str, default: float) -> float:
    try:
        return float(str(os.getenv(name, str(default))).strip())
    except ValueError:
        return default


def _get_env_str(name: str, default: str) -> str:
    return str(os.getenv(name, default)).strip()


FORMSCORE_LOG_LEVEL = _get_env_str("FORMSCORE_LOG_LEVEL", "INFO").upper()
FORMSCORE_SMOOTHER_PRESET = _get_env_str("FORMSCORE_SMOOTHER_PRESET", "SMOOTH").upper()
FORMSCORE_TIMELINE_INTERVAL_MS = _get_env_int("FORMSCORE_TIMELINE_INTERVAL_MS", 1000)
FORMSCORE_RECORDER_URL = _get_env_str("FORMSCORE_RECORDER_URL", "")
FORMSCORE_RECORDER_TIMEOUT = _get_env_float("FORMSCORE_RECORDER_TIMEOUT", 5.0)

logging.basicConfig(
    level=getattr(logging, FORMSCORE_LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(title="formscore API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _make_recorder() -> SessionRecorder:
    if FORMSCORE_RECORDER_URL:
        logger.info("persisting sessions to %s", FORMSCORE_RECORDER_URL)
        return HttpRecorder(FORMSCORE_RECORDER_URL, timeout=FORMSCORE_RECORDER_TIMEOUT)
    return InMemoryRecorder()


RECORDER: SessionRecorder = _make_recorder()
SESSIONS: Dict[str, WorkoutSession] = {}


def _smoother(preset: Optional[str]) -> SmootherConfig:
    name = (preset or FORMSCORE_SMOOTHER_PRESET).upper()
    config = SMOOTHER_PRESETS.get(name)
    if config is None:
        raise HTTPException(status_code=422, detail=f"Unknown smoother preset {name!r}")
    return config


def _resolve_profile(exercise_code: Optional[str], profile: Optional[Dict[str, Any]]) -> ScoringProfile:
    try:
        if profile is not None:
            data = dict(profile)
            if exercise_code and not data.get("exercise_code"):
                data["exercise_code"] = exercise_code
            return load_profile(data)
        if not exercise_code:
            raise ProfileError("exercise_code or profile is required")
        return get_builtin_profile(exercise_code)
    except ProfileError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def _get_session(session_id: str) -> WorkoutSession:
    session = SESSIONS.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Unknown session_id")
    return session


def _to_frame(landmarks: Optional[List[LandmarkIn]], world: Optional[List[LandmarkIn]]) -> Optional[PoseFrame]:
    if not landmarks:
        return None
    return PoseFrame.from_dicts(
        [lm.model_dump() for lm in landmarks],
        [lm.model_dump() for lm in world] if world else None,
    )


def _frame_out(frame: FrameIn, session: WorkoutSession) -> FrameOut:
    result = session.process_frame(_to_frame(frame.landmarks, frame.world_landmarks), frame.timestamp_ms)
    if result is None:
        return FrameOut(timestamp_ms=frame.timestamp_ms, person=False)
    rep = None
    if result.rep is not None:
        data = result.rep.to_dict()
        rep = RepOut(**data)
    return FrameOut(
        timestamp_ms=frame.timestamp_ms,
        person=True,
        total=result.frame_score.total,
        phase=result.frame_score.phase,
        rep=rep,
        rejected=result.rejected.reason if result.rejected is not None else None,
    )


@app.get("/health", response_class=PlainTextResponse)
async def health() -> str:
    return "ok"


# Handlers that reach the recorder are plain def so FastAPI runs them in its threadpool
@app.post("/sessions", response_model=SessionCreateResponse, status_code=201)
def create_session(req: SessionCreateRequest):
    profile = _resolve_profile(req.exercise_code, req.profile)
    try:
        session = WorkoutSession(
            profile,
            recorder=RECORDER,
            exercise_id=req.exercise_id,
            scoring_profile_id=req.scoring_profile_id,
            mode=req.mode,
            smoother_config=_smoother(req.smoother_preset),
            timeline_interval_ms=FORMSCORE_TIMELINE_INTERVAL_MS,
            async_dispatch=isinstance(RECORDER, HttpRecorder),
        )
    except ProfileError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    handle = session.start()

    sid = uuid.uuid4().hex
    SESSIONS[sid] = session
    logger.info("session %s started (%s)", sid, profile.exercise_code)
    return SessionCreateResponse(
        session_id=sid,
        exercise_code=profile.exercise_code,
        metric_keys=list(session.tracker.metric_keys),
        recorder_session_id=handle.session_id if handle is not None else None,
    )


@app.post("/sessions/{session_id}/frames", response_model=FramesResponse)
async def post_frames(session_id: str, req: FramesRequest):
    session = _get_session(session_id)
    if session.state not in ("created", "active"):
        raise HTTPException(status_code=409, detail=f"Session is {session.state}")
    results = [_frame_out(frame, session) for frame in req.frames]
    return FramesResponse(session_id=session_id, total_reps=session.aggregator.total_reps, results=results)


@app.post("/sessions/{session_id}/sets")
async def post_set(session_id: str, req: SetRequest):
    session = _get_session(session_id)
    if session.state in ("ended", "aborted"):
        raise HTTPException(status_code=409, detail=f"Session is {session.state}")
    return session.complete_set(req.rest_sec, req.timestamp_ms)


@app.post("/sessions/{session_id}/events", status_code=204)
async def post_event(session_id: str, req: EventRequest):
    session = _get_session(session_id)
    session.add_event(req.type, req.payload, req.timestamp_ms)


@app.post("/sessions/{session_id}/end")
def end_session(session_id: str):
    session = _get_session(session_id)
    if session.state != "active":
        raise HTTPException(status_code=409, detail=f"Session is {session.state}")
    summary = session.end()
    logger.info("session %s ended: %s reps, score %s", session_id, summary["total_reps"], summary["final_score"])
    return summary


@app.delete("/sessions/{session_id}", status_code=204)
def delete_session(session_id: str):
    session = SESSIONS.pop(session_id, None)
    if session is None:
        raise HTTPException(status_code=404, detail="Unknown session_id")
    if session.state != "ended":
        session.abort()


@app.get("/sessions/{session_id}", response_model=SessionStatus)
async def get_session(session_id: str):
    session = _get_session(session_id)
    return SessionStatus(session_id=session_id, **session.snapshot())


@app.post("/score/snapshot", response_model=SnapshotResponse)
async def score_snapshot(req: SnapshotRequest):
    profile = _resolve_profile(req.exercise_code, req.profile)
    try:
        pattern = profile.pattern()
    except ProfileError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    frame = _to_frame(req.landmarks, req.world_landmarks)
    if frame is not None:
        snapshot = MetricExtractor(profile.metric_keys, pattern).snapshot(frame)
    elif req.metrics is not None:
        values = dict(req.metrics)
        phase = req.phase or classify_phase(values.get(pattern.primary_metric), pattern)
        snapshot = MetricsSnapshot(values=values, phase=phase, side=None)
    else:
        raise HTTPException(status_code=422, detail="landmarks or metrics are required")

    score = ScoringEngine(profile).score_frame(snapshot)
    return SnapshotResponse(
        exercise_code=profile.exercise_code,
        total=score.total,
        phase=score.phase,
        side=snapshot.side,
        values=dict(snapshot.values),
        components=[c.to_dict() for c in score.components],
    )
