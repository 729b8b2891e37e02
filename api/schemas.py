from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class LandmarkIn(BaseModel):
    x: float
    y: float
    z: float = 0.0
    visibility: float = Field(1.0, ge=0.0, le=1.0)


class SessionCreateRequest(BaseModel):
    exercise_code: str = Field(description="e.g. side_squat, push_up")
    exercise_id: Optional[Any] = None
    scoring_profile_id: Optional[Any] = None
    mode: str = "FREE"
    profile: Optional[Dict[str, Any]] = Field(
        default=None, description="Inline scoring profile; the built-in one is used when omitted"
    )
    smoother_preset: Optional[str] = None


class SessionCreateResponse(BaseModel):
    session_id: str
    exercise_code: str
    metric_keys: List[str]
    recorder_session_id: Optional[str] = None


class FrameIn(BaseModel):
    timestamp_ms: float = Field(ge=0.0)
    landmarks: Optional[List[LandmarkIn]] = Field(
        default=None, description="33 normalized landmarks; null when no person was detected"
    )
    world_landmarks: Optional[List[LandmarkIn]] = None


class FramesRequest(BaseModel):
    frames: List[FrameIn] = Field(min_length=1)


class RepOut(BaseModel):
    rep_index: int
    rep_interval_ms: Optional[float] = None
    total: Optional[float] = None
    feedback: Dict[str, str]
    components: List[Dict[str, Any]]


class FrameOut(BaseModel):
    timestamp_ms: float
    person: bool
    total: Optional[float] = None
    phase: Optional[str] = None
    rep: Optional[RepOut] = None
    rejected: Optional[str] = None


class FramesResponse(BaseModel):
    session_id: str
    total_reps: int
    results: List[FrameOut]


class SetRequest(BaseModel):
    rest_sec: float = Field(0.0, ge=0.0)
    timestamp_ms: Optional[float] = None


class EventRequest(BaseModel):
    type: str = Field(min_length=1)
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp_ms: Optional[float] = None


class SessionStatus(BaseModel):
    session_id: str
    recorder_session_id: Optional[str] = None
    state: str
    exercise_code: str
    total_reps: int
    rejected_reps: int
    rep_in_progress: bool
    hold_ms: Optional[float] = None
    duration_sec: int
    final_score: Optional[float] = None


class SnapshotRequest(BaseModel):
    exercise_code: Optional[str] = None
    profile: Optional[Dict[str, Any]] = None
    metrics: Optional[Dict[str, Optional[float]]] = Field(
        default=None, description="Precomputed metric values; used when landmarks are not given"
    )
    phase: Optional[str] = None
    landmarks: Optional[List[LandmarkIn]] = None
    world_landmarks: Optional[List[LandmarkIn]] = None


class SnapshotResponse(BaseModel):
    exercise_code: str
    total: Optional[float] = None
    phase: str
    side: Optional[str] = None
    values: Dict[str, Optional[float]]
    components: List[Dict[str, Any]]
