from __future__ import annotations

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import httpx


logger = logging.getLogger(__name__)

DEFAULT_MODE = "FREE"


class RecorderError(RuntimeError):
    """A persistence call failed; the caller decides whether to keep going."""


@dataclass(frozen=True)
class SessionHandle:
    session_id: str
    exercise_id: Optional[Any] = None
    scoring_profile_id: Optional[Any] = None
    mode: str = DEFAULT_MODE


class SessionRecorder(ABC):
    """Boundary to the record store that persists sessions, reps and sets."""

    @abstractmethod
    def start_session(
        self, exercise_id: Any, scoring_profile_id: Optional[Any] = None, mode: str = DEFAULT_MODE
    ) -> SessionHandle:
        ...

    @abstractmethod
    def end_session(self, handle: SessionHandle, summary: Mapping[str, Any]) -> None:
        ...

    @abstractmethod
    def record_rep_event(self, handle: SessionHandle, rep: Mapping[str, Any]) -> None:
        """rep is {rep_index, rep_interval_ms, score}."""

    def record_set(self, handle: SessionHandle, set_record: Mapping[str, Any]) -> None:
        """Optional; recorders without set storage ignore it."""

    def close(self) -> None:
        pass


class InMemoryRecorder(SessionRecorder):
    """Thread-safe record store kept in process memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.sessions: Dict[str, Dict[str, Any]] = {}

    def start_session(
        self, exercise_id: Any, scoring_profile_id: Optional[Any] = None, mode: str = DEFAULT_MODE
    ) -> SessionHandle:
        handle = SessionHandle(uuid.uuid4().hex, exercise_id, scoring_profile_id, mode)
        with self._lock:
            self.sessions[handle.session_id] = {
                "exercise_id": exercise_id,
                "scoring_profile_id": scoring_profile_id,
                "mode": mode,
                "reps": [],
                "sets": [],
                "summary": None,
                "ended": False,
            }
        return handle

    def _get(self, handle: SessionHandle) -> Dict[str, Any]:
        record = self.sessions.get(handle.session_id)
        if record is None:
            raise RecorderError(f"unknown session {handle.session_id}")
        return record

    def end_session(self, handle: SessionHandle, summary: Mapping[str, Any]) -> None:
        with self._lock:
            record = self._get(handle)
            record["summary"] = dict(summary)
            record["ended"] = True

    def record_rep_event(self, handle: SessionHandle, rep: Mapping[str, Any]) -> None:
        with self._lock:
            record = self._get(handle)
            if record["ended"]:
                raise RecorderError(f"session {handle.session_id} already ended")
            record["reps"].append(dict(rep))

    def record_set(self, handle: SessionHandle, set_record: Mapping[str, Any]) -> None:
        with self._lock:
            self._get(handle)["sets"].append(dict(set_record))

    def reps(self, handle: SessionHandle) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._get(handle)["reps"])


class HttpRecorder(SessionRecorder):
    """
    Recorder speaking to the workout REST API:

    - POST {base}/session                 -> {"session_id": ...}
    - PUT  {base}/session/{id}/end
    - POST {base}/session/{id}/rep
    - POST {base}/session/{id}/set

    Transport and HTTP status errors are raised as RecorderError.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 5.0,
        headers: Optional[Mapping[str, str]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=dict(headers or {}),
            transport=transport,
        )

    def _request(self, method: str, url: str, payload: Mapping[str, Any]) -> httpx.Response:
        try:
            response = self._client.request(method, url, json=dict(payload))
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise RecorderError(f"{method} {url} failed: {exc}") from exc
        return response

    def start_session(
        self, exercise_id: Any, scoring_profile_id: Optional[Any] = None, mode: str = DEFAULT_MODE
    ) -> SessionHandle:
        response = self._request(
            "POST",
            "/session",
            {"exercise_id": exercise_id, "scoring_profile_id": scoring_profile_id, "mode": mode},
        )
        try:
            body = response.json()
        except ValueError as exc:
            raise RecorderError("session start returned a non-JSON body") from exc
        session_id = body.get("session_id") if isinstance(body, dict) else None
        if session_id is None:
            raise RecorderError("session start response has no session_id")
        return SessionHandle(str(session_id), exercise_id, scoring_profile_id, mode)

    def end_session(self, handle: SessionHandle, summary: Mapping[str, Any]) -> None:
        self._request("PUT", f"/session/{handle.session_id}/end", summary)

    def record_rep_event(self, handle: SessionHandle, rep: Mapping[str, Any]) -> None:
        self._request("POST", f"/session/{handle.session_id}/rep", rep)

    def record_set(self, handle: SessionHandle, set_record: Mapping[str, Any]) -> None:
        self._request("POST", f"/session/{handle.session_id}/set", set_record)

    def close(self) -> None:
        self._client.close()
