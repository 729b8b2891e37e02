from __future__ import annotations

import json

import httpx
import pytest

from session.recorder import HttpRecorder, InMemoryRecorder, RecorderError, SessionHandle


def _recorder(handler):
    return HttpRecorder("http://records.test/api/workout", transport=httpx.MockTransport(handler))


def test_http_recorder_round_trip():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        seen.append((request.method, request.url.path, body))
        if request.url.path.endswith("/session"):
            return httpx.Response(201, json={"session_id": 42})
        return httpx.Response(200, json={"success": True})

    rec = _recorder(handler)
    handle = rec.start_session(3, scoring_profile_id=9, mode="FREE")
    assert handle.session_id == "42"
    rec.record_rep_event(handle, {"rep_index": 1, "rep_interval_ms": None, "score": {"total": 88.0}})
    rec.record_set(handle, {"set_no": 1, "phase": "WORK", "actual_reps": 1})
    rec.end_session(handle, {"total_reps": 1, "final_score": 88.0})
    rec.close()

    assert seen[0] == ("POST", "/api/workout/session", {"exercise_id": 3, "scoring_profile_id": 9, "mode": "FREE"})
    assert seen[1][:2] == ("POST", "/api/workout/session/42/rep")
    assert seen[1][2]["score"] == {"total": 88.0}
    assert seen[2][:2] == ("POST", "/api/workout/session/42/set")
    assert seen[3] == ("PUT", "/api/workout/session/42/end", {"total_reps": 1, "final_score": 88.0})


def test_http_status_errors_become_recorder_errors():
    rec = _recorder(lambda request: httpx.Response(500, json={"error": "db down"}))
    with pytest.raises(RecorderError):
        rec.record_rep_event(SessionHandle("1"), {"rep_index": 1})


def test_transport_errors_become_recorder_errors():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(RecorderError):
        _recorder(handler).start_session(1)


def test_start_without_session_id_is_an_error():
    rec = _recorder(lambda request: httpx.Response(200, json={"ok": True}))
    with pytest.raises(RecorderError):
        rec.start_session(1)


def test_in_memory_recorder():
    rec = InMemoryRecorder()
    handle = rec.start_session("squat", scoring_profile_id=None)
    rec.record_rep_event(handle, {"rep_index": 1})
    rec.record_set(handle, {"set_no": 1})
    rec.end_session(handle, {"total_reps": 1})
    stored = rec.sessions[handle.session_id]
    assert stored["reps"] == [{"rep_index": 1}]
    assert stored["sets"] == [{"set_no": 1}]
    assert stored["summary"] == {"total_reps": 1}

    with pytest.raises(RecorderError):
        rec.record_rep_event(handle, {"rep_index": 2})
    with pytest.raises(RecorderError):
        rec.end_session(SessionHandle("nope"), {})
