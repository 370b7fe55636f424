from __future__ import annotations

import requests
import pytest

from voicelog.core.api import VoiceLogAPI
from voicelog.core.gateway import GatewayValidationError, TransientGatewayError
from voicelog.core.models import EventType, SetDraft, VoiceEvent


class _MockResponse:
    def __init__(
        self,
        status_code: int = 200,
        payload: object = None,
        text: str = '{"ok":true}',
    ) -> None:
        self.status_code = status_code
        self._payload = payload if payload is not None else {"ok": True}
        self.text = text

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError("request failed", response=self)

    def json(self) -> object:
        return self._payload


def test_api_retries_then_succeeds(monkeypatch) -> None:
    attempts = {"count": 0}

    def fake_request(*args, **kwargs):  # type: ignore[no-untyped-def]
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise requests.Timeout("timeout")
        return _MockResponse(payload={"session": {"voiceSessionId": "vs-1"}})

    monkeypatch.setattr("voicelog.core.api.requests.request", fake_request)
    monkeypatch.setattr("voicelog.core.api.time.sleep", lambda _: None)

    api = VoiceLogAPI(token="token", rate_limit_delay=0, max_retries=3)
    assert api.create_session("workout", {}) == "vs-1"
    assert attempts["count"] == 2


def test_api_retries_on_server_error(monkeypatch) -> None:
    attempts = {"count": 0}

    def fake_request(*args, **kwargs):  # type: ignore[no-untyped-def]
        attempts["count"] += 1
        if attempts["count"] == 1:
            return _MockResponse(status_code=503, payload={"error": "temporary"}, text="temporary")
        return _MockResponse(payload={"ok": True})

    monkeypatch.setattr("voicelog.core.api.requests.request", fake_request)
    monkeypatch.setattr("voicelog.core.api.time.sleep", lambda _: None)

    api = VoiceLogAPI(token="token", rate_limit_delay=0, max_retries=3)
    assert api.get("/health")["ok"] is True
    assert attempts["count"] == 2


def test_api_raises_transient_after_max_retries(monkeypatch) -> None:
    def fake_request(*args, **kwargs):  # type: ignore[no-untyped-def]
        raise requests.ConnectionError("network down")

    monkeypatch.setattr("voicelog.core.api.requests.request", fake_request)
    monkeypatch.setattr("voicelog.core.api.time.sleep", lambda _: None)

    api = VoiceLogAPI(token="token", rate_limit_delay=0, max_retries=2)
    with pytest.raises(TransientGatewayError, match="API request failed for GET /exercises"):
        api.get("/exercises")


def test_api_client_error_is_not_retried(monkeypatch) -> None:
    attempts = {"count": 0}

    def fake_request(*args, **kwargs):  # type: ignore[no-untyped-def]
        attempts["count"] += 1
        return _MockResponse(status_code=400, payload={"error": {"message": "Exercise is archived"}}, text="{}")

    monkeypatch.setattr("voicelog.core.api.requests.request", fake_request)
    monkeypatch.setattr("voicelog.core.api.time.sleep", lambda _: None)

    api = VoiceLogAPI(token="token", rate_limit_delay=0, max_retries=3)
    with pytest.raises(GatewayValidationError, match="Exercise is archived"):
        api.post("/sets", {})
    assert attempts["count"] == 1


def test_api_headers_include_bearer_and_content_type() -> None:
    api = VoiceLogAPI(token="abc123")
    assert api._headers == {
        "Authorization": "Bearer abc123",
        "Content-Type": "application/json",
    }


def test_api_empty_response_text_returns_empty_object(monkeypatch) -> None:
    monkeypatch.setattr(
        "voicelog.core.api.requests.request",
        lambda *args, **kwargs: _MockResponse(payload={}, text=""),
    )
    api = VoiceLogAPI(token="token", rate_limit_delay=0)
    assert api.delete("/sets/1") == {}


def test_api_verbs_delegate_to_request(monkeypatch) -> None:
    calls = []

    def fake_request(self, method, path, params=None, json_data=None):  # type: ignore[no-untyped-def]
        calls.append((method, path, params, json_data))
        return {"ok": True}

    monkeypatch.setattr(VoiceLogAPI, "_request", fake_request)

    api = VoiceLogAPI(token="token", rate_limit_delay=0)
    assert api.get("/g", params={"x": 1}) == {"ok": True}
    assert api.post("/p", {"a": 2}) == {"ok": True}
    assert api.patch("/u", {"b": 3}) == {"ok": True}
    assert api.delete("/d") == {"ok": True}
    assert calls == [
        ("GET", "/g", {"x": 1}, None),
        ("POST", "/p", None, {"a": 2}),
        ("PATCH", "/u", None, {"b": 3}),
        ("DELETE", "/d", None, None),
    ]


def test_api_gateway_methods_use_expected_paths(monkeypatch) -> None:
    get_calls = []
    post_calls = []
    patch_calls = []
    delete_calls = []

    def fake_get(self, path, params=None):  # type: ignore[no-untyped-def]
        get_calls.append((path, params))
        if path.startswith("/sets/workout/"):
            return {
                "sets": [
                    {"id": "s1", "setNumber": 1, "createdAt": "2026-01-01T10:00:00Z"},
                    {"id": "s2", "setNumber": 2, "createdAt": "2026-01-01T10:05:00Z"},
                ]
            }
        if path == "/exercises":
            return {
                "exercises": [
                    {"id": "e1", "name": "Back squat", "equipmentRequired": ["barbell"]},
                    {"id": "e2", "name": "Old", "isActive": False},
                ]
            }
        return {"equipment": [{"id": "barbell"}, {"id": "rack", "available": False}]}

    def fake_post(self, path, payload):  # type: ignore[no-untyped-def]
        post_calls.append((path, payload))
        if path == "/sets":
            return {"set": {"id": "s3"}}
        if path == "/workouts":
            return {"workout": {"id": "w1"}}
        return {"ok": True}

    def fake_patch(self, path, payload):  # type: ignore[no-untyped-def]
        patch_calls.append((path, payload))
        return {"ok": True}

    def fake_delete(self, path):  # type: ignore[no-untyped-def]
        delete_calls.append(path)
        return {}

    monkeypatch.setattr(VoiceLogAPI, "get", fake_get)
    monkeypatch.setattr(VoiceLogAPI, "post", fake_post)
    monkeypatch.setattr(VoiceLogAPI, "patch", fake_patch)
    monkeypatch.setattr(VoiceLogAPI, "delete", fake_delete)

    api = VoiceLogAPI(token="token", rate_limit_delay=0)
    draft = SetDraft(workout_id="w1", exercise_id="e1", exercise_name="Back squat", reps=5, weight_kg=100, set_index=3)
    assert api.create_workout(None) == "w1"
    assert api.commit_set("w1", draft) == "s3"
    assert api.revert_last_set("w1") is True
    assert api.update_last_set("w1", {"reps": 8, "weight_kg": 90}) is True
    assert api.end_session("vs-1") is True
    api.append_event(
        "vs-1",
        VoiceEvent(id="ev-1", type=EventType.TRANSCRIPTION, payload={"text": "bench"}, timestamp=0.0, confidence=0.9),
    )

    assert [exercise.id for exercise in api.get_active_exercises("u1")] == ["e1"]
    assert api.get_available_equipment("u1") == {"barbell"}

    assert ("/workouts", {"name": "Voice workout"}) in post_calls
    assert ("/sets", {"workoutId": "w1", "exerciseId": "e1", "setNumber": 3, "reps": 5, "weightKg": 100}) in post_calls
    assert delete_calls == ["/sets/s2"]
    assert patch_calls == [("/sets/s2", {"reps": 8, "weightKg": 90}), ("/voice/sessions/vs-1/end", {})]
    event_call = post_calls[-1]
    assert event_call[0] == "/voice/events"
    assert event_call[1]["intent"] == "transcription"
    assert event_call[1]["transcript"] == "bench"
    assert event_call[1]["timestamp"].startswith("1970-01-01T00:00:00")


def test_revert_without_sets_returns_false(monkeypatch) -> None:
    monkeypatch.setattr(VoiceLogAPI, "get", lambda self, path, params=None: {"sets": []})
    api = VoiceLogAPI(token="token")
    assert api.revert_last_set("w1") is False
    assert api.update_last_set("w1", {"reps": 3}) is False
