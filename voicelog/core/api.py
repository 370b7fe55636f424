"""Workout-log REST client with retry and error classification."""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Set

import requests

from voicelog.core.constants import API_BASE
from voicelog.core.gateway import GatewayValidationError, TransientGatewayError
from voicelog.core.models import Exercise, SetDraft, VoiceEvent, iso_timestamp

RETRYABLE_STATUS = (408, 429, 500, 502, 503, 504)


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if data.get("message"):
            return str(data["message"])
    return f"HTTP {response.status_code}"


class VoiceLogAPI:
    """Thin wrapper around the workout-log backend.

    Implements both the persistence gateway and the library provider.
    """

    def __init__(
        self,
        token: str,
        base_url: str = API_BASE,
        rate_limit_delay: float = 0.0,
        max_retries: int = 3,
        timeout_seconds: int = 10,
    ) -> None:
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.rate_limit_delay = rate_limit_delay
        self.max_retries = max(1, max_retries)
        self.timeout_seconds = timeout_seconds
        self._has_sent_request = False

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                if self.rate_limit_delay > 0 and self._has_sent_request:
                    time.sleep(self.rate_limit_delay)

                self._has_sent_request = True
                response = requests.request(
                    method=method,
                    url=url,
                    headers=self._headers,
                    params=params,
                    json=json_data,
                    timeout=self.timeout_seconds,
                )
                if response.status_code in RETRYABLE_STATUS:
                    raise requests.HTTPError(response.text, response=response)
                if 400 <= response.status_code < 500:
                    raise GatewayValidationError(
                        f"{method} {path} rejected ({response.status_code}): {_error_message(response)}"
                    )
                response.raise_for_status()

                if not response.text:
                    return {}
                return response.json()
            except (requests.RequestException, ValueError) as exc:
                last_error = exc
                if attempt >= self.max_retries:
                    break
                time.sleep(min(2**attempt, 8))

        raise TransientGatewayError(f"API request failed for {method} {path}: {last_error}")

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("GET", path, params=params)

    def post(self, path: str, payload: Dict[str, Any]) -> Any:
        return self._request("POST", path, json_data=payload)

    def patch(self, path: str, payload: Dict[str, Any]) -> Any:
        return self._request("PATCH", path, json_data=payload)

    def delete(self, path: str) -> Any:
        return self._request("DELETE", path)

    # Voice sessions and events

    def create_session(self, session_type: str, metadata: Dict[str, Any]) -> str:
        data = self.post("/voice/sessions", {"sessionType": session_type, "metadata": metadata})
        return str(data["session"]["voiceSessionId"])

    def end_session(self, remote_session_id: str) -> bool:
        self.patch(f"/voice/sessions/{remote_session_id}/end", {})
        return True

    def append_event(self, remote_session_id: str, event: VoiceEvent) -> Any:
        payload = dict(event.payload)
        return self.post(
            "/voice/events",
            {
                "sessionId": remote_session_id,
                "intent": event.type.value,
                "payload": payload,
                "transcript": payload.get("text"),
                "confidenceScore": event.confidence,
                "timestamp": iso_timestamp(event.timestamp),
            },
        )

    # Workouts and sets

    def create_workout(self, title: Optional[str]) -> str:
        data = self.post("/workouts", {"name": title or "Voice workout"})
        return str(data["workout"]["id"])

    def commit_set(self, workout_id: str, draft: SetDraft) -> str:
        payload: Dict[str, Any] = {
            "workoutId": workout_id,
            "exerciseId": draft.exercise_id,
            "setNumber": draft.set_index or 1,
            "reps": draft.reps,
        }
        if draft.weight_kg is not None:
            payload["weightKg"] = draft.weight_kg
        if draft.rpe is not None:
            payload["rpe"] = draft.rpe
        data = self.post("/sets", payload)
        return str(data["set"]["id"])

    def _latest_set(self, workout_id: str) -> Optional[Dict[str, Any]]:
        data = self.get(f"/sets/workout/{workout_id}")
        sets = data.get("sets", []) if isinstance(data, dict) else data
        if not isinstance(sets, list) or not sets:
            return None
        return max(sets, key=lambda item: (str(item.get("createdAt", "")), int(item.get("setNumber") or 0)))

    def revert_last_set(self, workout_id: str) -> bool:
        latest = self._latest_set(workout_id)
        if latest is None:
            return False
        self.delete(f"/sets/{latest['id']}")
        return True

    def update_last_set(self, workout_id: str, changes: Dict[str, Any]) -> bool:
        latest = self._latest_set(workout_id)
        if latest is None:
            return False
        payload: Dict[str, Any] = {}
        if "reps" in changes:
            payload["reps"] = changes["reps"]
        if "weight_kg" in changes:
            payload["weightKg"] = changes["weight_kg"]
        if "rpe" in changes:
            payload["rpe"] = changes["rpe"]
        if "exerciseId" in changes:
            payload["exerciseId"] = changes["exerciseId"]
        self.patch(f"/sets/{latest['id']}", payload)
        return True

    # Exercise library

    def get_active_exercises(self, user_id: str) -> List[Exercise]:
        data = self.get("/exercises", params={"isActive": "true", "userId": user_id, "limit": 500})
        items = data.get("exercises", []) if isinstance(data, dict) else data
        exercises = [Exercise.from_dict(item) for item in items or [] if isinstance(item, dict)]
        return [exercise for exercise in exercises if exercise.status == "active"]

    def get_available_equipment(self, user_id: str) -> Set[str]:
        data = self.get("/equipment", params={"available": "true", "userId": user_id})
        items = data.get("equipment", []) if isinstance(data, dict) else data
        return {
            str(item["id"])
            for item in items or []
            if isinstance(item, dict) and item.get("available", True)
        }
