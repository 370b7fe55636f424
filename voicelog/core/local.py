"""Local collaborators: file-backed exercise library and in-memory gateway."""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import yaml

from voicelog.core.gateway import GatewayValidationError
from voicelog.core.models import Exercise, SetDraft, VoiceEvent


class LibraryFileError(ValueError):
    """Raised when an exercise library file cannot be read."""


def load_library_data(path: Path) -> Dict[str, Any]:
    """Load a library document from YAML or JSON.

    A bare list is treated as the exercise list.
    """
    try:
        text = path.read_text()
    except OSError as exc:
        raise LibraryFileError(f"Cannot read library file {path}: {exc}") from exc

    try:
        if path.suffix.lower() == ".json":
            raw = json.loads(text)
        else:
            raw = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise LibraryFileError(f"Invalid library file {path}: {exc}") from exc

    if isinstance(raw, list):
        return {"exercises": raw, "equipment": []}
    if not isinstance(raw, dict):
        raise LibraryFileError(f"Library file {path} must contain a mapping or a list")
    return raw


class FileLibrary:
    """Exercise library read from a YAML/JSON document."""

    def __init__(self, exercises: List[Exercise], equipment: Optional[List[Dict[str, Any]]] = None) -> None:
        self._exercises = list(exercises)
        self._equipment = list(equipment or [])

    @classmethod
    def from_path(cls, path: Path) -> "FileLibrary":
        data = load_library_data(path)
        exercises = []
        for item in data.get("exercises") or []:
            if isinstance(item, str):
                item = {"id": item, "name": item}
            if not isinstance(item, dict) or "name" not in item:
                continue
            item.setdefault("id", item["name"])
            exercises.append(Exercise.from_dict(item))

        equipment = []
        for item in data.get("equipment") or []:
            if isinstance(item, str):
                item = {"id": item, "available": True}
            if isinstance(item, dict) and "id" in item:
                equipment.append(item)
        return cls(exercises, equipment)

    def get_active_exercises(self, user_id: str) -> List[Exercise]:
        return [exercise for exercise in self._exercises if exercise.status == "active"]

    def get_available_equipment(self, user_id: str) -> Set[str]:
        return {str(item["id"]) for item in self._equipment if item.get("available", True)}


class InMemoryGateway:
    """Gateway that keeps everything in process memory."""

    def __init__(self, active_exercise_ids: Optional[Set[str]] = None) -> None:
        self.active_exercise_ids = active_exercise_ids
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.events: Dict[str, List[VoiceEvent]] = {}
        self.workouts: Dict[str, Dict[str, Any]] = {}
        self.sets: Dict[str, List[Dict[str, Any]]] = {}

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex

    def create_session(self, session_type: str, metadata: Dict[str, Any]) -> str:
        remote_id = self._new_id()
        self.sessions[remote_id] = {"type": session_type, "metadata": dict(metadata), "status": "active"}
        self.events[remote_id] = []
        return remote_id

    def end_session(self, remote_session_id: str) -> bool:
        session = self.sessions.get(remote_session_id)
        if session is None:
            raise GatewayValidationError(f"Voice session {remote_session_id} not found")
        session["status"] = "completed"
        return True

    def append_event(self, remote_session_id: str, event: VoiceEvent) -> Any:
        if remote_session_id not in self.events:
            raise GatewayValidationError(f"Voice session {remote_session_id} not found")
        self.events[remote_session_id].append(event)
        return {"eventId": event.id}

    def create_workout(self, title: Optional[str]) -> str:
        workout_id = self._new_id()
        self.workouts[workout_id] = {"name": title or "Voice workout"}
        self.sets[workout_id] = []
        return workout_id

    def _workout_sets(self, workout_id: str) -> List[Dict[str, Any]]:
        if workout_id not in self.sets:
            raise GatewayValidationError(f"Workout {workout_id} not found")
        return self.sets[workout_id]

    def commit_set(self, workout_id: str, draft: SetDraft) -> str:
        sets = self._workout_sets(workout_id)
        if self.active_exercise_ids is not None and draft.exercise_id not in self.active_exercise_ids:
            raise GatewayValidationError(f"Exercise {draft.exercise_id} is not active")
        set_id = self._new_id()
        record = draft.to_dict()
        record["id"] = set_id
        sets.append(record)
        return set_id

    def revert_last_set(self, workout_id: str) -> bool:
        sets = self._workout_sets(workout_id)
        if not sets:
            return False
        sets.pop()
        return True

    def update_last_set(self, workout_id: str, changes: Dict[str, Any]) -> bool:
        sets = self._workout_sets(workout_id)
        if not sets:
            return False
        sets[-1].update(changes)
        return True
