"""Collaborator contracts consumed by the voice pipeline."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Set

from voicelog.core.models import Exercise, SetDraft, VoiceEvent


class GatewayError(RuntimeError):
    """Base class for persistence gateway failures."""


class TransientGatewayError(GatewayError):
    """Network or server hiccup; safe to retry later."""


class GatewayValidationError(GatewayError):
    """The backend rejected the request; retrying will not help."""


class LibraryProvider(Protocol):
    """Source of the user's active exercises and available equipment."""

    def get_active_exercises(self, user_id: str) -> List[Exercise]:
        ...

    def get_available_equipment(self, user_id: str) -> Set[str]:
        ...


class PersistenceGateway(Protocol):
    """Durable store for voice sessions, events, workouts and sets."""

    def create_session(self, session_type: str, metadata: Dict[str, Any]) -> str:
        ...

    def end_session(self, remote_session_id: str) -> bool:
        ...

    def append_event(self, remote_session_id: str, event: VoiceEvent) -> Any:
        ...

    def create_workout(self, title: Optional[str]) -> str:
        ...

    def commit_set(self, workout_id: str, draft: SetDraft) -> str:
        ...

    def revert_last_set(self, workout_id: str) -> bool:
        ...

    def update_last_set(self, workout_id: str, changes: Dict[str, Any]) -> bool:
        ...
