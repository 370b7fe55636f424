"""Data models shared across the voice pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class SessionType(str, Enum):
    WORKOUT = "workout"
    FREE = "free"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class EventType(str, Enum):
    TRANSCRIPTION = "transcription"
    INTENT_RECOGNIZED = "intent_recognized"
    CONFIRMATION = "confirmation"
    CORRECTION = "correction"
    TTS = "tts"
    SYSTEM = "system"


class IntentKind(str, Enum):
    LOG_SET = "log_set"
    START_WORKOUT = "start_workout"
    EDIT_LAST = "edit_last"
    UNDO_LAST = "undo_last"
    REST_TIMER = "rest_timer"
    UNKNOWN = "unknown"


class MatchStatus(str, Enum):
    MATCHED = "matched"
    AMBIGUOUS = "ambiguous"
    UNMATCHED = "unmatched"


class MutationAction(str, Enum):
    COMMIT_SET = "commit_set"
    REVERT_LAST_SET = "revert_last_set"
    UPDATE_LAST_SET = "update_last_set"


def iso_timestamp(epoch_seconds: float) -> str:
    """Render epoch seconds as a UTC ISO-8601 string."""
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class VoiceEvent:
    """One append-only entry in a session's event log."""

    id: str
    type: EventType
    payload: Dict[str, Any]
    timestamp: float
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "payload": dict(self.payload),
            "confidence": self.confidence,
            "timestamp": iso_timestamp(self.timestamp),
        }


@dataclass
class VoiceSession:
    """Local record of a voice session, owned by the session manager."""

    id: str
    type: SessionType
    start_time: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    events: List[VoiceEvent] = field(default_factory=list)
    status: SessionStatus = SessionStatus.ACTIVE
    end_time: Optional[float] = None
    remote_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def duration(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "startTime": iso_timestamp(self.start_time),
            "endTime": iso_timestamp(self.end_time) if self.end_time is not None else None,
            "remoteId": self.remote_id,
            "metadata": dict(self.metadata),
            "events": [event.to_dict() for event in self.events],
        }


@dataclass(frozen=True)
class ParsedIntent:
    """Typed command extracted from one utterance."""

    kind: IntentKind
    slots: Dict[str, Any]
    raw_utterance: str
    stt_confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "slots": dict(self.slots),
            "rawUtterance": self.raw_utterance,
            "sttConfidence": self.stt_confidence,
        }


@dataclass(frozen=True)
class Exercise:
    """Active exercise from the user's library."""

    id: str
    name: str
    equipment_required: Tuple[str, ...] = ()
    status: str = "active"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Exercise":
        equipment = data.get("equipmentRequired") or data.get("equipment_required") or data.get("equipmentNeeded") or []
        if isinstance(equipment, str):
            equipment = [equipment]
        status = data.get("status")
        if status is None:
            status = "active" if data.get("isActive", True) else "archived"
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            equipment_required=tuple(str(item) for item in equipment),
            status=str(status),
        )


@dataclass(frozen=True)
class MatchCandidate:
    exercise_id: str
    name: str
    score: float
    distance: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exerciseId": self.exercise_id,
            "name": self.name,
            "score": round(self.score, 4),
        }


@dataclass(frozen=True)
class MatchResult:
    """Outcome of resolving a spoken exercise name against the library."""

    status: MatchStatus
    exercise_id: Optional[str] = None
    exercise_name: Optional[str] = None
    score: Optional[float] = None
    candidates: Tuple[MatchCandidate, ...] = ()

    @classmethod
    def matched(cls, candidate: MatchCandidate) -> "MatchResult":
        return cls(
            status=MatchStatus.MATCHED,
            exercise_id=candidate.exercise_id,
            exercise_name=candidate.name,
            score=candidate.score,
            candidates=(candidate,),
        )

    @classmethod
    def ambiguous(cls, candidates: Tuple[MatchCandidate, ...]) -> "MatchResult":
        return cls(status=MatchStatus.AMBIGUOUS, candidates=candidates)

    @classmethod
    def unmatched(cls) -> "MatchResult":
        return cls(status=MatchStatus.UNMATCHED)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"status": self.status.value}
        if self.status == MatchStatus.MATCHED:
            payload["exerciseId"] = self.exercise_id
            payload["exerciseName"] = self.exercise_name
            payload["score"] = round(self.score or 0.0, 4)
        elif self.status == MatchStatus.AMBIGUOUS:
            payload["candidates"] = [candidate.to_dict() for candidate in self.candidates]
        return payload


@dataclass(frozen=True)
class SetDraft:
    """A set waiting to be committed to a workout."""

    workout_id: str
    exercise_id: str
    exercise_name: str
    reps: int
    weight_kg: Optional[float] = None
    rpe: Optional[float] = None
    set_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workoutId": self.workout_id,
            "exerciseId": self.exercise_id,
            "exerciseName": self.exercise_name,
            "setIndex": self.set_index,
            "reps": self.reps,
            "weight_kg": self.weight_kg,
            "rpe": self.rpe,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SetDraft":
        return cls(
            workout_id=str(data["workoutId"]),
            exercise_id=str(data["exerciseId"]),
            exercise_name=str(data.get("exerciseName", "")),
            reps=int(data["reps"]),
            weight_kg=data.get("weight_kg"),
            rpe=data.get("rpe"),
            set_index=data.get("setIndex"),
        )


@dataclass(frozen=True)
class Mutation:
    """A workout-log change: commit a set, revert the last one, or edit it."""

    action: MutationAction
    workout_id: str
    draft: Optional[SetDraft] = None
    changes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "workoutId": self.workout_id,
            "set": self.draft.to_dict() if self.draft else None,
            "changes": dict(self.changes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Mutation":
        draft = data.get("set")
        return cls(
            action=MutationAction(data["action"]),
            workout_id=str(data["workoutId"]),
            draft=SetDraft.from_dict(draft) if draft else None,
            changes=dict(data.get("changes") or {}),
        )


@dataclass
class PendingConfirmation:
    """The single in-flight mutation awaiting a spoken answer."""

    intent: ParsedIntent
    deadline: float
    mutation: Optional[Mutation] = None
    match: Optional[MatchResult] = None
    attempts: int = 0


@dataclass
class SyncQueueItem:
    """An event waiting for delivery to the persistence gateway."""

    session_id: str
    event: VoiceEvent
    retry_count: int = 0
    next_attempt_at: float = 0.0

    @property
    def carries_mutation(self) -> bool:
        """True while the event holds a confirmed mutation not yet applied remotely."""
        payload = self.event.payload
        return bool(payload.get("mutation")) and not payload.get("applied")
