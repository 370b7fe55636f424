"""Confirmation state machine that turns utterances into workout-log mutations.

Every mutation passes through a matched exercise (or the user's explicit
pick) and an affirmative answer before it reaches the session manager. While
a confirmation or disambiguation is pending, the next utterance is always
read as the answer to it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set

from voicelog.core.constants import (
    AFFIRMATIVE_WORDS,
    NEGATIVE_PHRASES,
    NEGATIVE_WORDS,
    SELECTION_ORDINALS,
)
from voicelog.core.gateway import GatewayError, LibraryProvider
from voicelog.core.intents import missing_slots, parse_intent
from voicelog.core.matcher import match_exercise
from voicelog.core.models import (
    EventType,
    Exercise,
    IntentKind,
    MatchCandidate,
    MatchResult,
    MatchStatus,
    Mutation,
    MutationAction,
    ParsedIntent,
    PendingConfirmation,
    SessionType,
    SetDraft,
    VoiceSession,
)
from voicelog.core.prompts import PromptBuilder
from voicelog.core.providers import ProviderError
from voicelog.core.scheduler import Scheduler, TimerHandle
from voicelog.core.session import MutationStatus, Notification, NotificationKind, SessionManager
from voicelog.core.similarity import find_best_match
from voicelog.utils.text import normalize_exercise_name, normalize_text

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    PARSING = "parsing"
    MATCHING = "matching"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    DISAMBIGUATING = "disambiguating"
    PERSISTING = "persisting"
    REJECTED = "rejected"


class Outcome(str, Enum):
    NO_SESSION = "no_session"
    NOT_UNDERSTOOD = "not_understood"
    CLARIFY = "clarify"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    DISAMBIGUATING = "disambiguating"
    REPROMPT = "reprompt"
    EXERCISE_UNMATCHED = "exercise_unmatched"
    PERSISTED = "persisted"
    QUEUED = "queued"
    VALIDATION_FAILED = "validation_failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    NO_OP = "no_op"
    WORKOUT_STARTED = "workout_started"
    WORKOUT_FAILED = "workout_failed"
    TIMER_STARTED = "timer_started"


@dataclass
class PipelineSettings:
    confidence_threshold: float = 0.7
    response_timeout: float = 8.0
    accept_on_timeout: bool = False
    implicit_continuation: bool = False
    confirmation_style: str = "concise"
    disambiguation_choices: int = 3
    max_disambiguation_attempts: int = 2
    match_threshold: float = 0.6
    accept_score: float = 0.8
    tie_band: float = 0.2
    max_candidates: int = 5
    require_equipment: bool = False
    user_id: str = ""
    locale: str = "en-US"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "PipelineSettings":
        voice = config.get("voice", {})
        matching = config.get("matching", {})
        library = config.get("library", {})
        return cls(
            confidence_threshold=float(voice.get("confidence_threshold", 0.7)),
            response_timeout=float(voice.get("response_timeout_seconds", 8.0)),
            accept_on_timeout=bool(voice.get("accept_on_timeout", False)),
            implicit_continuation=bool(voice.get("implicit_continuation", False)),
            confirmation_style=str(voice.get("confirmation_style", "concise")),
            disambiguation_choices=int(voice.get("disambiguation_choices", 3)),
            max_disambiguation_attempts=int(voice.get("max_disambiguation_attempts", 2)),
            match_threshold=float(matching.get("threshold", 0.6)),
            accept_score=float(matching.get("accept_score", 0.8)),
            tie_band=float(matching.get("tie_band", 0.2)),
            max_candidates=int(matching.get("max_candidates", 5)),
            require_equipment=bool(matching.get("require_equipment", False)),
            user_id=str(library.get("user_id") or ""),
            locale=str(voice.get("locale", "en-US")),
        )


@dataclass(frozen=True)
class PipelineResponse:
    state: PipelineState
    outcome: Outcome
    prompt: Optional[str] = None
    intent: Optional[ParsedIntent] = None
    mutation: Optional[Mutation] = None
    result: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "outcome": self.outcome.value,
            "prompt": self.prompt,
            "intent": self.intent.to_dict() if self.intent else None,
            "mutation": self.mutation.to_dict() if self.mutation else None,
            "result": self.result,
        }


@dataclass
class CommittedSet:
    """A set the user confirmed, with the confirmation event that carried it."""

    draft: SetDraft
    event_id: Optional[str] = None


@dataclass(frozen=True)
class LocalChange:
    """How a queued mutation changed the committed stack, kept for rollback."""

    action: MutationAction
    workout_id: str
    entry: CommittedSet
    previous: Optional[SetDraft] = None
    index: int = 0


def _words(text: str) -> List[str]:
    return normalize_text(text).split()


def is_negative(text: str) -> bool:
    words = _words(text)
    phrase = " ".join(words)
    return bool(set(words) & NEGATIVE_WORDS) or any(item in phrase for item in NEGATIVE_PHRASES)


def is_affirmative(text: str) -> bool:
    return bool(set(_words(text)) & AFFIRMATIVE_WORDS) and not is_negative(text)


def _edit_changes(intent: ParsedIntent) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    if intent.slots.get("reps") is not None:
        changes["reps"] = intent.slots["reps"]
    if intent.slots.get("weight") is not None:
        changes["weight_kg"] = intent.slots["weight"]
    if intent.slots.get("rpe") is not None:
        changes["rpe"] = intent.slots["rpe"]
    return changes


def _apply_changes(draft: SetDraft, changes: Dict[str, Any]) -> SetDraft:
    fields = {
        "reps": "reps",
        "weight_kg": "weight_kg",
        "rpe": "rpe",
        "exerciseId": "exercise_id",
        "exerciseName": "exercise_name",
    }
    return replace(draft, **{fields[key]: value for key, value in changes.items() if key in fields})


class VoicePipeline:
    """Per-session confirmation flow on top of a ``SessionManager``.

    Single-threaded: utterances, timer callbacks and connectivity changes are
    each handled to completion, so at most one mutation is ever pending.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        library: LibraryProvider,
        scheduler: Scheduler,
        settings: Optional[PipelineSettings] = None,
    ) -> None:
        self.sessions = session_manager
        self.library = library
        self.scheduler = scheduler
        self.settings = settings or PipelineSettings()
        self.prompts = PromptBuilder(self.settings.confirmation_style)

        self.state = PipelineState.IDLE
        self.history: List[PipelineState] = [PipelineState.IDLE]
        self.last_response: Optional[PipelineResponse] = None
        self._pending: Optional[PendingConfirmation] = None
        self._timer: Optional[TimerHandle] = None
        self._rest_timer: Optional[TimerHandle] = None
        self._exercises: Optional[List[Exercise]] = None
        self._committed: Dict[str, List[CommittedSet]] = {}
        self._queued_changes: Dict[str, LocalChange] = {}
        self._rejected_events: Set[str] = set()
        self.sessions.subscribe(self._on_notification)

    @property
    def pending(self) -> Optional[PendingConfirmation]:
        return self._pending

    # Session control

    def start(
        self,
        session_type: SessionType = SessionType.WORKOUT,
        metadata: Optional[Dict[str, Any]] = None,
        workout_id: Optional[str] = None,
    ) -> VoiceSession:
        if self._pending is not None:
            self._abort("session_restarted")
        self._cancel_timer()

        values = dict(metadata or {})
        values.setdefault("locale", self.settings.locale)
        if workout_id:
            values["workoutId"] = workout_id
        session = self.sessions.start_session(session_type, values)
        self._exercises = None
        self._transition(PipelineState.IDLE)
        return session

    def shutdown(self) -> Optional[VoiceSession]:
        """Cancel timers, record any aborted attempt and end the session."""
        self._cancel_timer()
        if self._rest_timer is not None:
            self._rest_timer.cancel()
            self._rest_timer = None
        if self._pending is not None:
            self._abort("session_cancelled")
        self._transition(PipelineState.IDLE)
        return self.sessions.cancel_session()

    def refresh_library(self) -> List[Exercise]:
        self._exercises = None
        return self._active_exercises()

    def _active_exercises(self) -> List[Exercise]:
        if self._exercises is not None:
            return self._exercises
        user_id = self.settings.user_id
        try:
            exercises = [item for item in self.library.get_active_exercises(user_id) if item.status == "active"]
            if self.settings.require_equipment:
                available = self.library.get_available_equipment(user_id)
                exercises = [item for item in exercises if set(item.equipment_required) <= available]
        except GatewayError as exc:
            logger.warning("Could not load exercise library: %s", exc)
            return []
        self._exercises = exercises
        return exercises

    def _workout_id(self) -> Optional[str]:
        session = self.sessions.get_current_session()
        if session is None:
            return None
        workout_id = session.metadata.get("workoutId")
        return str(workout_id) if workout_id else None

    def committed_sets(self) -> List[SetDraft]:
        workout_id = self._workout_id()
        if workout_id is None:
            return []
        return [entry.draft for entry in self._committed.get(workout_id, [])]

    # Plumbing

    def _transition(self, state: PipelineState) -> None:
        if state != self.state:
            logger.debug("Pipeline %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _say(self, prompt: Optional[str]) -> None:
        if not prompt:
            return
        try:
            self.sessions.speak(prompt)
        except ProviderError as exc:
            logger.error("Could not speak prompt: %s", exc)

    def _respond(self, outcome: Outcome, prompt: Optional[str] = None, **extra: Any) -> PipelineResponse:
        self._say(prompt)
        response = PipelineResponse(state=self.state, outcome=outcome, prompt=prompt, **extra)
        self.last_response = response
        return response

    def _arm_timer(self) -> None:
        self._cancel_timer()
        timeout = self.settings.response_timeout
        if self._pending is not None:
            self._pending.deadline = self.scheduler.now() + timeout
        self._timer = self.scheduler.call_later(timeout, self._on_timeout)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _await(self, state: PipelineState, intent: ParsedIntent, mutation: Optional[Mutation], match: Optional[MatchResult] = None) -> None:
        self._pending = PendingConfirmation(
            intent=intent,
            deadline=self.scheduler.now() + self.settings.response_timeout,
            mutation=mutation,
            match=match,
        )
        self._transition(state)
        self._arm_timer()

    def _abort(self, reason: str) -> None:
        pending = self._pending
        self._pending = None
        self._cancel_timer()
        if pending is not None:
            self.sessions.add_event_to_session(
                EventType.CORRECTION,
                {
                    "reason": reason,
                    "intent": pending.intent.to_dict(),
                    "mutation": pending.mutation.to_dict() if pending.mutation else None,
                },
                pending.intent.stt_confidence,
            )
        self._transition(PipelineState.IDLE)

    # Utterances

    def handle_utterance(self, text: str, confidence: float = 1.0) -> PipelineResponse:
        """Feed one recognized utterance through the state machine."""
        if self.sessions.get_current_session() is None:
            logger.info("Ignoring utterance without an active session: %r", text)
            return self._respond(Outcome.NO_SESSION)

        self._cancel_timer()
        self.sessions.add_event_to_session(EventType.TRANSCRIPTION, {"text": text}, confidence)

        if self.state == PipelineState.AWAITING_CONFIRMATION:
            return self._handle_confirmation_reply(text, confidence)
        if self.state == PipelineState.DISAMBIGUATING:
            return self._handle_selection(text)
        return self._handle_command(text, confidence)

    def listen(self, audio: bytes, **options: Any) -> PipelineResponse:
        """Transcribe audio through the session's providers, then handle it."""
        transcript = self.sessions.transcribe(audio, **options)
        return self.handle_utterance(transcript.text, transcript.confidence)

    def _handle_command(self, text: str, confidence: float) -> PipelineResponse:
        self._transition(PipelineState.PARSING)
        exercises = self._active_exercises()
        intent = parse_intent(
            text,
            stt_confidence=confidence,
            vocabulary=[exercise.name for exercise in exercises],
            vocabulary_threshold=self.settings.match_threshold,
        )
        self.sessions.add_event_to_session(EventType.INTENT_RECOGNIZED, intent.to_dict(), confidence)

        if intent.kind == IntentKind.UNKNOWN:
            self._transition(PipelineState.IDLE)
            return self._respond(Outcome.NOT_UNDERSTOOD, self.prompts.not_understood(), intent=intent)

        missing = missing_slots(intent)
        if missing:
            self._transition(PipelineState.IDLE)
            return self._respond(Outcome.CLARIFY, self.prompts.clarify(missing), intent=intent)

        if intent.kind == IntentKind.LOG_SET:
            return self._log_set(intent, exercises)
        if intent.kind == IntentKind.EDIT_LAST:
            return self._edit_last(intent, exercises)
        if intent.kind == IntentKind.UNDO_LAST:
            return self._undo_last(intent)
        if intent.kind == IntentKind.REST_TIMER:
            return self._rest_timer_started(intent)
        return self._start_workout(intent)

    def _match(self, intent: ParsedIntent, exercises: Sequence[Exercise]) -> MatchResult:
        self._transition(PipelineState.MATCHING)
        return match_exercise(
            intent.slots["exerciseName"],
            exercises,
            threshold=self.settings.match_threshold,
            accept_score=self.settings.accept_score,
            tie_band=self.settings.tie_band,
            max_candidates=self.settings.max_candidates,
        )

    def _mutation_for(self, intent: ParsedIntent, workout_id: str, candidate: MatchCandidate) -> Mutation:
        if intent.kind == IntentKind.EDIT_LAST:
            changes = _edit_changes(intent)
            changes["exerciseId"] = candidate.exercise_id
            changes["exerciseName"] = candidate.name
            return Mutation(MutationAction.UPDATE_LAST_SET, workout_id, changes=changes)
        draft = SetDraft(
            workout_id=workout_id,
            exercise_id=candidate.exercise_id,
            exercise_name=candidate.name,
            reps=int(intent.slots["reps"]),
            weight_kg=intent.slots.get("weight"),
            rpe=intent.slots.get("rpe"),
            set_index=intent.slots.get("setIndex"),
        )
        return Mutation(MutationAction.COMMIT_SET, workout_id, draft=draft)

    def _route_match(self, intent: ParsedIntent, match: MatchResult, workout_id: str) -> PipelineResponse:
        if match.status == MatchStatus.UNMATCHED:
            self._transition(PipelineState.REJECTED)
            self.sessions.add_event_to_session(
                EventType.CORRECTION,
                {"reason": "exercise_unmatched", "intent": intent.to_dict()},
                intent.stt_confidence,
            )
            self._transition(PipelineState.IDLE)
            prompt = self.prompts.exercise_not_found(intent.slots.get("exerciseName"))
            return self._respond(Outcome.EXERCISE_UNMATCHED, prompt, intent=intent)

        if match.status == MatchStatus.MATCHED and intent.stt_confidence >= self.settings.confidence_threshold:
            candidate = match.candidates[0]
            mutation = self._mutation_for(intent, workout_id, candidate)
            self._await(PipelineState.AWAITING_CONFIRMATION, intent, mutation, match)
            return self._respond(Outcome.AWAITING_CONFIRMATION, self._confirmation_prompt(mutation), intent=intent, mutation=mutation)

        choices = match.candidates[: max(1, self.settings.disambiguation_choices)]
        self._await(PipelineState.DISAMBIGUATING, intent, None, replace(match, candidates=choices))
        return self._respond(Outcome.DISAMBIGUATING, self.prompts.disambiguate(choices), intent=intent)

    def _log_set(self, intent: ParsedIntent, exercises: Sequence[Exercise]) -> PipelineResponse:
        workout_id = self._workout_id()
        if workout_id is None:
            self._transition(PipelineState.IDLE)
            return self._respond(Outcome.CLARIFY, self.prompts.clarify(["workout"]), intent=intent)
        return self._route_match(intent, self._match(intent, exercises), workout_id)

    def _edit_last(self, intent: ParsedIntent, exercises: Sequence[Exercise]) -> PipelineResponse:
        workout_id = self._workout_id()
        if workout_id is None or not self._committed.get(workout_id):
            self._transition(PipelineState.IDLE)
            return self._respond(Outcome.NO_OP, self.prompts.nothing_to_edit(), intent=intent)
        if intent.slots.get("exerciseName"):
            return self._route_match(intent, self._match(intent, exercises), workout_id)

        mutation = Mutation(MutationAction.UPDATE_LAST_SET, workout_id, changes=_edit_changes(intent))
        self._await(PipelineState.AWAITING_CONFIRMATION, intent, mutation)
        return self._respond(Outcome.AWAITING_CONFIRMATION, self._confirmation_prompt(mutation), intent=intent, mutation=mutation)

    def _undo_last(self, intent: ParsedIntent) -> PipelineResponse:
        workout_id = self._workout_id()
        if workout_id is None or not self._committed.get(workout_id):
            self._transition(PipelineState.IDLE)
            return self._respond(Outcome.NO_OP, self.prompts.nothing_to_undo(), intent=intent)

        mutation = Mutation(MutationAction.REVERT_LAST_SET, workout_id)
        self._await(PipelineState.AWAITING_CONFIRMATION, intent, mutation)
        return self._respond(Outcome.AWAITING_CONFIRMATION, self._confirmation_prompt(mutation), intent=intent, mutation=mutation)

    def _rest_timer_started(self, intent: ParsedIntent) -> PipelineResponse:
        seconds = int(intent.slots["seconds"])
        if self._rest_timer is not None:
            self._rest_timer.cancel()
        self._rest_timer = self.scheduler.call_later(seconds, self._on_rest_over)
        self.sessions.add_event_to_session(EventType.SYSTEM, {"action": "rest_timer", "seconds": seconds})
        self._transition(PipelineState.IDLE)
        return self._respond(Outcome.TIMER_STARTED, self.prompts.rest_timer(seconds), intent=intent, result=seconds)

    def _start_workout(self, intent: ParsedIntent) -> PipelineResponse:
        title = intent.slots.get("title")
        workout_id = self.sessions.start_workout(title)
        self._transition(PipelineState.IDLE)
        if workout_id is None:
            return self._respond(Outcome.WORKOUT_FAILED, self.prompts.workout_failed(), intent=intent)
        return self._respond(Outcome.WORKOUT_STARTED, self.prompts.workout_started(title), intent=intent, result=workout_id)

    # Pending answers

    def _confirmation_prompt(self, mutation: Mutation) -> str:
        if mutation.action == MutationAction.COMMIT_SET and mutation.draft is not None:
            return self.prompts.confirm_set(mutation.draft)
        if mutation.action == MutationAction.REVERT_LAST_SET:
            stack = self._committed.get(mutation.workout_id) or []
            return self.prompts.confirm_undo(stack[-1].draft if stack else None)
        return self.prompts.confirm_edit(mutation.changes)

    def _require_pending(self) -> PendingConfirmation:
        if self._pending is None:
            raise RuntimeError(f"No pending confirmation in state {self.state.value}")
        return self._pending

    def _retry_or_give_up(self, reprompt: str) -> PipelineResponse:
        pending = self._require_pending()
        pending.attempts += 1
        if pending.attempts >= self.settings.max_disambiguation_attempts:
            self._abort("unresolved")
            return self._respond(Outcome.CANCELLED, self.prompts.cancelled(), intent=pending.intent)
        self._arm_timer()
        return self._respond(Outcome.REPROMPT, reprompt, intent=pending.intent)

    def _handle_confirmation_reply(self, text: str, confidence: float) -> PipelineResponse:
        pending = self._require_pending()
        if is_negative(text):
            self._abort("rejected_by_user")
            return self._respond(Outcome.CANCELLED, self.prompts.cancelled(), intent=pending.intent)
        if is_affirmative(text):
            return self._persist()

        if self.settings.implicit_continuation:
            follow_up = parse_intent(text, stt_confidence=confidence)
            if follow_up.kind != IntentKind.UNKNOWN:
                # Moving on to the next command accepts the pending one.
                persisted = self._persist()
                if persisted.outcome not in (Outcome.PERSISTED, Outcome.QUEUED):
                    return persisted
                return self._handle_command(text, confidence)

        return self._retry_or_give_up(self.prompts.answer_yes_or_no())

    def _select(self, text: str, candidates: Sequence[MatchCandidate]) -> Optional[MatchCandidate]:
        for word in _words(text):
            index = SELECTION_ORDINALS.get(word)
            if index is not None and index <= len(candidates):
                return candidates[index - 1]
        if len(candidates) == 1 and is_affirmative(text):
            return candidates[0]

        names = [normalize_exercise_name(candidate.name) for candidate in candidates]
        hit = find_best_match(normalize_exercise_name(text), names, threshold=self.settings.match_threshold)
        if hit is None:
            return None
        return candidates[names.index(hit.match)]

    def _handle_selection(self, text: str) -> PipelineResponse:
        pending = self._require_pending()
        if pending.match is None:
            raise RuntimeError("Disambiguating without match candidates")
        candidates = pending.match.candidates
        if is_negative(text):
            self._abort("rejected_by_user")
            return self._respond(Outcome.CANCELLED, self.prompts.cancelled(), intent=pending.intent)

        choice = self._select(text, candidates)
        if choice is None:
            return self._retry_or_give_up(self.prompts.disambiguation_retry(candidates))

        workout_id = self._workout_id()
        if workout_id is None:
            self._abort("no_workout")
            return self._respond(Outcome.CLARIFY, self.prompts.clarify(["workout"]), intent=pending.intent)
        logger.debug("Disambiguated %r to %s", pending.intent.slots.get("exerciseName"), choice.name)
        pending.mutation = self._mutation_for(pending.intent, workout_id, choice)
        return self._persist()

    def _persist(self) -> PipelineResponse:
        pending = self._require_pending()
        if pending.mutation is None:
            raise RuntimeError("Pending confirmation has no mutation to persist")
        mutation = pending.mutation
        self._cancel_timer()
        self._transition(PipelineState.PERSISTING)
        self._pending = None

        payload: Dict[str, Any] = {"intent": pending.intent.kind.value, "utterance": pending.intent.raw_utterance}
        stack = self._committed.get(mutation.workout_id) or []
        if mutation.action != MutationAction.COMMIT_SET and stack and stack[-1].event_id:
            payload["targetEventId"] = stack[-1].event_id

        outcome = self.sessions.submit_mutation(mutation, payload=payload, confidence=pending.intent.stt_confidence)

        if outcome.status == MutationStatus.REJECTED:
            self.sessions.add_event_to_session(
                EventType.CORRECTION,
                {"reason": "validation_failed", "error": outcome.error, "mutation": mutation.to_dict()},
                pending.intent.stt_confidence,
            )
            self._transition(PipelineState.IDLE)
            prompt = self.prompts.rejected(outcome.error or "the server refused it")
            return self._respond(Outcome.VALIDATION_FAILED, prompt, intent=pending.intent, mutation=mutation)

        if outcome.status == MutationStatus.NO_SESSION:
            self._transition(PipelineState.IDLE)
            return self._respond(Outcome.NO_SESSION, intent=pending.intent, mutation=mutation)

        if outcome.status == MutationStatus.PERSISTED and outcome.result is False:
            # The gateway found no set to change.
            self._transition(PipelineState.IDLE)
            prompt = (
                self.prompts.nothing_to_undo()
                if mutation.action == MutationAction.REVERT_LAST_SET
                else self.prompts.nothing_to_edit()
            )
            return self._respond(Outcome.NO_OP, prompt, intent=pending.intent, mutation=mutation, result=False)

        event_id = outcome.event.id if outcome.event is not None else None
        prompt = self._track_committed(mutation, event_id, queued=outcome.status == MutationStatus.QUEUED)
        self._transition(PipelineState.IDLE)
        if outcome.status == MutationStatus.QUEUED:
            return self._respond(Outcome.QUEUED, f"{prompt} {self.prompts.saved_offline()}", intent=pending.intent, mutation=mutation)
        return self._respond(Outcome.PERSISTED, prompt, intent=pending.intent, mutation=mutation, result=outcome.result)

    def _track_committed(self, mutation: Mutation, event_id: Optional[str], queued: bool) -> str:
        stack = self._committed.setdefault(mutation.workout_id, [])
        change: Optional[LocalChange] = None
        if mutation.action == MutationAction.COMMIT_SET and mutation.draft is not None:
            entry = CommittedSet(mutation.draft, event_id)
            stack.append(entry)
            change = LocalChange(mutation.action, mutation.workout_id, entry)
            prompt = self.prompts.set_logged(mutation.draft)
        elif mutation.action == MutationAction.REVERT_LAST_SET:
            if stack:
                entry = stack.pop()
                change = LocalChange(mutation.action, mutation.workout_id, entry, index=len(stack))
            prompt = self.prompts.undone()
        else:
            if stack:
                entry = stack[-1]
                previous = entry.draft
                entry.draft = _apply_changes(previous, mutation.changes)
                change = LocalChange(mutation.action, mutation.workout_id, entry, previous=previous)
            prompt = self.prompts.edited(mutation.changes)

        if queued and event_id is not None and change is not None:
            self._queued_changes[event_id] = change
        return prompt

    # Replay rejections

    def _on_notification(self, notification: Notification) -> None:
        if notification.kind != NotificationKind.SYNC_REJECTED:
            return
        event = notification.payload.get("event")
        if event is None or event.type != EventType.CONFIRMATION:
            return
        if not event.payload.get("mutation") or event.payload.get("applied"):
            return

        self._rejected_events.add(event.id)
        change = self._queued_changes.pop(event.id, None)
        if change is not None:
            self._roll_back(change)

        error = notification.payload.get("error") or "the server refused it"
        logger.warning("Queued %s was rejected on replay: %s", event.payload["mutation"].get("action"), error)
        self.sessions.add_event_to_session(
            EventType.CORRECTION,
            {"reason": "validation_failed", "error": error, "mutation": event.payload["mutation"], "eventId": event.id},
            event.confidence,
        )
        # A dependent undo or edit fails along with its set; one rejection is spoken.
        if not notification.payload.get("dependent"):
            self._say(self.prompts.rejected(error))

    def _roll_back(self, change: LocalChange) -> None:
        stack = self._committed.get(change.workout_id)
        if stack is None:
            return
        present = any(entry is change.entry for entry in stack)
        if change.action == MutationAction.COMMIT_SET:
            if present:
                stack[:] = [entry for entry in stack if entry is not change.entry]
        elif change.action == MutationAction.REVERT_LAST_SET:
            if not present and change.entry.event_id not in self._rejected_events:
                stack.insert(min(change.index, len(stack)), change.entry)
        elif present and change.previous is not None:
            change.entry.draft = change.previous

    # Timers

    def _on_timeout(self) -> None:
        self._timer = None
        if self._pending is None:
            return
        if self.state == PipelineState.AWAITING_CONFIRMATION and self.settings.accept_on_timeout:
            logger.info("No answer; accepting pending %s", self._pending.intent.kind.value)
            self._persist()
            return
        intent = self._pending.intent
        self._abort("timeout")
        self._respond(Outcome.TIMED_OUT, self.prompts.timed_out(), intent=intent)

    def _on_rest_over(self) -> None:
        self._rest_timer = None
        if self.sessions.get_current_session() is None:
            return
        self.sessions.add_event_to_session(EventType.SYSTEM, {"action": "rest_over"})
        self._say(self.prompts.rest_over())
