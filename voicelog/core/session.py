"""Voice session lifecycle, event buffering and offline reconciliation.

The session manager is the only owner of the session arena and the sync
queue. Local state is the source of truth; the persistence gateway is kept
eventually consistent through best-effort sync calls whose failures land in
the queue instead of propagating into the interaction loop.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from voicelog.core.connectivity import ConnectivityProbe
from voicelog.core.gateway import GatewayError, GatewayValidationError, PersistenceGateway, TransientGatewayError
from voicelog.core.models import (
    EventType,
    Mutation,
    MutationAction,
    SessionStatus,
    SessionType,
    SyncQueueItem,
    VoiceEvent,
    VoiceSession,
)
from voicelog.core.prompts import speakable
from voicelog.core.providers import ProviderError, ProviderRegistry, Transcript
from voicelog.core.sync_queue import SyncQueue

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TIMEOUT = 300.0
DEFAULT_MAX_DRAIN_PASSES = 3
DEFAULT_RETRY_BACKOFF = 2.0
DEFAULT_MAX_RETRY_BACKOFF = 60.0


class NotificationKind(str, Enum):
    SESSION_STARTED = "sessionStarted"
    SESSION_ENDED = "sessionEnded"
    EVENT_ADDED = "eventAdded"
    ONLINE_STATUS_CHANGED = "onlineStatusChanged"
    PROVIDER_FAILED = "providerFailed"
    SYNC_REJECTED = "syncRejected"


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    payload: Dict[str, Any] = field(default_factory=dict)


Listener = Callable[[Notification], None]


class MutationStatus(str, Enum):
    PERSISTED = "persisted"
    QUEUED = "queued"
    REJECTED = "rejected"
    NO_SESSION = "no_session"


@dataclass(frozen=True)
class MutationOutcome:
    status: MutationStatus
    result: Any = None
    error: Optional[str] = None
    event: Optional[VoiceEvent] = None


class SessionManager:
    """Owns voice sessions, their event logs and the sync queue."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        connectivity: ConnectivityProbe,
        providers: Optional[ProviderRegistry] = None,
        session_timeout: float = DEFAULT_SESSION_TIMEOUT,
        stt_provider: Optional[str] = None,
        stt_fallback: Optional[str] = None,
        tts_provider: Optional[str] = None,
        tts_fallback: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        queue: Optional[SyncQueue] = None,
        max_drain_passes: int = DEFAULT_MAX_DRAIN_PASSES,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
        max_retry_backoff: float = DEFAULT_MAX_RETRY_BACKOFF,
    ) -> None:
        self.gateway = gateway
        self.connectivity = connectivity
        self.providers = providers or ProviderRegistry()
        self.session_timeout = session_timeout
        self.stt_provider = stt_provider
        self.stt_fallback = stt_fallback
        self.tts_provider = tts_provider
        self.tts_fallback = tts_fallback
        self.clock = clock
        self.queue = queue if queue is not None else SyncQueue()
        self.max_drain_passes = max(1, max_drain_passes)
        self.retry_backoff = max(0.0, retry_backoff)
        self.max_retry_backoff = max(self.retry_backoff, max_retry_backoff)

        self._sessions: Dict[str, VoiceSession] = {}
        self._current_id: Optional[str] = None
        self._pending_end: Set[str] = set()
        self._rejected_events: Set[str] = set()
        self._listeners: List[Listener] = []
        self._online = connectivity.is_online()
        connectivity.subscribe(self.handle_connectivity_change)

    # Observers

    def subscribe(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, kind: NotificationKind, **payload: Any) -> None:
        notification = Notification(kind=kind, payload=payload)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("Listener %r failed on %s", listener, kind.value)

    # Pull API

    @property
    def is_online(self) -> bool:
        return self._online

    def get_current_session(self) -> Optional[VoiceSession]:
        if self._current_id is None:
            return None
        session = self._sessions.get(self._current_id)
        if session is None or not session.is_active:
            return None
        return session

    def get_session(self, session_id: str) -> Optional[VoiceSession]:
        return self._sessions.get(session_id)

    def get_all_sessions(self) -> List[VoiceSession]:
        return list(self._sessions.values())

    # Lifecycle

    def start_session(
        self,
        session_type: Union[SessionType, str] = SessionType.WORKOUT,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> VoiceSession:
        """Start a session, ending any active one first. Never blocks on the network."""
        if self.get_current_session() is not None:
            self.end_session()

        session = VoiceSession(
            id=uuid.uuid4().hex,
            type=SessionType(session_type),
            start_time=self.clock(),
            metadata=dict(metadata or {}),
        )
        self._sessions[session.id] = session
        self._current_id = session.id

        if self._online:
            try:
                self._register(session)
            except GatewayError as exc:
                logger.warning("Could not register session %s remotely: %s", session.id, exc)

        logger.info("Started %s voice session %s", session.type.value, session.id)
        self._notify(NotificationKind.SESSION_STARTED, session=session)
        return session

    def end_session(self) -> Optional[VoiceSession]:
        """Complete the active session; a no-op when none is active."""
        session = self.get_current_session()
        if session is None:
            return None

        self._record(session, self._new_event(EventType.SYSTEM, {"action": "session_ended"}))
        session.end_time = self.clock()
        session.status = SessionStatus.COMPLETED
        self._pending_end.add(session.id)
        if self._online:
            self._finish_pending_ends()

        logger.info("Ended voice session %s after %.1fs", session.id, session.duration or 0.0)
        self._notify(NotificationKind.SESSION_ENDED, session=session)
        return session

    def cancel_session(self) -> Optional[VoiceSession]:
        """Flush what can be synced now, then complete the active session."""
        if self._online:
            self.flush()
        return self.end_session()

    def set_metadata(self, key: str, value: Any) -> None:
        session = self.get_current_session()
        if session is not None:
            session.metadata[key] = value

    def clear_expired_sessions(self, now: Optional[float] = None) -> int:
        """Evict completed sessions older than the timeout; returns the count evicted.

        Sessions with undelivered events stay in the arena.
        """
        cutoff = (self.clock() if now is None else now) - self.session_timeout
        expired = [
            session.id
            for session in self._sessions.values()
            if session.status == SessionStatus.COMPLETED
            and session.end_time is not None
            and session.end_time < cutoff
            and not self.queue.pending_for(session.id)
            and session.id not in self._pending_end
        ]
        for session_id in expired:
            del self._sessions[session_id]
        if expired:
            logger.debug("Evicted %d expired sessions", len(expired))
        return len(expired)

    # Events

    def _new_event(self, event_type: EventType, payload: Dict[str, Any], confidence: Optional[float] = None) -> VoiceEvent:
        return VoiceEvent(
            id=uuid.uuid4().hex,
            type=event_type,
            payload=dict(payload),
            timestamp=self.clock(),
            confidence=confidence,
        )

    def add_event_to_session(
        self,
        event_type: Union[EventType, str],
        payload: Optional[Dict[str, Any]] = None,
        confidence: Optional[float] = None,
    ) -> Optional[VoiceEvent]:
        """Append an event to the active session and sync it, or queue it."""
        session = self.get_current_session()
        if session is None:
            logger.debug("No active session; dropping %s event", event_type)
            return None
        event = self._new_event(EventType(event_type), payload or {}, confidence)
        self._record(session, event)
        return event

    def _record(self, session: VoiceSession, event: VoiceEvent, force_queue: bool = False) -> Optional[SyncQueueItem]:
        """Deliver ``event`` now or queue it; returns the queued item, if any."""
        session.events.append(event)
        self._notify(NotificationKind.EVENT_ADDED, session=session, event=event)

        # Behind a backlog the event waits its turn; draining is left to
        # reconnects and ``retry_pending``.
        if force_queue or not self._online or self.queue.pending_for(session.id):
            return self.queue.push(session.id, event)

        item = SyncQueueItem(session_id=session.id, event=event)
        try:
            self._deliver(session, item)
        except TransientGatewayError as exc:
            logger.warning("Sync of %s event failed, queued for retry: %s", event.type.value, exc)
            self._schedule_retry(item)
            return self.queue.push_item(item)
        except GatewayValidationError as exc:
            self._reject(item, exc)
        return None

    def _backoff(self, retry_count: int) -> float:
        if retry_count < 1:
            return 0.0
        return min(self.max_retry_backoff, self.retry_backoff * 2 ** (retry_count - 1))

    def _schedule_retry(self, item: SyncQueueItem) -> None:
        item.retry_count += 1
        item.next_attempt_at = self.clock() + self._backoff(item.retry_count)

    def _register(self, session: VoiceSession) -> None:
        session.remote_id = self.gateway.create_session(session.type.value, session.metadata)
        logger.debug("Session %s registered as %s", session.id, session.remote_id)

    def _apply_mutation(self, mutation: Mutation) -> Any:
        if mutation.action == MutationAction.COMMIT_SET:
            if mutation.draft is None:
                raise GatewayValidationError("commit_set mutation without a set")
            return self.gateway.commit_set(mutation.workout_id, mutation.draft)
        if mutation.action == MutationAction.REVERT_LAST_SET:
            return self.gateway.revert_last_set(mutation.workout_id)
        return self.gateway.update_last_set(mutation.workout_id, mutation.changes)

    def _deliver(self, session: VoiceSession, item: SyncQueueItem) -> None:
        """Push one item to the gateway, applying a deferred mutation first."""
        if session.remote_id is None:
            self._register(session)

        payload = item.event.payload
        if item.carries_mutation:
            target = payload.get("targetEventId")
            if target and target in self._rejected_events:
                raise GatewayValidationError(f"the set it refers to was rejected (event {target})")
            result = self._apply_mutation(Mutation.from_dict(payload["mutation"]))
            # Mark applied so a failed append never replays the mutation.
            item.event = replace(item.event, payload={**payload, "applied": True, "result": result})

        self.gateway.append_event(session.remote_id, item.event)

    def _reject(self, item: SyncQueueItem, exc: GatewayValidationError) -> None:
        """Report a non-retryable failure; queued mutations aimed at this one fail with it."""
        logger.error("Gateway rejected %s event %s: %s", item.event.type.value, item.event.id, exc)
        target = item.event.payload.get("targetEventId")
        if item.carries_mutation:
            self._rejected_events.add(item.event.id)
        self._notify(
            NotificationKind.SYNC_REJECTED,
            session_id=item.session_id,
            event=item.event,
            error=str(exc),
            dependent=bool(target and target in self._rejected_events),
        )

    # Mutations

    def submit_mutation(
        self,
        mutation: Mutation,
        payload: Optional[Dict[str, Any]] = None,
        confidence: Optional[float] = None,
    ) -> MutationOutcome:
        """Write a confirmed mutation through the gateway, or queue it for replay.

        Validation failures are returned, not raised, so the caller can speak
        the rejection.
        """
        session = self.get_current_session()
        if session is None:
            return MutationOutcome(MutationStatus.NO_SESSION)

        body = dict(payload or {})
        body["mutation"] = mutation.to_dict()

        if not self._online or self.queue.pending_for(session.id):
            event = self._new_event(EventType.CONFIRMATION, {**body, "applied": False}, confidence)
            self._record(session, event, force_queue=True)
            return MutationOutcome(MutationStatus.QUEUED, event=event)

        try:
            result = self._apply_mutation(mutation)
        except GatewayValidationError as exc:
            logger.error("Gateway rejected %s: %s", mutation.action.value, exc)
            return MutationOutcome(MutationStatus.REJECTED, error=str(exc))
        except TransientGatewayError as exc:
            logger.warning("%s failed, queued for retry: %s", mutation.action.value, exc)
            event = self._new_event(EventType.CONFIRMATION, {**body, "applied": False}, confidence)
            queued = self._record(session, event, force_queue=True)
            if queued is not None:
                self._schedule_retry(queued)
            return MutationOutcome(MutationStatus.QUEUED, event=event)

        event = self._new_event(EventType.CONFIRMATION, {**body, "applied": True, "result": result}, confidence)
        self._record(session, event)
        return MutationOutcome(MutationStatus.PERSISTED, result=result, event=event)

    def start_workout(self, title: Optional[str]) -> Optional[str]:
        """Create a workout for the active session; None when it cannot be created now."""
        session = self.get_current_session()
        if session is None:
            return None
        if not self._online:
            logger.warning("Cannot create a workout while offline")
            return None
        try:
            workout_id = self.gateway.create_workout(title)
        except GatewayError as exc:
            logger.warning("Could not create workout: %s", exc)
            return None

        session.metadata["workoutId"] = workout_id
        self._record(session, self._new_event(EventType.SYSTEM, {"action": "workout_started", "workoutId": workout_id, "title": title}))
        return workout_id

    # Connectivity and reconciliation

    def handle_connectivity_change(self, is_online: bool) -> None:
        changed = is_online != self._online
        self._online = is_online
        if not changed:
            return
        logger.info("Connectivity changed: %s", "online" if is_online else "offline")
        self._notify(NotificationKind.ONLINE_STATUS_CHANGED, online=is_online)
        if is_online:
            self.flush()

    def flush(self) -> int:
        """Drain the sync queue in enqueue order, ignoring retry backoff.

        Returns the number of events delivered. A failed item keeps its place
        with ``retry_count`` incremented and is retried on the next pass,
        after the items behind it. Draining stops when the queue is empty, a
        pass makes no progress or the pass limit is hit.
        """
        if not self._online:
            return 0

        for session in self._sessions.values():
            if session.remote_id is None and not self.queue.pending_for(session.id):
                try:
                    self._register(session)
                except GatewayError as exc:
                    logger.warning("Could not register session %s remotely: %s", session.id, exc)

        delivered = 0
        for _ in range(self.max_drain_passes):
            if not self._online or not len(self.queue):
                break
            sent, progress = self._drain_pass(due_only=False)
            delivered += sent
            if not progress:
                break

        if delivered:
            logger.info("Synced %d queued events; %d remaining", delivered, len(self.queue))
        self._finish_pending_ends()
        return delivered

    def retry_pending(self) -> int:
        """One pass over queued items whose retry backoff has elapsed.

        Meant to be called from the host loop between utterances; each item
        is attempted at most once, so the call stays short.
        """
        if not self._online or not len(self.queue):
            return 0
        delivered, _ = self._drain_pass(due_only=True)
        if delivered:
            logger.info("Synced %d queued events; %d remaining", delivered, len(self.queue))
        self._finish_pending_ends()
        return delivered

    def _drain_pass(self, due_only: bool) -> Tuple[int, bool]:
        now = self.clock()
        delivered = 0
        progress = False
        # Sessions whose remaining mutations must wait for an earlier one.
        held: Set[str] = set()
        for item in list(self.queue):
            if not self._online:
                break
            session = self._sessions.get(item.session_id)
            if session is None:
                logger.warning("Dropping queued event %s for unknown session %s", item.event.id, item.session_id)
                self.queue.discard(item)
                continue
            if item.carries_mutation and item.session_id in held:
                continue
            if due_only and item.next_attempt_at > now:
                if item.carries_mutation:
                    held.add(item.session_id)
                continue
            try:
                self._deliver(session, item)
            except TransientGatewayError as exc:
                self._schedule_retry(item)
                logger.warning("Replay of event %s failed (attempt %d): %s", item.event.id, item.retry_count, exc)
                if item.carries_mutation:
                    held.add(item.session_id)
                continue
            except GatewayValidationError as exc:
                self.queue.discard(item)
                self._reject(item, exc)
            else:
                self.queue.discard(item)
                delivered += 1
            progress = True
        return delivered, progress

    def _finish_pending_ends(self) -> None:
        for session_id in sorted(self._pending_end):
            session = self._sessions.get(session_id)
            if session is None:
                self._pending_end.discard(session_id)
                continue
            if session.remote_id is None or self.queue.pending_for(session_id):
                continue
            try:
                self.gateway.end_session(session.remote_id)
            except TransientGatewayError as exc:
                logger.warning("Could not end session %s remotely: %s", session_id, exc)
                continue
            except GatewayValidationError as exc:
                logger.error("Gateway rejected end of session %s: %s", session_id, exc)
            self._pending_end.discard(session_id)

    # Speech providers

    def _candidates(self, primary: Optional[str], fallback: Optional[str]) -> List[str]:
        names = [name for name in (primary, fallback) if name]
        return list(dict.fromkeys(names))

    def transcribe(self, audio: bytes, **options: Any) -> Transcript:
        """Transcribe with the default STT provider, falling back once."""
        names = self._candidates(self.stt_provider, self.stt_fallback)
        last_error: Optional[Exception] = None
        for name in names:
            try:
                return self.providers.stt(name).transcribe(audio, **options)
            except Exception as exc:
                last_error = exc
                logger.warning("Speech-to-text provider %s failed: %s", name, exc)
        self._notify(NotificationKind.PROVIDER_FAILED, capability="stt", providers=names, error=str(last_error))
        raise ProviderError(f"Speech-to-text failed with providers {names or 'none'}: {last_error}") from last_error

    def speak(self, text: str, **options: Any) -> str:
        """Speak ``text`` with the default TTS provider, falling back once.

        Returns the normalized text actually spoken.
        """
        spoken = speakable(text)
        names = self._candidates(self.tts_provider, self.tts_fallback)
        last_error: Optional[Exception] = None
        for name in names:
            try:
                self.providers.tts(name).speak(spoken, **options)
            except Exception as exc:
                last_error = exc
                logger.warning("Text-to-speech provider %s failed: %s", name, exc)
                continue
            if self.get_current_session() is not None:
                self.add_event_to_session(EventType.TTS, {"text": spoken, "provider": name})
            return spoken
        self._notify(NotificationKind.PROVIDER_FAILED, capability="tts", providers=names, error=str(last_error))
        raise ProviderError(f"Text-to-speech failed with providers {names or 'none'}: {last_error}") from last_error
