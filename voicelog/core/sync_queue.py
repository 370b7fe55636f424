"""FIFO buffer of voice events awaiting delivery to the persistence gateway."""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Iterator, Optional

from voicelog.core.models import SyncQueueItem, VoiceEvent

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUEUE_SIZE = 1000


class SyncQueue:
    """Bounded queue of pending deliveries.

    When full, the oldest item without an unapplied mutation is dropped with a
    warning. Confirmed mutations are never dropped; if nothing else can go,
    the queue grows past ``max_size``.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_QUEUE_SIZE) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._items: Deque[SyncQueueItem] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[SyncQueueItem]:
        return iter(list(self._items))

    def push(self, session_id: str, event: VoiceEvent, retry_count: int = 0) -> SyncQueueItem:
        return self.push_item(SyncQueueItem(session_id=session_id, event=event, retry_count=retry_count))

    def push_item(self, item: SyncQueueItem) -> SyncQueueItem:
        if len(self._items) >= self.max_size:
            self._make_room()
        self._items.append(item)
        return item

    def _make_room(self) -> None:
        victim: Optional[SyncQueueItem] = next((item for item in self._items if not item.carries_mutation), None)
        if victim is None:
            logger.warning(
                "Sync queue over capacity (%d); every queued item is an unsynced mutation",
                self.max_size,
            )
            return
        self.discard(victim)
        logger.warning(
            "Sync queue full (%d); dropping oldest event %s for session %s",
            self.max_size,
            victim.event.id,
            victim.session_id,
        )

    def discard(self, item: SyncQueueItem) -> bool:
        """Remove ``item`` (by identity); False when it is no longer queued."""
        for index, queued in enumerate(self._items):
            if queued is item:
                del self._items[index]
                return True
        return False

    def pending_for(self, session_id: str) -> int:
        return sum(1 for item in self._items if item.session_id == session_id)

    def clear(self) -> None:
        self._items.clear()
