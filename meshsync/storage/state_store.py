"""
Sync status and history store.

Keeps the engine's status singleton and the bounded audit trail of
reconciliation passes in the durable key-value store, and notifies
subscribers after every change.
"""

import logging
import threading
from enum import Enum
from typing import Any, Callable

from .kv_store import KeyValueStore
from .models import SyncHistoryEntry, SyncStatus

logger = logging.getLogger(__name__)


class SyncEvent(Enum):
    """Notifications broadcast to subscribers."""
    STATUS_CHANGED = "sync-status-changed"
    HISTORY_UPDATED = "sync-history-updated"


Subscriber = Callable[[SyncEvent, Any], None]


class SyncStateStore:
    """
    Durable status and history for the sync engine.

    Every mutating call persists synchronously and then notifies
    subscribers before returning. History is kept newest first and capped
    at MAX_HISTORY_ENTRIES; the oldest entries are evicted on overflow.

    Usage:
        store = SyncStateStore(KeyValueStore(Path("data/sync_state.db")))

        unsubscribe = store.subscribe(lambda event, payload: print(event, payload))
        store.update_status(is_running=True)
        unsubscribe()
    """

    STATUS_KEY = "sync_status"
    HISTORY_KEY = "sync_history"
    MAX_HISTORY_ENTRIES = 50

    def __init__(self, kv_store: KeyValueStore):
        self.kv_store = kv_store
        self._lock = threading.RLock()
        self._subscribers: list[Subscriber] = []

    # ============================================================
    # Status
    # ============================================================

    def get_status(self) -> SyncStatus:
        """
        Return the current status.

        Defaults are returned until the first update is persisted.
        """
        data = self.kv_store.get(self.STATUS_KEY)
        if not isinstance(data, dict):
            return SyncStatus()

        try:
            return SyncStatus.from_dict(data)
        except (TypeError, ValueError) as e:
            logger.warning(f"Stored sync status is unreadable, using defaults: {e}")
            return SyncStatus()

    def update_status(self, **changes) -> SyncStatus:
        """
        Merge the given fields into the status.

        Fields not named keep their prior value.

        Returns:
            The new status
        """
        with self._lock:
            status = self.get_status().merged(**changes)
            self.kv_store.set(self.STATUS_KEY, status.to_dict())

        self._notify(SyncEvent.STATUS_CHANGED, status)
        return status

    # ============================================================
    # History
    # ============================================================

    def get_history(self) -> list[SyncHistoryEntry]:
        """Return the history, newest first."""
        data = self.kv_store.get(self.HISTORY_KEY, default=[])
        if not isinstance(data, list):
            logger.warning("Stored sync history is not a list, ignoring it")
            return []

        entries = []
        for item in data:
            try:
                entries.append(SyncHistoryEntry.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable history entry: {e}")
        return entries

    def append_history(self, entry: SyncHistoryEntry) -> list[SyncHistoryEntry]:
        """
        Prepend an entry and truncate to MAX_HISTORY_ENTRIES.

        Returns:
            The updated history
        """
        with self._lock:
            history = [entry] + self.get_history()
            history = history[:self.MAX_HISTORY_ENTRIES]
            self.kv_store.set(self.HISTORY_KEY, [e.to_dict() for e in history])

        self._notify(SyncEvent.HISTORY_UPDATED, list(history))
        return history

    def clear_history(self) -> None:
        """Remove every history entry."""
        with self._lock:
            self.kv_store.delete(self.HISTORY_KEY)

        logger.info("Sync history cleared")
        self._notify(SyncEvent.HISTORY_UPDATED, [])

    # ============================================================
    # Subscribers
    # ============================================================

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for status and history changes.

        Args:
            callback: Called as ``callback(event, payload)``

        Returns:
            A function that removes the subscription
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, event: SyncEvent, payload: Any) -> None:
        """Deliver an event to every subscriber; failures are only logged."""
        with self._lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event, payload)
            except Exception as e:
                logger.error(f"Subscriber failed handling {event.value}: {e}", exc_info=True)

