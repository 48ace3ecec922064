"""Persistent status and history storage module."""

from .kv_store import KeyValueStore, KeyValueStoreError
from .models import SyncHistoryEntry, SyncStatus
from .state_store import SyncEvent, SyncStateStore

__all__ = [
    "KeyValueStore",
    "KeyValueStoreError",
    "SyncEvent",
    "SyncHistoryEntry",
    "SyncStateStore",
    "SyncStatus",
]
