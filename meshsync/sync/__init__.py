"""Peer reconciliation engine module."""

from .diff import ChangeType, SyncAction, compute_actions
from .engine import SyncEngine, SyncResult
from .errors import FetchFailedError, NotConfiguredError, SyncError, WriteFailedError
from .resolver import Side, resolve_conflict
from .scheduler import SyncScheduler

__all__ = [
    "ChangeType",
    "FetchFailedError",
    "NotConfiguredError",
    "Side",
    "SyncAction",
    "SyncEngine",
    "SyncError",
    "SyncResult",
    "SyncScheduler",
    "WriteFailedError",
    "compute_actions",
    "resolve_conflict",
]
