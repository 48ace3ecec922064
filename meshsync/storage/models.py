"""
Persistent state storage models.

These models record what the sync engine is doing and what it has done.
"""

import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class SyncStatus:
    """
    Process-wide engine status.

    Attributes:
        is_running: Whether a reconciliation pass is in progress
        last_sync: Completion time of the last successful pass
        last_error: Error text of the last failed pass, cleared on success
        direction: Direction of the most recent pass
        pending_changes: Actions planned but not yet applied
    """
    is_running: bool = False
    last_sync: Optional[str] = None
    last_error: Optional[str] = None
    direction: Optional[str] = None
    pending_changes: int = 0

    def merged(self, **changes) -> "SyncStatus":
        """Return a copy with the given fields replaced."""
        unknown = set(changes) - set(self.to_dict())
        if unknown:
            raise TypeError(f"Unknown status fields: {sorted(unknown)}")
        return replace(self, **changes)

    def to_dict(self) -> dict:
        """Convert to dictionary for storage."""
        return {
            "is_running": self.is_running,
            "last_sync": self.last_sync,
            "last_error": self.last_error,
            "direction": self.direction,
            "pending_changes": self.pending_changes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncStatus":
        """Create from dictionary."""
        return cls(
            is_running=bool(data.get("is_running", False)),
            last_sync=data.get("last_sync"),
            last_error=data.get("last_error"),
            direction=data.get("direction"),
            pending_changes=int(data.get("pending_changes") or 0),
        )


@dataclass(frozen=True)
class SyncHistoryEntry:
    """
    Immutable audit record of one reconciliation pass.

    Attributes:
        id: Unique entry identifier
        timestamp: When the pass finished
        success: Whether the pass completed
        message: Summary or captured error text
        direction: Direction the pass ran in
        records_synced: Writes applied (0 on failure)
        duration_ms: Elapsed time up to completion or failure
    """
    id: str
    timestamp: str
    success: bool
    message: str
    direction: Optional[str]
    records_synced: int = 0
    duration_ms: int = 0

    @classmethod
    def create(
        cls,
        success: bool,
        message: str,
        direction: Optional[str],
        records_synced: int = 0,
        duration_ms: int = 0,
    ) -> "SyncHistoryEntry":
        """Create a new entry with a fresh id and the current timestamp."""
        return cls(
            id=str(uuid.uuid4()),
            timestamp=utc_now_iso(),
            success=success,
            message=message,
            direction=direction,
            records_synced=records_synced,
            duration_ms=duration_ms,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for storage."""
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "success": self.success,
            "message": self.message,
            "direction": self.direction,
            "records_synced": self.records_synced,
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncHistoryEntry":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            timestamp=data["timestamp"],
            success=bool(data["success"]),
            message=data.get("message", ""),
            direction=data.get("direction"),
            records_synced=int(data.get("records_synced") or 0),
            duration_ms=int(data.get("duration_ms") or 0),
        )
