"""
Conflict resolution between the cloud and local versions of a peer.
"""

from enum import Enum

from config.settings import ConflictResolution

from ..peers.models import PeerRecord


class Side(str, Enum):
    """The store whose version of a peer wins."""
    CLOUD = "cloud"
    LOCAL = "local"


def resolve_conflict(
    cloud_peer: PeerRecord,
    local_peer: PeerRecord,
    policy: ConflictResolution,
) -> Side:
    """
    Decide which version of a peer wins.

    Only meaningful when the same id exists in both stores. Pure: no I/O,
    same inputs always give the same winner.

    Rules:
    - cloud_wins → CLOUD
    - local_wins → LOCAL
    - newest_wins → the strictly later updated_at; ties go to CLOUD

    Args:
        cloud_peer: Cloud store version
        local_peer: Local agent version
        policy: Configured conflict resolution policy

    Returns:
        The winning side
    """
    if policy == ConflictResolution.CLOUD_WINS:
        return Side.CLOUD

    if policy == ConflictResolution.LOCAL_WINS:
        return Side.LOCAL

    if policy == ConflictResolution.NEWEST_WINS:
        if local_peer.updated_at_datetime > cloud_peer.updated_at_datetime:
            return Side.LOCAL
        return Side.CLOUD

    raise ValueError(f"Unknown conflict resolution policy: {policy!r}")
