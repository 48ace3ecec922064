"""
Diff detection for sync engine.

Compares the cloud and local peer sets to determine which writes a
reconciliation pass needs to apply.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from config.settings import ConflictResolution, SyncDirection

from ..peers.models import PeerRecord
from .resolver import Side, resolve_conflict

logger = logging.getLogger(__name__)


class ChangeType(Enum):
    """Writes a pass can apply."""

    # Cloud peer missing locally - create it on the local agent
    CREATE_LOCAL = "create_local"

    # Cloud version won a conflict - overwrite the local peer
    UPDATE_LOCAL = "update_local"

    # Local peer missing in the cloud - create it in the cloud
    CREATE_CLOUD = "create_cloud"

    # Local version won a conflict - overwrite the cloud peer
    UPDATE_CLOUD = "update_cloud"

    @property
    def targets_local(self) -> bool:
        return self in (ChangeType.CREATE_LOCAL, ChangeType.UPDATE_LOCAL)

    @property
    def is_create(self) -> bool:
        return self in (ChangeType.CREATE_LOCAL, ChangeType.CREATE_CLOUD)


@dataclass(frozen=True)
class SyncAction:
    """
    One write to apply.

    Attributes:
        change_type: What to do
        peer: The version to write
    """
    change_type: ChangeType
    peer: PeerRecord

    def __repr__(self) -> str:
        return f"SyncAction({self.change_type.name}, peer={self.peer.id})"


def index_by_id(peers: list[PeerRecord]) -> dict[str, PeerRecord]:
    """Build an id lookup map. The id is the only cross-store join key."""
    return {peer.id: peer for peer in peers}


def compute_actions(
    cloud_peers: list[PeerRecord],
    local_peers: list[PeerRecord],
    direction: SyncDirection,
    policy: ConflictResolution,
) -> list[SyncAction]:
    """
    Compute the writes needed to reconcile both peer sets.

    Rules, per leg enabled by the direction:
    - Peer only on the source side → create on the target side
    - Peer on both sides with identical updated_at → nothing
    - Peer on both sides with differing updated_at → resolve; write to the
      target only if the source side wins

    The cloud→local leg is planned before the local→cloud leg and each leg
    follows the iteration order of its fetched list.

    Args:
        cloud_peers: Full cloud peer set
        local_peers: Full local peer set
        direction: Configured sync direction
        policy: Configured conflict resolution policy

    Returns:
        Ordered list of SyncAction
    """
    cloud_by_id = index_by_id(cloud_peers)
    local_by_id = index_by_id(local_peers)

    actions: list[SyncAction] = []

    if direction.pushes_to_local:
        for cloud_peer in cloud_peers:
            local_peer = local_by_id.get(cloud_peer.id)

            if local_peer is None:
                actions.append(SyncAction(ChangeType.CREATE_LOCAL, cloud_peer))
            elif cloud_peer.updated_at == local_peer.updated_at:
                logger.debug(f"Peer {cloud_peer.id} unchanged, skipping")
            elif resolve_conflict(cloud_peer, local_peer, policy) == Side.CLOUD:
                actions.append(SyncAction(ChangeType.UPDATE_LOCAL, cloud_peer))

    if direction.pushes_to_cloud:
        for local_peer in local_peers:
            cloud_peer = cloud_by_id.get(local_peer.id)

            if cloud_peer is None:
                actions.append(SyncAction(ChangeType.CREATE_CLOUD, local_peer))
            elif cloud_peer.updated_at != local_peer.updated_at:
                if resolve_conflict(cloud_peer, local_peer, policy) == Side.LOCAL:
                    actions.append(SyncAction(ChangeType.UPDATE_CLOUD, local_peer))

    return actions
