"""
Unit tests for diff computation logic.
"""

import pytest

from config.settings import ConflictResolution, SyncDirection
from meshsync.sync.diff import ChangeType, SyncAction, compute_actions, index_by_id

from conftest import make_peer


BIDI = SyncDirection.BIDIRECTIONAL
NEWEST = ConflictResolution.NEWEST_WINS


def summary(actions: list[SyncAction]) -> list[tuple[ChangeType, str]]:
    return [(a.change_type, a.peer.id) for a in actions]


class TestChangeType:
    """Tests for ChangeType enum."""

    def test_targets_local(self):
        """Test which change types write to the local agent."""
        assert ChangeType.CREATE_LOCAL.targets_local is True
        assert ChangeType.UPDATE_LOCAL.targets_local is True
        assert ChangeType.CREATE_CLOUD.targets_local is False
        assert ChangeType.UPDATE_CLOUD.targets_local is False

    def test_is_create(self):
        """Test which change types are creates."""
        assert ChangeType.CREATE_LOCAL.is_create is True
        assert ChangeType.CREATE_CLOUD.is_create is True
        assert ChangeType.UPDATE_LOCAL.is_create is False
        assert ChangeType.UPDATE_CLOUD.is_create is False


class TestComputeActions:
    """Tests for compute_actions function."""

    def test_empty_sides(self):
        """Test that nothing is planned for two empty stores."""
        assert compute_actions([], [], BIDI, NEWEST) == []

    def test_cloud_only_peer_created_locally(self):
        """Test a cloud-only peer is pushed to the local agent."""
        peer = make_peer("A")

        actions = compute_actions([peer], [], BIDI, NEWEST)

        assert summary(actions) == [(ChangeType.CREATE_LOCAL, "A")]
        assert actions[0].peer is peer

    def test_local_only_peer_created_in_cloud(self):
        """Test a local-only peer is pushed to the cloud."""
        actions = compute_actions([], [make_peer("B")], BIDI, NEWEST)

        assert summary(actions) == [(ChangeType.CREATE_CLOUD, "B")]

    def test_identical_timestamps_skip(self):
        """Test that equal updated_at strings mean nothing to do."""
        cloud = make_peer("A", "2024-01-01T00:00:00Z", name="cloud-name")
        local = make_peer("A", "2024-01-01T00:00:00Z", name="local-name")

        assert compute_actions([cloud], [local], BIDI, NEWEST) == []

    def test_newer_local_updates_cloud(self):
        """Test newest_wins with a later local version."""
        cloud = make_peer("A", "2024-01-01T00:00:00Z")
        local = make_peer("A", "2024-02-01T00:00:00Z")

        actions = compute_actions([cloud], [local], BIDI, NEWEST)

        assert summary(actions) == [(ChangeType.UPDATE_CLOUD, "A")]
        assert actions[0].peer is local

    def test_newer_cloud_updates_local(self):
        """Test newest_wins with a later cloud version."""
        cloud = make_peer("A", "2024-02-01T00:00:00Z")
        local = make_peer("A", "2024-01-01T00:00:00Z")

        actions = compute_actions([cloud], [local], BIDI, NEWEST)

        assert summary(actions) == [(ChangeType.UPDATE_LOCAL, "A")]
        assert actions[0].peer is cloud

    def test_cloud_wins_overrides_newer_local(self):
        """Test cloud_wins pushes the older cloud version."""
        cloud = make_peer("A", "2024-01-01T00:00:00Z")
        local = make_peer("A", "2024-02-01T00:00:00Z")

        actions = compute_actions([cloud], [local], BIDI, ConflictResolution.CLOUD_WINS)

        assert summary(actions) == [(ChangeType.UPDATE_LOCAL, "A")]

    def test_cloud_to_local_never_writes_cloud(self):
        """Test one-way cloud_to_local ignores local-only peers."""
        actions = compute_actions(
            [make_peer("A")],
            [make_peer("B")],
            SyncDirection.CLOUD_TO_LOCAL,
            NEWEST,
        )

        assert summary(actions) == [(ChangeType.CREATE_LOCAL, "A")]

    def test_local_to_cloud_never_writes_local(self):
        """Test one-way local_to_cloud ignores cloud-only peers."""
        actions = compute_actions(
            [make_peer("A")],
            [make_peer("B")],
            SyncDirection.LOCAL_TO_CLOUD,
            NEWEST,
        )

        assert summary(actions) == [(ChangeType.CREATE_CLOUD, "B")]

    def test_losing_leg_writes_nothing(self):
        """Test a one-way pass whose source loses the conflict."""
        cloud = make_peer("A", "2024-01-01T00:00:00Z")
        local = make_peer("A", "2024-02-01T00:00:00Z")

        actions = compute_actions([cloud], [local], SyncDirection.CLOUD_TO_LOCAL, NEWEST)

        assert actions == []

    def test_cloud_leg_planned_first(self):
        """Test ordering: cloud→local leg then local→cloud leg, in list order."""
        cloud = [make_peer("C2"), make_peer("C1")]
        local = [make_peer("L2"), make_peer("L1")]

        actions = compute_actions(cloud, local, BIDI, NEWEST)

        assert summary(actions) == [
            (ChangeType.CREATE_LOCAL, "C2"),
            (ChangeType.CREATE_LOCAL, "C1"),
            (ChangeType.CREATE_CLOUD, "L2"),
            (ChangeType.CREATE_CLOUD, "L1"),
        ]

    @pytest.mark.parametrize("policy", list(ConflictResolution))
    def test_at_most_one_write_per_peer(self, policy):
        """Test a diverged peer is written to exactly one side."""
        cloud = make_peer("A", "2024-01-01T00:00:00Z")
        local = make_peer("A", "2024-02-01T00:00:00Z")

        actions = compute_actions([cloud], [local], BIDI, policy)

        assert len(actions) == 1

    def test_index_by_id(self):
        """Test the id lookup map."""
        peers = [make_peer("A"), make_peer("B")]

        index = index_by_id(peers)

        assert set(index) == {"A", "B"}
        assert index["B"] is peers[1]
