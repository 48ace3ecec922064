"""
Pytest configuration and shared fixtures.

Provides in-memory peer stores and test data for sync engine testing.
"""

import pytest
from pathlib import Path
from typing import Generator, Optional
import tempfile

from config.settings import ConflictResolution, SyncConfig, SyncDirection
from meshsync.cloud.client import CloudAPIError
from meshsync.local.client import LocalAgentError
from meshsync.peers.models import PeerRecord
from meshsync.storage.kv_store import KeyValueStore
from meshsync.storage.state_store import SyncStateStore
from meshsync.sync.engine import SyncEngine


# ============================================================================
# In-memory peer stores
# ============================================================================

class InMemoryPeerStore:
    """
    Peer store double with the same surface as the HTTP clients.

    Failures are injected per operation: ``fail_fetch`` makes fetch_all
    raise, ``fail_writes`` maps a peer id to the status code its writes
    fail with (None for a network-style failure).
    """

    def __init__(self, error_cls, peers=None, configured: bool = True):
        self.error_cls = error_cls
        self.peers: dict[str, PeerRecord] = {p.id: p for p in (peers or [])}
        self.configured = configured
        self.fail_fetch = False
        self.fail_writes: dict[str, Optional[int]] = {}
        self.calls: list[tuple[str, str]] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    def fetch_all(self) -> list[PeerRecord]:
        self.calls.append(("fetch_all", ""))
        if self.fail_fetch:
            raise self.error_cls("connection refused")
        return list(self.peers.values())

    def create(self, peer: PeerRecord) -> None:
        self.calls.append(("create", peer.id))
        self._maybe_fail(peer)
        self.peers[peer.id] = peer

    def update(self, peer: PeerRecord) -> None:
        self.calls.append(("update", peer.id))
        self._maybe_fail(peer)
        self.peers[peer.id] = peer

    def _maybe_fail(self, peer: PeerRecord) -> None:
        if peer.id in self.fail_writes:
            raise self.error_cls("write rejected", status_code=self.fail_writes[peer.id])

    @property
    def writes(self) -> list[tuple[str, str]]:
        return [c for c in self.calls if c[0] != "fetch_all"]


def make_peer(peer_id: str, updated_at: str = "2026-01-01T00:00:00Z", **overrides) -> PeerRecord:
    """Build a PeerRecord with sensible defaults."""
    values = {
        "id": peer_id,
        "name": f"peer-{peer_id}",
        "public_key": f"pub-{peer_id}=",
        "allowed_ips": "10.8.0.2/32",
        "updated_at": updated_at,
    }
    values.update(overrides)
    return PeerRecord(**values)


# ============================================================================
# Peer Fixtures
# ============================================================================

@pytest.fixture
def sample_peer() -> PeerRecord:
    """Create a sample peer with every optional field set."""
    return PeerRecord(
        id="peer-1",
        name="laptop",
        public_key="xTIBA5rboUvnH4htodjb6e697QjLERt1NAB4mZqp8Dg=",
        private_key="yAnz5TF+lXXJte14tji3zlMNq+hd2rYUIgJBgB3fBmk=",
        allowed_ips="10.8.0.2/32",
        endpoint="vpn.example.com:51820",
        dns="1.1.1.1",
        persistent_keepalive=25,
        status="active",
        updated_at="2026-01-15T10:00:00Z",
        created_at="2026-01-10T08:00:00Z",
    )


@pytest.fixture
def peer_response() -> dict:
    """Sample peer row as returned by either store."""
    return {
        "id": "peer-1",
        "name": "laptop",
        "public_key": "xTIBA5rboUvnH4htodjb6e697QjLERt1NAB4mZqp8Dg=",
        "private_key": "yAnz5TF+lXXJte14tji3zlMNq+hd2rYUIgJBgB3fBmk=",
        "allowed_ips": "10.8.0.2/32",
        "endpoint": "vpn.example.com:51820",
        "dns": "1.1.1.1",
        "persistent_keepalive": 25,
        "status": "active",
        "last_handshake": None,
        "transfer_rx": 1024,
        "transfer_tx": "2048",
        "created_at": "2026-01-10T08:00:00Z",
        "updated_at": "2026-01-15T10:00:00Z",
    }


@pytest.fixture
def cloud_store() -> InMemoryPeerStore:
    """Empty in-memory cloud store."""
    return InMemoryPeerStore(CloudAPIError)


@pytest.fixture
def local_store() -> InMemoryPeerStore:
    """Empty, configured in-memory local agent."""
    return InMemoryPeerStore(LocalAgentError)


# ============================================================================
# Config Fixtures
# ============================================================================

@pytest.fixture
def sync_config() -> SyncConfig:
    """Enabled bidirectional config with newest_wins."""
    return SyncConfig(
        enabled=True,
        interval=60,
        direction=SyncDirection.BIDIRECTIONAL,
        conflict_resolution=ConflictResolution.NEWEST_WINS,
    )


@pytest.fixture
def mock_env(monkeypatch, tmp_path: Path):
    """Minimal valid environment, isolated from any .env in the repo."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "CLOUD_ACCESS_TOKEN",
        "CLOUD_PEERS_TABLE",
        "LOCAL_AGENT_TOKEN",
        "SYNC_ENABLED",
        "SYNC_INTERVAL",
        "SYNC_DIRECTION",
        "SYNC_CONFLICT_RESOLUTION",
        "SYNC_CONFIG_PATH",
        "HTTP_TIMEOUT",
        "SYNC_MAX_RETRIES",
        "SYNC_RETRY_DELAY",
        "STORAGE_DATABASE_PATH",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)

    monkeypatch.setenv("CLOUD_BASE_URL", "https://project.example.co")
    monkeypatch.setenv("CLOUD_API_KEY", "test_key")
    monkeypatch.setenv("LOCAL_AGENT_URL", "http://10.0.0.1:8080")
    monkeypatch.setenv("LOCAL_AGENT_TOKEN", "test_token")
    return monkeypatch


# ============================================================================
# Storage Fixtures
# ============================================================================

@pytest.fixture
def temp_db_path() -> Generator[Path, None, None]:
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir) / "sync_state.db"


@pytest.fixture
def kv_store(temp_db_path: Path) -> KeyValueStore:
    """Create a fresh KeyValueStore with temp database."""
    return KeyValueStore(temp_db_path)


@pytest.fixture
def state_store(kv_store: KeyValueStore) -> SyncStateStore:
    """Create a fresh SyncStateStore."""
    return SyncStateStore(kv_store)


# ============================================================================
# Engine Fixtures
# ============================================================================

@pytest.fixture
def engine(
    cloud_store: InMemoryPeerStore,
    local_store: InMemoryPeerStore,
    state_store: SyncStateStore,
) -> Generator[SyncEngine, None, None]:
    """Engine over the in-memory stores with a single attempt per write."""
    engine = SyncEngine(
        cloud=cloud_store,
        local=local_store,
        state_store=state_store,
        max_retries=1,
        retry_delay=0,
    )
    yield engine
    engine.close()
