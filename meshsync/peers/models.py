"""
VPN peer data model shared by the cloud store and the local agent.

Both stores expose the same record shape (modulo which optional fields they
fill in). The ``id`` is the only join key between them.
"""

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Optional


# Used for timestamps that cannot be parsed, so they never win a comparison.
_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def parse_timestamp(value: Optional[str]) -> datetime:
    """
    Parse an ISO-8601 timestamp as written by either store.

    Trailing ``Z`` is accepted and naive values are treated as UTC.
    Missing or unparseable values map to the oldest representable time.
    """
    if not value:
        return _OLDEST
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return _OLDEST
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


@dataclass(frozen=True)
class PeerRecord:
    """
    Represents one VPN peer.

    ``updated_at`` is kept exactly as the store returned it: records whose
    timestamps differ by even one character are treated as diverged.

    Attributes:
        id: Stable identifier, unique, never reused
        name: Display name
        public_key: WireGuard public key
        allowed_ips: Allowed IPs (comma separated CIDRs)
        updated_at: Last-write timestamp, the only conflict signal
        private_key: Private key, absent on records that never expose it
        endpoint: Peer endpoint (host:port)
        dns: DNS servers pushed to the peer
        persistent_keepalive: Keepalive interval in seconds
        status: Observed connection status
        last_handshake: Last observed handshake timestamp
        transfer_rx: Bytes received
        transfer_tx: Bytes sent
        created_at: Creation timestamp, when the store provides it
    """
    id: str
    name: str
    public_key: str
    allowed_ips: str
    updated_at: str
    private_key: Optional[str] = None
    endpoint: Optional[str] = None
    dns: Optional[str] = None
    persistent_keepalive: Optional[int] = None
    status: str = "inactive"
    last_handshake: Optional[str] = None
    transfer_rx: Optional[int] = None
    transfer_tx: Optional[int] = None
    created_at: Optional[str] = None

    def __post_init__(self):
        if not self.id or not str(self.id).strip():
            raise ValueError("Peer id must be a non-empty string")

    @property
    def updated_at_datetime(self) -> datetime:
        """Parsed ``updated_at``, used by the newest-wins policy."""
        return parse_timestamp(self.updated_at)

    def __repr__(self) -> str:
        """Never expose the private key in repr."""
        return (
            f"PeerRecord(id='{self.id}', name='{self.name}', "
            f"updated_at='{self.updated_at}')"
        )

    def to_api_payload(self) -> dict:
        """
        Convert to a JSON payload for create/update calls.

        Optional fields that are unset are left out so a store never has
        its values blanked by a record that simply does not carry them.
        """
        payload = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            payload[f.name] = value
        return payload

    @classmethod
    def from_api_response(cls, data: dict) -> "PeerRecord":
        """Create PeerRecord from a store's JSON row."""
        if not data.get("id"):
            raise ValueError(f"Peer row without id: {sorted(data.keys())}")

        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            public_key=data.get("public_key") or "",
            allowed_ips=data.get("allowed_ips") or "",
            updated_at=str(data.get("updated_at") or ""),
            private_key=data.get("private_key"),
            endpoint=data.get("endpoint"),
            dns=data.get("dns"),
            persistent_keepalive=_optional_int(data.get("persistent_keepalive")),
            status=data.get("status") or "inactive",
            last_handshake=data.get("last_handshake"),
            transfer_rx=_optional_int(data.get("transfer_rx")),
            transfer_tx=_optional_int(data.get("transfer_tx")),
            created_at=data.get("created_at"),
        )
