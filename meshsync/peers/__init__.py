"""VPN peer record model."""

from .models import PeerRecord, parse_timestamp

__all__ = ["PeerRecord", "parse_timestamp"]
