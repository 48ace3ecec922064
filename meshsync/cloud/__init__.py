"""Cloud peer store client module."""

from .client import CloudAPIError, CloudClient

__all__ = ["CloudClient", "CloudAPIError"]
