"""Local agent HTTP client module."""

from .client import LocalAgentClient, LocalAgentError, LocalAgentNotConfiguredError

__all__ = ["LocalAgentClient", "LocalAgentError", "LocalAgentNotConfiguredError"]
