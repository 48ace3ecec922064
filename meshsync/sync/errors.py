"""Failure kinds of a reconciliation pass."""


class SyncError(Exception):
    """Base class for errors that abort a reconciliation pass."""
    pass


class NotConfiguredError(SyncError):
    """A store the pass needs has no configuration."""
    pass


class FetchFailedError(SyncError):
    """Reading a full peer set failed; nothing was written."""
    pass


class WriteFailedError(SyncError):
    """
    An individual create/update failed.

    Writes applied earlier in the same pass are not rolled back.
    """

    def __init__(self, message: str, applied: int = 0):
        super().__init__(message)
        self.applied = applied
