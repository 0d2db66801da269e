"""Error taxonomy shared by the sync layer, workflows and hub."""


class SyncError(Exception):
    """Base class for every error raised by the synchronization layer."""


class RemoteError(SyncError):
    """Transport failure or non-success response from the hub."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"{self.message} (HTTP {self.status})"


class CacheError(SyncError):
    """Serialization or storage failure in the local cache."""


class ChannelError(SyncError):
    """Real-time channel could not be opened or dropped unexpectedly."""


class ValidationError(SyncError):
    """Caller-supplied data rejected before any mutation was attempted."""
