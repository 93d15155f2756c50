"""
Typed failures for the sync engine.

Remote failures are split by what the caller must do about them: NotFound
evicts the local record, RateLimited/NetworkError are skipped within a pass,
AuthError aborts and needs new credentials. Snapshot failures always abort
the whole import.
"""

from typing import Optional


class SyncAppError(Exception):
    """Base class for every error raised by the sync app."""


# ---------- Remote ----------
class RemoteError(SyncAppError):
    def __init__(self, message: str, status_code: Optional[int] = None, resource: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.resource = resource


class NotFound(RemoteError):
    """The id no longer exists upstream."""


class RateLimited(RemoteError):
    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class NetworkError(RemoteError):
    """Transient failure: timeout, connection error, 5xx."""


class AuthError(RemoteError):
    """Missing or rejected credentials."""


# ---------- Snapshots ----------
class SnapshotError(SyncAppError):
    def __init__(self, message: str, table: Optional[str] = None) -> None:
        super().__init__(message)
        self.table = table


class CorruptSnapshot(SnapshotError):
    """Count/data mismatch, missing table or unreadable payload."""


class SnapshotImportError(SnapshotError):
    """Writing a table failed; nothing was applied."""


# ---------- Analyses ----------
class ObsoleteSchema(SyncAppError):
    def __init__(self, message: str, activity_id: Optional[str] = None, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.activity_id = activity_id
        self.field = field
