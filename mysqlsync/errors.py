"""Error taxonomy shared by the sync components."""

from __future__ import annotations

from pathlib import Path

from .models import Role


class SyncError(RuntimeError):
    """Base class for every failure surfaced by mysqlsync."""


class PreconditionFailure(SyncError):
    """Raised before any mutation when an operation cannot start."""


class ConnectionFailure(PreconditionFailure):
    """Raised when a server is unreachable, rejects credentials, or times out."""

    def __init__(self, role: Role, message: str) -> None:
        super().__init__(f"[{role.value}] {message}")
        self.role = role


class QueryExecutionError(SyncError):
    """Raised when the server rejects a statement."""

    def __init__(self, role: Role, message: str) -> None:
        super().__init__(f"[{role.value}] {message}")
        self.role = role


class BackupFailure(SyncError):
    """Raised when a protective backup could not be written."""

    def __init__(self, database: str, role: Role, message: str) -> None:
        super().__init__(f"Backup of {role.value} database '{database}' failed: {message}")
        self.database = database
        self.role = role


class TransferFailure(SyncError):
    """Raised when an export or import fails; the target may be inconsistent."""

    def __init__(
        self,
        message: str,
        *,
        artifact_path: Path | None = None,
        backup_path: Path | None = None,
    ) -> None:
        super().__init__(message)
        self.artifact_path = artifact_path
        self.backup_path = backup_path

    def with_backup(self, backup_path: Path | None) -> TransferFailure:
        """Copy of this failure pointing the operator at a backup."""

        return TransferFailure(str(self), artifact_path=self.artifact_path, backup_path=backup_path)


class UserAborted(SyncError):
    """Raised when the operator declines (or policy refuses) an overwrite."""


__all__ = [
    "BackupFailure",
    "ConnectionFailure",
    "PreconditionFailure",
    "QueryExecutionError",
    "SyncError",
    "TransferFailure",
    "UserAborted",
]
