"""Shared dataclasses used across connection, transfer, and sync modules."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class Role(str, Enum):
    """Which side of the pair a profile describes."""

    LOCAL = "local"
    REMOTE = "remote"


class SyncDirection(str, Enum):
    """Requested synchronization direction."""

    PULL = "pull"
    PUSH = "push"
    BIDIRECTIONAL = "bidirectional"


@dataclass(frozen=True, slots=True)
class ConnectionProfile:
    """Runtime representation of one MySQL server connection."""

    role: Role
    host: str
    port: int = 3306
    user: str = "root"
    credential: str = field(default="", repr=False)
    saved: bool = False

    @property
    def label(self) -> str:
        return f"{self.role.value}:{self.host}"


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Tabular client output split into columns and rows."""

    columns: tuple[str, ...]
    rows: tuple[tuple[str | None, ...], ...]
    elapsed_ms: int

    def scalar(self) -> str | None:
        """First cell of the first row, if any."""

        if not self.rows or not self.rows[0]:
            return None
        return self.rows[0][0]


@dataclass(frozen=True, slots=True)
class ConnectionStatus:
    """Outcome of a liveness probe."""

    role: Role
    ok: bool
    message: str
    latency_ms: int | None = None


@dataclass(frozen=True, slots=True)
class Artifact:
    """Transient export file produced by the transfer pipeline."""

    path: Path
    database: str
    role: Role
    created_at: datetime
    size_bytes: int


@dataclass(frozen=True, slots=True)
class Backup:
    """Protective export taken before a destructive step."""

    path: Path
    database: str
    role: Role
    created_at: datetime


@dataclass(frozen=True, slots=True)
class SyncOperation:
    """One pull/push/bidirectional invocation."""

    direction: SyncDirection
    local_database: str
    remote_database: str
    local: ConnectionProfile
    remote: ConnectionProfile
    operation_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])

    def source_and_target(self) -> tuple[ConnectionProfile, str, ConnectionProfile, str]:
        """Resolve (source profile, source db, target profile, target db)."""

        if self.direction is SyncDirection.PULL:
            return self.remote, self.remote_database, self.local, self.local_database
        if self.direction is SyncDirection.PUSH:
            return self.local, self.local_database, self.remote, self.remote_database
        raise ValueError("Bidirectional operations must be resolved to pull or push first.")


@dataclass(frozen=True, slots=True)
class SyncReport:
    """Summary of a finished operation."""

    operation_id: str
    direction: SyncDirection
    transferred: bool
    source: str | None = None
    target: str | None = None
    size_bytes: int | None = None
    backup: Backup | None = None
    completed_at: datetime | None = None
    local_modified: datetime | None = None
    remote_modified: datetime | None = None

    def summary(self) -> str:
        if not self.transferred:
            return "Databases appear to be in sync; nothing transferred."
        size = format_size(self.size_bytes or 0)
        return f"{self.source} -> {self.target} ({size} transferred)"


def format_size(size_bytes: int) -> str:
    """Render a byte count the way `du -h` would."""

    value = float(size_bytes)
    for unit in ("B", "K", "M"):
        if value < 1024:
            return f"{int(value)}B" if unit == "B" else f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}G"


__all__ = [
    "Artifact",
    "Backup",
    "ConnectionProfile",
    "ConnectionStatus",
    "QueryResult",
    "Role",
    "SyncDirection",
    "SyncOperation",
    "SyncReport",
    "format_size",
]
