"""Protective backups taken before destructive operations."""

from __future__ import annotations

import logging
from pathlib import Path

from .errors import BackupFailure, SyncError
from .inspector import SchemaInspector
from .models import Backup, Role
from .transfer import TransferPipeline, stamped_path

LOG = logging.getLogger(__name__)

BACKUP_KINDS = {Role.LOCAL: "backup", Role.REMOTE: "remote_backup"}


class BackupService:
    """Exports a database to the backup directory so it can be restored by hand.

    Backups are never deleted here; retention is left to the operator.
    """

    def __init__(
        self,
        inspector: SchemaInspector,
        pipeline: TransferPipeline,
        backup_dir: Path,
    ) -> None:
        self._inspector = inspector
        self._pipeline = pipeline
        self._backup_dir = backup_dir

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    def protect(self, role: Role, database: str) -> Backup | None:
        """Back up `database` on `role`; None when there is nothing to protect.

        Raises BackupFailure if the backup could not be written completely.
        """

        try:
            if not self._inspector.database_exists(role, database):
                LOG.info("Nothing to protect: %s database '%s' does not exist", role.value, database)
                return None
            created_at = self._pipeline.clock()
            path = stamped_path(self._backup_dir, BACKUP_KINDS[role], database, created_at)
            self._pipeline.dump_to(role, database, path)
        except (SyncError, OSError) as exc:
            LOG.error("Backup failed", extra={"role": role.value, "database": database})
            raise BackupFailure(database, role, str(exc)) from exc
        LOG.info("Backed up %s database '%s' to %s", role.value, database, path)
        return Backup(path=path, database=database, role=role, created_at=created_at)


__all__ = ["BACKUP_KINDS", "BackupService"]
