"""Clone, push, and bidirectional synchronization built on the lower components.

Every transfer follows the same skeleton: verify both servers and the source
database, protect an existing target with a backup, export from the source,
import into the target, then remove the transient export file. The first
unrecovered failure ends the operation.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from enum import Enum
from typing import Callable

from .backup import BackupService
from .connections import ConnectionManager
from .errors import (
    ConnectionFailure,
    PreconditionFailure,
    QueryExecutionError,
    SyncError,
    TransferFailure,
    UserAborted,
)
from .inspector import SchemaInspector
from .models import Backup, ConnectionProfile, Role, SyncDirection, SyncOperation, SyncReport
from .sql import drop_database_statement, validate_database_name
from .transfer import TransferPipeline

LOG = logging.getLogger(__name__)

ConfirmCallback = Callable[[str], bool]

ARTIFACT_KINDS = {SyncDirection.PULL: "clone", SyncDirection.PUSH: "push"}


class OverwritePolicy(str, Enum):
    """What to do when the target database already exists."""

    PROMPT = "prompt"
    FORCE = "force"
    REFUSE = "refuse"


class SyncOrchestrator:
    """Runs one pull, push, or bidirectional operation to completion."""

    def __init__(
        self,
        connections: ConnectionManager,
        inspector: SchemaInspector,
        backups: BackupService,
        pipeline: TransferPipeline,
        *,
        policy: OverwritePolicy = OverwritePolicy.PROMPT,
        confirm: ConfirmCallback | None = None,
    ) -> None:
        self._connections = connections
        self._inspector = inspector
        self._backups = backups
        self._pipeline = pipeline
        self._policy = policy
        self._confirm = confirm

    def clone(self, remote_database: str, local_database: str | None = None) -> SyncReport:
        """Pull `remote_database` into the local server."""

        return self.run(self._operation(SyncDirection.PULL, local_database or remote_database, remote_database))

    def push(self, local_database: str, remote_database: str | None = None) -> SyncReport:
        """Push `local_database` to the remote server."""

        return self.run(self._operation(SyncDirection.PUSH, local_database, remote_database or local_database))

    def synchronize(
        self,
        local_database: str,
        remote_database: str,
        direction: SyncDirection | str,
    ) -> SyncReport:
        try:
            resolved = SyncDirection(direction)
        except ValueError:
            raise PreconditionFailure(f"Invalid sync direction: {direction}") from None
        return self.run(self._operation(resolved, local_database, remote_database))

    def run(self, operation: SyncOperation) -> SyncReport:
        """Execute `operation`, logging any failure before re-raising it."""

        log = logging.LoggerAdapter(LOG, {"operation": operation.operation_id})
        log.info(
            "Starting %s: local '%s' <-> remote '%s'",
            operation.direction.value,
            operation.local_database,
            operation.remote_database,
        )
        try:
            if operation.direction is SyncDirection.BIDIRECTIONAL:
                return self._run_bidirectional(operation, log)
            return self._transfer(operation, log)
        except UserAborted as exc:
            log.warning("%s cancelled: %s", operation.direction.value, exc)
            raise
        except SyncError as exc:
            log.error("%s failed: %s", operation.direction.value, exc)
            raise

    def resolve_direction(self, operation: SyncOperation) -> tuple[SyncDirection | None, datetime | None, datetime | None]:
        """Pick push/pull from modification times; None when they compare equal.

        Unknown timestamps rank as the oldest possible value, so a side with
        no readable metadata never wins.
        """

        local_modified = self._inspector.last_modified(Role.LOCAL, operation.local_database)
        remote_modified = self._inspector.last_modified(Role.REMOTE, operation.remote_database)
        local_key = local_modified or datetime.min
        remote_key = remote_modified or datetime.min
        if local_key > remote_key:
            return SyncDirection.PUSH, local_modified, remote_modified
        if remote_key > local_key:
            return SyncDirection.PULL, local_modified, remote_modified
        return None, local_modified, remote_modified

    def _run_bidirectional(self, operation: SyncOperation, log: logging.LoggerAdapter) -> SyncReport:
        validate_database_name(operation.local_database)
        validate_database_name(operation.remote_database)
        self._verify_reachable(operation.local, operation.remote)
        direction, local_modified, remote_modified = self.resolve_direction(operation)
        log.info(
            "Last modified: local=%s remote=%s",
            _describe(local_modified),
            _describe(remote_modified),
        )
        if direction is None:
            log.info("Databases appear to be in sync")
            return SyncReport(
                operation_id=operation.operation_id,
                direction=SyncDirection.BIDIRECTIONAL,
                transferred=False,
                completed_at=self._pipeline.clock(),
                local_modified=local_modified,
                remote_modified=remote_modified,
            )
        if direction is SyncDirection.PUSH:
            log.info("Local database is newer; pushing to remote")
        else:
            log.info("Remote database is newer; pulling from remote")
        report = self._transfer(dataclasses.replace(operation, direction=direction), log)
        return dataclasses.replace(report, local_modified=local_modified, remote_modified=remote_modified)

    def _transfer(self, operation: SyncOperation, log: logging.LoggerAdapter) -> SyncReport:
        source, source_db, target, target_db = operation.source_and_target()

        # verify
        validate_database_name(source_db)
        validate_database_name(target_db)
        self._verify_reachable(operation.local, operation.remote)
        if not self._inspector.database_exists(source.role, source_db):
            raise PreconditionFailure(f"Database '{source_db}' does not exist on the {source.role.value} server.")

        # protect
        backup: Backup | None = None
        if self._inspector.database_exists(target.role, target_db):
            self._confirm_overwrite(target, target_db)
            backup = self._backups.protect(target.role, target_db)
            if backup is not None:
                log.info("Backup written to %s", backup.path)
                self._drop(target, target_db, backup)

        # transfer
        try:
            artifact = self._pipeline.export(source.role, source_db, kind=ARTIFACT_KINDS[operation.direction])
            self._pipeline.import_(target.role, target_db, artifact, create_if_missing=True)
        except TransferFailure as exc:
            failure = exc.with_backup(backup.path if backup is not None else None)
            if failure.artifact_path is not None:
                log.error("Export file kept for inspection: %s", failure.artifact_path)
            if backup is not None:
                log.error("Restore the previous target state from %s", backup.path)
            raise failure from exc

        # confirm
        self._pipeline.discard(artifact)
        report = SyncReport(
            operation_id=operation.operation_id,
            direction=operation.direction,
            transferred=True,
            source=f"{source.label}/{source_db}",
            target=f"{target.label}/{target_db}",
            size_bytes=artifact.size_bytes,
            backup=backup,
            completed_at=self._pipeline.clock(),
        )
        log.info("Synchronized %s", report.summary())
        return report

    def _operation(self, direction: SyncDirection, local_database: str, remote_database: str) -> SyncOperation:
        return SyncOperation(
            direction=direction,
            local_database=local_database,
            remote_database=remote_database,
            local=self._connections.profile(Role.LOCAL),
            remote=self._connections.profile(Role.REMOTE),
        )

    def _verify_reachable(self, *profiles: ConnectionProfile) -> None:
        for profile in profiles:
            status = self._connections.test_connection(profile.role)
            if not status.ok:
                raise ConnectionFailure(profile.role, f"Cannot connect to {profile.host}:{profile.port}: {status.message}")

    def _confirm_overwrite(self, target: ConnectionProfile, database: str) -> None:
        if self._policy is OverwritePolicy.FORCE:
            return
        if self._policy is OverwritePolicy.REFUSE or self._confirm is None:
            raise UserAborted(
                f"{target.role.value.capitalize()} database '{database}' already exists; "
                "rerun with --yes to overwrite it."
            )
        question = f"{target.role.value.capitalize()} database '{database}' on {target.host} already exists. Overwrite?"
        if not self._confirm(question):
            raise UserAborted(f"Overwrite of {target.role.value} database '{database}' declined.")

    def _drop(self, target: ConnectionProfile, database: str, backup: Backup) -> None:
        try:
            self._connections.execute(target.role, drop_database_statement(database))
        except (ConnectionFailure, QueryExecutionError) as exc:
            raise TransferFailure(
                f"Could not drop {target.role.value} database '{database}': {exc}",
                backup_path=backup.path,
            ) from exc


def _describe(moment: datetime | None) -> str:
    return moment.isoformat(sep=" ") if moment is not None else "unknown"


__all__ = ["ARTIFACT_KINDS", "ConfirmCallback", "OverwritePolicy", "SyncOrchestrator"]
