"""Transfer pipeline: dump a database to a portable file and load it elsewhere."""

from __future__ import annotations

import logging
import os
import re
import time
from datetime import datetime
from pathlib import Path
from typing import Callable

from .connections import ConnectionManager
from .errors import ConnectionFailure, QueryExecutionError, TransferFailure
from .logs import OPERATIONS_LOGGER
from .models import Artifact, Role, format_size
from .sql import CHARSET, create_database_statement, validate_database_name

LOG = logging.getLogger(__name__)
OPLOG = logging.getLogger(OPERATIONS_LOGGER)

DUMP_PROGRAM = "mysqldump"
LOAD_PROGRAM = "mysql"

DUMP_OPTIONS: tuple[str, ...] = (
    "--single-transaction",
    "--routines",
    "--triggers",
    "--events",
    "--hex-blob",
    "--complete-insert",
    "--create-options",
    "--disable-keys",
    "--extended-insert",
    "--lock-tables=false",
    "--quick",
    "--set-charset",
    f"--default-character-set={CHARSET}",
)

# Lock wait timeout, deadlock, lost connection during query.
_TRANSIENT_ERROR_CODES = frozenset({1205, 1213, 2013})
_ERROR_CODE = re.compile(r"error:?\s*(\d{4})", re.IGNORECASE)

Clock = Callable[[], datetime]


class TransferPipeline:
    """Moves a database's full content between profiles through a dump file."""

    def __init__(
        self,
        connections: ConnectionManager,
        staging_dir: Path,
        *,
        retries: int = 3,
        retry_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Clock = datetime.now,
    ) -> None:
        self._connections = connections
        self._staging_dir = staging_dir
        self._attempts = max(1, retries)
        self._retry_delay = retry_delay
        self._sleep = sleep
        self._clock = clock

    @property
    def clock(self) -> Clock:
        return self._clock

    def export(self, role: Role, database: str, *, kind: str = "export") -> Artifact:
        """Dump `database` from the `role` server into the staging directory."""

        validate_database_name(database)
        created_at = self._clock()
        path = stamped_path(self._staging_dir, kind, database, created_at)
        size = self.dump_to(role, database, path)
        LOG.info("Exported %s database '%s' (%s)", role.value, database, format_size(size))
        return Artifact(
            path=path,
            database=database,
            role=role,
            created_at=created_at,
            size_bytes=size,
        )

    def dump_to(self, role: Role, database: str, path: Path) -> int:
        """Write a consistent-snapshot dump of `database` to `path`; return its size."""

        validate_database_name(database)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise TransferFailure(f"Cannot create {path.parent}: {exc}", artifact_path=path) from exc
        OPLOG.debug("Dumping %s database '%s' to %s", role.value, database, path)
        for attempt in range(1, self._attempts + 1):
            try:
                result = self._connections.client_command(
                    role,
                    DUMP_PROGRAM,
                    (*DUMP_OPTIONS, database),
                    stdout_path=path,
                )
            except (ConnectionFailure, OSError) as exc:
                raise TransferFailure(
                    f"Export of {role.value} database '{database}' failed: {exc}",
                    artifact_path=path,
                ) from exc
            if result.ok:
                break
            message = result.stderr.strip() or f"{DUMP_PROGRAM} exited with status {result.returncode}"
            if attempt < self._attempts and _is_transient(result.stderr):
                LOG.warning(
                    "Export attempt %d/%d failed; retrying in %.1fs",
                    attempt,
                    self._attempts,
                    self._retry_delay,
                    extra={"role": role.value, "database": database},
                )
                self._sleep(self._retry_delay)
                continue
            raise TransferFailure(
                f"Export of {role.value} database '{database}' failed: {message}",
                artifact_path=path,
            )
        try:
            return _sync_file(path)
        except OSError as exc:
            raise TransferFailure(f"Export file {path} is unusable: {exc}", artifact_path=path) from exc

    def import_(
        self,
        role: Role,
        database: str,
        artifact: Artifact,
        *,
        create_if_missing: bool = True,
    ) -> None:
        """Load `artifact` into `database` on the `role` server.

        A failure may leave the target partially loaded; no rollback is
        attempted here.
        """

        validate_database_name(database)
        if not artifact.path.is_file():
            raise TransferFailure(f"Import file not found: {artifact.path}", artifact_path=artifact.path)
        try:
            if create_if_missing:
                self._connections.execute(role, create_database_statement(database))
            OPLOG.debug("Loading %s into %s database '%s'", artifact.path, role.value, database)
            result = self._connections.client_command(
                role,
                LOAD_PROGRAM,
                (f"--default-character-set={CHARSET}", database),
                stdin_path=artifact.path,
            )
        except (ConnectionFailure, QueryExecutionError, OSError) as exc:
            raise TransferFailure(
                f"Import into {role.value} database '{database}' failed: {exc}",
                artifact_path=artifact.path,
            ) from exc
        if not result.ok:
            message = result.stderr.strip() or f"{LOAD_PROGRAM} exited with status {result.returncode}"
            raise TransferFailure(
                f"Import into {role.value} database '{database}' failed: {message}",
                artifact_path=artifact.path,
            )
        LOG.info("Imported '%s' into %s database '%s'", artifact.path.name, role.value, database)

    def discard(self, artifact: Artifact) -> None:
        """Remove a consumed artifact."""

        artifact.path.unlink(missing_ok=True)
        LOG.debug("Removed artifact %s", artifact.path)


def stamped_path(directory: Path, kind: str, database: str, moment: datetime) -> Path:
    """`<kind>_<database>_<YYYYMMDD_HHMMSS>.sql`, suffixed with `_<n>` on collision."""

    stamp = moment.strftime("%Y%m%d_%H%M%S")
    candidate = directory / f"{kind}_{database}_{stamp}.sql"
    counter = 1
    while candidate.exists():
        candidate = directory / f"{kind}_{database}_{stamp}_{counter}.sql"
        counter += 1
    return candidate


def _is_transient(stderr: str) -> bool:
    return any(int(code) in _TRANSIENT_ERROR_CODES for code in _ERROR_CODE.findall(stderr))


def _sync_file(path: Path) -> int:
    with path.open("rb+") as handle:
        os.fsync(handle.fileno())
    size = path.stat().st_size
    if size == 0:
        raise OSError(f"{path.name} is empty")
    return size


__all__ = ["DUMP_OPTIONS", "TransferPipeline", "stamped_path"]
