"""Connection manager: runs statements against the local or remote server."""

from __future__ import annotations

import logging
import os
import re
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Sequence

from .errors import ConnectionFailure, QueryExecutionError
from .logs import OPERATIONS_LOGGER, register_secret
from .models import ConnectionProfile, ConnectionStatus, QueryResult, Role
from .shell import CommandError, CommandResult, CommandShell, SubprocessShell

LOG = logging.getLogger(__name__)
OPLOG = logging.getLogger(OPERATIONS_LOGGER)

MYSQL_CLIENT = "mysql"
PROBE_STATEMENT = "SELECT 1"

# Client-side error codes that mean "could not talk to the server" rather
# than "the server rejected the statement".
_CONNECTION_ERROR_CODES = frozenset({1045, 2002, 2003, 2005, 2006, 2013})
_ERROR_CODE = re.compile(r"ERROR\s+(\d+)")


class ConnectionManager:
    """Owns the local/remote profiles and executes statements against them."""

    def __init__(
        self,
        profiles: Sequence[ConnectionProfile] = (),
        *,
        shell: CommandShell | None = None,
        connect_timeout: int = 10,
        client: str = MYSQL_CLIENT,
    ) -> None:
        self._shell = shell or SubprocessShell()
        self._connect_timeout = connect_timeout
        self._client = client
        self._profiles: dict[Role, ConnectionProfile] = {}
        for profile in profiles:
            self.add_profile(profile)

    @property
    def shell(self) -> CommandShell:
        return self._shell

    @property
    def connect_timeout(self) -> int:
        return self._connect_timeout

    def add_profile(self, profile: ConnectionProfile) -> None:
        """Adopt a profile, replacing any existing one with the same role."""

        register_secret(profile.credential)
        self._profiles[profile.role] = profile

    def has_profile(self, role: Role) -> bool:
        return role in self._profiles

    def profile(self, role: Role) -> ConnectionProfile:
        try:
            return self._profiles[role]
        except KeyError:
            raise ConnectionFailure(role, f"No {role.value} connection is configured.") from None

    def test_connection(self, role: Role) -> ConnectionStatus:
        """Probe liveness; expected failures are returned, not raised."""

        if role not in self._profiles:
            return ConnectionStatus(role=role, ok=False, message=f"{role.value} connection is not configured")
        profile = self._profiles[role]
        try:
            result = self._run_statement(profile, PROBE_STATEMENT, log=False)
        except (ConnectionFailure, QueryExecutionError) as exc:
            LOG.warning("Connection test failed", extra={"role": role.value})
            return ConnectionStatus(role=role, ok=False, message=str(exc))
        return ConnectionStatus(
            role=role,
            ok=True,
            message=f"Connected to {profile.host}:{profile.port} as {profile.user}",
            latency_ms=result.elapsed_ms,
        )

    def execute(self, role: Role, statement: str) -> QueryResult:
        """Run `statement` verbatim and return its tabular output."""

        sql = statement.strip()
        if not sql:
            raise QueryExecutionError(role, "Provide SQL to execute.")
        return self._run_statement(self.profile(role), sql, log=True)

    def client_command(
        self,
        role: Role,
        program: str,
        args: Sequence[str] = (),
        *,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a mysql client utility authenticated as the given profile.

        Launch failures, timeouts and OS errors are reported as
        ConnectionFailure; the exit status of the utility itself is returned
        for the caller to judge.
        """

        profile = self.profile(role)
        try:
            with client_options_file(profile) as options:
                argv = [program, f"--defaults-extra-file={options}", *_connection_args(profile), *args]
                return self._shell.run(
                    argv,
                    stdin_path=stdin_path,
                    stdout_path=stdout_path,
                    timeout=timeout,
                )
        except (CommandError, OSError) as exc:
            raise ConnectionFailure(role, f"Could not run {program}: {exc}") from exc

    def _run_statement(self, profile: ConnectionProfile, sql: str, *, log: bool) -> QueryResult:
        if log:
            OPLOG.debug(
                "Executing on %s: %s",
                profile.label,
                sql,
                extra={"role": profile.role.value},
            )
        started = time.perf_counter()
        result = self.client_command(
            profile.role,
            self._client,
            (f"--connect-timeout={self._connect_timeout}", "--batch", "--raw", "-e", sql),
        )
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        if not result.ok:
            raise classify_client_error(profile.role, result)
        columns, rows = parse_tabular(result.stdout)
        return QueryResult(columns=columns, rows=rows, elapsed_ms=elapsed_ms)


def classify_client_error(role: Role, result: CommandResult) -> ConnectionFailure | QueryExecutionError:
    """Map a failed client exit into ConnectionFailure or QueryExecutionError."""

    message = result.stderr.strip() or f"client exited with status {result.returncode}"
    match = _ERROR_CODE.search(result.stderr)
    if match is None or int(match.group(1)) in _CONNECTION_ERROR_CODES:
        return ConnectionFailure(role, message)
    return QueryExecutionError(role, message)


def parse_tabular(output: str) -> tuple[tuple[str, ...], tuple[tuple[str | None, ...], ...]]:
    """Split `mysql --batch` output into a header and rows; NULL becomes None."""

    lines = [line for line in output.splitlines() if line]
    if not lines:
        return (), ()
    columns = tuple(lines[0].split("\t"))
    rows = tuple(
        tuple(None if cell == "NULL" else cell for cell in line.split("\t"))
        for line in lines[1:]
    )
    return columns, rows


@contextmanager
def client_options_file(profile: ConnectionProfile) -> Iterator[Path]:
    """Write the credential into a private option file for the client tools."""

    fd, name = tempfile.mkstemp(prefix="mysqlsync-", suffix=".cnf")
    path = Path(name)
    try:
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write("[client]\n")
            if profile.credential:
                handle.write(f'password="{_escape_option(profile.credential)}"\n')
        yield path
    finally:
        path.unlink(missing_ok=True)


def _connection_args(profile: ConnectionProfile) -> list[str]:
    return [f"--host={profile.host}", f"--port={profile.port}", f"--user={profile.user}"]


def _escape_option(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


__all__ = [
    "ConnectionManager",
    "classify_client_error",
    "client_options_file",
    "parse_tabular",
]
