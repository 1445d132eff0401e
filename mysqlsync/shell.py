"""Command execution used to drive the mysql client utilities."""

from __future__ import annotations

import subprocess
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence


class CommandError(RuntimeError):
    """Raised when a command cannot be launched or does not finish in time."""


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Exit status plus captured output of a finished command."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandShell(Protocol):
    """Interface implemented by command runners."""

    def run(
        self,
        argv: Sequence[str],
        *,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run argv to completion.

        When `stdout_path` is given, standard output is streamed into that
        file instead of being captured; `stdin_path` feeds a file to the
        command's standard input.
        """


class SubprocessShell:
    """Runs commands with `subprocess.run`."""

    def run(
        self,
        argv: Sequence[str],
        *,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        with ExitStack() as files:
            stdin = files.enter_context(stdin_path.open("rb")) if stdin_path is not None else subprocess.DEVNULL
            stdout = files.enter_context(stdout_path.open("wb")) if stdout_path is not None else subprocess.PIPE
            try:
                completed = subprocess.run(
                    list(argv),
                    stdin=stdin,
                    stdout=stdout,
                    stderr=subprocess.PIPE,
                    timeout=timeout,
                    check=False,
                )
            except FileNotFoundError as exc:
                raise CommandError(f"{argv[0]} is not installed or not on PATH.") from exc
            except subprocess.TimeoutExpired as exc:
                raise CommandError(f"{argv[0]} timed out after {timeout}s.") from exc
        captured = completed.stdout if stdout_path is None else b""
        return CommandResult(
            returncode=completed.returncode,
            stdout=_decode(captured),
            stderr=_decode(completed.stderr),
        )


def _decode(raw: bytes | None) -> str:
    if not raw:
        return ""
    return raw.decode("utf-8", errors="replace")


__all__ = ["CommandError", "CommandResult", "CommandShell", "SubprocessShell"]
