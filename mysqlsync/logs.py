"""Logging setup: console output, the operation log file, and secret redaction."""

from __future__ import annotations

import logging
import re
import sys
import threading
from pathlib import Path
from typing import Iterable

OPERATIONS_LOGGER = "mysqlsync.operations"
FILE_FORMAT = "%(asctime)s %(levelname)s [%(operation)s] %(name)s: %(message)s"
MASK = "****"

_SECRET_CLAUSES = re.compile(
    r"(IDENTIFIED\s+(?:WITH\s+\S+\s+)?BY\s+|PASSWORD\s*(?:=\s*)?(?:\(\s*)?)'(?:[^'\\]|\\.)*'",
    re.IGNORECASE,
)


class RedactingFilter(logging.Filter):
    """Masks registered secrets and password clauses in log records."""

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        super().__init__()
        self._secrets: set[str] = {secret for secret in secrets if secret}
        self._lock = threading.Lock()

    def register(self, secret: str) -> None:
        if not secret:
            return
        with self._lock:
            self._secrets.add(secret)

    def redact(self, text: str) -> str:
        text = _SECRET_CLAUSES.sub(lambda match: f"{match.group(1)}'{MASK}'", text)
        with self._lock:
            secrets = sorted(self._secrets, key=len, reverse=True)
        for secret in secrets:
            text = text.replace(secret, MASK)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class OperationFilter(logging.Filter):
    """Gives every record an `operation` attribute so formatters can rely on it."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "operation"):
            record.operation = "-"
        return True


REDACTOR = RedactingFilter()


def register_secret(secret: str) -> None:
    """Ensure `secret` never reaches a log handler."""

    REDACTOR.register(secret)


def configure_logging(log_file: Path | None = None, *, verbose: bool = False) -> None:
    """Install the stdout console handler and, when configured, the operation log file."""

    root = logging.getLogger("mysqlsync")
    for handler in tuple(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.DEBUG)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    console.setFormatter(logging.Formatter("%(message)s"))
    _attach(root, console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        _attach(root, file_handler)


def _attach(logger: logging.Logger, handler: logging.Handler) -> None:
    handler.addFilter(OperationFilter())
    handler.addFilter(REDACTOR)
    logger.addHandler(handler)


__all__ = [
    "OPERATIONS_LOGGER",
    "OperationFilter",
    "REDACTOR",
    "RedactingFilter",
    "configure_logging",
    "register_secret",
]
