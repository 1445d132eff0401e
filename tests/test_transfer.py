"""Tests for the dump/load transfer pipeline."""

from __future__ import annotations

from pathlib import Path

import pytest

from mysqlsync.errors import TransferFailure
from mysqlsync.models import Role
from mysqlsync.transfer import DUMP_OPTIONS, stamped_path

from .fakes import Stack


def test_export_writes_artifact_with_snapshot_options(stack: Stack) -> None:
    stack.remote.add("orders", rows=5)

    artifact = stack.pipeline.export(Role.REMOTE, "orders", kind="clone")

    assert artifact.path.parent == stack.staging_dir
    assert artifact.path.name == "clone_orders_20240501_120000.sql"
    assert artifact.size_bytes == artifact.path.stat().st_size > 0
    assert artifact.role is Role.REMOTE
    dump_call = stack.shell.calls[-1]
    assert dump_call.program == "mysqldump"
    for option in ("--single-transaction", "--routines", "--triggers", "--events"):
        assert option in dump_call.argv
    assert "--default-character-set=utf8mb4" in DUMP_OPTIONS
    assert dump_call.argv[-1] == "orders"


def test_export_retries_transient_failures(stack: Stack) -> None:
    stack.remote.add("orders")
    stack.remote.dump_failures.append("mysqldump: Got error: 1205: Lock wait timeout exceeded")

    artifact = stack.pipeline.export(Role.REMOTE, "orders")

    assert artifact.path.exists()
    assert stack.sleeps == [0.5]
    assert stack.shell.programs().count("mysqldump") == 2


def test_export_gives_up_after_retry_budget(stack: Stack) -> None:
    stack.remote.add("orders")
    stack.remote.dump_failures.extend(["mysqldump: Error 2013: Lost connection to MySQL server during query"] * 3)

    with pytest.raises(TransferFailure) as info:
        stack.pipeline.export(Role.REMOTE, "orders")

    assert len(stack.sleeps) == 2
    assert info.value.artifact_path is not None
    assert info.value.artifact_path.parent == stack.staging_dir


def test_export_does_not_retry_permanent_failures(stack: Stack) -> None:
    with pytest.raises(TransferFailure, match="1049"):
        stack.pipeline.export(Role.REMOTE, "missing")

    assert stack.sleeps == []


def test_export_reports_disk_exhaustion_and_keeps_the_file(stack: Stack) -> None:
    stack.remote.add("orders")
    stack.remote.disk_full_dirs.add(stack.staging_dir)

    with pytest.raises(TransferFailure, match="errno 28") as info:
        stack.pipeline.export(Role.REMOTE, "orders")

    assert info.value.artifact_path is not None
    assert info.value.artifact_path.exists()


def test_import_creates_database_and_loads_rows(stack: Stack) -> None:
    stack.remote.add("orders", rows=4)
    artifact = stack.pipeline.export(Role.REMOTE, "orders")

    stack.pipeline.import_(Role.LOCAL, "orders_copy", artifact, create_if_missing=True)

    assert stack.local.databases["orders_copy"].row_count() == 4
    assert any(statement.startswith("CREATE DATABASE IF NOT EXISTS `orders_copy`") for statement in stack.shell.statements())
    load_call = stack.shell.calls[-1]
    assert load_call.program == "mysql"
    assert load_call.stdin_path == artifact.path


def test_import_without_create_fails_on_missing_database(stack: Stack) -> None:
    stack.remote.add("orders")
    artifact = stack.pipeline.export(Role.REMOTE, "orders")

    with pytest.raises(TransferFailure, match="1049") as info:
        stack.pipeline.import_(Role.LOCAL, "orders", artifact, create_if_missing=False)

    assert info.value.artifact_path == artifact.path
    assert artifact.path.exists()


def test_import_rejected_statements_surface_as_transfer_failure(stack: Stack) -> None:
    stack.remote.add("orders")
    stack.local.import_error = "ERROR 1142 (42000): INSERT command denied to user"
    artifact = stack.pipeline.export(Role.REMOTE, "orders")

    with pytest.raises(TransferFailure, match="1142"):
        stack.pipeline.import_(Role.LOCAL, "orders", artifact)


def test_import_missing_artifact(stack: Stack, tmp_path: Path) -> None:
    stack.remote.add("orders")
    artifact = stack.pipeline.export(Role.REMOTE, "orders")
    stack.pipeline.discard(artifact)

    with pytest.raises(TransferFailure, match="not found"):
        stack.pipeline.import_(Role.LOCAL, "orders", artifact)


def test_stamped_path_avoids_collisions(stack: Stack, tmp_path: Path) -> None:
    moment = stack.clock()
    first = stamped_path(tmp_path, "backup", "shop", moment)
    first.write_text("taken")

    second = stamped_path(tmp_path, "backup", "shop", moment)

    assert first.name == "backup_shop_20240501_120000.sql"
    assert second.name == "backup_shop_20240501_120000_1.sql"
