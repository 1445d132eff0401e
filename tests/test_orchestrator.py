"""Scenario tests for clone, push, and bidirectional synchronization."""

from __future__ import annotations

import logging
from datetime import datetime

import pytest

from mysqlsync.errors import BackupFailure, ConnectionFailure, PreconditionFailure, TransferFailure, UserAborted
from mysqlsync.models import Role, SyncDirection
from mysqlsync.orchestrator import OverwritePolicy

from .fakes import Stack

T1 = datetime(2024, 3, 1, 8, 0, 0)
T2 = datetime(2024, 3, 2, 8, 0, 0)


def _staged(stack: Stack) -> list[str]:
    if not stack.staging_dir.exists():
        return []
    return sorted(path.name for path in stack.staging_dir.iterdir())


def test_clone_into_missing_local_database(stack: Stack) -> None:
    stack.remote.add("orders", rows=7, modified=T1)

    report = stack.orchestrator().clone("orders")

    assert report.transferred is True
    assert report.direction is SyncDirection.PULL
    assert report.backup is None
    assert not stack.backup_dir.exists()
    assert stack.inspector.database_exists(Role.LOCAL, "orders")
    assert stack.local.databases["orders"].row_count() == 7
    assert _staged(stack) == []
    assert report.source == "remote:remote-db/orders"
    assert report.target == "local:local-db/orders"
    assert report.size_bytes and report.size_bytes > 0


def test_clone_uses_custom_local_name(stack: Stack) -> None:
    stack.remote.add("orders", rows=2)

    stack.orchestrator().clone("orders", "orders_copy")

    assert "orders_copy" in stack.local.databases
    assert "orders" not in stack.local.databases


def test_push_to_unreachable_remote_fails_before_export(stack: Stack) -> None:
    stack.local.add("catalog")
    stack.remote.reachable = False

    with pytest.raises(ConnectionFailure) as info:
        stack.orchestrator().push("catalog", "newcat")

    assert info.value.role is Role.REMOTE
    assert isinstance(info.value, PreconditionFailure)
    assert "mysqldump" not in stack.shell.programs()
    assert _staged(stack) == []


def test_missing_source_is_a_precondition_failure(stack: Stack) -> None:
    with pytest.raises(PreconditionFailure, match="does not exist on the local server"):
        stack.orchestrator().push("ghost")

    assert "mysqldump" not in stack.shell.programs()


def test_invalid_names_are_rejected_before_any_command(stack: Stack) -> None:
    with pytest.raises(PreconditionFailure):
        stack.orchestrator().clone("orders", "bad name")

    assert stack.shell.calls == []


def test_existing_target_is_backed_up_before_overwrite(stack: Stack) -> None:
    stack.local.add("shop", rows=1, modified=T1)
    stack.remote.add("shop", rows=9, modified=T2)

    report = stack.orchestrator().clone("shop")

    assert report.backup is not None
    assert report.backup.path.exists()
    assert report.backup.path.name.startswith("backup_shop_")
    assert report.completed_at is not None
    assert report.backup.created_at < report.completed_at
    assert stack.local.databases["shop"].row_count() == 9
    assert "DROP DATABASE IF EXISTS `shop`" in stack.shell.statements()


def test_backup_precedes_drop_and_import(stack: Stack) -> None:
    stack.local.add("shop")
    stack.remote.add("shop")

    stack.orchestrator().push("shop")

    sequence = []
    for call in stack.shell.calls:
        if call.program == "mysqldump":
            sequence.append(("dump", call.argv[4]))
        elif "-e" in call.argv and call.argv[-1].startswith("DROP"):
            sequence.append(("drop", call.argv[4]))
        elif "-e" not in call.argv:
            sequence.append(("load", call.argv[4]))
    assert sequence == [
        ("dump", "--user=admin"),
        ("drop", "--user=admin"),
        ("dump", "--user=root"),
        ("load", "--user=admin"),
    ]


def test_declined_overwrite_leaves_target_untouched(stack: Stack) -> None:
    stack.local.add("shop", rows=1)
    stack.remote.add("shop", rows=5)
    questions: list[str] = []

    def _decline(question: str) -> bool:
        questions.append(question)
        return False

    with pytest.raises(UserAborted):
        stack.orchestrator(OverwritePolicy.PROMPT, confirm=_decline).clone("shop")

    assert questions and "Overwrite" in questions[0]
    assert stack.local.databases["shop"].row_count() == 1
    assert "mysqldump" not in stack.shell.programs()


def test_confirmed_overwrite_proceeds(stack: Stack) -> None:
    stack.local.add("shop", rows=1)
    stack.remote.add("shop", rows=5)

    report = stack.orchestrator(OverwritePolicy.PROMPT, confirm=lambda _: True).clone("shop")

    assert report.transferred is True
    assert stack.local.databases["shop"].row_count() == 5


def test_refuse_policy_fails_fast_when_target_exists(stack: Stack) -> None:
    stack.local.add("shop")
    stack.remote.add("shop")

    with pytest.raises(UserAborted, match="--yes"):
        stack.orchestrator(OverwritePolicy.REFUSE).push("shop")


def test_backup_failure_leaves_target_unchanged(stack: Stack) -> None:
    stack.local.add("shop", rows=2, modified=T1)
    before = stack.local.databases["shop"]
    stack.remote.add("shop", rows=8, modified=T2)
    stack.local.disk_full_dirs.add(stack.backup_dir)

    with pytest.raises(BackupFailure):
        stack.orchestrator().clone("shop")

    assert stack.local.databases["shop"] is before
    assert stack.local.databases["shop"].row_count() == 2
    assert not any(statement.startswith("DROP") for statement in stack.shell.statements())
    dumps = [call for call in stack.shell.calls if call.program == "mysqldump"]
    assert len(dumps) == 1
    assert "--user=root" in dumps[0].argv
    assert _staged(stack) == []


def test_import_failure_points_at_backup_and_keeps_artifact(stack: Stack) -> None:
    stack.local.add("shop")
    stack.remote.add("shop")
    stack.local.import_error = "ERROR 1062 (23000): Duplicate entry '1' for key 'PRIMARY'"

    with pytest.raises(TransferFailure) as info:
        stack.orchestrator().clone("shop")

    failure = info.value
    assert failure.backup_path is not None and failure.backup_path.exists()
    assert failure.artifact_path is not None and failure.artifact_path.exists()
    assert failure.artifact_path.name.startswith("clone_shop_")


def test_bidirectional_pulls_when_remote_is_newer(stack: Stack) -> None:
    stack.local.add("shop", rows=3, modified=T1)
    stack.remote.add("shop", rows=11, modified=T2)

    report = stack.orchestrator().synchronize("shop", "shop", "bidirectional")

    assert report.direction is SyncDirection.PULL
    assert report.local_modified == T1
    assert report.remote_modified == T2
    assert stack.local.databases["shop"].row_count() == stack.remote.databases["shop"].row_count() == 11


def test_bidirectional_pushes_when_local_is_newer(stack: Stack) -> None:
    stack.local.add("shop", rows=6, modified=T2)
    stack.remote.add("shop", rows=1, modified=T1)

    report = stack.orchestrator().synchronize("shop", "shop", SyncDirection.BIDIRECTIONAL)

    assert report.direction is SyncDirection.PUSH
    assert stack.remote.databases["shop"].row_count() == 6


def test_bidirectional_is_idempotent(stack: Stack) -> None:
    stack.local.add("shop", rows=3, modified=T1)
    stack.remote.add("shop", rows=4, modified=T2)
    orchestrator = stack.orchestrator()

    first = orchestrator.synchronize("shop", "shop", "bidirectional")
    dumps_after_first = stack.shell.programs().count("mysqldump")
    second = orchestrator.synchronize("shop", "shop", "bidirectional")

    assert first.transferred is True
    assert second.transferred is False
    assert second.direction is SyncDirection.BIDIRECTIONAL
    assert stack.shell.programs().count("mysqldump") == dumps_after_first


def test_bidirectional_unknown_timestamps_never_win(stack: Stack) -> None:
    stack.local.add("shop", rows=2, modified=None)
    stack.remote.add("shop", rows=5, modified=T1)

    report = stack.orchestrator().synchronize("shop", "shop", "bidirectional")

    assert report.direction is SyncDirection.PULL


def test_bidirectional_both_unknown_transfers_nothing(stack: Stack) -> None:
    stack.local.add("shop", modified=None)
    stack.remote.add("shop", modified=None)

    report = stack.orchestrator().synchronize("shop", "shop", "bidirectional")

    assert report.transferred is False
    assert "mysqldump" not in stack.shell.programs()
    assert "in sync" in report.summary()


def test_synchronize_rejects_unknown_direction(stack: Stack) -> None:
    with pytest.raises(PreconditionFailure, match="Invalid sync direction"):
        stack.orchestrator().synchronize("shop", "shop", "sideways")


def test_failures_are_logged_with_operation_id(stack: Stack, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="mysqlsync.orchestrator")

    with pytest.raises(PreconditionFailure):
        stack.orchestrator().push("ghost")

    errors = [record for record in caplog.records if record.levelno == logging.ERROR]
    assert errors
    assert len(getattr(errors[0], "operation", "")) == 8
