"""Shared fixtures backed by the in-memory MySQL fakes."""

from __future__ import annotations

from pathlib import Path

import pytest

from .fakes import LOCAL_HOST, LOCAL_SECRET, REMOTE_HOST, REMOTE_SECRET, FakeMySQLShell, FakeServer, Stack, build_stack


@pytest.fixture
def servers() -> dict[str, FakeServer]:
    return {
        LOCAL_HOST: FakeServer(password=LOCAL_SECRET),
        REMOTE_HOST: FakeServer(password=REMOTE_SECRET),
    }


@pytest.fixture
def shell(servers: dict[str, FakeServer]) -> FakeMySQLShell:
    return FakeMySQLShell(servers)


@pytest.fixture
def stack(servers: dict[str, FakeServer], tmp_path: Path) -> Stack:
    return build_stack(servers, tmp_path)
