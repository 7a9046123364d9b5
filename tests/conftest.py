"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from command_gate.jobs.repository import JobRepository


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[JobRepository]:
    repo = JobRepository(tmp_path / "jobs.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path: Path) -> None:
    """Keep ambient gateway settings from leaking into tests."""

    for name in (
        "COMMAND_GATE_DB_PATH",
        "COMMAND_GATE_JOB_TIMEOUT_MS",
        "COMMAND_GATE_JOB_MAX_BUFFER",
        "COMMAND_GATE_SHELL",
        "COMMAND_GATE_TTY",
        "COMMAND_GATE_PROXY_CONFIG",
        "COMMAND_GATE_PROXY_CONFIG_PERSIST",
        "JOB_TIMEOUT_MS",
        "JOB_MAX_BUFFER",
        "MCP_PROXY_CONFIG",
        "MCP_PROXY_CONFIG_PERSIST",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("COMMAND_GATE_PROXY_CONFIG", str(tmp_path / "proxy.config.json"))
