from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import allure
import pytest

from command_gate.config import DEFAULT_MAX_OUTPUT_BYTES, DEFAULT_TIMEOUT_MS, Settings

pytestmark = [
    allure.epic("Gateway"),
    allure.feature("Configuration"),
]


def test_defaults(monkeypatch) -> None:
    monkeypatch.delenv("COMMAND_GATE_PROXY_CONFIG", raising=False)
    monkeypatch.setenv("SHELL", "/bin/zsh")

    settings = Settings.from_env()

    assert settings.db_path == Path(".command_gate.db")
    assert settings.execution.timeout_ms == DEFAULT_TIMEOUT_MS == 300_000
    assert settings.execution.max_output_bytes == DEFAULT_MAX_OUTPUT_BYTES == 10 * 1024 * 1024
    assert settings.execution.shell == "/bin/zsh"
    assert settings.approval.tty_path == Path("/dev/tty")
    assert settings.proxy.config_path == Path("proxy.config.json")
    assert settings.proxy.persist is False


def test_prefixed_variables_win_over_legacy_names(monkeypatch) -> None:
    monkeypatch.setenv("JOB_TIMEOUT_MS", "1000")
    monkeypatch.setenv("COMMAND_GATE_JOB_TIMEOUT_MS", "2000")
    monkeypatch.setenv("JOB_MAX_BUFFER", "512")
    monkeypatch.setenv("MCP_PROXY_CONFIG_PERSIST", "true")

    settings = Settings.from_env()

    assert settings.execution.timeout_ms == 2000
    assert settings.execution.max_output_bytes == 512
    assert settings.proxy.persist is True


def test_explicit_arguments_override_environment(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("COMMAND_GATE_DB_PATH", str(tmp_path / "env.db"))

    settings = Settings.from_env(
        db_path=tmp_path / "arg.db",
        proxy_config_path=tmp_path / "peers.json",
    )

    assert settings.db_path == tmp_path / "arg.db"
    assert settings.proxy.config_path == tmp_path / "peers.json"


def test_invalid_boolean_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("COMMAND_GATE_PROXY_CONFIG_PERSIST", "sometimes")

    with pytest.raises(ValueError, match="COMMAND_GATE_PROXY_CONFIG_PERSIST"):
        Settings.from_env()


def test_validate_rejects_unenforceable_limits() -> None:
    settings = Settings.from_env()
    settings.validate()

    with pytest.raises(ValueError, match="TIMEOUT"):
        replace(settings, execution=replace(settings.execution, timeout_ms=0)).validate()
    with pytest.raises(ValueError, match="MAX_BUFFER"):
        replace(settings, execution=replace(settings.execution, max_output_bytes=-1)).validate()
