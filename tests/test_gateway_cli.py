from __future__ import annotations

import json
from pathlib import Path

import allure
from click.testing import CliRunner

from command_gate import __version__
from command_gate.jobs.models import JobStatus
from command_gate.jobs.repository import JobRepository
from command_gate.main import command_gate
from command_gate.proxy.resolver import peer_name

pytestmark = [
    allure.epic("Gateway"),
    allure.feature("CLI Ops"),
]


def _seed(db_path: Path) -> list[int]:
    repo = JobRepository(db_path)
    repo.init_schema()
    first = repo.create_job("echo one")
    second = repo.create_job("echo two")
    repo.update_job(second.id, status=JobStatus.RUNNING)
    repo.update_job(second.id, status=JobStatus.COMPLETED, output="two\n")
    third = repo.create_job("echo one")
    repo.close()
    return [first.id, second.id, third.id]


def test_version_option() -> None:
    result = CliRunner().invoke(command_gate, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_jobs_list_newest_first(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    ids = _seed(db_path)

    result = CliRunner().invoke(command_gate, ["jobs", "list", "--db-path", str(db_path)])

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0] == "Jobs: 3"
    assert lines[1].startswith(f"  #{ids[2]} status=pending")
    assert lines[3].startswith(f"  #{ids[0]} status=pending")


def test_jobs_list_status_filter(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    ids = _seed(db_path)

    result = CliRunner().invoke(
        command_gate,
        ["jobs", "list", "--db-path", str(db_path), "--status", "completed"],
    )

    assert result.exit_code == 0, result.output
    assert result.output.splitlines()[0] == "Jobs: 1"
    assert f"#{ids[1]} status=completed" in result.output


def test_jobs_show_by_id_and_command(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    ids = _seed(db_path)
    runner = CliRunner()

    by_id = runner.invoke(command_gate, ["jobs", "show", str(ids[1]), "--db-path", str(db_path)])
    by_command = runner.invoke(
        command_gate,
        ["jobs", "show", "--command", "echo one", "--db-path", str(db_path)],
    )

    assert by_id.exit_code == 0, by_id.output
    assert f"Job: #{ids[1]}" in by_id.output
    assert "Status: completed" in by_id.output
    assert "  two" in by_id.output
    assert by_command.exit_code == 0, by_command.output
    assert f"Job: #{ids[2]}" in by_command.output


def test_jobs_show_missing_and_usage(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    _seed(db_path)
    runner = CliRunner()

    missing = runner.invoke(command_gate, ["jobs", "show", "99", "--db-path", str(db_path)])
    no_args = runner.invoke(command_gate, ["jobs", "show", "--db-path", str(db_path)])

    assert missing.exit_code == 0
    assert "Job not found: #99" in missing.output
    assert no_args.exit_code != 0


def test_peers_resolve_does_not_persist(tmp_path: Path, monkeypatch) -> None:
    config_path = tmp_path / "peers.json"
    monkeypatch.setenv("COMMAND_GATE_PROXY_CONFIG_PERSIST", "1")

    spec = "stdio:node 'my server.js'"

    result = CliRunner().invoke(
        command_gate,
        ["peers", "resolve", spec, "--proxy-config", str(config_path)],
    )

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0] == f"Peer: {peer_name('stdio', spec)}"
    assert json.loads(lines[1].removeprefix("Config: ")) == {
        "args": ["my server.js"],
        "command": "node",
    }
    assert not config_path.exists()


def test_peers_resolve_configured_name(tmp_path: Path) -> None:
    config_path = tmp_path / "peers.json"
    config_path.write_text(
        json.dumps({"mcpServers": {"docs": {"url": "https://docs.test/mcp"}}}),
        "utf-8",
    )

    result = CliRunner().invoke(
        command_gate,
        ["peers", "resolve", "docs", "--proxy-config", str(config_path)],
    )

    assert result.exit_code == 0, result.output
    assert result.output.splitlines()[0] == "Peer: docs"


def test_peers_resolve_unknown_spec_fails() -> None:
    result = CliRunner().invoke(command_gate, ["peers", "resolve", "gopher://old"])

    assert result.exit_code != 0
    assert "Unknown server specification" in result.output
