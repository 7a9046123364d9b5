"""CLI entrypoint for command-gate."""

import logging
from pathlib import Path

import rich_click as click
from rich.console import Console
from rich.logging import RichHandler

from command_gate import __version__
from command_gate.controllers import (
    GatewayCliController,
    JobsListCommand,
    JobsShowCommand,
    PeersResolveCommand,
    ServeCommand,
)
from command_gate.errors import CommandGateError

click.rich_click.USE_MARKDOWN = True
GATEWAY_CONTROLLER = GatewayCliController()
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@click.group()
@click.version_option(version=__version__, prog_name="command-gate")
def command_gate() -> None:
    """Approval-gated command runner and MCP proxy."""


@command_gate.command("serve")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--proxy-config",
    type=click.Path(path_type=Path),
    default=None,
    help="Peer configuration file (`mcpServers` JSON).",
)
@click.option(
    "--persist-peers/--no-persist-peers",
    default=None,
    help="Write newly resolved peers back to the proxy config file.",
)
@click.option(
    "--timeout-ms",
    type=click.IntRange(min=1),
    default=None,
    help="Per-job timeout in milliseconds.",
)
@click.option(
    "--max-output-bytes",
    type=click.IntRange(min=1),
    default=None,
    help="Per-stream output cap in bytes.",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Log level for stderr logging.",
)
def serve(  # noqa: PLR0913
    db_path: Path | None,
    proxy_config: Path | None,
    persist_peers: bool | None,
    timeout_ms: int | None,
    max_output_bytes: int | None,
    log_level: str,
) -> None:
    """Serve MCP tools on stdio and prompt the operator on the terminal."""

    _configure_logging(log_level)
    try:
        exit_code = GATEWAY_CONTROLLER.serve(
            ServeCommand(
                db_path=db_path,
                proxy_config=proxy_config,
                persist_peers=persist_peers,
                timeout_ms=timeout_ms,
                max_output_bytes=max_output_bytes,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    if exit_code:
        raise SystemExit(exit_code)


@command_gate.group()
def jobs() -> None:
    """Job inspection commands."""


@jobs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(["pending", "running", "completed", "failed", "rejected"]),
    default=None,
    help="Only show jobs in this status.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
    help="Max number of jobs to print, newest first.",
)
def jobs_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List recent jobs."""

    _emit_lines(
        GATEWAY_CONTROLLER.list_jobs(
            JobsListCommand(db_path=db_path, status=status, limit=limit),
        ),
    )


@jobs.command("show")
@click.argument("job_id", type=click.IntRange(min=1), required=False)
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--command",
    "command_text",
    default=None,
    help="Exact command text; shows the latest matching job.",
)
def jobs_show(job_id: int | None, db_path: Path | None, command_text: str | None) -> None:
    """Show one job by id or by command."""

    if job_id is None and not command_text:
        raise click.UsageError("Provide a job id or --command.")
    _emit_lines(
        GATEWAY_CONTROLLER.show_job(
            JobsShowCommand(db_path=db_path, job_id=job_id, command=command_text),
        ),
    )


@command_gate.group()
def peers() -> None:
    """Peer proxy commands."""


@peers.command("resolve")
@click.argument("spec")
@click.option(
    "--proxy-config",
    type=click.Path(path_type=Path),
    default=None,
    help="Peer configuration file (`mcpServers` JSON).",
)
def peers_resolve(spec: str, proxy_config: Path | None) -> None:
    """Print the name and config a peer specification resolves to (nothing is saved)."""

    try:
        lines = GATEWAY_CONTROLLER.resolve_peer(
            PeersResolveCommand(proxy_config=proxy_config, spec=spec),
        )
    except CommandGateError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _configure_logging(level: str) -> None:
    # stdout carries the MCP protocol; logs go to stderr only.
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    command_gate()
