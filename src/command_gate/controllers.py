"""Controllers for command gate CLI commands."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path

from command_gate.config import Settings
from command_gate.jobs.models import JobStatus, JobView
from command_gate.jobs.repository import JobRepository
from command_gate.proxy import PeerRegistry, PeerResolver
from command_gate.runtime import GatewayRuntime


@dataclass(slots=True)
class ServeCommand:
    """CLI input for running the gateway."""

    db_path: Path | None
    proxy_config: Path | None
    persist_peers: bool | None
    timeout_ms: int | None
    max_output_bytes: int | None


@dataclass(slots=True)
class JobsListCommand:
    """CLI input for job listing."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class JobsShowCommand:
    """CLI input for single job inspection."""

    db_path: Path | None
    job_id: int | None
    command: str | None


@dataclass(slots=True)
class PeersResolveCommand:
    proxy_config: Path | None
    spec: str


class GatewayCliController:
    """Coordinates serve, job inspection and peer resolution commands."""

    def serve(self, command: ServeCommand) -> int:
        settings = _serve_settings(command)
        settings.validate()
        runtime = GatewayRuntime(settings)
        return asyncio.run(runtime.serve())

    def list_jobs(self, command: JobsListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            jobs = repository.list_jobs(status=status_filter, limit=command.limit)

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  #{job.id} status={job.status.value} "
                f"created_at={job.created_at.isoformat()} command={job.command}",
            )
        return lines

    def show_job(self, command: JobsShowCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            if command.job_id is not None:
                job = repository.get_job(command.job_id)
                missing = f"Job not found: #{command.job_id}"
            else:
                job = repository.get_latest_by_command(command.command or "")
                missing = f"Job not found for command: {command.command}"
        if job is None:
            return [missing]
        return _job_lines(job)

    def resolve_peer(self, command: PeersResolveCommand) -> list[str]:
        settings = Settings.from_env(proxy_config_path=command.proxy_config)
        registry = PeerRegistry.load(settings.proxy.config_path)
        resolved = PeerResolver(registry).resolve(command.spec)
        return [
            f"Peer: {resolved.name}",
            f"Config: {json.dumps(resolved.config.to_dict(), sort_keys=True)}",
        ]


def _job_lines(job: JobView) -> list[str]:
    lines = [
        f"Job: #{job.id}",
        f"Command: {job.command}",
        f"Status: {job.status.value}",
        f"Created: {job.created_at.isoformat()}",
        f"Started: {job.started_at.isoformat() if job.started_at else '-'}",
        f"Finished: {job.finished_at.isoformat() if job.finished_at else '-'}",
        f"Error: {job.error or '-'}",
    ]
    if job.output:
        lines.append("Output:")
        lines.extend(f"  {line}" for line in job.output.splitlines())
    else:
        lines.append("Output: -")
    return lines


def _serve_settings(command: ServeCommand) -> Settings:
    settings = Settings.from_env(db_path=command.db_path, proxy_config_path=command.proxy_config)
    execution = settings.execution
    if command.timeout_ms is not None:
        execution = replace(execution, timeout_ms=command.timeout_ms)
    if command.max_output_bytes is not None:
        execution = replace(execution, max_output_bytes=command.max_output_bytes)
    proxy = settings.proxy
    if command.persist_peers is not None:
        proxy = replace(proxy, persist=command.persist_peers)
    return replace(settings, execution=execution, proxy=proxy)


def _parse_status(value: str | None) -> JobStatus | None:
    if value is None:
        return None
    return JobStatus(value.strip().lower())


@contextmanager
def _repository(settings: Settings) -> Iterator[JobRepository]:
    repository = JobRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
