"""Execute or reject jobs and record their terminal state."""

from __future__ import annotations

import asyncio
import logging

from command_gate.config import ExecutionSettings
from command_gate.jobs.backend import (
    BackendRunError,
    CommandBackend,
    ShellBackend,
    ShellRunRequest,
    ShellRunResult,
)
from command_gate.jobs.models import (
    INTERRUPTED_BY_SHUTDOWN,
    REJECTED_BY_OPERATOR,
    JobStatus,
    JobView,
)
from command_gate.jobs.repository import JobRepository
from command_gate.storage.timestamps import utc_now

logger = logging.getLogger(__name__)


class JobRunner:
    """Runs one approved job at a time under the configured limits."""

    def __init__(
        self,
        *,
        repository: JobRepository,
        settings: ExecutionSettings,
        backend: CommandBackend | None = None,
    ) -> None:
        self.repository = repository
        self.settings = settings
        self.backend = backend or ShellBackend()

    async def execute(self, job: JobView) -> JobView:
        """Move ``job`` through ``running`` to ``completed`` or ``failed``."""

        await asyncio.to_thread(
            self.repository.update_job,
            job.id,
            status=JobStatus.RUNNING,
            started_at=utc_now(),
        )
        logger.info("Job #%s running: %s", job.id, job.command)

        try:
            result = await self.backend.run(
                ShellRunRequest(
                    command=job.command,
                    timeout_ms=self.settings.timeout_ms,
                    max_output_bytes=self.settings.max_output_bytes,
                    shell=self.settings.shell,
                    kill_grace_seconds=self.settings.kill_grace_seconds,
                ),
            )
        except BackendRunError as error:
            logger.error("Job #%s could not start: %s", job.id, error)
            return await self._finish(job, status=JobStatus.FAILED, output=None, error=str(error))
        except asyncio.CancelledError:
            logger.warning("Job #%s interrupted by shutdown.", job.id)
            await self._finish(
                job,
                status=JobStatus.FAILED,
                output=None,
                error=INTERRUPTED_BY_SHUTDOWN,
            )
            raise

        output = _merge_output(result)
        if result.ok:
            logger.info("Job #%s completed successfully.", job.id)
            return await self._finish(job, status=JobStatus.COMPLETED, output=output, error=None)

        message = _failure_message(result, settings=self.settings)
        logger.warning("Job #%s failed: %s", job.id, message)
        return await self._finish(job, status=JobStatus.FAILED, output=output, error=message)

    async def reject(self, job: JobView) -> JobView:
        """Record an operator rejection without running anything."""

        rejected = await asyncio.to_thread(
            self.repository.update_job,
            job.id,
            status=JobStatus.REJECTED,
            finished_at=utc_now(),
            error=REJECTED_BY_OPERATOR,
        )
        logger.info("Job #%s was rejected.", job.id)
        return rejected

    async def _finish(
        self,
        job: JobView,
        *,
        status: JobStatus,
        output: str | None,
        error: str | None,
    ) -> JobView:
        return await asyncio.to_thread(
            self.repository.update_job,
            job.id,
            status=status,
            finished_at=utc_now(),
            output=output,
            error=error,
        )


def _merge_output(result: ShellRunResult) -> str | None:
    merged = "\n".join(part for part in (result.stdout, result.stderr) if part)
    return merged or None


def _failure_message(result: ShellRunResult, *, settings: ExecutionSettings) -> str:
    if result.timed_out:
        return f"Command timed out after {settings.timeout_ms} ms"
    if result.overflow_stream is not None:
        return (
            f"{result.overflow_stream} exceeded max output of {settings.max_output_bytes} bytes"
        )
    message = f"Command failed with exit code {result.exit_code}"
    stderr_lines = [line for line in result.stderr.strip().splitlines() if line.strip()]
    if stderr_lines:
        message = f"{message}: {stderr_lines[-1].strip()}"
    return message
