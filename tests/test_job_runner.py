from __future__ import annotations

import asyncio
import time

import allure
import pytest

from command_gate.config import ExecutionSettings
from command_gate.jobs.backend import BackendRunError, ShellBackend, ShellRunRequest, ShellRunResult
from command_gate.jobs.models import JobStatus, JobView
from command_gate.jobs.repository import JobRepository
from command_gate.jobs.runner import JobRunner

pytestmark = [
    allure.epic("Approval Pipeline"),
    allure.feature("Job Execution"),
]


def _settings(**overrides: object) -> ExecutionSettings:
    values: dict[str, object] = {
        "timeout_ms": 5_000,
        "max_output_bytes": 1024 * 1024,
        "shell": "/bin/sh",
        "kill_grace_seconds": 0.5,
    }
    values.update(overrides)
    return ExecutionSettings(**values)  # type: ignore[arg-type]


def _execute(repository: JobRepository, command: str, **overrides: object) -> JobView:
    runner = JobRunner(repository=repository, settings=_settings(**overrides))
    job = repository.create_job(command)
    return asyncio.run(runner.execute(job))


def test_successful_command_completes_with_output(repository: JobRepository) -> None:
    finished = _execute(repository, "echo hello")

    assert finished.status == JobStatus.COMPLETED
    assert finished.output == "hello\n"
    assert finished.error is None
    assert finished.started_at is not None
    assert finished.finished_at >= finished.started_at


def test_stdout_and_stderr_are_both_kept(repository: JobRepository) -> None:
    finished = _execute(repository, "echo out; echo err >&2")

    assert finished.status == JobStatus.COMPLETED
    assert finished.output == "out\n\nerr\n"


def test_non_zero_exit_fails_with_stderr_summary(repository: JobRepository) -> None:
    finished = _execute(repository, "echo partial; echo boom >&2; exit 3")

    assert finished.status == JobStatus.FAILED
    assert finished.error == "Command failed with exit code 3: boom"
    assert "partial" in finished.output


def test_timeout_kills_the_command(repository: JobRepository) -> None:
    started = time.monotonic()
    finished = _execute(repository, "sleep 30", timeout_ms=200)
    elapsed = time.monotonic() - started

    assert finished.status == JobStatus.FAILED
    assert finished.error == "Command timed out after 200 ms"
    assert elapsed < 10


def test_output_over_cap_fails(repository: JobRepository) -> None:
    finished = _execute(
        repository,
        "head -c 4096 /dev/zero | tr '\\0' 'x'; sleep 30",
        max_output_bytes=100,
    )

    assert finished.status == JobStatus.FAILED
    assert finished.error == "stdout exceeded max output of 100 bytes"
    assert len(finished.output or "") <= 100


def test_missing_shell_fails_without_running(repository: JobRepository) -> None:
    finished = _execute(repository, "echo hi", shell="/nonexistent/shell")

    assert finished.status == JobStatus.FAILED
    assert finished.error == "Shell not found: /nonexistent/shell"
    assert finished.output is None


def test_reject_records_operator_rejection(repository: JobRepository) -> None:
    runner = JobRunner(repository=repository, settings=_settings())
    job = repository.create_job("rm -rf /")

    rejected = asyncio.run(runner.reject(job))

    assert rejected.status == JobStatus.REJECTED
    assert rejected.error == "Rejected by operator"
    assert rejected.started_at is None
    assert rejected.finished_at is not None


class _BlockingBackend:
    def __init__(self) -> None:
        self.started = asyncio.Event()

    async def run(self, request: ShellRunRequest) -> ShellRunResult:
        self.started.set()
        await asyncio.sleep(60)
        raise AssertionError("unreachable")


def test_cancelled_job_is_recorded_as_failed(repository: JobRepository) -> None:
    job = repository.create_job("sleep 60")

    async def _scenario() -> None:
        backend = _BlockingBackend()
        runner = JobRunner(repository=repository, settings=_settings(), backend=backend)
        task = asyncio.create_task(runner.execute(job))
        await backend.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_scenario())

    stored = repository.get_job(job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.error == "Command interrupted by shutdown"


def test_shell_backend_reports_exit_code_directly() -> None:
    result = asyncio.run(
        ShellBackend().run(
            ShellRunRequest(
                command="exit 0",
                timeout_ms=5_000,
                max_output_bytes=1024,
                shell="/bin/sh",
            ),
        ),
    )

    assert result.ok
    assert result.exit_code == 0


def test_backend_run_error_is_runtime_error() -> None:
    assert issubclass(BackendRunError, RuntimeError)
