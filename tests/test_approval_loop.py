from __future__ import annotations

import asyncio

import allure
import pytest

from command_gate.approval import ApprovalLoop, AutoRejectGate, Decision
from command_gate.config import ExecutionSettings
from command_gate.errors import ApprovalUnavailableError
from command_gate.jobs.models import JobStatus, JobView
from command_gate.jobs.queue import ApprovalQueue
from command_gate.jobs.repository import JobRepository
from command_gate.jobs.runner import JobRunner

pytestmark = [
    allure.epic("Approval Pipeline"),
    allure.feature("Approval Loop"),
]


class _ScriptedGate:
    def __init__(self, decisions: list[Decision | Exception]) -> None:
        self.decisions = list(decisions)
        self.asked: list[int] = []

    async def ask(self, job: JobView) -> Decision:
        self.asked.append(job.id)
        decision = self.decisions.pop(0)
        if isinstance(decision, Exception):
            raise decision
        return decision

    def close(self) -> None:
        return None


def _loop(repository: JobRepository, gate: object) -> ApprovalLoop:
    return ApprovalLoop(
        queue=ApprovalQueue(repository),
        gate=gate,  # type: ignore[arg-type]
        runner=JobRunner(
            repository=repository,
            settings=ExecutionSettings(timeout_ms=5_000, shell="/bin/sh"),
        ),
        error_backoff_seconds=0,
    )


def test_loop_runs_approved_and_rejects_others(repository: JobRepository) -> None:
    approved = repository.create_job("echo approved")
    rejected = repository.create_job("echo rejected")
    gate = _ScriptedGate([Decision.APPROVE, Decision.REJECT])

    summary = asyncio.run(_loop(repository, gate).run(max_jobs=2))

    assert gate.asked == [approved.id, rejected.id]
    assert summary.processed == 2
    assert summary.completed == 1
    assert summary.rejected == 1
    assert repository.get_job(approved.id).output == "approved\n"
    stored = repository.get_job(rejected.id)
    assert stored.status == JobStatus.REJECTED
    assert stored.error == "Rejected by operator"
    assert stored.output is None


def test_auto_reject_without_terminal(repository: JobRepository) -> None:
    job = repository.create_job("touch /tmp/should-not-exist")

    summary = asyncio.run(_loop(repository, AutoRejectGate()).run(max_jobs=1))

    assert summary.rejected == 1
    stored = repository.get_job(job.id)
    assert stored.status == JobStatus.REJECTED
    assert stored.error == "Rejected by operator"
    assert stored.started_at is None


def test_failed_command_counts_as_failed(repository: JobRepository) -> None:
    repository.create_job("exit 4")

    summary = asyncio.run(_loop(repository, _ScriptedGate([Decision.APPROVE])).run(max_jobs=1))

    assert summary.failed == 1


def test_gate_errors_do_not_stop_the_loop(repository: JobRepository) -> None:
    job = repository.create_job("echo retry me")
    gate = _ScriptedGate([ApprovalUnavailableError("terminal vanished"), Decision.APPROVE])

    summary = asyncio.run(_loop(repository, gate).run(max_jobs=1))

    assert summary.errors == 1
    assert gate.asked == [job.id, job.id]
    assert repository.get_job(job.id).status == JobStatus.COMPLETED


def test_jobs_are_handled_one_at_a_time_in_order(repository: JobRepository) -> None:
    ids = [repository.create_job(f"echo {index}").id for index in range(3)]
    gate = _ScriptedGate([Decision.APPROVE] * 3)

    asyncio.run(_loop(repository, gate).run(max_jobs=3))

    jobs = [repository.get_job(job_id) for job_id in ids]
    assert [job.status for job in jobs] == [JobStatus.COMPLETED] * 3
    for earlier, later in zip(jobs, jobs[1:]):
        assert earlier.finished_at <= later.started_at


def test_request_stop_ends_idle_loop(repository: JobRepository) -> None:
    loop = _loop(repository, _ScriptedGate([]))

    async def _scenario() -> int:
        task = asyncio.create_task(loop.run())
        await asyncio.sleep(0.05)
        loop.request_stop()
        summary = await asyncio.wait_for(task, timeout=5)
        return summary.processed

    assert asyncio.run(_scenario()) == 0
    assert loop.stop_requested


def test_executing_job_id_covers_only_the_command_run(
    repository: JobRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    job = repository.create_job("echo tracked")
    seen: list[tuple[str, int | None]] = []

    class _ObservingGate:
        async def ask(self, asked: JobView) -> Decision:
            seen.append(("ask", approval_loop.executing_job_id))
            return Decision.APPROVE

        def close(self) -> None:
            return None

    approval_loop = _loop(repository, _ObservingGate())
    execute = approval_loop.runner.execute

    async def _observed_execute(running: JobView) -> JobView:
        seen.append(("execute", approval_loop.executing_job_id))
        return await execute(running)

    monkeypatch.setattr(approval_loop.runner, "execute", _observed_execute)

    summary = asyncio.run(approval_loop.run(max_jobs=1))

    assert summary.completed == 1
    assert seen == [("ask", None), ("execute", job.id)]
    assert approval_loop.executing_job_id is None
