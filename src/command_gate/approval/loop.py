"""Approval loop: the sole writer of running and terminal job states."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from command_gate.approval.gate import ApprovalGate, Decision
from command_gate.errors import ApprovalUnavailableError, InvalidJobTransitionError, StoreIOError
from command_gate.jobs.backend import BackendRunError
from command_gate.jobs.models import JobStatus, JobView
from command_gate.jobs.queue import ApprovalQueue
from command_gate.jobs.runner import JobRunner

logger = logging.getLogger(__name__)

_RECOVERABLE_ERRORS = (
    StoreIOError,
    ApprovalUnavailableError,
    BackendRunError,
    InvalidJobTransitionError,
)


@dataclass(slots=True)
class ApprovalLoopSummary:
    """Aggregate loop counters for logging and tests."""

    processed: int = 0
    completed: int = 0
    failed: int = 0
    rejected: int = 0
    errors: int = 0


class ApprovalLoop:
    """Takes jobs from the queue one at a time and acts on the operator decision."""

    def __init__(
        self,
        *,
        queue: ApprovalQueue,
        gate: ApprovalGate,
        runner: JobRunner,
        error_backoff_seconds: float = 1.0,
    ) -> None:
        self.queue = queue
        self.gate = gate
        self.runner = runner
        self.error_backoff_seconds = error_backoff_seconds
        self.summary = ApprovalLoopSummary()
        self._stop_requested = False
        self._executing_job_id: int | None = None

    @property
    def executing_job_id(self) -> int | None:
        """Id of the approved job whose command is running, if any."""

        return self._executing_job_id

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    async def run(self, *, max_jobs: int | None = None) -> ApprovalLoopSummary:
        """Serve jobs until stopped, or until ``max_jobs`` have been handled.

        Recoverable errors are logged and the loop moves on; anything else
        propagates so the runtime can shut down with a failure code.
        """

        await self.queue.prime()
        while not self._stop_requested:
            if max_jobs is not None and self.summary.processed >= max_jobs:
                break
            try:
                job = await self.queue.next()
                if job is None:
                    if self._stop_requested or self.queue.is_shutdown:
                        break
                    continue
                await self._process(job)
            except _RECOVERABLE_ERRORS:
                self.summary.errors += 1
                logger.exception("Approval loop error")
                if self.error_backoff_seconds > 0 and not self._stop_requested:
                    await asyncio.sleep(self.error_backoff_seconds)
        return self.summary

    def request_stop(self) -> None:
        """Ask the loop to exit after the current job."""

        self._stop_requested = True
        self.queue.shutdown()

    async def _process(self, job: JobView) -> None:
        decision = await self.gate.ask(job)
        self.summary.processed += 1
        if decision == Decision.APPROVE:
            self._executing_job_id = job.id
            try:
                finished = await self.runner.execute(job)
            finally:
                self._executing_job_id = None
            if finished.status == JobStatus.COMPLETED:
                self.summary.completed += 1
            else:
                self.summary.failed += 1
            return
        await self.runner.reject(job)
        self.summary.rejected += 1
