"""In-memory FIFO of jobs awaiting an operator decision.

The queue is a cache over the durable store: whenever it runs dry it re-reads
pending jobs from the repository, so jobs left pending by a crash or inserted
out-of-band are picked up without a separate recovery pass.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque

from command_gate.errors import StoreIOError
from command_gate.jobs.models import JobStatus, JobView
from command_gate.jobs.repository import JobRepository

logger = logging.getLogger(__name__)


class ApprovalQueue:
    """Single-consumer queue handing out one pending job at a time."""

    def __init__(self, repository: JobRepository) -> None:
        self.repository = repository
        self._entries: deque[JobView] = deque()
        self._queued_ids: set[int] = set()
        self._wakeup = asyncio.Event()
        self._shutdown = False

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._queued_ids

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def push(self, job: JobView) -> bool:
        """Queue a pending job once; returns whether it was appended."""

        if job.status != JobStatus.PENDING:
            return False
        if job.id in self._queued_ids:
            return False
        self._queued_ids.add(job.id)
        self._entries.append(job)
        self._wakeup.set()
        return True

    async def prime(self) -> int:
        """Queue every pending job from the store, oldest first."""

        try:
            pending = await asyncio.to_thread(self.repository.list_pending)
        except StoreIOError:
            logger.exception("Failed to load pending jobs")
            return 0
        return sum(1 for job in pending if self.push(job))

    async def next(self) -> JobView | None:
        """Return the oldest job that is still pending, or None on shutdown."""

        while not self._shutdown:
            if self._entries:
                job = self._entries.popleft()
                self._queued_ids.discard(job.id)
                latest = await asyncio.to_thread(self.repository.get_job, job.id)
                if latest is None or latest.status != JobStatus.PENDING:
                    logger.debug("Skipping stale queue entry for job #%s", job.id)
                    continue
                return latest

            await self.prime()
            if self._entries or self._shutdown:
                continue

            self._wakeup.clear()
            await self._wakeup.wait()
        return None

    def shutdown(self) -> None:
        """Stop handing out jobs and wake a waiting consumer."""

        self._shutdown = True
        self._wakeup.set()
