"""Caller-facing operations: enqueue, status lookup, proxy call."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from command_gate.errors import ValidationError
from command_gate.jobs.models import JobView
from command_gate.jobs.queue import ApprovalQueue
from command_gate.jobs.repository import JobRepository
from command_gate.proxy.client import ProxyClient

logger = logging.getLogger(__name__)


class GatewayService:
    """Validates caller input, then delegates to the store, queue and proxy."""

    def __init__(
        self,
        *,
        repository: JobRepository,
        queue: ApprovalQueue,
        proxy: ProxyClient,
    ) -> None:
        self.repository = repository
        self.queue = queue
        self.proxy = proxy

    async def run_command(self, command: str) -> JobView:
        """Create a pending job and hand it to the approval pipeline."""

        if not isinstance(command, str) or not command:
            raise ValidationError("Command is required")
        job = await asyncio.to_thread(self.repository.create_job, command)
        try:
            self.queue.push(job)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to enqueue job #%s for approval", job.id)
        logger.info("Queued job #%s: %s", job.id, job.command)
        return job

    async def get_job_status(
        self,
        *,
        job_id: int | None = None,
        command: str | None = None,
    ) -> JobView | None:
        """Look a job up by id, or by command when no id is given."""

        if job_id is not None:
            if isinstance(job_id, bool) or not isinstance(job_id, int) or job_id <= 0:
                raise ValidationError("id must be a positive integer")
            return await asyncio.to_thread(self.repository.get_job, job_id)
        if command is not None:
            if not command:
                raise ValidationError("command must not be empty")
            return await asyncio.to_thread(self.repository.get_latest_by_command, command)
        raise ValidationError("Provide either an id or command to query job status")

    async def proxy_call(
        self,
        *,
        server: str,
        tool: str,
        args: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Forward a tool call and wrap the peer's raw result."""

        if not server:
            raise ValidationError("server is required")
        if not tool:
            raise ValidationError("tool is required")
        result = await self.proxy.forward(server, tool, args or {}, options or {})
        return {"server": server, "tool": tool, "response": _dump_result(result)}


def _dump_result(result: Any) -> Any:
    model_dump = getattr(result, "model_dump", None)
    if callable(model_dump):
        return model_dump(mode="json", by_alias=True, exclude_none=True)
    return result
