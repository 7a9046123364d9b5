"""Domain models for the job lifecycle."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from command_gate.errors import InvalidJobTransitionError

REJECTED_BY_OPERATOR = "Rejected by operator"
INTERRUPTED_BY_SHUTDOWN = "Command interrupted by shutdown"


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.REJECTED})

_ALLOWED: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.REJECTED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.REJECTED: frozenset(),
}


def is_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_STATUSES


def ensure_transition(job_id: int, current: JobStatus, requested: JobStatus) -> None:
    """Raise unless ``current -> requested`` is an edge of the lifecycle.

    Writing the current status again is a no-op and always allowed for
    non-terminal jobs.
    """

    if requested == current and not is_terminal(current):
        return
    if requested not in _ALLOWED[current]:
        raise InvalidJobTransitionError(job_id, current.value, requested.value)


@dataclass(slots=True)
class JobView:
    """Readable job view for callers and the approval loop."""

    id: int
    command: str
    status: JobStatus
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    output: str | None = None
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Caller-facing mapping with camelCase keys and ISO timestamps."""

        return {
            "id": self.id,
            "command": self.command,
            "status": self.status.value,
            "createdAt": _iso(self.created_at),
            "startedAt": _iso(self.started_at),
            "finishedAt": _iso(self.finished_at),
            "output": self.output,
            "error": self.error,
        }


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")
