"""Backend interface for job command execution."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(slots=True)
class ShellRunRequest:
    """Inputs required to execute one approved command."""

    command: str
    timeout_ms: int
    max_output_bytes: int
    shell: str = "/bin/bash"
    kill_grace_seconds: float = 2.0


@dataclass(slots=True)
class ShellRunResult:
    """Execution outcome from a backend run."""

    exit_code: int | None
    timed_out: bool
    stdout: str
    stderr: str
    overflow_stream: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and self.overflow_stream is None


class CommandBackend(Protocol):
    """Protocol implemented by command runners."""

    async def run(self, request: ShellRunRequest) -> ShellRunResult:
        """Run the command to completion, timeout, or overflow."""
