"""Command execution backends."""

from command_gate.jobs.backend.base import CommandBackend, ShellRunRequest, ShellRunResult
from command_gate.jobs.backend.shell_backend import BackendRunError, ShellBackend

__all__ = [
    "BackendRunError",
    "CommandBackend",
    "ShellBackend",
    "ShellRunRequest",
    "ShellRunResult",
]
