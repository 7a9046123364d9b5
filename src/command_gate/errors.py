"""Error types raised by the command gateway.

Input-shape errors are raised before any state is mutated. Execution failures
of approved commands are recorded on the job instead of being raised.
"""

from __future__ import annotations


class CommandGateError(RuntimeError):
    """Base class for gateway errors."""


class ValidationError(CommandGateError, ValueError):
    """Required caller input is missing or empty."""


class UnknownPeerSpecificationError(CommandGateError):
    def __init__(self, spec: str) -> None:
        self.spec = spec
        super().__init__(
            f"Unknown server specification '{spec}'. "
            "Provide a configured name, http(s) URL, or stdio: command.",
        )


class MalformedStdioSpecificationError(CommandGateError, ValueError):
    """A ``stdio:`` peer specification has no usable command."""


class UnterminatedQuoteError(MalformedStdioSpecificationError):
    def __init__(self) -> None:
        super().__init__("Unterminated quoted string in stdio server specification")


class ConnectorUnavailableError(CommandGateError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"No connector available for server '{name}'")


class StoreIOError(CommandGateError):
    """Job store read or write failed."""


class InvalidJobTransitionError(CommandGateError):
    def __init__(self, job_id: int, current: str, requested: str) -> None:
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(f"Invalid job state transition for job #{job_id}: {current} -> {requested}")


class ApprovalUnavailableError(CommandGateError):
    """No interactive surface is available to ask the operator."""
