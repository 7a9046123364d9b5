"""Runtime configuration for the command gateway."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_TIMEOUT_MS = 300_000
DEFAULT_MAX_OUTPUT_BYTES = 10 * 1024 * 1024


@dataclass(slots=True)
class ExecutionSettings:
    """Limits applied to approved shell commands."""

    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    shell: str = "/bin/bash"
    kill_grace_seconds: float = 2.0


@dataclass(slots=True)
class ApprovalSettings:
    """Operator prompt and approval loop settings."""

    tty_path: Path = Path("/dev/tty")
    error_backoff_seconds: float = 1.0
    shutdown_grace_seconds: float = 10.0


@dataclass(slots=True)
class ProxySettings:
    """Peer configuration file and persistence toggle."""

    config_path: Path = Path("proxy.config.json")
    persist: bool = False


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".command_gate.db")
    sqlite_busy_timeout_ms: int = 5_000
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    approval: ApprovalSettings = field(default_factory=ApprovalSettings)
    proxy: ProxySettings = field(default_factory=ProxySettings)

    @classmethod
    def from_env(
        cls,
        db_path: Path | None = None,
        proxy_config_path: Path | None = None,
    ) -> Settings:
        """Load settings from environment with defaults for local use."""

        return cls(
            db_path=db_path or Path(os.getenv("COMMAND_GATE_DB_PATH", ".command_gate.db")),
            sqlite_busy_timeout_ms=int(os.getenv("COMMAND_GATE_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            execution=ExecutionSettings(
                timeout_ms=int(
                    os.getenv(
                        "COMMAND_GATE_JOB_TIMEOUT_MS",
                        os.getenv("JOB_TIMEOUT_MS", str(DEFAULT_TIMEOUT_MS)),
                    ),
                ),
                max_output_bytes=int(
                    os.getenv(
                        "COMMAND_GATE_JOB_MAX_BUFFER",
                        os.getenv("JOB_MAX_BUFFER", str(DEFAULT_MAX_OUTPUT_BYTES)),
                    ),
                ),
                shell=os.getenv("COMMAND_GATE_SHELL", os.getenv("SHELL", "/bin/bash")),
                kill_grace_seconds=float(os.getenv("COMMAND_GATE_KILL_GRACE_SECONDS", "2.0")),
            ),
            approval=ApprovalSettings(
                tty_path=Path(os.getenv("COMMAND_GATE_TTY", "/dev/tty")),
                error_backoff_seconds=float(
                    os.getenv("COMMAND_GATE_LOOP_ERROR_BACKOFF_SECONDS", "1.0"),
                ),
                shutdown_grace_seconds=float(
                    os.getenv("COMMAND_GATE_SHUTDOWN_GRACE_SECONDS", "10.0"),
                ),
            ),
            proxy=ProxySettings(
                config_path=proxy_config_path
                or Path(
                    os.getenv(
                        "COMMAND_GATE_PROXY_CONFIG",
                        os.getenv("MCP_PROXY_CONFIG", "proxy.config.json"),
                    ),
                ),
                persist=_env_bool(
                    "COMMAND_GATE_PROXY_CONFIG_PERSIST",
                    default=_env_bool("MCP_PROXY_CONFIG_PERSIST", default=False),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for limits that cannot be enforced."""

        if self.execution.timeout_ms <= 0:
            raise ValueError("COMMAND_GATE_JOB_TIMEOUT_MS must be > 0.")
        if self.execution.max_output_bytes <= 0:
            raise ValueError("COMMAND_GATE_JOB_MAX_BUFFER must be > 0.")
        if not self.execution.shell.strip():
            raise ValueError("COMMAND_GATE_SHELL must not be empty.")
        if self.approval.error_backoff_seconds < 0:
            raise ValueError("COMMAND_GATE_LOOP_ERROR_BACKOFF_SECONDS must be >= 0.")
        if self.approval.shutdown_grace_seconds < 0:
            raise ValueError("COMMAND_GATE_SHUTDOWN_GRACE_SECONDS must be >= 0.")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
