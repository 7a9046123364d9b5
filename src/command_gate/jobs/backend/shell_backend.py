"""Subprocess-based backend for approved shell commands."""

from __future__ import annotations

import asyncio
import os
import signal

from command_gate.jobs.backend.base import ShellRunRequest, ShellRunResult

_READ_CHUNK_BYTES = 64 * 1024


class BackendRunError(RuntimeError):
    """The command could not be started at all."""


class ShellBackend:
    """Run a command through ``<shell> -c`` with timeout and output cap.

    The child gets its own session so timeout and overflow handling can stop
    the whole process group, not only the shell.
    """

    async def run(self, request: ShellRunRequest) -> ShellRunResult:
        try:
            process = await asyncio.create_subprocess_exec(
                request.shell,
                "-c",
                request.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except FileNotFoundError as error:
            raise BackendRunError(f"Shell not found: {request.shell}") from error
        except OSError as error:
            raise BackendRunError(f"Failed to start command: {error}") from error

        stdout_buffer = bytearray()
        stderr_buffer = bytearray()
        overflowed: list[str] = []

        async def _collect() -> int:
            await asyncio.gather(
                _drain(process, process.stdout, stdout_buffer, "stdout", request, overflowed),
                _drain(process, process.stderr, stderr_buffer, "stderr", request, overflowed),
            )
            return await process.wait()

        timed_out = False
        exit_code: int | None = None
        try:
            exit_code = await asyncio.wait_for(_collect(), timeout=request.timeout_ms / 1000.0)
        except TimeoutError:
            timed_out = True
            await _terminate_process(process, grace_seconds=request.kill_grace_seconds)
        except asyncio.CancelledError:
            await _terminate_process(process, grace_seconds=request.kill_grace_seconds)
            raise

        return ShellRunResult(
            exit_code=None if timed_out else exit_code,
            timed_out=timed_out,
            stdout=_decode(stdout_buffer),
            stderr=_decode(stderr_buffer),
            overflow_stream=overflowed[0] if overflowed else None,
        )


async def _drain(  # noqa: PLR0913
    process: asyncio.subprocess.Process,
    stream: asyncio.StreamReader | None,
    buffer: bytearray,
    stream_name: str,
    request: ShellRunRequest,
    overflowed: list[str],
) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK_BYTES)
        if not chunk:
            return
        remaining = request.max_output_bytes - len(buffer)
        if len(chunk) > remaining:
            buffer.extend(chunk[: max(0, remaining)])
            if not overflowed:
                overflowed.append(stream_name)
            _signal_group(process, signal.SIGKILL)
            return
        buffer.extend(chunk)


async def _terminate_process(process: asyncio.subprocess.Process, *, grace_seconds: float) -> None:
    if process.returncode is not None:
        return
    _signal_group(process, signal.SIGTERM)
    try:
        await asyncio.wait_for(process.wait(), timeout=max(0.0, grace_seconds))
    except TimeoutError:
        _signal_group(process, signal.SIGKILL)
        await process.wait()


def _signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        return
    except OSError:
        try:
            process.send_signal(sig)
        except ProcessLookupError:
            return


def _decode(buffer: bytearray) -> str:
    return bytes(buffer).decode("utf-8", errors="replace")
