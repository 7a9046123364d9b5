"""Operator decision point between queuing and execution.

The gate is fail-closed: when no controlling terminal can be opened every job
is rejected, and a terminal that reaches end of input rejects as well.
"""

from __future__ import annotations

import asyncio
import logging
import os
import select
import threading
from enum import Enum
from pathlib import Path
from typing import Protocol, TextIO

from command_gate.errors import ApprovalUnavailableError
from command_gate.jobs.models import JobView

logger = logging.getLogger(__name__)

_APPROVE_ANSWERS = frozenset({"y", "yes"})
_REJECT_ANSWERS = frozenset({"n", "no"})


class Decision(str, Enum):
    """Operator answer for one job."""

    APPROVE = "y"
    REJECT = "n"


class ApprovalGate(Protocol):
    """Capability to ask an operator about one job."""

    async def ask(self, job: JobView) -> Decision:
        """Block until the operator approves or rejects ``job``."""

    def close(self) -> None:
        """Release the interactive surface."""


def parse_answer(answer: str) -> Decision | None:
    """Map a raw answer to a decision; None when it is not understood."""

    normalized = answer.strip().lower()
    if normalized in _APPROVE_ANSWERS:
        return Decision.APPROVE
    if normalized in _REJECT_ANSWERS:
        return Decision.REJECT
    return None


class TerminalApprovalGate:
    """Prompt on a terminal-like text stream pair.

    Reads happen on a daemon thread per question, so a prompt left unanswered
    at shutdown never keeps the process alive. When the input stream has a
    file descriptor the reader waits on it with ``select`` alongside a wake-up
    pipe, and ``close`` only signals that pipe. The thread blocked on the
    prompt releases the streams itself once it wakes.
    """

    def __init__(self, input_stream: TextIO, output_stream: TextIO) -> None:
        self.input_stream = input_stream
        self.output_stream = output_stream
        self._closed = False
        self._streams_closed = False
        self._lock = threading.Lock()
        self._fd_lock = threading.Lock()
        self._pending = b""
        self._wake_read, self._wake_write = os.pipe()

    @classmethod
    def open(cls, tty_path: Path) -> TerminalApprovalGate:
        """Bind to the controlling terminal at ``tty_path``."""

        try:
            input_stream = tty_path.open("r", encoding="utf-8")
        except OSError as error:
            raise ApprovalUnavailableError(f"Cannot open {tty_path} for reading: {error}") from error
        try:
            output_stream = tty_path.open("w", encoding="utf-8")
        except OSError as error:
            input_stream.close()
            raise ApprovalUnavailableError(f"Cannot open {tty_path} for writing: {error}") from error
        return cls(input_stream, output_stream)

    @property
    def closed(self) -> bool:
        return self._closed

    async def ask(self, job: JobView) -> Decision:
        if self._closed:
            logger.warning("Approval terminal closed; rejecting job #%s.", job.id)
            return Decision.REJECT

        loop = asyncio.get_running_loop()
        future: asyncio.Future[Decision] = loop.create_future()

        def _worker() -> None:
            try:
                decision = self._ask_blocking(job)
            except ApprovalUnavailableError as error:
                _deliver(loop, future, error=error)
            except ValueError as error:
                # The stream was closed underneath a pending read.
                _deliver(loop, future, error=ApprovalUnavailableError(str(error)))
            else:
                _deliver(loop, future, result=decision)

        threading.Thread(target=_worker, name=f"approval-prompt-{job.id}", daemon=True).start()
        return await future

    def _ask_blocking(self, job: JobView) -> Decision:
        prompt = f"Job #{job.id}: {job.command} - Approve? (y/n): "
        self._lock.acquire()
        try:
            while not self._closed:
                try:
                    self.output_stream.write(prompt)
                    self.output_stream.flush()
                    answer = self._readline()
                except OSError as error:
                    logger.warning("Approval terminal failed (%s); rejecting job #%s.", error, job.id)
                    self._closed = True
                    break
                if answer is None:
                    raise ApprovalUnavailableError(
                        f"Approval terminal closed while asking about job #{job.id}",
                    )
                if answer == "":
                    logger.warning(
                        "Approval terminal reached end of input; rejecting job #%s.",
                        job.id,
                    )
                    self._closed = True
                    break
                decision = parse_answer(answer)
                if decision is not None:
                    return decision
                self.output_stream.write('Please respond with "y" or "n".\n')
                self.output_stream.flush()
            return Decision.REJECT
        finally:
            self._lock.release()
            if self._closed:
                self._release_streams()

    def _readline(self) -> str | None:
        """Next input line, ``""`` at end of input, None once the gate is closed."""

        try:
            fd = self.input_stream.fileno()
        except (OSError, ValueError):
            # In-memory streams have no descriptor to wait on.
            return self.input_stream.readline()

        while b"\n" not in self._pending:
            ready, _, _ = select.select([fd, self._wake_read], [], [])
            if self._wake_read in ready or self._closed:
                return None
            chunk = os.read(fd, 1024)
            if not chunk:
                line, self._pending = self._pending, b""
                return line.decode("utf-8", errors="replace")
            self._pending += chunk
        line, _, self._pending = self._pending.partition(b"\n")
        return (line + b"\n").decode("utf-8", errors="replace")

    def close(self) -> None:
        """Stop prompting; never waits on a thread blocked reading the terminal."""

        self._closed = True
        with self._fd_lock:
            if not self._streams_closed:
                try:
                    os.write(self._wake_write, b"\0")
                except OSError as error:
                    logger.warning("Cannot wake approval prompt: %s", error)
        self._release_streams()

    def _release_streams(self) -> None:
        # Whoever holds the prompt lock is still reading; it releases on exit.
        if not self._lock.acquire(blocking=False):
            return
        try:
            with self._fd_lock:
                if self._streams_closed:
                    return
                self._streams_closed = True
                for stream in (self.input_stream, self.output_stream):
                    if stream.closed:
                        continue
                    try:
                        stream.close()
                    except OSError as error:
                        logger.warning("Error closing approval terminal: %s", error)
                os.close(self._wake_read)
                os.close(self._wake_write)
        finally:
            self._lock.release()


class AutoRejectGate:
    """Gate used when no interactive surface exists."""

    async def ask(self, job: JobView) -> Decision:
        logger.warning(
            "Auto-rejecting job #%s due to unavailable approval interface.",
            job.id,
        )
        return Decision.REJECT

    def close(self) -> None:
        return None


def open_approval_gate(tty_path: Path) -> ApprovalGate:
    """Terminal gate when ``tty_path`` opens, otherwise auto-reject."""

    try:
        return TerminalApprovalGate.open(tty_path)
    except ApprovalUnavailableError as error:
        logger.warning("Interactive approval unavailable; jobs will be auto-rejected. %s", error)
        return AutoRejectGate()


def _deliver(
    loop: asyncio.AbstractEventLoop,
    future: asyncio.Future[Decision],
    *,
    result: Decision | None = None,
    error: BaseException | None = None,
) -> None:
    def _settle() -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        elif result is not None:
            future.set_result(result)

    try:
        loop.call_soon_threadsafe(_settle)
    except RuntimeError:
        # Event loop already closed; nobody is waiting for the answer.
        return
