"""Process runtime: wiring, concurrent serving, and ordered shutdown."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Awaitable, Callable, Iterator

from mcp.server.fastmcp import FastMCP

from command_gate.approval import ApprovalGate, ApprovalLoop, open_approval_gate
from command_gate.config import Settings
from command_gate.jobs.backend import CommandBackend
from command_gate.jobs.queue import ApprovalQueue
from command_gate.jobs.repository import JobRepository
from command_gate.jobs.runner import JobRunner
from command_gate.proxy import PeerRegistry, PeerResolver, ProxyClient, open_mcp_connector
from command_gate.proxy.client import ConnectorFactory
from command_gate.server import build_server
from command_gate.services import GatewayService

logger = logging.getLogger(__name__)

Transport = Callable[[FastMCP], Awaitable[None]]


async def run_stdio(server: FastMCP) -> None:
    await server.run_stdio_async()


class GatewayRuntime:
    """Runs the tool server and the approval loop side by side.

    Shutdown order: stop the approval loop, close the gate, close peer
    sessions, stop the tool server, close the job store. Each step's failure
    is logged and the remaining steps still run. A job that is executing when
    shutdown starts gets ``shutdown_grace_seconds`` to finish; after that the
    loop is cancelled, which terminates the child process and records the job
    as failed. A job still awaiting the operator is abandoned at once and stays
    pending for the next start.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        gate: ApprovalGate | None = None,
        backend: CommandBackend | None = None,
        connector_factory: ConnectorFactory = open_mcp_connector,
    ) -> None:
        self.settings = settings
        self.repository = JobRepository(
            settings.db_path,
            sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
        self.registry = PeerRegistry.load(settings.proxy.config_path)
        self.resolver = PeerResolver(
            self.registry,
            persist_path=settings.proxy.config_path if settings.proxy.persist else None,
        )
        self.proxy = ProxyClient(
            registry=self.registry,
            resolver=self.resolver,
            connector_factory=connector_factory,
        )
        self._gate_override = gate
        self._backend = backend
        self.gate: ApprovalGate | None = None
        self.queue: ApprovalQueue | None = None
        self.approval_loop: ApprovalLoop | None = None
        self.service: GatewayService | None = None
        self._stop_event: asyncio.Event | None = None

    def request_shutdown(self, reason: str = "requested") -> None:
        if self._stop_event is None or self._stop_event.is_set():
            return
        logger.info("Shutdown requested (%s)", reason)
        self._stop_event.set()

    async def serve(self, transport: Transport = run_stdio) -> int:
        """Serve until a signal, transport end, or fatal error; return exit code."""

        self.settings.validate()
        self._stop_event = asyncio.Event()
        self.repository.init_schema()
        self.gate = self._gate_override or open_approval_gate(self.settings.approval.tty_path)
        self.queue = ApprovalQueue(self.repository)
        self.approval_loop = ApprovalLoop(
            queue=self.queue,
            gate=self.gate,
            runner=JobRunner(
                repository=self.repository,
                settings=self.settings.execution,
                backend=self._backend,
            ),
            error_backoff_seconds=self.settings.approval.error_backoff_seconds,
        )
        self.service = GatewayService(
            repository=self.repository,
            queue=self.queue,
            proxy=self.proxy,
        )
        server = build_server(self.service)

        loop_task = asyncio.create_task(self.approval_loop.run(), name="approval-loop")
        server_task = asyncio.create_task(transport(server), name="mcp-transport")
        stop_task = asyncio.create_task(self._stop_event.wait(), name="shutdown-signal")
        logger.info("Command gate is running.")

        exit_code = 0
        with self._signal_handlers():
            done, _ = await asyncio.wait(
                {loop_task, server_task, stop_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            for task in (loop_task, server_task):
                if task not in done or task.cancelled():
                    continue
                error = task.exception()
                if error is not None:
                    logger.error(
                        "Fatal error in %s",
                        task.get_name(),
                        exc_info=(type(error), error, error.__traceback__),
                    )
                    exit_code = 1
            if server_task in done and exit_code == 0:
                logger.info("Tool transport closed.")
            await self._shutdown(loop_task=loop_task, server_task=server_task)

        stop_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await stop_task
        return exit_code

    async def _shutdown(
        self,
        *,
        loop_task: asyncio.Task[object],
        server_task: asyncio.Task[None],
    ) -> None:
        logger.info("Shutting down command gate...")
        if self.approval_loop is not None:
            self.approval_loop.request_stop()
            executing = self.approval_loop.executing_job_id
            if executing is not None and not loop_task.done():
                logger.info("Waiting for job #%s to finish before exiting.", executing)
                await asyncio.wait({loop_task}, timeout=self.settings.approval.shutdown_grace_seconds)
            try:
                await _cancel_and_wait(loop_task)
            except Exception:  # noqa: BLE001
                logger.exception("Error stopping approval loop")

        try:
            if self.gate is not None:
                self.gate.close()
        except Exception:  # noqa: BLE001
            logger.exception("Error closing approval interface")

        try:
            await self.proxy.close_all_sessions()
        except Exception:  # noqa: BLE001
            logger.exception("Error shutting down MCP proxy")

        try:
            await _cancel_and_wait(server_task)
        except Exception:  # noqa: BLE001
            logger.exception("Error closing MCP server")

        try:
            self.repository.close()
        except Exception:  # noqa: BLE001
            logger.exception("Error closing job store")

    @contextlib.contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
            except (NotImplementedError, RuntimeError, ValueError):
                # Not supported on this platform or outside the main thread.
                continue
            installed.append(sig)
        try:
            yield
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)


async def _cancel_and_wait(task: asyncio.Task) -> None:
    if task.done():
        if not task.cancelled():
            task.exception()
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
