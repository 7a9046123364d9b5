"""Peer sessions and tool-call forwarding."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import AbstractAsyncContextManager, AsyncExitStack, asynccontextmanager
from datetime import timedelta
from typing import Any, Protocol

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client

from command_gate.errors import (
    ConnectorUnavailableError,
    UnknownPeerSpecificationError,
    ValidationError,
)
from command_gate.proxy.config import HttpPeerConfig, PeerConfig, PeerRegistry
from command_gate.proxy.resolver import PeerResolver

logger = logging.getLogger(__name__)


class ToolConnector(Protocol):
    """The part of a session that can issue a tool call."""

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        read_timeout_seconds: timedelta | None = None,
    ) -> Any:
        """Invoke ``name`` on the peer."""


ConnectorFactory = Callable[[PeerConfig], AbstractAsyncContextManager[ToolConnector]]


@asynccontextmanager
async def open_mcp_connector(config: PeerConfig) -> AsyncIterator[ToolConnector]:
    """Open an initialised MCP client session for ``config``."""

    async with AsyncExitStack() as stack:
        if isinstance(config, HttpPeerConfig):
            headers = dict(config.headers) or None
            if config.transport == "sse":
                read_stream, write_stream = await stack.enter_async_context(
                    sse_client(config.url, headers=headers),
                )
            else:
                read_stream, write_stream, _ = await stack.enter_async_context(
                    streamablehttp_client(config.url, headers=headers),
                )
        else:
            params = StdioServerParameters(
                command=config.command,
                args=list(config.args),
                env=dict(config.env) or None,
                cwd=config.cwd,
            )
            read_stream, write_stream = await stack.enter_async_context(stdio_client(params))
        session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
        await session.initialize()
        yield session


class PeerSession:
    """Lazily connected, reusable handle to one peer.

    The transport context lives in a dedicated holder task so it is entered and
    exited by the same task no matter which request triggered the connect.
    ``initialize()`` is safe to repeat: it reconnects only when disconnected.
    """

    def __init__(self, name: str, config: PeerConfig, connector_factory: ConnectorFactory) -> None:
        self.name = name
        self.config = config
        self.connector: ToolConnector | None = None
        self.is_connected = False
        self.connect_count = 0
        self._connector_factory = connector_factory
        self._holder: asyncio.Task[None] | None = None
        self._ready: asyncio.Future[None] | None = None
        self._closing: asyncio.Event | None = None

    async def initialize(self) -> None:
        if self.is_connected:
            return
        if self._holder is not None and not self._holder.done() and self._ready is not None:
            await asyncio.shield(self._ready)
            return

        await self._stop_holder()
        loop = asyncio.get_running_loop()
        ready: asyncio.Future[None] = loop.create_future()
        closing = asyncio.Event()
        self._ready = ready
        self._closing = closing
        self._holder = asyncio.create_task(
            self._hold(ready, closing),
            name=f"peer-session-{self.name}",
        )
        await asyncio.shield(ready)

    async def close(self) -> None:
        await self._stop_holder()

    async def _stop_holder(self) -> None:
        holder = self._holder
        if holder is None:
            return
        if self._closing is not None:
            self._closing.set()
        try:
            await holder
        finally:
            self._holder = None
            self._ready = None
            self._closing = None

    async def _hold(self, ready: asyncio.Future[None], closing: asyncio.Event) -> None:
        try:
            async with self._connector_factory(self.config) as connector:
                self.connector = connector
                self.is_connected = True
                self.connect_count += 1
                ready.set_result(None)
                await closing.wait()
        except Exception as error:  # noqa: BLE001
            if not ready.done():
                ready.set_exception(error)
            else:
                logger.warning("Session for peer %s disconnected: %s", self.name, error)
        finally:
            self.connector = None
            self.is_connected = False
            if not ready.done():
                ready.set_exception(ConnectorUnavailableError(self.name))


class ProxyClient:
    """Owns peer sessions and forwards named tool calls to them."""

    def __init__(
        self,
        *,
        registry: PeerRegistry,
        resolver: PeerResolver,
        connector_factory: ConnectorFactory = open_mcp_connector,
    ) -> None:
        self.registry = registry
        self.resolver = resolver
        self._connector_factory = connector_factory
        self._sessions: dict[str, PeerSession] = {}

    def session(self, name: str) -> PeerSession | None:
        return self._sessions.get(name)

    async def ensure_session(self, name: str) -> PeerSession:
        """Existing connected session, a re-initialised one, or a new one."""

        session = self._sessions.get(name)
        if session is None:
            config = self.registry.get(name)
            if config is None:
                raise UnknownPeerSpecificationError(name)
            session = PeerSession(name, config, self._connector_factory)
            self._sessions[name] = session
            await session.initialize()
            return session
        if not session.is_connected:
            await session.initialize()
        return session

    async def forward(
        self,
        server: str,
        tool: str,
        args: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Any:
        """Call ``tool`` on the peer named or described by ``server``."""

        if not server:
            raise ValidationError('proxy_call requires a "server" parameter')
        if not tool:
            raise ValidationError('proxy_call requires a "tool" parameter')

        peer = self.resolver.resolve(server)
        session = await self.ensure_session(peer.name)
        if session.connector is None:
            raise ConnectorUnavailableError(peer.name)
        await session.initialize()
        connector = session.connector
        if connector is None:
            raise ConnectorUnavailableError(peer.name)
        logger.debug("Forwarding %s to peer %s", tool, peer.name)
        return await connector.call_tool(
            tool,
            arguments=dict(args or {}),
            read_timeout_seconds=_read_timeout(options),
        )

    async def close_all_sessions(self) -> None:
        """Close every session; one failure does not stop the rest."""

        for name, session in list(self._sessions.items()):
            try:
                await session.close()
            except Exception:  # noqa: BLE001
                logger.exception("Error closing session for peer %s", name)
        self._sessions.clear()


def _read_timeout(options: Mapping[str, Any] | None) -> timedelta | None:
    if not options or options.get("timeout") is None:
        return None
    raw = options["timeout"]
    if isinstance(raw, bool) or not isinstance(raw, int | float) or raw <= 0:
        raise ValidationError("proxy_call option 'timeout' must be a positive number of milliseconds")
    return timedelta(milliseconds=raw)
