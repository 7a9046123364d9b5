"""Peer resolution and tool-call proxying to other MCP servers."""

from command_gate.proxy.client import PeerSession, ProxyClient, open_mcp_connector
from command_gate.proxy.config import (
    HttpPeerConfig,
    PeerConfig,
    PeerRegistry,
    ResolvedPeer,
    StdioPeerConfig,
)
from command_gate.proxy.resolver import PeerResolver
from command_gate.proxy.tokenizer import tokenize_command

__all__ = [
    "HttpPeerConfig",
    "PeerConfig",
    "PeerRegistry",
    "PeerResolver",
    "PeerSession",
    "ProxyClient",
    "ResolvedPeer",
    "StdioPeerConfig",
    "open_mcp_connector",
    "tokenize_command",
]
