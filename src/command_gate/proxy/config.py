"""Peer connection configs and the named peer registry."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SERVERS_KEY = "mcpServers"
HTTP_TRANSPORTS = ("streamable-http", "sse")


@dataclass(frozen=True, slots=True)
class HttpPeerConfig:
    """Peer reached over HTTP(S)."""

    url: str
    headers: dict[str, str] = field(default_factory=dict)
    transport: str = "streamable-http"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"url": self.url}
        if self.headers:
            data["headers"] = dict(self.headers)
        if self.transport != "streamable-http":
            data["transport"] = self.transport
        return data


@dataclass(frozen=True, slots=True)
class StdioPeerConfig:
    """Peer launched as a local process speaking over stdio."""

    command: str
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"command": self.command, "args": list(self.args)}
        if self.env:
            data["env"] = dict(self.env)
        if self.cwd is not None:
            data["cwd"] = self.cwd
        return data


PeerConfig = HttpPeerConfig | StdioPeerConfig


@dataclass(frozen=True, slots=True)
class ResolvedPeer:
    """Stable peer name plus how to reach it."""

    name: str
    config: PeerConfig


def peer_config_from_dict(name: str, raw: object) -> PeerConfig:
    """Parse one ``mcpServers`` entry."""

    if not isinstance(raw, dict):
        raise ValueError(f"Peer {name!r} config must be an object.")
    if "url" in raw:
        transport = str(raw.get("transport", "streamable-http"))
        if transport not in HTTP_TRANSPORTS:
            raise ValueError(
                f"Peer {name!r} has unsupported transport {transport!r}; "
                f"expected one of {', '.join(HTTP_TRANSPORTS)}.",
            )
        return HttpPeerConfig(
            url=str(raw["url"]),
            headers={str(k): str(v) for k, v in dict(raw.get("headers") or {}).items()},
            transport=transport,
        )
    if "command" in raw:
        args = raw.get("args") or []
        if not isinstance(args, list):
            raise ValueError(f"Peer {name!r} args must be a list.")
        cwd = raw.get("cwd")
        return StdioPeerConfig(
            command=str(raw["command"]),
            args=tuple(str(arg) for arg in args),
            env={str(k): str(v) for k, v in dict(raw.get("env") or {}).items()},
            cwd=str(cwd) if cwd is not None else None,
        )
    raise ValueError(f"Peer {name!r} config needs either 'url' or 'command'.")


class PeerRegistry:
    """Name to config mapping shared by the resolver and the proxy client."""

    def __init__(self, peers: dict[str, PeerConfig] | None = None) -> None:
        self._peers: dict[str, PeerConfig] = dict(peers or {})

    @classmethod
    def load(cls, path: Path) -> PeerRegistry:
        """Read ``{"mcpServers": {...}}`` from ``path``.

        A missing file yields an empty registry; an unreadable or malformed
        file is logged and also yields an empty registry.
        """

        if not path.exists():
            return cls()
        try:
            raw = json.loads(path.read_text("utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("root must be an object")
            servers = raw.get(SERVERS_KEY) or {}
            if not isinstance(servers, dict):
                raise ValueError(f"{SERVERS_KEY} must be an object")
            peers = {
                str(name): peer_config_from_dict(str(name), entry)
                for name, entry in servers.items()
            }
        except (OSError, ValueError) as error:
            logger.error("Failed to load MCP proxy config %s: %s", path, error)
            return cls()
        return cls(peers)

    def save(self, path: Path) -> None:
        """Write the registry back in the same format it is loaded from."""

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2) + "\n", "utf-8")

    def to_dict(self) -> dict[str, Any]:
        return {SERVERS_KEY: {name: config.to_dict() for name, config in self._peers.items()}}

    def get(self, name: str) -> PeerConfig | None:
        return self._peers.get(name)

    def add(self, name: str, config: PeerConfig) -> None:
        self._peers[name] = config

    def names(self) -> list[str]:
        return sorted(self._peers)

    def __contains__(self, name: object) -> bool:
        return name in self._peers
