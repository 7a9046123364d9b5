"""Resolve peer specification strings to stable names and configs."""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path

from command_gate.errors import (
    MalformedStdioSpecificationError,
    UnknownPeerSpecificationError,
)
from command_gate.proxy.config import (
    HttpPeerConfig,
    PeerConfig,
    PeerRegistry,
    ResolvedPeer,
    StdioPeerConfig,
)
from command_gate.proxy.tokenizer import tokenize_command

logger = logging.getLogger(__name__)

STDIO_PREFIX = "stdio:"
_HTTP_PATTERN = re.compile(r"^https?://", re.IGNORECASE)
_DIGEST_CHARS = 8


def peer_name(kind: str, spec: str) -> str:
    """``<kind>-<first 8 hex chars of sha1(spec)>``."""

    digest = hashlib.sha1(spec.encode("utf-8")).hexdigest()  # noqa: S324 - naming, not security
    return f"{kind}-{digest[:_DIGEST_CHARS]}"


def classify_spec(spec: str) -> tuple[str, PeerConfig]:
    """Return ``(kind, config)`` for a URL or ``stdio:`` specification."""

    if _HTTP_PATTERN.match(spec):
        return "http", HttpPeerConfig(url=spec)
    if spec.startswith(STDIO_PREFIX):
        remainder = spec[len(STDIO_PREFIX) :].strip()
        if not remainder:
            raise MalformedStdioSpecificationError(
                "stdio server specification must include a command",
            )
        tokens = tokenize_command(remainder)
        if not tokens:
            raise MalformedStdioSpecificationError(
                "Unable to parse command for stdio server specification",
            )
        return "stdio", StdioPeerConfig(command=tokens[0], args=tuple(tokens[1:]))
    raise UnknownPeerSpecificationError(spec)


class PeerResolver:
    """Write-through cache from specification strings to resolved peers.

    Configured names resolve verbatim. Anything else is classified, named,
    registered with the shared registry and cached for the process lifetime.
    When ``persist_path`` is set the registry is saved after each new peer;
    a failed save is logged and does not undo the resolution.
    """

    def __init__(self, registry: PeerRegistry, *, persist_path: Path | None = None) -> None:
        self.registry = registry
        self.persist_path = persist_path
        self._cache: dict[str, ResolvedPeer] = {}

    def resolve(self, spec: str) -> ResolvedPeer:
        configured = self.registry.get(spec)
        if configured is not None:
            return ResolvedPeer(name=spec, config=configured)

        cached = self._cache.get(spec)
        if cached is not None:
            return cached

        kind, config = classify_spec(spec)
        resolved = ResolvedPeer(name=peer_name(kind, spec), config=config)
        self.registry.add(resolved.name, config)
        self._cache[spec] = resolved
        logger.info("Registered dynamic peer %s for %s", resolved.name, spec)
        self._persist()
        return resolved

    def cached(self) -> dict[str, ResolvedPeer]:
        return dict(self._cache)

    def _persist(self) -> None:
        if self.persist_path is None:
            return
        try:
            self.registry.save(self.persist_path)
        except OSError as error:
            logger.error("Failed to persist MCP proxy config %s: %s", self.persist_path, error)
