"""Tool, discovery-cache and route data shared by the bridge components."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Optional

# Discovery listings this old or older are re-fetched
DISCOVERY_TTL_SECONDS = 5 * 60


@dataclass
class ToolWithServer:
    """A downstream tool tagged with its owning server and that server's categories."""
    name: str
    server_name: str
    description: Optional[str] = None
    input_schema: Optional[dict[str, Any]] = None
    categories: list[str] = field(default_factory=list)


@dataclass
class CachedToolSet:
    """Last known tool list for one server. Replaced wholesale, never merged."""
    tools: list[ToolWithServer]
    timestamp: float = field(default_factory=time.monotonic)

    def is_stale(self) -> bool:
        return time.monotonic() - self.timestamp >= DISCOVERY_TTL_SECONDS


@dataclass
class DiscoveryStatus:
    """Outcome of the most recent discovery pass."""
    successful_servers: set[str] = field(default_factory=set)
    failed_servers: set[str] = field(default_factory=set)


@dataclass
class RouteEntry:
    """Maps an exposed tool name to its real (server, tool) target."""
    server_name: str
    tool_name: str
    tool: ToolWithServer
