from __future__ import annotations
import asyncio
from pathlib import Path
from typing import Any, Optional

from src.mcpbridge.mcp_client import MCPClientManager
from src.mcpbridge.models import CachedToolSet, DiscoveryStatus, ToolWithServer
from src.mcpbridge.yaml_config import BridgeConfig, ServerEntry, resolve_servers
from src.utils.logger import get_logger


class McpLayer:
    """Connector over the downstream transport with a per-server discovery cache.

    One server failing to list its tools never affects the others: failures
    are logged, recorded in the discovery status and skipped.
    """

    def __init__(
        self,
        config: BridgeConfig,
        client_manager: Optional[MCPClientManager] = None,
        mcp_json_path: Optional[Path] = None,
    ):
        self.server_entries: list[ServerEntry] = resolve_servers(config, mcp_json_path)
        self._client: Optional[MCPClientManager] = client_manager
        self._tool_cache: dict[str, CachedToolSet] = {}
        self._last_status = DiscoveryStatus()
        self.logger = get_logger("McpLayer")

    def _get_client(self) -> MCPClientManager:
        """Lazily create the transport for the configured servers."""
        if self._client is None:
            usable = [s for s in self.server_entries if s.command or s.url]
            self._client = MCPClientManager(usable)
        return self._client

    def _get_server_categories(self, server_name: str) -> list[str]:
        for server in self.server_entries:
            if server.name == server_name:
                return list(server.categories)
        return []

    async def discover_tools(self) -> list[ToolWithServer]:
        """Return the tools of every reachable server.

        Fresh cache entries are reused; the rest are listed concurrently and
        every outcome is collected before results are merged.
        """
        if not self.server_entries:
            self._last_status = DiscoveryStatus()
            return []

        client = self._get_client()
        server_names = client.server_names()
        successful: set[str] = set()
        failed: set[str] = set()

        to_fetch: list[str] = []
        for name in server_names:
            cached = self._tool_cache.get(name)
            if cached is not None and not cached.is_stale():
                successful.add(name)
            else:
                to_fetch.append(name)

        outcomes = await asyncio.gather(
            *(self._list_server_tools(client, name) for name in to_fetch),
            return_exceptions=True,
        )
        for name, outcome in zip(to_fetch, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                failed.add(name)
                self.logger.warning(f"⚠️ Failed to list tools from '{name}': {outcome}")
                continue
            self._tool_cache[name] = CachedToolSet(outcome)
            successful.add(name)

        self._last_status = DiscoveryStatus(
            successful_servers=successful, failed_servers=failed
        )

        all_tools: list[ToolWithServer] = []
        for name in server_names:
            if name in successful:
                all_tools.extend(self._tool_cache[name].tools)
        return all_tools

    async def _list_server_tools(
        self, client: MCPClientManager, server_name: str
    ) -> list[ToolWithServer]:
        raw_tools = await client.list_tools(server_name)
        categories = self._get_server_categories(server_name)
        tools = [
            ToolWithServer(
                name=t.name,
                server_name=server_name,
                description=t.description,
                input_schema=dict(t.inputSchema) if t.inputSchema is not None else None,
                categories=list(categories),
            )
            for t in raw_tools or []
        ]
        self.logger.info(f"🔌 Discovered {len(tools)} tools from '{server_name}'")
        return tools

    def get_last_discovery_status(self) -> DiscoveryStatus:
        return DiscoveryStatus(
            successful_servers=set(self._last_status.successful_servers),
            failed_servers=set(self._last_status.failed_servers),
        )

    async def call_tool(
        self, server_name: str, tool_name: str, params: dict[str, Any]
    ) -> Any:
        """Execute a tool call on a specific server. Transport errors propagate."""
        client = self._get_client()
        return await client.call_tool(server_name, tool_name, params)

    async def shutdown(self) -> None:
        """Release the transport and forget every cached listing."""
        if self._client is not None:
            await self._client.close()
            self._client = None
        self._tool_cache.clear()

    def get_server_names(self) -> list[str]:
        return [s.name for s in self.server_entries]

    def get_server_info(self) -> list[dict[str, Any]]:
        """Configured servers with their connection and cached-tool state."""
        return [
            {
                "name": s.name,
                "transport": s.transport,
                "connected": self._client is not None
                and self._client.get_session(s.name) is not None,
                "toolCount": len(self._tool_cache[s.name].tools)
                if s.name in self._tool_cache
                else 0,
            }
            for s in self.server_entries
        ]
