from contextlib import AsyncExitStack
from typing import Any, Dict, List, Optional
import asyncio
import os

from mcp import types
from mcp.client.session import ClientSession
from mcp.client.sse import sse_client
from mcp.client.stdio import StdioServerParameters, stdio_client
from mcp.client.streamable_http import streamable_http_client
from mcp.shared._httpx_utils import create_mcp_http_client

from src.mcpbridge.yaml_config import ServerEntry
from src.utils.logger import get_logger


# Env vars that cannot be overridden by server config
PROTECTED_ENV_VARS = {"PATH", "LD_PRELOAD", "LD_LIBRARY_PATH", "HOME", "USER", "PYTHONPATH", "PYTHONHOME"}


def _filter_env(env: dict) -> dict:
    """Remove protected env vars from the server-provided env dict."""
    return {k: v for k, v in env.items() if k not in PROTECTED_ENV_VARS}


class MCPClientManager:
    """
    Owns one MCP ClientSession per configured server.
    Sessions are opened on first use, each inside its own AsyncExitStack
    so one crashed server cannot tear down the others.
    """

    def __init__(self, servers: List[ServerEntry], connection_timeout: float = 30.0):
        self.servers: Dict[str, ServerEntry] = {s.name: s for s in servers}
        self.sessions: Dict[str, ClientSession] = {}
        self.server_stacks: Dict[str, AsyncExitStack] = {}
        self._connection_timeout = connection_timeout
        self._creation_locks: Dict[str, asyncio.Lock] = {}
        self.logger = get_logger("ClientManager")

    def _get_creation_lock(self, name: str) -> asyncio.Lock:
        """Get or create a per-server creation lock (lazily initialized)."""
        if name not in self._creation_locks:
            self._creation_locks[name] = asyncio.Lock()
        return self._creation_locks[name]

    def server_names(self) -> List[str]:
        return list(self.servers)

    def get_session(self, name: str) -> Optional[ClientSession]:
        return self.sessions.get(name)

    async def create_session(self, name: str) -> ClientSession:
        """
        Return the session for ``name``, connecting it on first use.

        Raises:
            KeyError: If the server is not configured.
            asyncio.TimeoutError: If connecting takes longer than the timeout.
        """
        if name in self.sessions:
            return self.sessions[name]

        async with self._get_creation_lock(name):
            # Re-check after acquiring lock (another coroutine may have connected)
            if name in self.sessions:
                return self.sessions[name]

            server = self.servers.get(name)
            if server is None:
                raise KeyError(f"Unknown server: {name}")

            try:
                await asyncio.wait_for(
                    self._connect(server), timeout=self._connection_timeout
                )
            except asyncio.TimeoutError:
                self.logger.error(f"❌ Connection timeout for {name}")
                raise
            return self.sessions[name]

    async def _connect(self, server: ServerEntry) -> None:
        server_stack = AsyncExitStack()
        await server_stack.__aenter__()

        try:
            if server.transport == "stdio" and server.command:
                merged_env = os.environ.copy()
                merged_env.update(_filter_env(server.env))
                self.logger.info(f"🔌 Creating stdio client for {server.name}")
                params = StdioServerParameters(
                    command=server.command,
                    args=server.args,
                    env=merged_env,
                )
                read, write = await server_stack.enter_async_context(stdio_client(params))
                session = await server_stack.enter_async_context(ClientSession(read, write))

            elif server.url:
                session = await self._connect_url_server(server, server_stack)

            else:
                raise ValueError(f"Server '{server.name}' has no command or URL")

            await session.initialize()
            self.sessions[server.name] = session
            self.server_stacks[server.name] = server_stack
            self.logger.info(f"✅ Connected to {server.name}")

        except BaseException as e:
            self.logger.error(f"❌ Failed to create client for {server.name}: {e}")
            try:
                await server_stack.aclose()
            except Exception as close_err:
                self.logger.debug(f"Cleanup after failed connect to {server.name}: {close_err}")
            raise

    async def _connect_url_server(
        self, server: ServerEntry, server_stack: AsyncExitStack
    ) -> ClientSession:
        """Connect to a URL-based MCP server using the correct transport.

        SSE servers connect directly. Everything else tries Streamable HTTP
        first in a nested stack, falling back to legacy SSE on failure.
        """
        headers = server.headers or None
        direct_sse = server.transport == "sse" or "/sse" in server.url

        if not direct_sse:
            fallback_stack = AsyncExitStack()
            try:
                await fallback_stack.__aenter__()
                http_client = await fallback_stack.enter_async_context(
                    create_mcp_http_client(headers=headers)
                )
                read, write, _ = await fallback_stack.enter_async_context(
                    streamable_http_client(server.url, http_client=http_client)
                )
                session = await fallback_stack.enter_async_context(ClientSession(read, write))
                # Success: absorb the nested stack into the server stack for cleanup
                await server_stack.enter_async_context(fallback_stack)
                self.logger.info(f"🌐 Connected to '{server.name}' via Streamable HTTP")
                return session
            except Exception as e:
                await fallback_stack.aclose()
                self.logger.debug(f"Streamable HTTP failed for '{server.name}', trying SSE: {e}")

        read, write = await server_stack.enter_async_context(
            sse_client(url=server.url, headers=headers)
        )
        session = await server_stack.enter_async_context(ClientSession(read, write))
        mode = "explicit" if direct_sse else "fallback"
        self.logger.info(f"🌐 Connected to '{server.name}' via SSE ({mode})")
        return session

    async def list_tools(self, name: str) -> List[types.Tool]:
        session = await self.create_session(name)
        result = await session.list_tools()
        return list(result.tools)

    async def call_tool(
        self, name: str, tool_name: str, arguments: Dict[str, Any]
    ) -> types.CallToolResult:
        session = await self.create_session(name)
        return await session.call_tool(tool_name, arguments)

    async def close_session(self, name: str) -> None:
        """Close one server's session. Safe for servers that never connected."""
        self.sessions.pop(name, None)
        stack = self.server_stacks.pop(name, None)
        if stack:
            try:
                await stack.aclose()
            except Exception as e:
                self.logger.warning(f"⚠️ Error closing stack for '{name}': {e}")

    async def close(self) -> None:
        """Closes all sessions and releases their resources."""
        for name in list(self.server_stacks):
            await self.close_session(name)
        self.sessions.clear()
        self._creation_locks.clear()
