from typing import Any
import json

from mcp import server, types
from pydantic import ValidationError

from src.mcpbridge.aggregator import Aggregator, UnknownToolError
from src.utils.logger import get_logger


def _error_result(message: str) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=f"Error: {message}")],
        isError=True,
    )


def to_call_tool_result(result: Any) -> types.CallToolResult:
    """Normalise whatever the aggregator returned into a CallToolResult."""
    if isinstance(result, types.CallToolResult):
        return result
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        try:
            return types.CallToolResult.model_validate(result)
        except ValidationError:
            pass
    text = result if isinstance(result, str) else json.dumps(result, default=str)
    return types.CallToolResult(content=[types.TextContent(type="text", text=text)])


class MCPProxyServer(server.Server):
    """An MCP server exposing the aggregator's unified tool surface."""

    def __init__(self, aggregator: Aggregator, name: str = "mcp-bridge"):
        super().__init__(name)
        self.aggregator = aggregator
        self.logger = get_logger("ProxyServer")
        self._register_request_handlers()

    def _register_request_handlers(self) -> None:
        self.request_handlers[types.ListToolsRequest] = self._list_tools
        self.request_handlers[types.CallToolRequest] = self._call_tool

    async def _list_tools(self, _: Any) -> types.ServerResult:
        """Refresh downstream tools, then return the list for the active mode."""
        await self.aggregator.refresh_tools()
        tools = [
            types.Tool(
                name=t["name"],
                description=t.get("description"),
                inputSchema=t["inputSchema"],
            )
            for t in self.aggregator.get_tool_list()
        ]
        return types.ServerResult(types.ListToolsResult(tools=tools))

    async def _call_tool(self, req: types.CallToolRequest) -> types.ServerResult:
        """Route a tool call through the aggregator. Failures become error results."""
        tool_name = req.params.name
        arguments = req.params.arguments or {}

        try:
            result = await self.aggregator.call_tool(tool_name, arguments)
        except UnknownToolError as e:
            self.logger.error(f"⚠️ Tool '{tool_name}' not found in any server.")
            return types.ServerResult(_error_result(str(e)))
        except Exception as e:
            self.logger.error(f"❌ Failed to call tool '{tool_name}': {e}")
            return types.ServerResult(_error_result(str(e)))

        return types.ServerResult(to_call_tool_result(result))
