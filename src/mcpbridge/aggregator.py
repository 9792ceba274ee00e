from __future__ import annotations
import copy
import json
import math
from typing import Any, Literal, Optional

from src.mcpbridge.mcp_layer import McpLayer
from src.mcpbridge.models import RouteEntry, ToolWithServer
from src.mcpbridge.result_cache import ResultCache
from src.mcpbridge.retrieval.compressor import SchemaCompressor, sanitize_name
from src.mcpbridge.retrieval.models import RelevanceScore
from src.mcpbridge.retrieval.ranker import NEUTRAL_SCORE, RelevanceRanker
from src.mcpbridge.utils.need_extractor import extract_need
from src.mcpbridge.yaml_config import BridgeConfig
from src.utils.logger import get_logger

FIND_TOOLS_NAME = "find_tools"

FIND_TOOLS_SCHEMA: dict[str, Any] = {
    "name": FIND_TOOLS_NAME,
    "description": (
        "Search and discover tools from external MCP servers. Call this when you "
        "need capabilities beyond your built-in tools. Examples: creating GitHub "
        "issues, searching Notion, managing databases, file operations. Returns a "
        "list of matching tools ranked by relevance."
    ),
    "inputSchema": {
        "type": "object",
        "properties": {
            "need": {
                "type": "string",
                "description": (
                    'What you need to accomplish. Example: "create a github issue", '
                    '"search notion pages". Use empty string to list all available tools.'
                ),
            },
        },
        "required": [],
    },
}

# Blank-need previews list at most this many tools
_PREVIEW_LIMIT = 20
_PREVIEW_DESCRIPTION_CHARS = 80


class UnknownToolError(LookupError):
    """Raised when a call addresses a name with no route."""

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


def _text_envelope(payload: dict[str, Any]) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": json.dumps(payload)}]}


def build_traditional_tool_name(tool: ToolWithServer, used_names: set[str]) -> str:
    """``mcp_<server>_<tool>``, suffixed ``_2``, ``_3``, ... on collision within one pass."""
    base = f"mcp_{sanitize_name(tool.server_name)}_{sanitize_name(tool.name)}"
    candidate = base
    suffix = 2
    while candidate in used_names:
        candidate = f"{base}_{suffix}"
        suffix += 1
    used_names.add(candidate)
    return candidate


class Aggregator:
    """Routes one unified tool surface onto many downstream MCP servers.

    smart mode exposes a ``find_tools`` meta-tool plus compressed tools and
    caches read-only results; traditional mode exposes every tool directly.
    The route map is rebuilt on each refresh and swapped in one assignment.
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        mcp_layer: Optional[McpLayer] = None,
        ranker: Optional[RelevanceRanker] = None,
        compressor: Optional[SchemaCompressor] = None,
        cache: Optional[ResultCache] = None,
    ):
        self.config = config or BridgeConfig()
        self._mode: Literal["smart", "traditional"] = (
            "traditional" if self.config.mode == "traditional" else "smart"
        )
        self.mcp_layer = mcp_layer or McpLayer(self.config)
        self.ranker = ranker or RelevanceRanker()
        self.compressor = compressor or SchemaCompressor()
        self.cache = cache or ResultCache(self.config.cache)
        self._route_map: dict[str, RouteEntry] = {}
        self.logger = get_logger("Aggregator")

    @property
    def mode(self) -> str:
        return self._mode

    def route_names(self) -> list[str]:
        return list(self._route_map)

    async def __aenter__(self) -> "Aggregator":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    async def refresh_tools(self) -> None:
        """Rediscover tools and rebuild the route map.

        Routes of servers that failed this pass are carried over from the
        previous map wherever their name is still free.
        """
        tools = await self.mcp_layer.discover_tools()
        failed_servers = self.mcp_layer.get_last_discovery_status().failed_servers

        next_route_map: dict[str, RouteEntry] = {}
        if self._mode == "traditional":
            used_names: set[str] = set()
            for tool in tools:
                name = build_traditional_tool_name(tool, used_names)
                next_route_map[name] = RouteEntry(tool.server_name, tool.name, tool)
        else:
            for tool in tools:
                compressed = self.compressor.compress(tool)
                next_route_map[compressed.name] = RouteEntry(tool.server_name, tool.name, tool)

        if failed_servers:
            carried = 0
            for name, route in self._route_map.items():
                if route.server_name in failed_servers and name not in next_route_map:
                    next_route_map[name] = route
                    carried += 1
            if carried:
                self.logger.warning(
                    f"⚠️ Kept {carried} route(s) from unreachable server(s): "
                    f"{', '.join(sorted(failed_servers))}"
                )

        self._route_map = next_route_map
        self.logger.debug(f"🔄 Route map rebuilt with {len(next_route_map)} tool(s)")

    def get_tool_list(self) -> list[dict[str, Any]]:
        """Exposed tools in MCP Tool shape for the active mode."""
        tools: list[dict[str, Any]] = []
        if self._mode == "smart":
            tools.append(copy.deepcopy(FIND_TOOLS_SCHEMA))
        for name, route in self._route_map.items():
            tools.append(self._describe(name, route))
        return tools

    def describe_route(self, name: str) -> Optional[dict[str, Any]]:
        """MCP Tool shape of one exposed name, or None if it has no route."""
        route = self._route_map.get(name)
        return self._describe(name, route) if route is not None else None

    def _describe(self, name: str, route: RouteEntry) -> dict[str, Any]:
        if self._mode == "traditional":
            return {
                "name": name,
                "description": route.tool.description
                if route.tool.description is not None
                else f"{route.server_name}/{route.tool_name}",
                "inputSchema": route.tool.input_schema
                if route.tool.input_schema is not None
                else {"type": "object", "properties": {}},
            }
        compressed = self.compressor.compress(route.tool)
        return {
            "name": compressed.name,
            "description": compressed.description,
            "inputSchema": compressed.parameters,
        }

    async def call_tool(self, name: str, params: Any = None) -> Any:
        """Invoke an exposed tool.

        Raises:
            UnknownToolError: If ``name`` has no route.
        """
        if self._mode == "smart" and name == FIND_TOOLS_NAME:
            return await self.find_tools(params)

        params = params if params is not None else {}
        route = self._route_map.get(name)
        if route is None:
            raise UnknownToolError(name)

        if self._mode == "traditional":
            return await self.mcp_layer.call_tool(route.server_name, route.tool_name, params)

        cached = self.cache.get(route.server_name, route.tool_name, params)
        if cached is not None:
            self.logger.debug(f"♻️ Cache hit for '{name}'")
            return cached

        result = await self.mcp_layer.call_tool(route.server_name, route.tool_name, params)
        self.ranker.record_usage(route.tool_name, route.server_name)

        if self.cache.is_cacheable(route.tool_name):
            self.cache.set(route.server_name, route.tool_name, params, result)
        return result

    async def shutdown(self) -> None:
        """Shut down all downstream connections. Safe to call repeatedly."""
        await self.mcp_layer.shutdown()

    def register_route(self, tool: ToolWithServer) -> str:
        """Expose ``tool`` under its compressed name and return that name."""
        compressed = self.compressor.compress(tool)
        self._route_map[compressed.name] = RouteEntry(tool.server_name, tool.name, tool)
        return compressed.name

    async def find_tools(self, params: Any) -> dict[str, Any]:
        """Discover, rank and expose tools for a free-text need.

        Never raises: discovery and ranking failures come back inside the
        JSON payload or degrade to an unranked list.
        """
        need = extract_need(params)

        try:
            all_tools = await self.mcp_layer.discover_tools()
        except Exception as e:
            self.logger.error(f"❌ Tool discovery failed: {e}")
            return _text_envelope({"found": 0, "tools": [], "error": f"Discovery failed: {e}"})

        if not all_tools:
            return _text_envelope(
                {
                    "found": 0,
                    "tools": [],
                    "message": "No MCP servers configured or no tools available.",
                }
            )

        if not need.strip():
            listed = []
            for index, tool in enumerate(all_tools):
                callable_name = self.register_route(tool)
                if index < _PREVIEW_LIMIT:
                    listed.append(
                        {
                            "name": tool.name,
                            "server": tool.server_name,
                            "callableName": callable_name,
                            "description": (tool.description or "")[:_PREVIEW_DESCRIPTION_CHARS],
                        }
                    )
            return _text_envelope(
                {
                    "found": len(all_tools),
                    "totalAvailable": len(all_tools),
                    "tools": listed,
                    "hint": (
                        'Showing all tools. Call by "callableName" (format: '
                        'mcp_<server>_<tool>). Pass "need" to filter by relevance.'
                    ),
                }
            )

        analyzer = self.config.analyzer
        try:
            ranked: list[RelevanceScore] = self.ranker.rank(
                [{"role": "user", "content": need}], all_tools, analyzer
            )
        except Exception as e:
            self.logger.warning(f"⚠️ Ranking failed, returning unranked tools: {e}")
            ranked = [RelevanceScore(tool=t, score=NEUTRAL_SCORE) for t in all_tools]

        filtered = [r for r in ranked if r.score >= analyzer.relevance_threshold]
        filtered = filtered[: analyzer.max_tools_per_turn]

        matches = [
            {
                "name": match.tool.name,
                "server": match.tool.server_name,
                "callableName": self.register_route(match.tool),
                "relevance": f"{math.floor(match.score * 100 + 0.5)}%",
                "description": (match.tool.description or "")[:_PREVIEW_DESCRIPTION_CHARS],
            }
            for match in filtered
        ]
        self.logger.info(f"🔍 find_tools matched {len(matches)} tool(s) for '{need}'")

        return _text_envelope(
            {
                "found": len(matches),
                "tools": matches,
                "hint": 'Call a returned tool by its "callableName" (format: mcp_<server>_<tool>).'
                if matches
                else f'No tools matched "{need}". Try rephrasing your request.',
            }
        )
