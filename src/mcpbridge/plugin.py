"""Agent-host adapter: exposes bridge tools as capabilities of an agent runtime.

Hosts implement AgentHost. Turn hooks are optional; the adapter checks
``supports_turn_hooks`` once at construction.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

from src.mcpbridge.aggregator import Aggregator
from src.mcpbridge.yaml_config import BridgeConfig
from src.utils.logger import get_logger

FIND_TOOLS_CAPABILITY = "mcp_find_tools"

# Pre-turn injection registers at most this many high-confidence tools
_PRE_TURN_MAX_TOOLS = 3

ToolExecutor = Callable[[dict[str, Any]], Awaitable[Any]]
TurnHook = Callable[[Sequence[Mapping[str, str]]], Awaitable[None]]
ShutdownHook = Callable[[], Awaitable[None]]


@dataclass
class ToolRegistration:
    """One capability handed to the host."""
    name: str
    description: str
    parameters: dict[str, Any]
    execute: ToolExecutor


class AgentHost(ABC):
    """Capability interface an agent runtime offers the bridge."""

    #: Hosts that can run a hook before each agent turn set this to True
    supports_turn_hooks: bool = False

    @abstractmethod
    def register_tool(self, registration: ToolRegistration) -> None: ...

    @abstractmethod
    def on_shutdown(self, hook: ShutdownHook) -> None: ...

    def on_before_agent_turn(self, hook: TurnHook) -> None:
        raise NotImplementedError("host does not support turn hooks")


class BridgePlugin:
    """Registers find_tools with an agent host and exposes what it finds."""

    def __init__(
        self,
        host: AgentHost,
        config: Optional[BridgeConfig] = None,
        aggregator: Optional[Aggregator] = None,
    ):
        self.host = host
        self.config = config or BridgeConfig()
        self.aggregator = aggregator or Aggregator(self.config)
        self.logger = get_logger("BridgePlugin")
        # Names already handed to this host
        self._registered: set[str] = set()

        host.register_tool(
            ToolRegistration(
                name=FIND_TOOLS_CAPABILITY,
                description=(
                    "Find tools from connected MCP services (Notion, GitHub, Stripe, etc). "
                    "Use when you need a capability not in your current tools."
                ),
                parameters={
                    "type": "object",
                    "properties": {
                        "need": {
                            "type": "string",
                            "description": 'What you need to do, e.g. "create a notion page"',
                        },
                    },
                    "required": ["need"],
                },
                execute=self.find_tools,
            )
        )
        if host.supports_turn_hooks:
            host.on_before_agent_turn(self.before_agent_turn)
        host.on_shutdown(self.shutdown)

    @property
    def registered_tools(self) -> set[str]:
        return set(self._registered)

    async def find_tools(self, params: dict[str, Any]) -> dict[str, Any]:
        """Run discovery for a need and register every tool it returns."""
        if self.aggregator.mode == "traditional":
            await self.aggregator.refresh_tools()
            names = [t["name"] for t in self.aggregator.get_tool_list()]
            for name in names:
                self._register_exposed(name)
            return {
                "found": len(names),
                "tools": names,
                "message": f"Found {len(names)} tool(s). They are now available for use."
                if names
                else "No MCP servers configured or no tools available.",
            }

        envelope = await self.aggregator.find_tools(params)
        payload = json.loads(envelope["content"][0]["text"])
        if "totalAvailable" in payload:
            # Blank need lists a preview but routes every tool
            for name in self.aggregator.route_names():
                self._register_exposed(name)
        for entry in payload.get("tools", []):
            self._register_exposed(entry["callableName"])
        return payload

    async def before_agent_turn(self, messages: Sequence[Mapping[str, str]]) -> None:
        """Pre-register high-confidence tools for the coming turn. Best effort."""
        try:
            tools = await self.aggregator.mcp_layer.discover_tools()
            if not tools:
                return
            analyzer = self.config.analyzer.model_copy(
                update={
                    "relevance_threshold": self.config.analyzer.high_confidence_threshold,
                    "max_tools_per_turn": _PRE_TURN_MAX_TOOLS,
                }
            )
            ranked = self.aggregator.ranker.rank(messages, tools, analyzer)
            for match in ranked:
                if match.score < analyzer.relevance_threshold:
                    continue
                self._register_exposed(self.aggregator.register_route(match.tool))
        except Exception as e:
            self.logger.debug(f"Pre-turn tool injection skipped: {e}")

    async def shutdown(self) -> None:
        await self.aggregator.shutdown()

    def _register_exposed(self, name: str) -> None:
        if name in self._registered:
            return
        spec = self.aggregator.describe_route(name)
        if spec is None:
            return

        async def execute(params: dict[str, Any], _name: str = name) -> Any:
            try:
                return await self.aggregator.call_tool(_name, params)
            except Exception as e:
                return {"error": f"Tool call failed: {e}"}

        self.host.register_tool(
            ToolRegistration(
                name=name,
                description=spec["description"],
                parameters=spec["inputSchema"],
                execute=execute,
            )
        )
        self._registered.add(name)
        self.logger.info(f"🧩 Registered '{name}' with agent host")
