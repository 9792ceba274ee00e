from __future__ import annotations
from typing import Optional
from src.mcpbridge.aggregator import Aggregator
from src.mcpbridge.yaml_config import BridgeConfig


async def cmd_tools(config: BridgeConfig, aggregator: Optional[Aggregator] = None) -> str:
    """Refresh and render the tool list the bridge would expose."""
    async with (aggregator or Aggregator(config)) as agg:
        await agg.refresh_tools()
        tools = agg.get_tool_list()
        status = agg.mcp_layer.get_last_discovery_status()

    lines = [f"Mode: {agg.mode} ({len(tools)} tools exposed)"]
    for tool in tools:
        description = tool.get("description") or ""
        lines.append(f"  {tool['name']}  {description}".rstrip())
    if status.failed_servers:
        lines.append(f"\n⚠️  Unreachable: {', '.join(sorted(status.failed_servers))}")
    return "\n".join(lines)


async def cmd_servers(config: BridgeConfig, aggregator: Optional[Aggregator] = None) -> str:
    """Render configured servers and the outcome of one discovery pass."""
    async with (aggregator or Aggregator(config)) as agg:
        if not agg.mcp_layer.get_server_names():
            return "No servers configured. Add servers to the config or ~/.mcp.json."
        await agg.mcp_layer.discover_tools()
        status = agg.mcp_layer.get_last_discovery_status()
        info = agg.mcp_layer.get_server_info()

    lines = ["MCP Bridge Servers", "=" * 40]
    for server in info:
        if server["name"] in status.failed_servers:
            state = "✗ unreachable"
        elif server["name"] in status.successful_servers:
            state = f"✓ {server['toolCount']} tools"
        else:
            state = "- skipped (no command or url)"
        lines.append(f"{server['name']:<20} {server['transport']:<6} {state}")
    return "\n".join(lines)
