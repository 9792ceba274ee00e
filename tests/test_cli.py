import pytest
from unittest.mock import AsyncMock, MagicMock
from mcp import types
from src.mcpbridge.aggregator import Aggregator
from src.mcpbridge.cli import cmd_servers, cmd_tools
from src.mcpbridge.mcp_layer import McpLayer
from src.mcpbridge.yaml_config import BridgeConfig, ServerEntry


def _make_aggregator(mode="smart", failing=()):
    config = BridgeConfig(
        mode=mode,
        auto_discover=False,
        servers=[
            ServerEntry(name="notion", command="run"),
            ServerEntry(name="github", url="https://example.com/mcp", transport="http"),
            ServerEntry(name="empty"),
        ],
    )

    async def list_tools(name):
        if name in failing:
            raise ConnectionError("down")
        return [types.Tool(name="search_pages", description="Search pages", inputSchema={"type": "object"})]

    client = MagicMock()
    client.server_names.return_value = ["notion", "github"]
    client.list_tools = AsyncMock(side_effect=list_tools)
    client.close = AsyncMock()
    client.get_session.return_value = None
    return config, Aggregator(config, mcp_layer=McpLayer(config, client_manager=client)), client


@pytest.mark.asyncio
async def test_cmd_tools_smart_mode():
    config, agg, client = _make_aggregator()
    output = await cmd_tools(config, agg)
    assert output.startswith("Mode: smart (3 tools exposed)")
    assert "find_tools" in output
    assert "mcp_notion_search_pages" in output
    assert "mcp_github_search_pages" in output
    client.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_cmd_tools_reports_unreachable():
    config, agg, _ = _make_aggregator(mode="traditional", failing={"github"})
    output = await cmd_tools(config, agg)
    assert "Mode: traditional (1 tools exposed)" in output
    assert "Unreachable: github" in output


@pytest.mark.asyncio
async def test_cmd_servers_shows_status():
    config, agg, _ = _make_aggregator(failing={"github"})
    output = await cmd_servers(config, agg)
    assert "notion" in output and "✓ 1 tools" in output
    assert "✗ unreachable" in output
    assert "skipped" in output


@pytest.mark.asyncio
async def test_cmd_servers_no_servers():
    config = BridgeConfig(auto_discover=False)
    output = await cmd_servers(config)
    assert "no servers" in output.lower()
