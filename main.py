import asyncio
import anyio
import argparse
from src.mcpbridge.mcp_bridge import BridgeSettings, MCPBridge, load_bridge_config
from src.mcpbridge.cli import cmd_servers, cmd_tools
from src.utils.logger import configure_logging


def parse_args():
    parser = argparse.ArgumentParser(description="MCP bridge: one MCP server over many")
    sub = parser.add_subparsers(dest="command", required=True)

    # start
    start = sub.add_parser("start", help="Start the bridge server")
    start.add_argument("--transport", choices=["stdio", "sse"], default="stdio")
    start.add_argument("--host", type=str, default="127.0.0.1")
    start.add_argument("--port", type=int, default=3000)
    start.add_argument("--config", type=str, default=None, help="Path to bridge config (YAML or JSON)")
    start.add_argument("--mode", choices=["smart", "traditional"], default=None)
    start.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="INFO"
    )

    # tools
    tools = sub.add_parser("tools", help="Print the tool list the bridge would expose")
    tools.add_argument("--config", type=str, default=None)
    tools.add_argument("--mode", choices=["smart", "traditional"], default=None)

    # servers
    servers = sub.add_parser("servers", help="Show configured servers and their reachability")
    servers.add_argument("--config", type=str, default=None)

    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()

    if args.command == "start":
        bridge = MCPBridge(
            transport=args.transport,
            config=args.config,
            host=args.host,
            port=args.port,
            mode=args.mode,
            log_level=args.log_level,
        )
        asyncio.run(bridge.run())

    elif args.command == "tools":
        configure_logging(level="WARNING")
        config = load_bridge_config(BridgeSettings(config=args.config, mode=args.mode))

        async def _tools():
            return await cmd_tools(config)
        print(anyio.run(_tools))

    elif args.command == "servers":
        configure_logging(level="WARNING")
        config = load_bridge_config(BridgeSettings(config=args.config))

        async def _servers():
            return await cmd_servers(config)
        print(anyio.run(_servers))
