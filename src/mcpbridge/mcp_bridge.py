import asyncio
import signal
from pathlib import Path
from typing import Any, Literal, Optional

import anyio
import uvicorn
from mcp.server.sse import SseServerTransport
from mcp.server.stdio import stdio_server
from pydantic_settings import BaseSettings, SettingsConfigDict
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route

from src.mcpbridge.aggregator import Aggregator
from src.mcpbridge.mcp_proxy import MCPProxyServer
from src.mcpbridge.yaml_config import BridgeConfig, load_config
from src.utils.logger import configure_logging, get_logger


class BridgeSettings(BaseSettings):
    """Process settings for the bridge server."""

    transport: Literal["stdio", "sse"] = "stdio"
    host: str = "127.0.0.1"
    port: int = 3000
    config: Optional[str] = None
    mode: Optional[Literal["smart", "traditional"]] = None  # overrides the config file
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    sse_server_debug: bool = False

    model_config = SettingsConfigDict(env_prefix="MCP_BRIDGE_")


def load_bridge_config(settings: BridgeSettings) -> BridgeConfig:
    """Bridge config from the settings' file path, with the mode override applied."""
    config = load_config(Path(settings.config)) if settings.config else BridgeConfig()
    if settings.mode is not None:
        config = config.model_copy(update={"mode": settings.mode})
    return config


class MCPBridge:
    def __init__(self, **settings: Any):
        self.settings = BridgeSettings(**settings)
        configure_logging(level=self.settings.log_level)
        self.logger = get_logger("MCPBridge")
        self.aggregator: Optional[Aggregator] = None
        self.proxy: Optional[MCPProxyServer] = None

    async def run(self):
        """Load config, build the aggregator and proxy, then serve until stopped."""
        self.logger.info(f"🚀 Starting MCP bridge with transport: {self.settings.transport}")
        config = load_bridge_config(self.settings)
        self.aggregator = Aggregator(config)
        self.proxy = MCPProxyServer(self.aggregator)
        self.logger.info(
            f"🧭 Mode '{self.aggregator.mode}' over {len(self.aggregator.mcp_layer.server_entries)} server(s)"
        )

        loop = asyncio.get_running_loop()
        shutdown_event = asyncio.Event()

        def _signal_handler(sig: int) -> None:
            sig_name = signal.Signals(sig).name
            self.logger.info(f"🛑 Received {sig_name}, initiating graceful shutdown...")
            shutdown_event.set()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, _signal_handler, sig)

        try:
            server_task = asyncio.create_task(self.start_server())
            shutdown_task = asyncio.create_task(shutdown_event.wait())
            done, pending = await asyncio.wait(
                {server_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            if server_task in done and server_task.exception() is not None:
                raise server_task.exception()
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
            await self.aggregator.shutdown()
            self.logger.info("✅ Graceful shutdown complete")

    async def start_server(self):
        """Start the proxy server in stdio or SSE mode."""
        if self.settings.transport == "stdio":
            await self.start_stdio_server()
        elif self.settings.transport == "sse":
            await self.start_sse_server()
        else:
            raise ValueError(f"Unsupported transport: {self.settings.transport}")

    async def start_stdio_server(self) -> None:
        """Run the proxy server over stdio."""
        async with stdio_server() as (read_stream, write_stream):
            try:
                await self.proxy.run(
                    read_stream,
                    write_stream,
                    self.proxy.create_initialization_options(),
                )
            except (anyio.ClosedResourceError, ExceptionGroup) as e:
                # Stdin closing while in-flight handlers write responses is expected
                if isinstance(e, ExceptionGroup):
                    _, unhandled = e.split(anyio.ClosedResourceError)
                    if unhandled:
                        raise unhandled
                self.logger.debug("Stdio stream closed during shutdown (expected)")

    def create_starlette_app(self) -> Starlette:
        """Create the Starlette app serving the proxy over SSE."""
        sse = SseServerTransport("/messages/")

        class _SSEHandler:
            """Raw ASGI handler: connect_sse streams its own response."""

            def __init__(self, bridge: "MCPBridge", sse_transport: SseServerTransport):
                self._bridge = bridge
                self._sse = sse_transport

            async def __call__(self, scope, receive, send):
                async with self._sse.connect_sse(scope, receive, send) as streams:
                    await self._bridge.proxy.run(
                        streams[0],
                        streams[1],
                        self._bridge.proxy.create_initialization_options(),
                    )

        return Starlette(
            debug=self.settings.sse_server_debug,
            routes=[
                Route("/sse", endpoint=_SSEHandler(self, sse)),
                Mount("/messages/", app=sse.handle_post_message),
                Route("/health", endpoint=self.handle_health, methods=["GET"]),
            ],
        )

    async def start_sse_server(self) -> None:
        """Run the proxy server over SSE transport."""
        starlette_app = self.create_starlette_app()

        config = uvicorn.Config(
            starlette_app,
            host=self.settings.host,
            port=self.settings.port,
            log_level=self.settings.log_level.lower(),
        )
        server = uvicorn.Server(config)
        await server.serve()

    async def handle_health(self, request: Request) -> JSONResponse:
        """Return health status with mode, route and server counts."""
        if not self.aggregator:
            return JSONResponse(
                {"status": "unavailable", "error": "Bridge not initialized"},
                status_code=503,
            )
        status = self.aggregator.mcp_layer.get_last_discovery_status()
        return JSONResponse(
            {
                "status": "healthy",
                "mode": self.aggregator.mode,
                "routes": len(self.aggregator.route_names()),
                "servers": self.aggregator.mcp_layer.get_server_names(),
                "failed_servers": sorted(status.failed_servers),
            }
        )
