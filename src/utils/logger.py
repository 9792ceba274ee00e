import sys
from typing import Literal
from loguru import logger

# Global namespace for all loggers
BASE_LOGGER_NAMESPACE = "mcp_bridge"

# Initialization guard to prevent duplicate configuration
_configured = False


def get_logger(name: str) -> "logger":
    """
    Returns a loguru logger bound with the given module name.

    Example: get_logger("McpLayer") → logger with module="mcp_bridge.McpLayer"

    loguru keeps a single global logger; binding only attaches context.
    """
    return logger.bind(module=f"{BASE_LOGGER_NAMESPACE}.{name}")


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO",
) -> None:
    """
    Configures loguru globally for the entire app.

    Everything goes to stderr: stdout carries the MCP stdio stream.
    Subsequent calls are no-ops to prevent duplicate handlers.
    """
    global _configured
    if _configured:
        return

    logger.remove()

    logger.add(
        sys.stderr,
        format="<level>{level: <8}</level> | <cyan>{extra[module]}</cyan> | {message}",
        level=level,
        colorize=True,
        filter=lambda record: "module" in record["extra"],
    )

    # Fallback handler for loggers without module binding
    logger.add(
        sys.stderr,
        format="<level>{level: <8}</level> | {message}",
        level=level,
        colorize=True,
        filter=lambda record: "module" not in record["extra"],
    )

    _configured = True
