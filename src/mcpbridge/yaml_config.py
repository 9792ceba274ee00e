from __future__ import annotations
import json
from pathlib import Path
from typing import Literal, Optional
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from src.utils.logger import get_logger

logger = get_logger("config")

DEFAULT_MCP_JSON_PATH = Path.home() / ".mcp.json"


class _CamelModel(BaseModel):
    """Accepts both the camelCase keys of bridge config files and snake_case."""

    model_config = ConfigDict(populate_by_name=True)


class ServerEntry(_CamelModel):
    name: str
    transport: Literal["stdio", "http", "sse"] = "stdio"
    command: Optional[str] = None
    args: list[str] = Field(default_factory=list)
    url: Optional[str] = None
    env: dict[str, str] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    categories: list[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class AnalyzerConfig(_CamelModel):
    max_tools_per_turn: int = Field(default=5, alias="maxToolsPerTurn")
    relevance_threshold: float = Field(default=0.3, alias="relevanceThreshold")
    high_confidence_threshold: float = Field(default=0.7, alias="highConfidenceThreshold")


class CacheConfig(_CamelModel):
    enabled: bool = True
    ttl_ms: int = Field(default=30000, alias="ttlMs")
    max_entries: int = Field(default=100, alias="maxEntries")


class BridgeConfig(_CamelModel):
    mode: Literal["smart", "traditional"] = "smart"
    servers: list[ServerEntry] = Field(default_factory=list)
    auto_discover: bool = Field(default=True, alias="autoDiscover")
    analyzer: AnalyzerConfig = Field(default_factory=AnalyzerConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)


def load_config(path: Path) -> BridgeConfig:
    """Load a YAML (or JSON) bridge config. Returns defaults if missing or invalid."""
    if not path.exists():
        return BridgeConfig()
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        return BridgeConfig.model_validate(raw)
    except yaml.YAMLError as e:
        logger.error(f"❌ Invalid YAML in {path}: {e}")
        return BridgeConfig()
    except (ValidationError, TypeError, ValueError) as e:
        logger.error(f"❌ Invalid config schema at {path}: {e}")
        return BridgeConfig()


def discover_from_mcp_json(path: Optional[Path] = None) -> list[ServerEntry]:
    """Read server entries from an ``mcpServers`` JSON file (``~/.mcp.json`` by default).

    Entries with a command become stdio servers; entries with a URL become
    sse servers when the URL mentions ``/sse`` and http servers otherwise.
    A missing or malformed file yields an empty list.
    """
    config_path = path or DEFAULT_MCP_JSON_PATH
    try:
        with open(config_path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError):
        return []

    section = data.get("mcpServers") if isinstance(data, dict) else None
    if not isinstance(section, dict):
        return []

    servers: list[ServerEntry] = []
    for name, entry in section.items():
        if not isinstance(entry, dict):
            continue
        try:
            if entry.get("command"):
                servers.append(
                    ServerEntry(
                        name=name,
                        transport="stdio",
                        command=entry["command"],
                        args=entry.get("args") or [],
                        env=entry.get("env") or {},
                    )
                )
            elif entry.get("url"):
                url = entry["url"]
                servers.append(
                    ServerEntry(
                        name=name,
                        transport="sse" if "/sse" in url else "http",
                        url=url,
                        headers=entry.get("headers") or {},
                    )
                )
        except ValidationError as e:
            logger.warning(f"⚠️ Skipping '{name}' from {config_path}: {e}")
    return servers


def merge_servers(
    discovered: list[ServerEntry], explicit: list[ServerEntry]
) -> list[ServerEntry]:
    """Merge server lists by name; explicit entries replace discovered ones."""
    by_name: dict[str, ServerEntry] = {}
    for server in discovered:
        by_name[server.name] = server
    for server in explicit:
        by_name[server.name] = server
    return list(by_name.values())


def resolve_servers(
    config: BridgeConfig, mcp_json_path: Optional[Path] = None
) -> list[ServerEntry]:
    """Effective server list for a config, honouring ``auto_discover``."""
    discovered = discover_from_mcp_json(mcp_json_path) if config.auto_discover else []
    return merge_servers(discovered, config.servers)
