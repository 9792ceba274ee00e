"""Schema compression for token-frugal tool exposure.

Compressed tools keep a first-sentence description (<= 80 chars) and only the
required parameters. Optional parameter names survive as a one-line hint so
callers can still pass them; decompress() forwards params untouched.
"""

from __future__ import annotations

import copy
import re
from typing import TYPE_CHECKING, Any, Optional

from .models import CompressedTool, Decompressed

if TYPE_CHECKING:
    from src.mcpbridge.models import ToolWithServer

_MAX_DESCRIPTION_CHARS = 80
_MAX_PROPERTY_DESCRIPTION_CHARS = 60
_SENTENCE_END = re.compile(r"[.\n?]")
_VERBOSE_FIELDS = ("examples", "pattern", "default")
_ELLIPSIS = "…"


def sanitize_name(value: str) -> str:
    """Lowercase, with runs of anything outside [A-Za-z0-9_] collapsed to one underscore."""
    return re.sub(r"_+", "_", re.sub(r"[^a-zA-Z0-9_]", "_", value)).lower()


def make_compressed_name(server_name: str, tool_name: str) -> str:
    return f"mcp_{sanitize_name(server_name)}_{sanitize_name(tool_name)}"


def _truncate_at_word(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    truncated = text[: max_chars - 1]
    last_space = truncated.rfind(" ")
    if last_space > max_chars / 2:
        truncated = truncated[:last_space]
    return truncated.rstrip() + _ELLIPSIS


def truncate_description(desc: str, max_chars: int = _MAX_DESCRIPTION_CHARS) -> str:
    """First sentence, trimmed, cut at a word boundary past the midpoint if too long."""
    match = _SENTENCE_END.search(desc)
    text = desc[: match.start()] if match and match.start() > 0 else desc
    return _truncate_at_word(text.strip(), max_chars)


def truncate_property_description(
    desc: str, max_chars: int = _MAX_PROPERTY_DESCRIPTION_CHARS
) -> str:
    return _truncate_at_word(desc, max_chars)


class SchemaCompressor:
    """Compresses tools and remembers originals by exposed name."""

    def __init__(self) -> None:
        self._originals: dict[str, "ToolWithServer"] = {}

    def compress(self, tool: "ToolWithServer") -> CompressedTool:
        """Build the compressed spec for ``tool``. NEVER mutates the tool."""
        name = make_compressed_name(tool.server_name, tool.name)
        self._originals[name] = tool

        description = (
            tool.description
            if tool.description is not None
            else f"{tool.server_name}/{tool.name}"
        )
        short_description = truncate_description(description)

        schema = tool.input_schema or {}
        properties: dict[str, Any] = schema.get("properties") or {}
        required = list(dict.fromkeys(schema.get("required") or []))
        required_set = set(required)

        compressed_props: dict[str, Any] = {}
        optional_names: list[str] = []
        for param_name, prop in properties.items():
            if param_name not in required_set:
                optional_names.append(param_name)
                continue
            prop = copy.deepcopy(prop) if isinstance(prop, dict) else {}
            if isinstance(prop.get("description"), str) and prop["description"]:
                prop["description"] = truncate_property_description(prop["description"])
            for verbose in _VERBOSE_FIELDS:
                prop.pop(verbose, None)
            compressed_props[param_name] = prop

        parameters: dict[str, Any] = {"type": "object", "properties": compressed_props}
        if required:
            parameters["required"] = required

        optional_hint: Optional[str] = (
            f"Also accepts: {', '.join(optional_names)}" if optional_names else None
        )

        return CompressedTool(
            name=name,
            short_description=short_description,
            parameters=parameters,
            optional_hint=optional_hint,
            original=tool,
        )

    def get_original(self, compressed_name: str) -> Optional["ToolWithServer"]:
        return self._originals.get(compressed_name)

    def decompress(
        self, compressed_name: str, params: dict[str, Any]
    ) -> Optional[Decompressed]:
        """Map an exposed name back to its server/tool. Params pass through unvalidated."""
        original = self._originals.get(compressed_name)
        if original is None:
            return None
        return Decompressed(
            server_name=original.server_name,
            tool_name=original.name,
            full_params=params,
        )
