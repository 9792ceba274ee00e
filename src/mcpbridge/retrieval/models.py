"""Data models for ranking and compression."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Optional

if TYPE_CHECKING:
    from src.mcpbridge.models import ToolWithServer

MatchType = Literal["keyword", "category", "intent", "history"]


@dataclass
class RelevanceScore:
    """A tool with its composite relevance score and dominant signal."""
    tool: "ToolWithServer"
    score: float
    match_type: MatchType = "keyword"


@dataclass
class CompressedTool:
    """Token-minimised exposure of a tool."""
    name: str
    short_description: str
    parameters: dict[str, Any]
    optional_hint: Optional[str]
    original: "ToolWithServer"

    @property
    def description(self) -> str:
        """Short description with the optional-parameter hint appended."""
        if self.optional_hint:
            return f"{self.short_description}. {self.optional_hint}"
        return self.short_description


@dataclass
class Decompressed:
    """Real call target recovered from an exposed name."""
    server_name: str
    tool_name: str
    full_params: dict[str, Any]
