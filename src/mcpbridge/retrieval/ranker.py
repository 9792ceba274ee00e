"""Relevance ranker scoring tools against recent conversation text.

Four weighted signals per tool:
  keyword (0.4): query words found in the tool name or description
  category (0.3): tool categories implied by intent phrases in the query
  intent (0.2): query verb class (search/create/update/delete) matches the tool
  history (0.1): linear decay over 30 minutes since the tool was last used
"""

from __future__ import annotations

import re
import time
from typing import TYPE_CHECKING, Iterable, Mapping, Optional

from src.mcpbridge.yaml_config import AnalyzerConfig
from src.utils.logger import get_logger

from .models import MatchType, RelevanceScore

if TYPE_CHECKING:
    from src.mcpbridge.models import ToolWithServer

logger = get_logger("RelevanceRanker")

KEYWORD_WEIGHT = 0.4
CATEGORY_WEIGHT = 0.3
INTENT_WEIGHT = 0.2
HISTORY_WEIGHT = 0.1

# Returned for every candidate when the query carries no usable words
NEUTRAL_SCORE = 0.5

_RECENT_MESSAGES = 3
_HISTORY_WINDOW_SECONDS = 30 * 60

_STOPWORDS = frozenset(
    "the a an is are was were be been being have has had do does did will would "
    "could should may might shall can need dare ought used to of in for on with "
    "at by from as into through during before after above below between out off "
    "over under again further then once here there when where why how all both "
    "each few more most other some such no nor not only own same so than too very "
    "just because but and or if while that this it i me my you your we our they "
    "them their what which who whom please want help make let get put also back "
    "still".split()
)

_INTENT_CATEGORIES: list[tuple[re.Pattern, tuple[str, ...]]] = [
    (re.compile(r"\b(note|notes|page|doc|document|write|draft)\b", re.I),
     ("productivity", "notes", "docs")),
    (re.compile(r"\b(code|repo|repository|commit|pr|pull|merge|branch|issue|bug)\b", re.I),
     ("code", "dev", "repos", "issues")),
    (re.compile(r"\b(pay|payment|invoice|billing|charge|subscription|customer)\b", re.I),
     ("payments", "billing", "finance")),
    (re.compile(r"\b(file|folder|directory|path|read|upload|download)\b", re.I),
     ("filesystem", "files", "storage")),
    (re.compile(r"\b(search|find|query|lookup|browse)\b", re.I),
     ("search", "discovery")),
    (re.compile(r"\b(email|mail|message|send|notify|notification)\b", re.I),
     ("communication", "email", "messaging")),
    (re.compile(r"\b(calendar|schedule|event|meeting|appointment)\b", re.I),
     ("calendar", "scheduling")),
    (re.compile(r"\b(database|db|table|record|row|column|sql)\b", re.I),
     ("database", "data")),
    (re.compile(r"\b(image|photo|picture|screenshot|media|video)\b", re.I),
     ("media", "images")),
    (re.compile(r"\b(deploy|build|ci|cd|pipeline|release)\b", re.I),
     ("devops", "deployment")),
]

_SEARCH_VERBS = frozenset("search find look query list get fetch show browse check".split())
_CREATE_VERBS = frozenset("create make add new generate build write compose draft".split())
_UPDATE_VERBS = frozenset("update edit modify change set rename move".split())
_DELETE_VERBS = frozenset("delete remove clear drop destroy cancel".split())

# Any verb class present in the query whose tool pattern matches scores 1.0
_INTENT_TOOL_PATTERNS: list[tuple[frozenset, re.Pattern]] = [
    (_SEARCH_VERBS,
     re.compile(r"\b(search|list|get|find|query|fetch|show|browse|check|describe|read)\b", re.I)),
    (_CREATE_VERBS,
     re.compile(r"\b(create|add|new|make|generate|build|write|compose|insert)\b", re.I)),
    (_UPDATE_VERBS,
     re.compile(r"\b(update|edit|modify|change|set|rename|move|patch)\b", re.I)),
    (_DELETE_VERBS,
     re.compile(r"\b(delete|remove|clear|drop|destroy|cancel)\b", re.I)),
]


def split_tool_name(name: str) -> list[str]:
    """Split camelCase, snake_case and kebab-case names into lowercase words."""
    spaced = re.sub(r"([a-z])([A-Z])", r"\1 \2", name)
    spaced = re.sub(r"[_\-]+", " ", spaced)
    return [w for w in spaced.lower().split() if w]


def extract_words(text: str) -> list[str]:
    """Lowercase alphanumeric words, minus stopwords and single characters."""
    cleaned = re.sub(r"[^a-z0-9\s]", " ", text.lower())
    return [w for w in cleaned.split() if len(w) > 1 and w not in _STOPWORDS]


class RelevanceRanker:
    """Ranks tools for a conversation and remembers recent tool usage."""

    def __init__(self) -> None:
        # "server:tool" -> monotonic timestamp of last use
        self._recently_used: dict[str, float] = {}

    def rank(
        self,
        messages: Iterable[Mapping[str, str]],
        tools: list["ToolWithServer"],
        config: Optional[AnalyzerConfig] = None,
    ) -> list[RelevanceScore]:
        """Score ``tools`` against the last three user messages.

        Without usable user text every tool comes back at the neutral score,
        unfiltered: nothing can be judged irrelevant, so nothing is hidden.
        """
        config = config or AnalyzerConfig()

        user_msgs = [m for m in messages if m.get("role") == "user"][-_RECENT_MESSAGES:]
        message_text = " ".join(str(m.get("content") or "") for m in user_msgs)
        words = extract_words(message_text)
        if not words:
            return [RelevanceScore(tool=t, score=NEUTRAL_SCORE) for t in tools]

        implied = self._implied_categories(message_text)

        scores: list[RelevanceScore] = []
        for tool in tools:
            signals: list[tuple[MatchType, float]] = [
                ("keyword", self._score_keyword(words, tool)),
                ("category", self._score_category(implied, tool)),
                ("intent", self._score_intent(words, tool)),
                ("history", self._score_history(tool)),
            ]
            score = (
                signals[0][1] * KEYWORD_WEIGHT
                + signals[1][1] * CATEGORY_WEIGHT
                + signals[2][1] * INTENT_WEIGHT
                + signals[3][1] * HISTORY_WEIGHT
            )
            # max() keeps the first of equal values: keyword > category > intent > history
            match_type = max(signals, key=lambda s: s[1])[0]
            if score >= config.relevance_threshold:
                scores.append(RelevanceScore(tool=tool, score=score, match_type=match_type))

        scores.sort(key=lambda s: s.score, reverse=True)
        return scores[: config.max_tools_per_turn]

    def record_usage(self, tool_name: str, server_name: str) -> None:
        """Stamp a (server, tool) pair as used now and forget stale usage."""
        now = time.monotonic()
        self._recently_used[f"{server_name}:{tool_name}"] = now
        cutoff = now - _HISTORY_WINDOW_SECONDS
        for key in [k for k, ts in self._recently_used.items() if ts < cutoff]:
            del self._recently_used[key]

    @staticmethod
    def _implied_categories(message_text: str) -> set[str]:
        cats: set[str] = set()
        for pattern, categories in _INTENT_CATEGORIES:
            if pattern.search(message_text):
                cats.update(categories)
        return cats

    @staticmethod
    def _score_keyword(words: list[str], tool: "ToolWithServer") -> float:
        tool_words = set(split_tool_name(tool.name)) | set(extract_words(tool.description or ""))
        if not tool_words:
            return 0.0
        matched = sum(
            1 for w in words if any(tw in w or w in tw for tw in tool_words)
        )
        return matched / len(words)

    @staticmethod
    def _score_category(implied: set[str], tool: "ToolWithServer") -> float:
        if not tool.categories or not implied:
            return 0.0
        overlap = sum(1 for c in tool.categories if c.lower() in implied)
        return overlap / len(tool.categories)

    @staticmethod
    def _score_intent(words: list[str], tool: "ToolWithServer") -> float:
        tool_text = f"{tool.name} {tool.description or ''}"
        for verbs, pattern in _INTENT_TOOL_PATTERNS:
            if any(w in verbs for w in words) and pattern.search(tool_text):
                return 1.0
        return 0.0

    def _score_history(self, tool: "ToolWithServer") -> float:
        last_used = self._recently_used.get(f"{tool.server_name}:{tool.name}")
        if last_used is None:
            return 0.0
        elapsed = time.monotonic() - last_used
        if elapsed > _HISTORY_WINDOW_SECONDS:
            return 0.0
        return max(0.0, 1.0 - elapsed / _HISTORY_WINDOW_SECONDS)
