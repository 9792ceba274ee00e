"""TTL + capacity-bounded cache of downstream tool results.

Only read-only looking tools are cacheable: names matching a mutating verb
are never cached, even when a read-only verb also matches (``set_status``).
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass
from typing import Any, Optional

from src.mcpbridge.yaml_config import CacheConfig
from src.utils.logger import get_logger

_CACHEABLE_PATTERN = re.compile(
    r"(?:^|[_\s\-])(list|get|search|read|fetch|describe|show|find|query|status|info|check)(?:$|[_\s\-])",
    re.I,
)
_MUTATING_PATTERN = re.compile(
    r"(?:^|[_\s\-])(create|update|delete|send|post|put|patch|remove|add|set|modify|write|execute|run|trigger)(?:$|[_\s\-])",
    re.I,
)


@dataclass
class CacheEntry:
    key: str
    result: Any
    timestamp: float
    ttl_ms: int

    def is_expired(self, now: float) -> bool:
        return (now - self.timestamp) * 1000 > self.ttl_ms


def make_cache_key(server: str, tool: str, params: Any) -> str:
    """Identity of a call. Field order inside ``params`` never matters."""
    canonical_params = json.dumps(params, sort_keys=True, default=str)
    return json.dumps([server, tool, canonical_params])


class ResultCache:
    def __init__(self, config: Optional[CacheConfig] = None) -> None:
        config = config or CacheConfig()
        self.enabled = config.enabled
        self.default_ttl_ms = config.ttl_ms
        self.max_entries = config.max_entries
        self._cache: dict[str, CacheEntry] = {}
        self.logger = get_logger("ResultCache")

    @property
    def size(self) -> int:
        return len(self._cache)

    def is_cacheable(self, tool_name: str) -> bool:
        """True only for enabled caches and read-only tool names."""
        if not self.enabled:
            return False
        if _MUTATING_PATTERN.search(tool_name):
            return False
        return _CACHEABLE_PATTERN.search(tool_name) is not None

    def get(self, server: str, tool: str, params: Any) -> Optional[Any]:
        """Return the cached result, or None on a miss. Expired entries are evicted here."""
        if not self.enabled:
            return None
        key = make_cache_key(server, tool, params)
        entry = self._cache.get(key)
        if entry is None:
            return None
        if entry.is_expired(time.monotonic()):
            del self._cache[key]
            return None
        return entry.result

    def set(
        self,
        server: str,
        tool: str,
        params: Any,
        result: Any,
        ttl_ms: Optional[int] = None,
    ) -> None:
        if not self.enabled or self.max_entries <= 0:
            return
        key = make_cache_key(server, tool, params)

        if len(self._cache) >= self.max_entries and key not in self._cache:
            self._evict_oldest()

        self._cache[key] = CacheEntry(
            key=key,
            result=result,
            timestamp=time.monotonic(),
            ttl_ms=ttl_ms if ttl_ms is not None else self.default_ttl_ms,
        )

    def prune(self) -> int:
        """Remove every expired entry. Returns how many were removed."""
        now = time.monotonic()
        expired = [key for key, entry in self._cache.items() if entry.is_expired(now)]
        for key in expired:
            del self._cache[key]
        return len(expired)

    def clear(self) -> None:
        self._cache.clear()

    def _evict_oldest(self) -> None:
        if not self._cache:
            return
        oldest_key = min(self._cache, key=lambda k: self._cache[k].timestamp)
        self.logger.debug(f"🧹 Evicting oldest cache entry {oldest_key}")
        del self._cache[oldest_key]
