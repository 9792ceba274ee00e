"""
Extraction of the free-text ``need`` from find_tools arguments.

Hosts have sent the argument in several shapes over time. Each shape is one
strategy; strategies are tried in order and the first string found wins.
"""

import json
from typing import Any, Callable, Optional, Tuple

NeedStrategy = Callable[[Any], Optional[str]]


def _as_mapping(value: Any) -> Optional[dict]:
    return value if isinstance(value, dict) else None


def _parse_mapping(value: Any) -> Optional[dict]:
    """A mapping as-is, or a JSON-encoded mapping decoded."""
    if not isinstance(value, str):
        return _as_mapping(value)
    try:
        return _as_mapping(json.loads(value))
    except (json.JSONDecodeError, ValueError):
        return None


def _string_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _raw_string(params: Any) -> Optional[str]:
    return _string_or_none(params)


def _top_level(params: Any) -> Optional[str]:
    root = _as_mapping(params)
    return _string_or_none(root.get("need")) if root else None


def _nested(key: str, decode_json: bool = False) -> NeedStrategy:
    """Strategy reading ``params[key]["need"]``."""

    def strategy(params: Any) -> Optional[str]:
        root = _as_mapping(params)
        if root is None:
            return None
        inner = _parse_mapping(root.get(key)) if decode_json else _as_mapping(root.get(key))
        return _string_or_none(inner.get("need")) if inner else None

    strategy.__name__ = f"nested_{key}"
    return strategy


NEED_STRATEGIES: Tuple[NeedStrategy, ...] = (
    _raw_string,
    _top_level,
    _nested("input"),
    _nested("args"),
    _nested("parameters"),
    _nested("toolInput"),
    _nested("arguments", decode_json=True),
)


def extract_need(params: Any, strategies: Tuple[NeedStrategy, ...] = NEED_STRATEGIES) -> str:
    """
    Return the first ``need`` string any strategy finds, else an empty string.

    Args:
        params: Raw find_tools arguments in any supported shape.
        strategies: Ordered extraction strategies.
    """
    for strategy in strategies:
        need = strategy(params)
        if need is not None:
            return need
    return ""
