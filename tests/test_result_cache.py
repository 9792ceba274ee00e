"""Tests for ResultCache keys, TTL expiry, capacity bound and cacheability."""
import pytest
from unittest.mock import patch
from src.mcpbridge.result_cache import ResultCache, make_cache_key
from src.mcpbridge.yaml_config import CacheConfig


def _cache(**kwargs) -> ResultCache:
    return ResultCache(CacheConfig(**kwargs))


def test_key_ignores_param_order():
    assert make_cache_key("s", "t", {"a": 1, "b": {"x": 1, "y": 2}}) == make_cache_key(
        "s", "t", {"b": {"y": 2, "x": 1}, "a": 1}
    )


def test_key_distinguishes_server_and_tool():
    assert make_cache_key("s1", "t", {}) != make_cache_key("s2", "t", {})
    assert make_cache_key("s", "t1", {}) != make_cache_key("s", "t2", {})
    # Joined naively, these two would collide
    assert make_cache_key("a_b", "c", {}) != make_cache_key("a", "b_c", {})


def test_hit_and_miss():
    cache = _cache()
    assert cache.get("s", "list_x", {"q": 1}) is None
    cache.set("s", "list_x", {"q": 1}, {"content": []})
    assert cache.get("s", "list_x", {"q": 1}) == {"content": []}
    assert cache.get("s", "list_x", {"q": 2}) is None


def test_zero_capacity_stores_nothing():
    cache = _cache(max_entries=0)
    cache.set("s", "list_x", {}, {"content": []})
    assert cache.size == 0
    assert cache.get("s", "list_x", {}) is None


@patch("src.mcpbridge.result_cache.time")
def test_ttl_boundary(mock_time):
    cache = _cache(ttl_ms=30000)
    mock_time.monotonic.return_value = 1000.0
    cache.set("s", "get_x", {}, "value")

    mock_time.monotonic.return_value = 1030.0
    assert cache.get("s", "get_x", {}) == "value"

    mock_time.monotonic.return_value = 1030.5
    assert cache.get("s", "get_x", {}) is None
    assert cache.size == 0


@patch("src.mcpbridge.result_cache.time")
def test_per_entry_ttl_override(mock_time):
    cache = _cache(ttl_ms=30000)
    mock_time.monotonic.return_value = 0.0
    cache.set("s", "get_x", {}, "short", ttl_ms=1000)
    mock_time.monotonic.return_value = 2.0
    assert cache.get("s", "get_x", {}) is None


@patch("src.mcpbridge.result_cache.time")
def test_capacity_evicts_oldest(mock_time):
    cache = _cache(max_entries=2)
    for i, ts in enumerate((1.0, 2.0, 3.0)):
        mock_time.monotonic.return_value = ts
        cache.set("s", "get_x", {"i": i}, i)
    assert cache.size == 2
    assert cache.get("s", "get_x", {"i": 0}) is None
    assert cache.get("s", "get_x", {"i": 1}) == 1
    assert cache.get("s", "get_x", {"i": 2}) == 2


@patch("src.mcpbridge.result_cache.time")
def test_overwrite_at_capacity_does_not_evict(mock_time):
    cache = _cache(max_entries=2)
    mock_time.monotonic.return_value = 1.0
    cache.set("s", "get_x", {"i": 0}, "a")
    cache.set("s", "get_x", {"i": 1}, "b")
    cache.set("s", "get_x", {"i": 0}, "a2")
    assert cache.size == 2
    assert cache.get("s", "get_x", {"i": 0}) == "a2"
    assert cache.get("s", "get_x", {"i": 1}) == "b"


@patch("src.mcpbridge.result_cache.time")
def test_prune_removes_only_expired(mock_time):
    cache = _cache(ttl_ms=1000)
    mock_time.monotonic.return_value = 0.0
    cache.set("s", "get_a", {}, 1)
    mock_time.monotonic.return_value = 5.0
    cache.set("s", "get_b", {}, 2)
    assert cache.prune() == 1
    assert cache.size == 1


def test_clear():
    cache = _cache()
    cache.set("s", "get_x", {}, 1)
    cache.clear()
    assert cache.size == 0


def test_disabled_cache_stores_nothing():
    cache = _cache(enabled=False)
    cache.set("s", "get_x", {}, 1)
    assert cache.get("s", "get_x", {}) is None
    assert cache.size == 0
    assert cache.is_cacheable("get_x") is False


@pytest.mark.parametrize(
    "name",
    ["list_issues", "get_user", "search", "search-pages", "read file", "describe_table", "getStatus_info"],
)
def test_read_only_names_are_cacheable(name):
    assert _cache().is_cacheable(name) is True


@pytest.mark.parametrize(
    "name",
    ["create_page", "delete_row", "set_status", "update_and_get", "send_email", "run_query", "getter", "ping"],
)
def test_mutating_or_unknown_names_are_not_cacheable(name):
    assert _cache().is_cacheable(name) is False
