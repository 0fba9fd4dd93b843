import pytest

from stmtcache.core.settings import StatementCacheSettings
from stmtcache.db.statement_cache import (
    CacheStats,
    DictStatementCache,
    EnhancedStatementCache,
    StatementCache,
    create_statement_cache,
)


class FakeStatement:
    def __init__(self, sql):
        self.sql = sql


def test_hits_and_misses_are_counted():
    cache = EnhancedStatementCache(max_size=10)

    assert cache.get("SELECT 1") is None
    cache.set("SELECT 1", FakeStatement("SELECT 1"))
    assert cache.get("SELECT 1").sql == "SELECT 1"

    stats = cache.get_stats()
    assert stats == CacheStats(hits=1, misses=1, size=1, evictions=0, total_queries=2)
    assert stats.hit_rate == 0.5


def test_evictions_are_counted_and_forwarded():
    evicted = []
    cache = EnhancedStatementCache(max_size=2, on_eviction=lambda sql, stmt: evicted.append(sql))

    for sql in ("SELECT 1", "SELECT 2", "SELECT 3", "SELECT 4"):
        cache.set(sql, FakeStatement(sql))

    assert evicted == ["SELECT 1", "SELECT 2"]
    assert cache.get_stats().evictions == 2


def test_evicted_statements_are_not_closed():
    closed = []

    class Handle:
        def close(self):
            closed.append(self)

    cache = EnhancedStatementCache(max_size=1)
    cache.set("SELECT 1", Handle())
    cache.set("SELECT 2", Handle())

    assert cache.get_stats().evictions == 1
    assert closed == []


def test_get_stats_returns_a_copy():
    cache = EnhancedStatementCache(max_size=10)
    stats = cache.get_stats()
    stats.hits = 99

    assert cache.get_stats().hits == 0


def test_delete_clear_and_resize_refresh_size():
    cache = EnhancedStatementCache(max_size=10)
    for i in range(4):
        cache.set(f"SELECT {i}", FakeStatement(i))
    assert cache.get_stats().size == 4

    cache.delete("SELECT 0")
    assert cache.get_stats().size == 3

    cache.resize(2)
    stats = cache.get_stats()
    assert stats.size == 2
    assert stats.evictions == 1

    cache.clear()
    assert cache.get_stats().size == 0
    assert cache.get("SELECT 3") is None


def test_hit_rate_without_queries():
    assert CacheStats().hit_rate == 0.0


def test_dict_cache_is_unbounded():
    cache = DictStatementCache()
    for i in range(5000):
        cache.set(f"SELECT {i}", i)

    assert cache.get("SELECT 0") == 0
    cache.delete("SELECT 0")
    cache.delete("SELECT 0")
    assert cache.get("SELECT 0") is None
    assert cache.get_stats() is None
    cache.clear()
    assert cache.get("SELECT 1") is None


def test_caches_satisfy_protocol():
    assert isinstance(EnhancedStatementCache(), StatementCache)
    assert isinstance(DictStatementCache(), StatementCache)


def test_create_from_bool():
    bounded = create_statement_cache(True)
    assert isinstance(bounded, EnhancedStatementCache)
    assert bounded.cache.max_size == 1000

    assert isinstance(create_statement_cache(False), DictStatementCache)


def test_create_from_mapping():
    cache = create_statement_cache({"max_size": 5, "max_age": 1.5})
    assert isinstance(cache, EnhancedStatementCache)
    assert cache.cache.max_size == 5


def test_create_from_settings():
    cache = create_statement_cache(StatementCacheSettings(max_size=7))
    assert isinstance(cache, EnhancedStatementCache)
    assert cache.cache.max_size == 7

    disabled = create_statement_cache(StatementCacheSettings(enabled=False))
    assert isinstance(disabled, DictStatementCache)


def test_custom_cache_is_used_as_is():
    custom = DictStatementCache()
    assert create_statement_cache(custom) is custom
