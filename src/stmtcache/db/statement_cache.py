"""
Statement caches keyed by SQL text.

The driver asks the cache for a prepared statement before preparing one and
writes the new handle back on a miss. Evicted handles are reported through
``on_eviction`` but never closed here: releasing them is the owner's job.
"""
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional, Protocol, Union, runtime_checkable

from loguru import logger

from stmtcache.core.cache import QuickLRU
from stmtcache.core.settings import StatementCacheSettings
from stmtcache.core.types import EvictionCallback

DEFAULT_MAX_SIZE = 1000


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    size: int = 0
    evictions: int = 0
    total_queries: int = 0

    @property
    def hit_rate(self) -> float:
        if not self.total_queries:
            return 0.0
        return self.hits / self.total_queries


@runtime_checkable
class StatementCache(Protocol):
    """Contract between the driver and whatever caches its statements."""

    def get(self, sql: str) -> Optional[Any]:
        ...

    def set(self, sql: str, statement: Any) -> None:
        ...

    def delete(self, sql: str) -> None:
        ...

    def clear(self) -> None:
        ...

    def get_stats(self) -> Optional[CacheStats]:
        ...


class EnhancedStatementCache:
    """Bounded statement cache with hit/miss/eviction accounting."""

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        max_age: Optional[float] = None,
        on_eviction: Optional[EvictionCallback] = None,
    ) -> None:
        self._on_eviction = on_eviction
        self._stats = CacheStats()
        self._cache: QuickLRU[str, Any] = QuickLRU(
            max_size, max_age=max_age, on_eviction=self._handle_eviction
        )

    def _handle_eviction(self, sql: str, statement: Any) -> None:
        self._stats.evictions += 1
        if self._on_eviction is not None:
            self._on_eviction(sql, statement)

    def get(self, sql: str) -> Optional[Any]:
        self._stats.total_queries += 1
        statement = self._cache.get(sql)
        if statement is not None:
            self._stats.hits += 1
        else:
            self._stats.misses += 1
        return statement

    def set(self, sql: str, statement: Any) -> None:
        self._cache.set(sql, statement)
        self._stats.size = self._cache.size

    def delete(self, sql: str) -> None:
        self._cache.delete(sql)
        self._stats.size = self._cache.size

    def clear(self) -> None:
        self._cache.clear()
        self._stats.size = 0

    def resize(self, max_size: int) -> None:
        self._cache.resize(max_size)
        self._stats.size = self._cache.size

    def get_stats(self) -> CacheStats:
        return replace(self._stats)

    @property
    def cache(self) -> QuickLRU[str, Any]:
        return self._cache


class DictStatementCache:
    """Unbounded cache used when LRU caching is turned off."""

    def __init__(self) -> None:
        self._statements: Dict[str, Any] = {}

    def get(self, sql: str) -> Optional[Any]:
        return self._statements.get(sql)

    def set(self, sql: str, statement: Any) -> None:
        self._statements[sql] = statement

    def delete(self, sql: str) -> None:
        self._statements.pop(sql, None)

    def clear(self) -> None:
        self._statements.clear()

    def get_stats(self) -> Optional[CacheStats]:
        return None


StatementCacheOption = Union[bool, StatementCache, StatementCacheSettings, Mapping[str, Any]]


def create_statement_cache(option: StatementCacheOption) -> StatementCache:
    """
    Build a statement cache from the driver's ``cache_option``.

    ``True`` gives a bounded cache with the default size, ``False`` an unbounded
    dict, settings or a mapping with ``max_size`` a configured bounded cache.
    Anything else is assumed to already implement :class:`StatementCache`.
    """
    if option is True:
        return EnhancedStatementCache(max_size=DEFAULT_MAX_SIZE)
    if option is False:
        return DictStatementCache()
    if isinstance(option, StatementCacheSettings):
        if not option.enabled:
            return DictStatementCache()
        logger.debug(f"Statement cache configured: max_size={option.max_size}, max_age={option.max_age_seconds}")
        return EnhancedStatementCache(**option.as_options())
    if isinstance(option, Mapping) and "max_size" in option:
        return EnhancedStatementCache(**option)
    return option  # type: ignore[return-value]
