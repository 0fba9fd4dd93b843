"""
Generational cache with approximate LRU eviction and lazy TTL expiry.

Two insertion-ordered dicts ("active" and "previous") stand in for a
linked list: new and promoted keys go to active, and once active holds
max_size keys it becomes previous while the old previous is discarded.
A hit in previous moves the entry back into active.
"""
import math
from dataclasses import dataclass
from time import monotonic
from typing import Any, Dict, Generic, ItemsView, Iterator, KeysView, MutableMapping, Optional, Tuple, TypeVar, ValuesView

from loguru import logger

from stmtcache.core.errors import ConfigurationError
from stmtcache.core.types import MISSING, EvictionCallback

K = TypeVar("K")
V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    expires_at: Optional[float] = None  # monotonic(); None never expires

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now


def _validate_max_size(max_size: Any) -> int:
    if isinstance(max_size, bool) or not isinstance(max_size, int) or max_size <= 0:
        raise ConfigurationError(f"`max_size` must be an integer greater than 0, got {max_size!r}")
    return max_size


def _validate_max_age(max_age: Any) -> Optional[float]:
    if max_age is None or max_age == math.inf:
        return None
    if isinstance(max_age, bool) or not isinstance(max_age, (int, float)) or not max_age > 0:
        raise ConfigurationError(f"`max_age` must be a number of seconds greater than 0, got {max_age!r}")
    return float(max_age)


class GenerationalCache(Generic[K, V]):
    """
    Bounded cache that rotates two generations instead of reordering on access.

    Not thread-safe: callers sharing an instance must serialize access themselves.
    ``on_eviction`` is called after the cache has already dropped the entry and
    must not raise; an exception propagates out of whichever call triggered it.
    """

    def __init__(
        self,
        max_size: int,
        max_age: Optional[float] = None,
        on_eviction: Optional[EvictionCallback] = None,
    ) -> None:
        self._max_size = _validate_max_size(max_size)
        self._max_age = _validate_max_age(max_age)
        self._on_eviction = on_eviction
        self._active: Dict[K, CacheEntry[V]] = {}
        self._previous: Dict[K, CacheEntry[V]] = {}
        self._active_count = 0

    def _notify(self, key: K, value: V) -> None:
        if self._on_eviction is not None:
            self._on_eviction(key, value)

    def _evict_if_expired(self, key: K, entry: CacheEntry[V]) -> bool:
        if not entry.is_expired(monotonic()):
            return False
        self.delete(key)
        self._notify(key, entry.value)
        return True

    def _holds(self, key: K) -> bool:
        # Raw membership, no expiry side effects
        return key in self._active or key in self._previous

    def _insert(self, key: K, entry: CacheEntry[V]) -> None:
        self._active[key] = entry
        self._active_count += 1
        if self._active_count >= self._max_size:
            self._rotate()

    def _rotate(self) -> None:
        retired = self._previous
        self._previous = self._active
        self._active = {}
        self._active_count = 0
        logger.debug(f"Cache rotation: {len(self._previous)} entries aged, {len(retired)} evicted")
        for key, entry in retired.items():
            self._notify(key, entry.value)

    def get(self, key: K, default: Any = None) -> Any:
        entry = self._active.get(key)
        if entry is not None:
            if self._evict_if_expired(key, entry):
                return default
            return entry.value

        entry = self._previous.get(key)
        if entry is not None:
            if self._evict_if_expired(key, entry):
                return default
            # Promote
            del self._previous[key]
            self._insert(key, entry)
            return entry.value

        return default

    def set(self, key: K, value: V, max_age: Optional[float] = None) -> "GenerationalCache[K, V]":
        """
        Store ``value`` under ``key``.

        ``max_age`` overrides the default TTL for this entry; ``math.inf``
        disables expiry. A non-positive ``max_age`` stores an entry that is
        already expired the next time it is visited.
        """
        if max_age is None:
            max_age = self._max_age
        expires_at = None if max_age is None or max_age == math.inf else monotonic() + max_age
        entry = CacheEntry(value=value, expires_at=expires_at)

        if key in self._active:
            self._active[key] = entry
        else:
            self._insert(key, entry)
        return self

    def has(self, key: K) -> bool:
        entry = self._active.get(key)
        if entry is None:
            entry = self._previous.get(key)
        if entry is None:
            return False
        return not self._evict_if_expired(key, entry)

    def peek(self, key: K, default: Any = None) -> Any:
        entry = self._active.get(key)
        if entry is None:
            entry = self._previous.get(key)
        if entry is None or self._evict_if_expired(key, entry):
            return default
        return entry.value

    def delete(self, key: K) -> bool:
        in_active = self._active.pop(key, MISSING) is not MISSING
        if in_active:
            self._active_count -= 1
        in_previous = self._previous.pop(key, MISSING) is not MISSING
        return in_active or in_previous

    def clear(self) -> None:
        self._active.clear()
        self._previous.clear()
        self._active_count = 0

    def resize(self, max_size: int) -> None:
        """
        Change the capacity, evicting the oldest live entries that no longer fit.

        Survivors keep their relative order. If everything fits it all lands in
        the active generation, otherwise the survivors become the previous one.
        """
        max_size = _validate_max_size(max_size)
        items = list(self._walk_ascending())
        overflow = len(items) - max_size

        evicted = items[:overflow] if overflow > 0 else []
        if overflow <= 0:
            self._active = dict(items)
            self._previous = {}
            self._active_count = len(items)
        else:
            self._previous = dict(items[overflow:])
            self._active = {}
            self._active_count = 0
        old_max_size, self._max_size = self._max_size, max_size

        logger.debug(f"Cache resized {old_max_size} -> {max_size}, evicting {len(evicted)} entries")
        for key, entry in evicted:
            self._notify(key, entry.value)

    def _walk_ascending(self) -> Iterator[Tuple[K, CacheEntry[V]]]:
        # Walk snapshots; lazy expiry deletes from the live dicts while we go
        for key, entry in list(self._previous.items()):
            if key in self._active or self._previous.get(key) is not entry:
                continue
            if not self._evict_if_expired(key, entry):
                yield key, entry

        for key, entry in list(self._active.items()):
            if self._active.get(key) is not entry:
                continue
            if not self._evict_if_expired(key, entry):
                yield key, entry

    def entries_ascending(self) -> Iterator[Tuple[K, V]]:
        """Yield live ``(key, value)`` pairs from least to most recently used."""
        for key, entry in self._walk_ascending():
            yield key, entry.value

    def entries_descending(self) -> Iterator[Tuple[K, V]]:
        """Yield live ``(key, value)`` pairs from most to least recently used."""
        for key, entry in list(reversed(self._active.items())):
            if self._active.get(key) is not entry:
                continue
            if not self._evict_if_expired(key, entry):
                yield key, entry.value

        for key, entry in list(reversed(self._previous.items())):
            if key in self._active or self._previous.get(key) is not entry:
                continue
            if not self._evict_if_expired(key, entry):
                yield key, entry.value

    @property
    def size(self) -> int:
        if not self._active_count:
            return min(len(self._previous), self._max_size)
        # Shadowed keys live in both generations but count once
        unshadowed = sum(1 for key in self._previous if key not in self._active)
        return min(self._active_count + unshadowed, self._max_size)

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def max_age(self) -> Optional[float]:
        return self._max_age

    def __len__(self) -> int:
        return self.size

    def __contains__(self, key: object) -> bool:
        return self.has(key)  # type: ignore[arg-type]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(max_size={self._max_size}, size={self.size})"


class QuickLRU(MutableMapping[K, V]):
    """
    Dict-like wrapper around :class:`GenerationalCache`.

    The engine iterates by recency; ``keys()``, ``values()``, ``items()`` and
    plain iteration instead follow insertion order, served from a mirror dict
    that every ``set``/``delete``/``clear`` updates alongside the engine.
    Keys the engine evicts are dropped from the mirror too. Entries that have
    expired but were not visited yet still show up in the mirror.
    """

    def __init__(
        self,
        max_size: int,
        max_age: Optional[float] = None,
        on_eviction: Optional[EvictionCallback] = None,
    ) -> None:
        self._on_eviction = on_eviction
        self._map: Dict[K, V] = {}
        self._base: GenerationalCache[K, V] = GenerationalCache(
            max_size, max_age=max_age, on_eviction=self._handle_eviction
        )

    def _handle_eviction(self, key: K, value: V) -> None:
        # A rotation can retire a stale copy of a key that is still live
        if not self._base._holds(key):
            self._map.pop(key, None)
        if self._on_eviction is not None:
            self._on_eviction(key, value)

    def _prune_mirror(self) -> None:
        # A raising callback stops a rotation or resize from notifying the rest
        for key in [key for key in self._map if not self._base._holds(key)]:
            del self._map[key]

    def get(self, key: K, default: Any = None) -> Any:
        try:
            return self._base.get(key, default)
        except Exception:
            self._prune_mirror()
            raise

    def set(self, key: K, value: V, max_age: Optional[float] = None) -> "QuickLRU[K, V]":
        self._map[key] = value
        try:
            self._base.set(key, value, max_age=max_age)
        except Exception:
            self._prune_mirror()
            raise
        return self

    def has(self, key: K) -> bool:
        return self._base.has(key)

    def peek(self, key: K, default: Any = None) -> Any:
        return self._base.peek(key, default)

    def delete(self, key: K) -> bool:
        self._map.pop(key, None)
        return self._base.delete(key)

    def clear(self) -> None:
        self._base.clear()
        self._map.clear()

    def resize(self, max_size: int) -> None:
        try:
            self._base.resize(max_size)
        except Exception:
            self._prune_mirror()
            raise

    def entries_ascending(self) -> Iterator[Tuple[K, V]]:
        return self._base.entries_ascending()

    def entries_descending(self) -> Iterator[Tuple[K, V]]:
        return self._base.entries_descending()

    @property
    def size(self) -> int:
        return self._base.size

    @property
    def max_size(self) -> int:
        return self._base.max_size

    def __getitem__(self, key: K) -> V:
        value = self.get(key, MISSING)
        if value is MISSING:
            raise KeyError(key)
        return value

    def __setitem__(self, key: K, value: V) -> None:
        self.set(key, value)

    def __delitem__(self, key: K) -> None:
        if not self.delete(key):
            raise KeyError(key)

    def __contains__(self, key: object) -> bool:
        return self._base.has(key)  # type: ignore[arg-type]

    def __iter__(self) -> Iterator[K]:
        return iter(self._map)

    def __len__(self) -> int:
        return self._base.size

    def keys(self) -> KeysView[K]:
        return self._map.keys()

    def values(self) -> ValuesView[V]:
        return self._map.values()

    def items(self) -> ItemsView[K, V]:
        return self._map.items()

    def __repr__(self) -> str:
        return f"QuickLRU(max_size={self.max_size}, size={self.size})"
