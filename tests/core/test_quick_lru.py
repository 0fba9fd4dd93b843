from collections.abc import MutableMapping

import pytest

import stmtcache.core.cache as cache_mod
from stmtcache.core.cache import QuickLRU
from stmtcache.core.errors import ConfigurationError


def test_is_a_mutable_mapping():
    lru = QuickLRU(3)
    assert isinstance(lru, MutableMapping)


def test_invalid_config_is_rejected():
    with pytest.raises(ConfigurationError):
        QuickLRU(0)
    with pytest.raises(ConfigurationError):
        QuickLRU(10, max_age=0)


def test_iteration_follows_insertion_not_recency():
    lru = QuickLRU(3)
    lru["a"] = 1
    lru["b"] = 2
    lru["c"] = 3

    assert lru["a"] == 1

    assert list(lru) == ["a", "b", "c"]
    assert list(lru.keys()) == ["a", "b", "c"]
    assert list(lru.values()) == [1, 2, 3]
    assert list(lru.items()) == [("a", 1), ("b", 2), ("c", 3)]
    assert [k for k, _ in lru.entries_ascending()] == ["b", "c", "a"]
    assert [k for k, _ in lru.entries_descending()] == ["a", "c", "b"]


def test_getitem_and_delitem_raise_key_error():
    lru = QuickLRU(3)

    with pytest.raises(KeyError):
        lru["missing"]
    with pytest.raises(KeyError):
        del lru["missing"]


def test_delete_updates_engine_and_mirror():
    lru = QuickLRU(5)
    lru.set("a", 1).set("b", 2)

    del lru["a"]

    assert "a" not in lru
    assert list(lru.keys()) == ["b"]
    assert lru.delete("b") is True
    assert lru.delete("b") is False
    assert list(lru) == []


def test_clear_empties_both_views():
    lru = QuickLRU(5)
    lru.update({"a": 1, "b": 2})

    lru.clear()

    assert len(lru) == 0
    assert list(lru.items()) == []
    assert lru.get("a") is None


def test_evicted_keys_leave_the_mirror():
    evicted = []
    lru = QuickLRU(2, on_eviction=lambda k, v: evicted.append((k, v)))
    lru["a"] = 1
    lru["b"] = 2
    assert lru.get("a") == 1
    lru["c"] = 3

    assert evicted == [("b", 2)]
    assert list(lru.keys()) == ["a", "c"]


def test_stale_shadowed_copy_eviction_keeps_live_key():
    evicted = []
    lru = QuickLRU(2, on_eviction=lambda k, v: evicted.append((k, v)))
    lru["a"] = 1
    lru["b"] = 2
    lru["a"] = 10
    lru["c"] = 3

    assert evicted == [("a", 1), ("b", 2)]
    assert lru["a"] == 10
    assert dict(lru.items()) == {"a": 10, "c": 3}


def test_resize_passes_through_and_prunes_mirror():
    lru = QuickLRU(5)
    for i in range(1, 6):
        lru[f"k{i}"] = i

    lru.resize(2)

    assert lru.max_size == 2
    assert list(lru.keys()) == ["k4", "k5"]
    assert lru.peek("k1") is None
    assert lru.get("k5") == 5


def test_expired_entries_leave_the_mirror_when_visited(monkeypatch):
    t = {"now": 0.0}
    monkeypatch.setattr(cache_mod, "monotonic", lambda: t["now"])

    lru = QuickLRU(10, max_age=5)
    lru["a"] = 1
    lru.set("b", 2, max_age=100)

    t["now"] = 6
    assert list(lru.keys()) == ["a", "b"]
    assert lru.has("a") is False
    assert list(lru.keys()) == ["b"]
    assert lru.size == 1


def test_pass_through_accessors():
    lru = QuickLRU(4)
    lru["a"] = 1

    assert lru.has("a")
    assert lru.peek("a") == 1
    assert lru.get("z", "default") == "default"
    assert lru.size == len(lru) == 1
    assert lru.max_size == 4
    assert "QuickLRU" in repr(lru)


def _failing_callback(key, value):
    raise RuntimeError(f"cannot release {key}")


def test_mirror_follows_engine_when_callback_raises_on_rotation():
    lru = QuickLRU(2, on_eviction=_failing_callback)
    lru["a"] = 1
    lru["b"] = 2
    lru["c"] = 3

    with pytest.raises(RuntimeError):
        lru["d"] = 4

    assert lru.has("d")
    assert list(lru.keys()) == ["c", "d"]
    assert dict(lru.items()) == {"c": 3, "d": 4}


def test_mirror_follows_engine_when_callback_raises_on_resize():
    lru = QuickLRU(5, on_eviction=_failing_callback)
    for i in range(1, 6):
        lru[f"k{i}"] = i

    with pytest.raises(RuntimeError):
        lru.resize(2)

    assert lru.max_size == 2
    assert list(lru.keys()) == ["k4", "k5"]
