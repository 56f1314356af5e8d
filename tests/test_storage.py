# tests/test_storage.py
from __future__ import annotations

import pytest
from hypothesis import assume, given, strategies as st

from astro_edge.client.storage import (
    LAST_CACHE_CLEAN_KEY,
    PersistentCache,
    SettingsStore,
    format_size,
    object_key,
)
from astro_edge.core.schema import CanonicalObject, IndexEntry


@pytest.fixture
def settings_store():
    s = SettingsStore()
    yield s
    s.close()


@pytest.fixture
def pcache(settings_store):
    c = PersistentCache(settings=settings_store)
    yield c
    c.close()


def _obj(i: int) -> CanonicalObject:
    return CanonicalObject(id=f"obj{i}", title=f"Object {i}", description="", image_url="")


# ─────────────────────────────────────────────────────────────────────────────
# Eviction
# ─────────────────────────────────────────────────────────────────────────────

def test_bound_holds_and_newest_survive(pcache, settings_store) -> None:
    for i in range(501):
        pcache.put(f"k{i}", str(i))
    # 501 > 500: drop 501 - 500 + 50 = 51 oldest
    assert len(pcache) == 450
    keys = pcache.keys()
    assert keys[0] == "k51" and keys[-1] == "k500"
    assert "k50" not in pcache
    assert settings_store.get(LAST_CACHE_CLEAN_KEY) is not None


def test_never_exceeds_bound(pcache) -> None:
    for i in range(1200):
        pcache.put(f"k{i}", "x")
        assert len(pcache) <= 500
    assert "k1199" in pcache


def test_overwrite_counts_as_fresh_insert() -> None:
    c = PersistentCache(max_items=3, buffer=1)
    try:
        for k in ("a", "b", "c"):
            c.put(k, k)
        c.put("a", "a2")                 # a becomes newest
        c.put("d", "d")                  # 4 > 3: drop 4 - 3 + 1 = 2 oldest -> b, c
        assert c.keys() == ["a", "d"]
        assert c.get("a") == "a2"
    finally:
        c.close()


def test_invalid_bounds() -> None:
    with pytest.raises(ValueError):
        PersistentCache(max_items=10, buffer=10)


def test_survives_reopen(tmp_path) -> None:
    path = str(tmp_path / "nested" / "cache.sqlite3")
    c = PersistentCache(path)
    c.put_object(_obj(1))
    c.close()
    c = PersistentCache(path)
    try:
        assert c.get_object("obj1") == _obj(1)
    finally:
        c.close()


# ─────────────────────────────────────────────────────────────────────────────
# Typed helpers
# ─────────────────────────────────────────────────────────────────────────────

def test_corrupt_object_is_dropped(pcache) -> None:
    pcache.put(object_key("bad"), "{oops")
    assert pcache.get_object("bad") is None
    assert object_key("bad") not in pcache


def test_index_round_trip(pcache) -> None:
    entries = [IndexEntry("mars", "Mars", "planet"), IndexEntry("m31", "Andromeda", "galaxy", "objects/m31.json")]
    pcache.put_index(entries)
    assert pcache.get_index() == entries
    assert pcache.library_version() == "v1.0 (2 objects)"


# ─────────────────────────────────────────────────────────────────────────────
# Stats & settings
# ─────────────────────────────────────────────────────────────────────────────

def test_stats(pcache) -> None:
    assert pcache.stats()["lastClean"] is None
    pcache.put_object(_obj(1))
    st = pcache.stats()
    assert st["cacheItemCount"] == 1
    assert st["cacheSizeBytes"] == 2 * len(_obj(1).to_json())
    assert st["maxItems"] == 500
    assert st["libraryVersion"] == "Local Cache: 1 items"
    pcache.clear()
    assert len(pcache) == 0


@pytest.mark.parametrize("n, text", [(0, "0 B"), (1023, "1023 B"), (1536, "1.5 KB"), (3 * 1024 * 1024, "3.0 MB")])
def test_format_size(n, text) -> None:
    assert format_size(n) == text


def test_dark_mode_default_and_persisted(tmp_path) -> None:
    path = str(tmp_path / "settings.sqlite3")
    s = SettingsStore(path)
    assert s.dark_mode is True
    s.dark_mode = False
    s.close()
    s = SettingsStore(path)
    try:
        assert s.dark_mode is False
        assert s.get("missing", 7) == 7
    finally:
        s.close()


@given(st.integers(min_value=1, max_value=40), st.integers(min_value=0, max_value=39),
       st.integers(min_value=0, max_value=120))
def test_eviction_property(max_items, buffer, inserts) -> None:
    assume(buffer < max_items)
    c = PersistentCache(max_items=max_items, buffer=buffer)
    try:
        for i in range(inserts):
            c.put(f"k{i}", "v")
            assert len(c) <= max_items
        if inserts:
            # whatever survived is a suffix of the insertion order
            keys = c.keys()
            assert keys == [f"k{i}" for i in range(inserts - len(keys), inserts)]
    finally:
        c.close()
