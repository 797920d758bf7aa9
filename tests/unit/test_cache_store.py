"""Tests for trade_insight.cache.store."""

from __future__ import annotations

import json

import pytest

from trade_insight.cache.store import CacheEntry, CacheStore
from trade_insight.core.config import CacheConfig


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> CacheStore:
    return CacheStore(max_size_bytes=1_000_000, default_ttl=60, clock=clock)


def _entry_size(key: str, value, stored_at: float, ttl: float) -> int:
    entry = CacheEntry(key=key, data=value, stored_at=stored_at, ttl=ttl)
    return len(entry.model_dump_json().encode("utf-8"))


class TestGetSet:
    def test_round_trip(self, store: CacheStore):
        assert store.set("k", {"a": [1, 2, 3]})
        assert store.get("k") == {"a": [1, 2, 3]}

    def test_miss_returns_none(self, store: CacheStore):
        assert store.get("missing") is None

    def test_replace_keeps_one_entry(self, store: CacheStore):
        store.set("k", 1)
        store.set("k", 2)
        assert store.get("k") == 2
        assert len(store) == 1

    def test_unserializable_value_dropped(self, store: CacheStore):
        assert store.set("k", object()) is False
        assert store.get("k") is None
        assert len(store) == 0

    def test_contains(self, store: CacheStore):
        store.set("k", 1)
        assert "k" in store
        assert "other" not in store

    def test_corrupt_slot_treated_as_miss_and_removed(self, store: CacheStore):
        store.set("k", {"a": 1})
        store.set("other", 2)
        store._slots["k"].raw = "{not json"

        assert store.get("k") is None
        assert len(store) == 1
        assert "k" not in store
        assert store.get("other") == 2


class TestExpiry:
    def test_default_ttl(self, store: CacheStore, clock: FakeClock):
        store.set("k", 1)
        clock.advance(59)
        assert store.get("k") == 1
        clock.advance(2)
        assert store.get("k") is None

    def test_expired_entry_removed_on_read(self, store: CacheStore, clock: FakeClock):
        store.set("k", 1, ttl=10)
        clock.advance(11)
        store.get("k")
        assert len(store) == 0

    def test_is_expired(self, store: CacheStore, clock: FakeClock):
        store.set("k", 1, ttl=10)
        assert not store.is_expired("k")
        clock.advance(11)
        assert store.is_expired("k")
        assert store.is_expired("never-set")

    def test_sweep(self, store: CacheStore, clock: FakeClock):
        store.set("short", 1, ttl=5)
        store.set("long", 2, ttl=500)
        clock.advance(10)
        assert store.sweep_expired() == 1
        assert len(store) == 1

    def test_entry_expiry_boundary(self):
        entry = CacheEntry(key="k", data=1, stored_at=100.0, ttl=10)
        assert not entry.is_expired(110.0)
        assert entry.is_expired(110.5)


class TestSizeBudget:
    def test_oversized_entry_dropped(self, clock: FakeClock):
        store = CacheStore(max_size_bytes=100, clock=clock)
        assert store.set("big", "x" * 500) is False
        assert len(store) == 0

    def test_eviction_removes_oldest(self, clock: FakeClock):
        size = _entry_size("k0", "v" * 50, clock.now, 60)
        # Room for exactly four entries
        store = CacheStore(max_size_bytes=size * 4 + 3, default_ttl=60, clock=clock)
        for i in range(4):
            store.set(f"k{i}", "v" * 50)
            clock.advance(1)
        assert len(store) == 4

        assert store.set("k4", "v" * 50)
        assert "k0" not in store
        assert "k4" in store
        assert store.stats().evictions == 1

    def test_total_size_never_exceeds_budget(self, clock: FakeClock):
        store = CacheStore(max_size_bytes=2_000, default_ttl=60, clock=clock)
        for i in range(50):
            store.set(f"key-{i}", {"i": i, "pad": "p" * 40})
            clock.advance(1)
            assert store.stats().total_size_bytes <= 2_000

    def test_dropped_overwrite_keeps_previous_value(self, clock: FakeClock):
        size = _entry_size("k0", "v" * 50, clock.now, 60)
        store = CacheStore(max_size_bytes=size * 9 + 3, default_ttl=60, clock=clock)
        store.set("ka", "v" * 50)
        clock.advance(1)
        for i in range(8):
            store.set(f"k{i}", "v" * 50)
            clock.advance(1)

        # Fits the budget alone but not alongside what two evictions leave behind
        assert store.set("ka", "v" * (50 + size * 7)) is False
        assert store.get("ka") == "v" * 50

    def test_overwrite_reuses_space_of_replaced_entry(self, clock: FakeClock):
        size = _entry_size("k0", "v" * 50, clock.now, 60)
        store = CacheStore(max_size_bytes=size * 4 + 3, default_ttl=60, clock=clock)
        for i in range(4):
            store.set(f"k{i}", "v" * 50)
            clock.advance(1)

        assert store.set("k0", "w" * 50)
        assert store.get("k0") == "w" * 50
        assert len(store) == 4
        assert store.stats().evictions == 0


class TestInvalidate:
    def test_regex(self, store: CacheStore):
        store.set("world_bank:GET:a", 1)
        store.set("world_bank:GET:b", 2)
        store.set("un_comtrade:GET:a", 3)
        assert store.invalidate("^world_bank:") == 2
        assert len(store) == 1

    def test_invalid_regex_falls_back_to_substring(self, store: CacheStore):
        store.set("a(b", 1)
        store.set("other", 2)
        assert store.invalidate("a(b") == 1
        assert "other" in store

    def test_clear_resets_counters(self, store: CacheStore):
        store.set("k", 1)
        store.get("k")
        store.get("missing")
        store.clear()
        stats = store.stats()
        assert stats.entry_count == 0
        assert stats.hits == 0
        assert stats.misses == 0


class TestStats:
    def test_hit_rate(self, store: CacheStore):
        store.set("k", 1)
        store.get("k")
        store.get("k")
        store.get("k")
        store.get("missing")
        stats = store.stats()
        assert stats.hits == 3
        assert stats.misses == 1
        assert stats.hit_rate == 75.0
        assert stats.miss_rate == 25.0

    def test_empty_store(self, store: CacheStore):
        stats = store.stats()
        assert stats.hit_rate == 0.0
        assert stats.oldest is None
        assert stats.newest is None

    def test_oldest_and_newest(self, store: CacheStore, clock: FakeClock):
        store.set("a", 1)
        clock.advance(10)
        store.set("b", 2)
        stats = store.stats()
        assert (stats.newest - stats.oldest).total_seconds() == pytest.approx(10)


class TestExportImport:
    def test_round_trip_preserves_stored_at(self, store: CacheStore, clock: FakeClock):
        store.set("k", {"x": 1})
        exported = store.export_json()

        clock.advance(30)
        other = CacheStore(default_ttl=60, clock=clock)
        assert other.import_json(exported) == 1
        assert other.get("k") == {"x": 1}
        # Original stored_at kept, so the entry still expires on schedule
        clock.advance(31)
        assert other.get("k") is None

    def test_corrupt_entries_skipped(self, store: CacheStore, clock: FakeClock):
        good = CacheEntry(key="good", data=1, stored_at=clock.now, ttl=60).model_dump()
        text = json.dumps({"good": good, "bad": {"nope": True}, "wrong": good})
        assert store.import_json(text) == 1
        assert "good" in store
        assert "wrong" not in store

    def test_expired_entries_skipped(self, store: CacheStore, clock: FakeClock):
        old = CacheEntry(key="old", data=1, stored_at=clock.now - 100, ttl=60).model_dump()
        assert store.import_json(json.dumps({"old": old})) == 0

    def test_invalid_document(self, store: CacheStore):
        assert store.import_json("not json") == 0
        assert store.import_json("[1, 2]") == 0


class TestSnapshot:
    def test_save_and_reload(self, tmp_path, clock: FakeClock):
        path = tmp_path / "cache" / "snapshot.json"
        store = CacheStore(default_ttl=60, clock=clock, snapshot_path=path)
        store.set("k", [1, 2])
        assert store.save()
        assert path.exists()

        reloaded = CacheStore(default_ttl=60, clock=clock, snapshot_path=path)
        assert reloaded.get("k") == [1, 2]

    def test_save_without_path(self, store: CacheStore):
        assert store.save() is False

    def test_from_config(self, tmp_path):
        store = CacheStore.from_config(
            CacheConfig(default_ttl_seconds=5, snapshot_path=str(tmp_path / "s.json"))
        )
        store.set("k", 1)
        assert store.save()
