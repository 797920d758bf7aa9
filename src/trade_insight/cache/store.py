"""Size- and time-bounded key/value cache for provider payloads."""

from __future__ import annotations

import json
import logging
import math
import re
import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic_core import PydanticSerializationError

from trade_insight.core.config import CacheConfig

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_MAX_SIZE_BYTES = 50 * 1024 * 1024
EVICTION_FRACTION = 0.25


class CacheEntry(BaseModel):
    """A stored payload plus the bookkeeping needed to expire it."""

    model_config = ConfigDict(frozen=True)

    key: str
    data: Any
    stored_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl


class CacheStats(BaseModel):
    """Point-in-time cache metrics. Rates are percentages."""

    model_config = ConfigDict(frozen=True)

    entry_count: int
    total_size_bytes: int
    hit_rate: float
    miss_rate: float
    hits: int
    misses: int
    sets: int
    evictions: int
    invalidations: int
    oldest: datetime | None = None
    newest: datetime | None = None


class _Slot:
    """Serialized entry as stored, with its size and write time."""

    __slots__ = ("raw", "size", "stored_at")

    def __init__(self, raw: str, size: int, stored_at: float) -> None:
        self.raw = raw
        self.size = size
        self.stored_at = stored_at


class CacheStore:
    """In-process cache keyed by request identity.

    Entries are held in serialized form so the size budget reflects what a
    snapshot on disk would take. Writes that would exceed the budget evict the
    oldest quarter of entries first; a write that still does not fit is
    dropped. Every failure inside the store is a miss or a dropped write,
    never an exception to the caller.

    Usage:
        store = CacheStore(max_size_bytes=1_000_000)
        store.set("world_bank:GET:...", payload, ttl=3600)
        payload = store.get("world_bank:GET:...")
    """

    def __init__(
        self,
        max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        snapshot_path: str | Path | None = None,
    ) -> None:
        self._max_size = max_size_bytes
        self._default_ttl = default_ttl
        self._clock = clock
        self._snapshot_path = Path(snapshot_path) if snapshot_path else None
        self._lock = threading.RLock()
        self._slots: dict[str, _Slot] = {}
        self._total_size = 0
        self._reset_counters()

        if self._snapshot_path is not None and self._snapshot_path.exists():
            self._load_snapshot(self._snapshot_path)
        self.sweep_expired()

    @classmethod
    def from_config(cls, config: CacheConfig) -> CacheStore:
        """Build a store from a `CacheConfig` section."""
        return cls(
            max_size_bytes=config.max_size_bytes,
            default_ttl=config.default_ttl_seconds,
            snapshot_path=config.snapshot_path,
        )

    # --- Core operations ---

    def get(self, key: str) -> Any | None:
        """Return the cached payload, or None on miss or expiry."""
        with self._lock:
            slot = self._slots.get(key)
            if slot is None:
                self._misses += 1
                return None

            entry = self._decode(key, slot)
            if entry is None or entry.is_expired(self._clock()):
                self._remove(key)
                self._misses += 1
                return None

            self._hits += 1
            return entry.data

    def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """Store a payload. Returns False when the write was dropped."""
        entry_ttl = self._default_ttl if ttl is None else ttl
        now = self._clock()
        try:
            raw = CacheEntry(key=key, data=value, stored_at=now, ttl=entry_ttl).model_dump_json()
        except (PydanticSerializationError, ValueError, TypeError) as e:
            logger.warning("Cache write dropped for %s: unserializable value (%s)", key, e)
            return False

        size = len(raw.encode("utf-8"))
        if size > self._max_size:
            logger.warning(
                "Cache write dropped for %s: entry of %d bytes exceeds budget of %d",
                key, size, self._max_size,
            )
            return False

        with self._lock:
            # The slot being replaced stays readable until the new one commits.
            old = self._slots.get(key)
            reclaim = old.size if old is not None else 0

            # One batch eviction, then one more before giving up.
            for _ in range(2):
                if self._total_size - reclaim + size <= self._max_size:
                    break
                self._evict_oldest(keep=key)

            if self._total_size - reclaim + size > self._max_size:
                logger.warning("Cache write dropped for %s: budget still exceeded", key)
                return False

            self._remove(key)
            self._slots[key] = _Slot(raw, size, now)
            self._total_size += size
            self._sets += 1
            return True

    def invalidate(self, pattern: str) -> int:
        """Remove every key matching `pattern` and return how many were removed.

        `pattern` is a regular expression searched anywhere in the key. A
        pattern that does not compile is treated as a plain substring.
        """
        try:
            regex = re.compile(pattern)
            matches: Callable[[str], bool] = lambda k: regex.search(k) is not None
        except re.error:
            matches = lambda k: pattern in k

        with self._lock:
            doomed = [k for k in self._slots if matches(k)]
            for key in doomed:
                self._remove(key)
            self._invalidations += len(doomed)
        if doomed:
            logger.info("Invalidated %d cache entries matching %r", len(doomed), pattern)
        return len(doomed)

    def clear(self) -> None:
        """Drop every entry and reset counters."""
        with self._lock:
            self._slots.clear()
            self._total_size = 0
            self._reset_counters()

    def is_expired(self, key: str) -> bool:
        """True when `key` is absent, unreadable, or past its TTL."""
        with self._lock:
            slot = self._slots.get(key)
            if slot is None:
                return True
            entry = self._decode(key, slot)
            return entry is None or entry.is_expired(self._clock())

    def sweep_expired(self) -> int:
        """Remove expired and corrupt entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            doomed = []
            for key, slot in self._slots.items():
                entry = self._decode(key, slot)
                if entry is None or entry.is_expired(now):
                    doomed.append(key)
            for key in doomed:
                self._remove(key)
        if doomed:
            logger.debug("Swept %d expired cache entries", len(doomed))
        return len(doomed)

    def stats(self) -> CacheStats:
        with self._lock:
            lookups = self._hits + self._misses
            hit_rate = (self._hits / lookups * 100) if lookups else 0.0
            miss_rate = (self._misses / lookups * 100) if lookups else 0.0
            times = [s.stored_at for s in self._slots.values()]
            return CacheStats(
                entry_count=len(self._slots),
                total_size_bytes=self._total_size,
                hit_rate=round(hit_rate, 2),
                miss_rate=round(miss_rate, 2),
                hits=self._hits,
                misses=self._misses,
                sets=self._sets,
                evictions=self._evictions,
                invalidations=self._invalidations,
                oldest=_to_datetime(min(times)) if times else None,
                newest=_to_datetime(max(times)) if times else None,
            )

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, key: str) -> bool:
        return not self.is_expired(key)

    # --- Export / import ---

    def export_json(self) -> str:
        """Serialize all live entries as a JSON object keyed by cache key."""
        with self._lock:
            payload = {key: json.loads(slot.raw) for key, slot in self._slots.items()}
        return json.dumps(payload)

    def import_json(self, text: str) -> int:
        """Load entries produced by `export_json`. Returns the number accepted.

        Malformed and expired entries are skipped; a document that is not a
        JSON object imports nothing.
        """
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("Cache import skipped: invalid JSON (%s)", e)
            return 0
        if not isinstance(payload, dict):
            logger.warning("Cache import skipped: expected an object, got %s", type(payload).__name__)
            return 0

        now = self._clock()
        accepted = 0
        with self._lock:
            for key, raw_entry in payload.items():
                try:
                    entry = CacheEntry.model_validate(raw_entry)
                except ValidationError:
                    logger.warning("Cache import skipped corrupt entry %s", key)
                    continue
                if entry.key != key or entry.is_expired(now):
                    continue
                raw = entry.model_dump_json()
                size = len(raw.encode("utf-8"))
                if self._total_size + size > self._max_size:
                    logger.warning("Cache import stopped: size budget reached")
                    break
                if key in self._slots:
                    self._remove(key)
                self._slots[key] = _Slot(raw, size, entry.stored_at)
                self._total_size += size
                accepted += 1
        return accepted

    def save(self) -> bool:
        """Write the snapshot file, if one is configured."""
        if self._snapshot_path is None:
            return False
        self.sweep_expired()
        self._snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._snapshot_path.with_suffix(self._snapshot_path.suffix + ".tmp")
        tmp.write_text(self.export_json(), encoding="utf-8")
        tmp.replace(self._snapshot_path)
        logger.info("Saved %d cache entries to %s", len(self._slots), self._snapshot_path)
        return True

    # --- Internal ---

    def _load_snapshot(self, path: Path) -> None:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("Cache snapshot %s unreadable: %s", path, e)
            return
        count = self.import_json(text)
        logger.info("Loaded %d cache entries from %s", count, path)

    def _decode(self, key: str, slot: _Slot) -> CacheEntry | None:
        try:
            return CacheEntry.model_validate_json(slot.raw)
        except ValidationError:
            logger.warning("Discarding corrupt cache entry %s", key)
            return None

    def _evict_oldest(self, keep: str | None = None) -> None:
        candidates = [k for k in self._slots if k != keep]
        if not candidates:
            return
        count = math.ceil(len(candidates) * EVICTION_FRACTION)
        oldest = sorted(candidates, key=lambda k: self._slots[k].stored_at)[:count]
        for key in oldest:
            self._remove(key)
        self._evictions += len(oldest)
        logger.info("Evicted %d oldest cache entries", len(oldest))

    def _remove(self, key: str) -> None:
        slot = self._slots.pop(key, None)
        if slot is not None:
            self._total_size -= slot.size

    def _reset_counters(self) -> None:
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._evictions = 0
        self._invalidations = 0


def _to_datetime(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)
