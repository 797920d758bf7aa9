"""Response cache for provider payloads."""

from trade_insight.cache.store import CacheEntry, CacheStats, CacheStore

__all__ = ["CacheEntry", "CacheStats", "CacheStore"]
