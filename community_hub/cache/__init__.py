"""
Client-resident caching: namespaced TTL store, key policy, request
coalescing and stale-while-revalidate reads.
"""
from .core import CacheEntry, CacheMeta, CacheSource
from .medium import KeyValueMedium, MemoryMedium, SQLiteMedium
from .store import TTLCacheStore, matches_prefix
from .keys import key_for, list_prefix, item_prefix, serialize_filter
from .ttl_policies import TTL_CONFIG, get_ttl_for_collection
from .coalescer import RequestCoalescer
from .refresher import StaleWhileRevalidateRefresher

__all__ = [
    # Core types
    "CacheEntry",
    "CacheMeta",
    "CacheSource",
    # Media
    "KeyValueMedium",
    "MemoryMedium",
    "SQLiteMedium",
    # Store
    "TTLCacheStore",
    "matches_prefix",
    # Keys
    "key_for",
    "list_prefix",
    "item_prefix",
    "serialize_filter",
    # TTL policies
    "TTL_CONFIG",
    "get_ttl_for_collection",
    # Coalescing
    "RequestCoalescer",
    # Refresher
    "StaleWhileRevalidateRefresher",
]
