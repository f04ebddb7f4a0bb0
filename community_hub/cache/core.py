"""
Core cache data structures.
"""
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from enum import Enum


class CacheSource(Enum):
    """Where the data returned by a read came from."""
    FRESH = "fresh"                # Valid entry, not near expiry
    REVALIDATING = "revalidating"  # Valid entry near expiry, background refresh started
    UPSTREAM = "upstream"          # Fetched from the remote source
    STALE = "stale"                # Remote failed, served a previous answer


@dataclass
class CacheEntry:
    """
    A cached value with the time it was stored and how long it stays valid.

    All times are epoch seconds supplied by the store's clock, so entries
    can be evaluated against a fake clock in tests.
    """
    data: Any
    stored_at: float
    ttl: float

    def age_seconds(self, now: float) -> float:
        """Seconds since the entry was stored."""
        return now - self.stored_at

    def is_valid(self, now: float) -> bool:
        """An entry is valid while its age does not exceed its TTL."""
        return self.age_seconds(now) <= self.ttl

    def is_near_expiry(self, now: float, window: float) -> bool:
        """
        Check if a valid entry is within the last `window` fraction of its TTL.

        Args:
            now: Current epoch seconds
            window: Fraction of the TTL (0.0 disables, 1.0 is always near)
        """
        if window <= 0 or not self.is_valid(now):
            return False
        return self.ttl - self.age_seconds(now) <= self.ttl * window

    def to_json(self) -> str:
        """Serialize for the key/value medium."""
        return json.dumps({"data": self.data, "storedAt": self.stored_at, "ttl": self.ttl})

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        item = json.loads(raw)
        return cls(data=item["data"], stored_at=float(item["storedAt"]), ttl=float(item["ttl"]))


@dataclass
class CacheMeta:
    """
    Metadata about a cache access, included in API responses.
    """
    last_updated: str  # ISO timestamp
    cache_source: str  # "fresh", "revalidating", "upstream" or "stale"
    collection: Optional[str] = None
    ttl_seconds: Optional[float] = None
    age_seconds: Optional[float] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        result = {
            "lastUpdated": self.last_updated,
            "cacheSource": self.cache_source,
        }
        if self.collection:
            result["_debug"] = {
                "collection": self.collection,
                "ttl": self.ttl_seconds,
                "age": round(self.age_seconds, 1) if self.age_seconds else None,
            }
        return result


def iso_timestamp(epoch: float) -> str:
    """Format epoch seconds as an ISO-8601 UTC timestamp."""
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat().replace("+00:00", "Z")
