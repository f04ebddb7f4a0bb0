"""
TTL configuration per collection.
"""
from typing import Any, Dict, Optional, Tuple

from config.settings import settings


# TTL configuration by collection (in seconds)
TTL_CONFIG: Dict[str, Dict[str, Any]] = {
    "marketplace_listings": {
        "ttl": 300,               # 5 minutes
        "allow_swr": True,        # Background refresh near expiry
    },
    "businesses": {
        "ttl": 300,
        "allow_swr": True,
    },
    "business_details": {
        "ttl": 300,
        "allow_swr": True,
    },
    "user_status": {
        "ttl": 600,               # 10 minutes
        "allow_swr": True,
    },
    "jobs": {
        "ttl": 300,
        "allow_swr": True,
    },
    "events": {
        "ttl": 300,
        "allow_swr": True,
    },
    "posts": {
        "ttl": 300,
        "refresh_window": 0.3,    # Feed goes stale quickly, refresh earlier
        "allow_swr": True,
    },
    "messages": {
        "ttl": 120,               # 2 minutes
        "allow_swr": False,       # Realtime stream keeps chats current
    },
}


def get_ttl_for_collection(
    collection: str,
    overrides: Optional[Dict[str, Any]] = None,
) -> Tuple[float, float, bool]:
    """
    Get TTL configuration for a collection.

    Args:
        collection: Collection name, e.g. "marketplace_listings"
        overrides: Optional per-call values for "ttl", "refresh_window", "allow_swr"

    Returns:
        (ttl_seconds, refresh_window, allow_swr)
    """
    config = dict(TTL_CONFIG.get(collection, {}))
    config.update(overrides or {})

    return (
        config.get("ttl", settings.cache_default_ttl_seconds),
        config.get("refresh_window", settings.cache_refresh_window),
        config.get("allow_swr", True),
    )
