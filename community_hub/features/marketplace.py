"""
Marketplace listings.
"""
from typing import Any, Dict, List, Optional, Tuple

from community_hub.cache import CacheMeta
from config.settings import settings

from .base import CollectionFeature

LISTING_STATUS_ACTIVE = "active"
LISTING_STATUS_SOLD = "sold"


class MarketplaceFeature(CollectionFeature):
    """Buy/sell listings with favorites."""

    collection = "marketplace_listings"
    order = "created_at.desc"
    insert_at_front = True

    def __init__(self, *args, user_id: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.user_id = user_id or settings.current_user_id

    async def get_listings(
        self,
        filters: Optional[Dict[str, Any]] = None,
        force_refresh: bool = False,
    ) -> Tuple[List[Dict[str, Any]], CacheMeta]:
        """
        Get listings, e.g. filtered by category, condition or status.

        Args:
            filters: Equality filters; None values are ignored
            force_refresh: Bypass the cache

        Returns:
            (listings, cache_meta)
        """
        return await self.list(filters, force_refresh=force_refresh)

    async def get_listing(
        self,
        listing_id: Any,
        force_refresh: bool = False,
    ) -> Tuple[Dict[str, Any], CacheMeta]:
        return await self.get(listing_id, force_refresh=force_refresh)

    async def create_listing(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a listing owned by the current user.

        The listing shows up in the view immediately with a temp id and
        gets its real id once the remote confirms.
        """
        payload = {
            "status": LISTING_STATUS_ACTIVE,
            "favorite_count": 0,
            "is_favorited": False,
            **data,
            "seller_id": self.user_id,
        }
        listing = await self.create(payload)
        self._log.info(f"Created listing {listing['id']}")
        return listing

    async def update_listing(self, listing_id: Any, patch: Dict[str, Any]) -> Dict[str, Any]:
        return await self.update(listing_id, patch)

    async def mark_sold(self, listing_id: Any) -> Dict[str, Any]:
        return await self.update(listing_id, {"status": LISTING_STATUS_SOLD})

    async def toggle_favorite(self, listing_id: Any) -> Dict[str, Any]:
        """Flip is_favorited and move favorite_count with it."""
        return await self.toggle(listing_id, "is_favorited", counter_field="favorite_count")

    async def delete_listing(self, listing_id: Any) -> None:
        await self.delete(listing_id)
        self._log.info(f"Deleted listing {listing_id}")
