"""
Community feed posts.
"""
from typing import Any, Dict, List, Optional, Tuple

from community_hub.cache import CacheMeta
from config.settings import settings

from .base import CollectionFeature


class FeedFeature(CollectionFeature):
    """Posts, newest first, with likes."""

    collection = "posts"
    order = "created_at.desc"
    insert_at_front = True

    def __init__(self, *args, user_id: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.user_id = user_id or settings.current_user_id

    async def get_posts(
        self,
        filters: Optional[Dict[str, Any]] = None,
        force_refresh: bool = False,
    ) -> Tuple[List[Dict[str, Any]], CacheMeta]:
        return await self.list(filters, force_refresh=force_refresh)

    async def create_post(self, content: str, image_url: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "author_id": self.user_id,
            "content": content,
            "likes_count": 0,
            "has_liked": False,
        }
        if image_url:
            payload["image_url"] = image_url
        return await self.create(payload)

    async def toggle_like(self, post_id: Any) -> Dict[str, Any]:
        return await self.toggle(post_id, "has_liked", counter_field="likes_count")

    async def delete_post(self, post_id: Any) -> None:
        await self.delete(post_id)
