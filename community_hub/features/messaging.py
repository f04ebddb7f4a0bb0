"""
Direct messages within conversations.

Chats read oldest first and append new messages at the end. The realtime
stream is scoped to one conversation at a time.
"""
from typing import Any, Dict, List, Optional, Tuple

from community_hub.cache import CacheMeta
from config.settings import settings

from .base import CollectionFeature


class MessagingFeature(CollectionFeature):
    """Messages of the currently open conversation."""

    collection = "messages"
    order = "created_at.asc"
    insert_at_front = False

    def __init__(self, *args, user_id: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.user_id = user_id or settings.current_user_id
        self.conversation_id: Optional[str] = None

    async def load_messages(
        self,
        conversation_id: Any,
        force_refresh: bool = False,
    ) -> Tuple[List[Dict[str, Any]], CacheMeta]:
        """
        Load one conversation into the view.

        Args:
            conversation_id: Conversation to open
            force_refresh: Bypass the cache

        Returns:
            (messages oldest first, cache_meta)
        """
        self.conversation_id = str(conversation_id)
        return await self.list({"conversation_id": self.conversation_id}, force_refresh=force_refresh)

    async def send_message(self, conversation_id: Any, content: str) -> Dict[str, Any]:
        """
        Send a message; it is appended to the view before the remote confirms.

        Raises:
            ValueError: Empty message
            RemoteError: After the optimistic message has been removed again
        """
        content = (content or "").strip()
        if not content:
            raise ValueError("message content is empty")
        return await self.create({
            "conversation_id": str(conversation_id),
            "sender_id": self.user_id,
            "content": content,
            "is_read": False,
        })

    async def mark_read(self, message_id: Any) -> Dict[str, Any]:
        return await self.update(message_id, {"is_read": True})

    async def open_conversation(
        self,
        conversation_id: Any,
        force_refresh: bool = False,
    ) -> Tuple[List[Dict[str, Any]], CacheMeta]:
        """
        Load a conversation and follow it in realtime. Reopening the
        conversation already followed keeps its subscription.
        """
        messages, meta = await self.load_messages(conversation_id, force_refresh=force_refresh)
        filters = {"conversation_id": self.conversation_id}
        if not (self.realtime_active and self._realtime_filters == filters):
            await self.start_realtime(filters)
        return messages, meta
