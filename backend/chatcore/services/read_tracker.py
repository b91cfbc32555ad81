import logging
from typing import Any, Dict, List

from chatcore.cache.read_through import best_effort
from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.repositories.message_repository import MessageRepository
from chatcore.schemas.events import MESSAGES_READ, MessagesReadEvent
from chatcore.utils.broadcaster import Broadcaster
from chatcore.utils.time import utc_now

logger = logging.getLogger(__name__)


class ReadTracker:
    """Moves a (conversation, user) pair from unread to read.

    The store is updated first, then the cache, then the conversation flag,
    and only then are other sessions told.
    """

    def __init__(self, message_repo: MessageRepository, conversation_repo: ConversationRepository, cache, broadcaster: Broadcaster) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._cache = cache
        self._broadcaster = broadcaster

    async def mark_all_read(self, conversation: Dict[str, Any], user_id: str) -> List[str]:
        """Mark every message from others as read. Returns the ids that changed."""
        conversation_oid = conversation["_id"]
        conversation_id = str(conversation_oid)
        now = utc_now()

        unread = await self._message_repo.unread_ids(conversation_oid, user_id)
        modified = await self._message_repo.mark_read_many(unread, now)

        await best_effort("track_last_read", self._cache.track_last_read(conversation_id, user_id, now))
        await best_effort("reset_unread_count", self._cache.reset_unread_count(conversation_id, user_id))

        # a message sent while this ran may have had its increment wiped by the reset
        remaining = await self._message_repo.count_unread(conversation_oid, user_id)
        if remaining:
            await best_effort("add_unread_count", self._cache.add_unread_count(conversation_id, user_id, remaining))
        else:
            await self._conversation_repo.mark_read(conversation_oid, user_id)

        if not modified:
            return []
        await best_effort("invalidate_recent", self._cache.invalidate_recent(conversation_id))
        message_ids = [str(message_id) for message_id in unread]
        await self._publish_read(conversation_id, message_ids, user_id)
        return message_ids

    async def mark_message_read(self, conversation: Dict[str, Any], message: Dict[str, Any], user_id: str) -> Dict[str, Any]:
        """Acknowledge a single message. Already-read messages come back unchanged."""
        conversation_oid = conversation["_id"]
        conversation_id = str(conversation_oid)
        now = utc_now()

        updated = await self._message_repo.mark_read_one(message["_id"], now)
        if updated is None:
            return await self._message_repo.get(message["_id"]) or message

        await best_effort("track_last_read", self._cache.track_last_read(conversation_id, user_id, now))
        await best_effort("decrement_unread_count", self._cache.decrement_unread_count(conversation_id, user_id))
        await best_effort("invalidate_recent", self._cache.invalidate_recent(conversation_id))

        if not await self._message_repo.count_unread(conversation_oid, user_id):
            await self._conversation_repo.mark_read(conversation_oid, user_id)

        await self._publish_read(conversation_id, [str(updated["_id"])], user_id)
        return updated

    async def _publish_read(self, conversation_id: str, message_ids: List[str], user_id: str) -> None:
        event = MessagesReadEvent(conversation_id=conversation_id, message_ids=message_ids, user_id=user_id)
        try:
            await self._broadcaster.publish(conversation_id, MESSAGES_READ, event.model_dump(mode="json", by_alias=True))
        except Exception:
            logger.warning("Could not publish %s for conversation %s", MESSAGES_READ, conversation_id, exc_info=True)
