import logging
import math
from typing import Any, Dict, Iterable, List, Optional

from chatcore.cache.read_through import ReadThroughCache, best_effort
from chatcore.config import Settings
from chatcore.errors import CacheUnavailableError, ForbiddenError, NotFoundError, ValidationFailedError
from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.repositories.message_repository import MessageRepository
from chatcore.repositories.user_repository import UserRepository
from chatcore.schemas.events import MESSAGE_RECEIVED, MessageReceivedEvent
from chatcore.schemas.message import Attachment, MarkAllReadResponse, MessageOut, MessagePage
from chatcore.services.conversation_service import ConversationService
from chatcore.services.read_tracker import ReadTracker
from chatcore.utils.broadcaster import Broadcaster
from chatcore.utils.ids import to_object_id

logger = logging.getLogger(__name__)


class MessageService:
    """Send, list and read messages.

    Every write goes store first, cache second, broadcast last, so anyone
    reacting to an event can always find the message in the store.
    """

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        user_repo: UserRepository,
        conversations: ConversationService,
        read_tracker: ReadTracker,
        cache,
        broadcaster: Broadcaster,
        settings: Settings,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._user_repo = user_repo
        self._conversations = conversations
        self._read_tracker = read_tracker
        self._cache = cache
        self._broadcaster = broadcaster
        self._settings = settings
        self._read_through = ReadThroughCache(settings.CACHE_TIMEOUT_SECONDS)

    async def send(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        attachments: Optional[Iterable[Any]] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> MessageOut:
        conversation = await self._conversations.ensure_participant(conversation_id, sender_id, "send messages in")
        content = (content or "").strip()
        if not content:
            raise ValidationFailedError("Message content cannot be empty")
        attachment_docs = [Attachment.model_validate(item).model_dump() for item in attachments or []]

        sender = await self._user_repo.get_public_profile(sender_id)
        doc = await self._message_repo.append(
            conversation_id=conversation["_id"],
            sender_id=sender_id,
            content=content,
            attachments=attachment_docs,
            metadata={str(k): str(v) for k, v in (metadata or {}).items()},
        )
        recipients = [uid for uid in conversation["participants"] if uid != sender_id]
        await self._conversation_repo.update_on_new_message(
            conversation["_id"], doc, recipients, self._settings.LAST_MESSAGE_PREVIEW_LENGTH
        )

        message = MessageOut.from_document(doc, sender)
        cid = message.conversation_id
        try:
            await self._cache.cache_message(message)
        except CacheUnavailableError as exc:
            logger.warning("Cache cache_message failed: %s", exc)
            # a warm recent list missing this message would hide it from page 1
            await best_effort("invalidate_recent", self._cache.invalidate_recent(cid))
        await best_effort("increment_unread_count", self._cache.increment_unread_count(cid, sender_id, recipients))

        event = MessageReceivedEvent.from_message(message)
        try:
            await self._broadcaster.publish(cid, MESSAGE_RECEIVED, event.model_dump(mode="json", by_alias=True))
        except Exception:
            logger.warning("Could not publish %s for conversation %s", MESSAGE_RECEIVED, cid, exc_info=True)
        return message

    async def list(self, conversation_id: str, requester_id: str, page: int = 1, limit: Optional[int] = None) -> MessagePage:
        limit = limit or self._settings.DEFAULT_PAGE_SIZE
        if page < 1:
            raise ValidationFailedError("page must be 1 or greater")
        if limit < 1 or limit > self._settings.MAX_PAGE_SIZE:
            raise ValidationFailedError(f"limit must be between 1 and {self._settings.MAX_PAGE_SIZE}")
        conversation = await self._conversations.ensure_participant(conversation_id, requester_id)
        conversation_oid = conversation["_id"]
        cid = str(conversation_oid)

        async def load() -> List[MessageOut]:
            docs = await self._message_repo.list_page(conversation_oid, page, limit)
            return await self._with_senders(docs)

        if page == 1:
            items, from_cache = await self._read_through.read(
                f"recent messages of {cid}",
                lookup=lambda: self._cache.get_recent_messages(cid, limit),
                load=load,
                prepare=lambda: self._cache.recent_version(cid),
                populate=lambda value, version: self._cache.backfill_recent(
                    cid, value, version, complete=len(value) < limit
                ),
            )
            logger.debug("Page 1 of %s served from %s", cid, "cache" if from_cache else "store")
        else:
            items = await load()

        total = await self._message_repo.count(conversation_oid)
        # viewing a conversation reads it
        await self._read_tracker.mark_all_read(conversation, requester_id)
        return MessagePage(
            items=items,
            total_count=total,
            total_pages=math.ceil(total / limit),
            current_page=page,
            page_size=limit,
        )

    async def mark_message_read(self, message_id: str, requester_id: str) -> MessageOut:
        message = await self._message_repo.get(to_object_id(message_id, "Message"))
        if message is None:
            raise NotFoundError("Message not found")
        conversation = await self._conversation_repo.get(message["conversation_id"])
        if conversation is None:
            raise NotFoundError("Conversation not found")
        if requester_id not in conversation["participants"]:
            raise ForbiddenError("Not authorized to mark this message as read")
        if message["sender_id"] == requester_id:
            raise ForbiddenError("Cannot mark your own message as read")
        updated = await self._read_tracker.mark_message_read(conversation, message, requester_id)
        return (await self._with_senders([updated]))[0]

    async def mark_all_read(self, conversation_id: str, requester_id: str) -> MarkAllReadResponse:
        conversation = await self._conversations.ensure_participant(conversation_id, requester_id)
        message_ids = await self._read_tracker.mark_all_read(conversation, requester_id)
        return MarkAllReadResponse(message_ids=message_ids)

    async def unread_counts(self, user_id: str) -> Dict[str, int]:
        async def load() -> Dict[str, int]:
            conversation_ids = await self._conversation_repo.list_ids_for_user(user_id)
            return await self._message_repo.count_unread_by_conversation(user_id, conversation_ids)

        counts, _ = await self._read_through.read(
            f"unread counts of {user_id}",
            lookup=lambda: self._cache.get_all_unread_counts(user_id),
            load=load,
            prepare=lambda: self._cache.unread_snapshot(user_id),
            populate=lambda value, snapshot: self._cache.backfill_unread_counts(user_id, value, snapshot),
            is_hit=lambda value: value is not None,
        )
        return counts

    async def _with_senders(self, docs: List[Dict[str, Any]]) -> List[MessageOut]:
        profiles = await self._user_repo.get_public_profiles(doc["sender_id"] for doc in docs)
        return [MessageOut.from_document(doc, profiles.get(doc["sender_id"])) for doc in docs]
