from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from chatcore.errors import ConflictError
from chatcore.models.conversation import ConversationDocument, ReadFlags, participants_key
from chatcore.models.message import MessageDocument
from chatcore.repositories.base import translate_store_errors
from chatcore.utils.time import utc_now


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    @translate_store_errors
    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("participants_key", ASCENDING)], unique=True)
        await self.collection.create_index([("participants", ASCENDING), ("updated_at", DESCENDING)])

    @translate_store_errors
    async def get(self, conversation_id: ObjectId) -> Optional[ConversationDocument]:
        return await self.collection.find_one({"_id": conversation_id})

    @translate_store_errors
    async def find_by_participants(self, participants: List[str]) -> Optional[ConversationDocument]:
        return await self.collection.find_one({"participants_key": participants_key(participants)})

    @translate_store_errors
    async def get_or_create(self, participants: List[str]) -> ConversationDocument:
        """Return the conversation for exactly ``participants``, creating it once.

        Concurrent callers race on the unique ``participants_key`` index; the
        loser re-reads the winner's document.
        """
        key = participants_key(participants)
        existing = await self.collection.find_one({"participants_key": key})
        if existing:
            return existing
        members = sorted(set(participants))
        now = utc_now()
        doc: Dict[str, Any] = {
            "participants": members,
            "participants_key": key,
            "last_message": None,
            "is_read": ReadFlags.all_read(members).to_document(),
            "created_at": now,
            "updated_at": now,
        }
        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError:
            winner = await self.collection.find_one({"participants_key": key})
            if winner is None:
                raise ConflictError("Conversation was created concurrently, retry the request")
            return winner
        doc["_id"] = result.inserted_id
        return doc

    @translate_store_errors
    async def list_for_user(self, user_id: str, limit: Optional[int] = None) -> List[ConversationDocument]:
        cursor = self.collection.find({"participants": user_id}).sort(
            [("updated_at", DESCENDING), ("_id", DESCENDING)]
        )
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list(length=limit)

    @translate_store_errors
    async def list_ids_for_user(self, user_id: str) -> List[ObjectId]:
        cursor = self.collection.find({"participants": user_id}, {"_id": 1})
        return [doc["_id"] async for doc in cursor]

    @translate_store_errors
    async def update_on_new_message(
        self,
        conversation_id: ObjectId,
        message: MessageDocument,
        recipient_ids: List[str],
        preview_length: int,
    ) -> bool:
        """Record ``message`` as the conversation's latest.

        Recipients always flip to unread. The summary (and the sender's read
        flag) only moves forward: an older message never replaces a newer one
        already stored, ordered by ``(created_at, _id)``.
        """
        ts = message["created_at"]
        now = utc_now()
        if recipient_ids:
            await self.collection.update_one(
                {"_id": conversation_id},
                {"$set": {**{f"is_read.{uid}": False for uid in recipient_ids}, "updated_at": now}},
            )
        summary = {
            "message_id": message["_id"],
            "sender_id": message["sender_id"],
            "content": message["content"][:preview_length],
            "timestamp": ts,
        }
        result = await self.collection.update_one(
            {
                "_id": conversation_id,
                "$or": [
                    {"last_message": None},
                    {"last_message.timestamp": {"$lt": ts}},
                    {"last_message.timestamp": ts, "last_message.message_id": {"$lt": message["_id"]}},
                ],
            },
            {"$set": {
                "last_message": summary,
                f"is_read.{message['sender_id']}": True,
                "updated_at": now,
            }},
        )
        return bool(result.modified_count)

    @translate_store_errors
    async def mark_read(self, conversation_id: ObjectId, user_id: str) -> Optional[ConversationDocument]:
        """Set ``is_read[user_id]``; ``updated_at`` only moves when the flag changes."""
        return await self.collection.find_one_and_update(
            {"_id": conversation_id, f"is_read.{user_id}": {"$ne": True}},
            {"$set": {f"is_read.{user_id}": True, "updated_at": utc_now()}},
            return_document=ReturnDocument.AFTER,
        )
