from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from chatcore.models.message import AttachmentDocument, MessageDocument
from chatcore.repositories.base import translate_store_errors
from chatcore.utils.time import utc_now


NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    @translate_store_errors
    async def ensure_indexes(self) -> None:
        await self.collection.create_index(
            [("conversation_id", ASCENDING), ("created_at", DESCENDING), ("_id", DESCENDING)]
        )
        await self.collection.create_index(
            [("conversation_id", ASCENDING), ("sender_id", ASCENDING), ("read_status.is_read", ASCENDING)]
        )

    @translate_store_errors
    async def append(
        self,
        conversation_id: ObjectId,
        sender_id: str,
        content: str,
        attachments: Optional[List[AttachmentDocument]] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> MessageDocument:
        doc: MessageDocument = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "content": content,
            "attachments": attachments or [],
            "metadata": metadata or {},
            "read_status": {"is_read": False, "read_at": None},
            "created_at": utc_now(),
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    @translate_store_errors
    async def get(self, message_id: ObjectId) -> Optional[MessageDocument]:
        return await self.collection.find_one({"_id": message_id})

    @translate_store_errors
    async def list_page(self, conversation_id: ObjectId, page: int, limit: int) -> List[MessageDocument]:
        skip = (page - 1) * limit
        cursor = self.collection.find({"conversation_id": conversation_id}).sort(NEWEST_FIRST).skip(skip).limit(limit)
        return await cursor.to_list(length=limit)

    @translate_store_errors
    async def count(self, conversation_id: ObjectId) -> int:
        return await self.collection.count_documents({"conversation_id": conversation_id})

    def _unread_query(self, conversation_id: ObjectId, reader_id: str) -> Dict[str, Any]:
        return {
            "conversation_id": conversation_id,
            "sender_id": {"$ne": reader_id},
            "read_status.is_read": False,
        }

    @translate_store_errors
    async def unread_ids(self, conversation_id: ObjectId, reader_id: str) -> List[ObjectId]:
        cursor = self.collection.find(self._unread_query(conversation_id, reader_id), {"_id": 1}).sort(NEWEST_FIRST)
        return [doc["_id"] async for doc in cursor]

    @translate_store_errors
    async def count_unread(self, conversation_id: ObjectId, reader_id: str) -> int:
        return await self.collection.count_documents(self._unread_query(conversation_id, reader_id))

    @translate_store_errors
    async def mark_read_many(self, message_ids: List[ObjectId], read_at: datetime) -> int:
        if not message_ids:
            return 0
        result = await self.collection.update_many(
            {"_id": {"$in": message_ids}, "read_status.is_read": False},
            {"$set": {"read_status.is_read": True, "read_status.read_at": read_at}},
        )
        return result.modified_count or 0

    @translate_store_errors
    async def mark_read_one(self, message_id: ObjectId, read_at: datetime) -> Optional[MessageDocument]:
        """Flip one message to read. Returns None when it was already read."""
        return await self.collection.find_one_and_update(
            {"_id": message_id, "read_status.is_read": False},
            {"$set": {"read_status.is_read": True, "read_status.read_at": read_at}},
            return_document=ReturnDocument.AFTER,
        )

    @translate_store_errors
    async def count_unread_by_conversation(self, reader_id: str, conversation_ids: List[ObjectId]) -> Dict[str, int]:
        counts = {str(cid): 0 for cid in conversation_ids}
        if not conversation_ids:
            return counts
        pipeline = [
            {"$match": {
                "conversation_id": {"$in": conversation_ids},
                "sender_id": {"$ne": reader_id},
                "read_status.is_read": False,
            }},
            {"$group": {"_id": "$conversation_id", "count": {"$sum": 1}}},
        ]
        async for row in self.collection.aggregate(pipeline):
            counts[str(row["_id"])] = row["count"]
        return counts
