from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from chatcore.repositories.base import translate_store_errors
from chatcore.schemas.user import PublicProfile


def _id_candidates(user_id: str) -> List[Any]:
    # identity service may key users by ObjectId or by plain string
    candidates: List[Any] = [user_id]
    if ObjectId.is_valid(user_id):
        candidates.append(ObjectId(user_id))
    return candidates


class UserRepository:
    """Read-only access to user records owned by the identity service."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    @translate_store_errors
    async def get_public_profile(self, user_id: str) -> Optional[PublicProfile]:
        user = await self._collection.find_one({"_id": {"$in": _id_candidates(user_id)}})
        if not user:
            return None
        return PublicProfile.from_document(user)

    @translate_store_errors
    async def get_public_profiles(self, user_ids: Iterable[str]) -> Dict[str, PublicProfile]:
        candidates: List[Any] = []
        for user_id in set(user_ids):
            candidates.extend(_id_candidates(user_id))
        if not candidates:
            return {}
        cursor = self._collection.find({"_id": {"$in": candidates}})
        return {str(user["_id"]): PublicProfile.from_document(user) async for user in cursor}
