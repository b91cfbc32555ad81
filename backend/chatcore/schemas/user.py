from typing import Optional

from chatcore.models.user import UserDocument
from chatcore.schemas.base import CamelModel


class PublicProfile(CamelModel):

    user_id: str
    name: Optional[str] = None
    user_type: Optional[str] = None
    avatar: Optional[str] = None

    @classmethod
    def from_document(cls, doc: UserDocument) -> "PublicProfile":
        profile = doc.get("profile") or {}
        return cls(
            user_id=str(doc["_id"]),
            name=profile.get("name") or doc.get("username"),
            user_type=doc.get("user_type"),
            avatar=profile.get("avatar"),
        )

    @classmethod
    def unknown(cls, user_id: str) -> "PublicProfile":
        return cls(user_id=user_id)
