from datetime import datetime
from typing import Dict, List, Optional

from chatcore.models.conversation import ConversationDocument, ReadFlags
from chatcore.schemas.base import CamelModel
from chatcore.schemas.user import PublicProfile
from chatcore.utils.time import ensure_utc


class LastMessage(CamelModel):

    message_id: str
    sender_id: str
    content: str
    timestamp: datetime


class ConversationView(CamelModel):
    """A conversation as seen by one participant."""

    id: str
    participants: List[PublicProfile]
    last_message: Optional[LastMessage] = None
    is_read: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def for_viewer(
        cls,
        doc: ConversationDocument,
        viewer_id: str,
        profiles: Dict[str, PublicProfile],
    ) -> "ConversationView":
        others = [uid for uid in doc["participants"] if uid != viewer_id]
        last = doc.get("last_message")
        return cls(
            id=str(doc["_id"]),
            participants=[profiles.get(uid) or PublicProfile.unknown(uid) for uid in others],
            last_message=LastMessage(
                message_id=str(last["message_id"]),
                sender_id=last["sender_id"],
                content=last["content"],
                timestamp=ensure_utc(last["timestamp"]),
            ) if last else None,
            is_read=ReadFlags(doc.get("is_read")).is_read(viewer_id),
            created_at=ensure_utc(doc["created_at"]),
            updated_at=ensure_utc(doc["updated_at"]),
        )
