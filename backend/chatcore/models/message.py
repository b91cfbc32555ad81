from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, TypedDict


AttachmentType = Literal["image", "document", "video", "audio", "other"]


class AttachmentDocument(TypedDict, total=False):
    type: AttachmentType
    url: str
    name: Optional[str]
    size: Optional[int]


class ReadStatusDocument(TypedDict):
    is_read: bool
    read_at: Optional[datetime]


class MessageDocument(TypedDict, total=False):
    _id: Any
    conversation_id: Any
    sender_id: str
    content: str
    attachments: List[AttachmentDocument]
    metadata: Dict[str, str]
    read_status: ReadStatusDocument
    # UTC, millisecond precision; (created_at, _id) is the ordering key
    created_at: datetime
