from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field, field_validator

from chatcore.models.message import AttachmentType, MessageDocument
from chatcore.schemas.base import CamelModel
from chatcore.schemas.user import PublicProfile
from chatcore.utils.time import ensure_utc


class Attachment(CamelModel):

    type: AttachmentType = "other"
    url: str
    name: Optional[str] = None
    size: Optional[int] = Field(default=None, ge=0)


class ReadStatus(CamelModel):

    is_read: bool = False
    read_at: Optional[datetime] = None


class SendMessageRequest(CamelModel):

    content: str = Field(min_length=1)
    attachments: List[Attachment] = Field(default_factory=list)
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("content")
    @classmethod
    def strip_content(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Message content cannot be empty")
        return value


class MessageOut(CamelModel):

    id: str
    conversation_id: str
    sender_id: str
    sender: PublicProfile
    content: str
    attachments: List[Attachment] = Field(default_factory=list)
    metadata: Dict[str, str] = Field(default_factory=dict)
    read_status: ReadStatus = Field(default_factory=ReadStatus)
    created_at: datetime

    @classmethod
    def from_document(cls, doc: MessageDocument, sender: Optional[PublicProfile] = None) -> "MessageOut":
        read_status = doc.get("read_status") or {}
        return cls(
            id=str(doc["_id"]),
            conversation_id=str(doc["conversation_id"]),
            sender_id=doc["sender_id"],
            sender=sender or PublicProfile.unknown(doc["sender_id"]),
            content=doc["content"],
            attachments=doc.get("attachments") or [],
            metadata=doc.get("metadata") or {},
            read_status=ReadStatus(
                is_read=bool(read_status.get("is_read", False)),
                read_at=ensure_utc(read_status.get("read_at")),
            ),
            created_at=ensure_utc(doc["created_at"]),
        )


class MessagePage(CamelModel):

    items: List[MessageOut]
    total_count: int
    total_pages: int
    current_page: int
    page_size: int


class MarkAllReadResponse(CamelModel):

    success: bool = True
    message: str = "All messages marked as read"
    message_ids: List[str] = Field(default_factory=list)
