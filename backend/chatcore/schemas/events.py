import json
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from chatcore.schemas.base import CamelModel
from chatcore.schemas.message import Attachment, MessageOut


MESSAGE_RECEIVED = "message_received"
MESSAGES_READ = "messages_read"
TYPING = "typing"
STOP_TYPING = "stop_typing"


class EventSender(CamelModel):

    user_id: str
    name: Optional[str] = None
    user_type: Optional[str] = None
    avatar: Optional[str] = None


class EventContent(CamelModel):

    type: Literal["text"] = "text"
    text: str
    attachments: List[Attachment] = Field(default_factory=list)


class MessageReceivedEvent(CamelModel):

    id: str
    conversation_id: str
    sender: EventSender
    content: EventContent
    created_at: datetime

    @classmethod
    def from_message(cls, message: MessageOut) -> "MessageReceivedEvent":
        return cls(
            id=message.id,
            conversation_id=message.conversation_id,
            sender=EventSender(**message.sender.model_dump()),
            content=EventContent(text=message.content, attachments=message.attachments),
            created_at=message.created_at,
        )


class MessagesReadEvent(CamelModel):

    conversation_id: str
    message_ids: List[str]
    user_id: str


class TypingEvent(CamelModel):

    conversation_id: str
    user_id: str


def encode_frame(event: str, data: Dict[str, Any]) -> str:
    return json.dumps({"event": event, "data": data}, default=str)
