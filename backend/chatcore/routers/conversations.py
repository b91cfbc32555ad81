from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from chatcore.schemas.conversation import ConversationView
from chatcore.schemas.message import MarkAllReadResponse, MessageOut, MessagePage, SendMessageRequest
from chatcore.services.conversation_service import ConversationService
from chatcore.services.message_service import MessageService
from chatcore.utils.dependencies import get_conversation_service, get_current_user, get_message_service


router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("", response_model=List[ConversationView])
async def list_conversations(
    current_user: dict = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service),
):
    return await service.list_for_user(current_user["_id"])


@router.get("/{user_id}", response_model=ConversationView)
async def get_or_create_conversation(
    user_id: str,
    current_user: dict = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service),
):
    return await service.get_or_create(current_user["_id"], user_id)


@router.get("/{conversation_id}/messages", response_model=MessagePage)
async def list_messages(
    conversation_id: str,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    current_user: dict = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    return await service.list(conversation_id, current_user["_id"], page=page, limit=limit)


@router.post("/{conversation_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(
    conversation_id: str,
    body: SendMessageRequest,
    current_user: dict = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    return await service.send(
        conversation_id,
        current_user["_id"],
        body.content,
        attachments=body.attachments,
        metadata=body.metadata,
    )


@router.put("/{conversation_id}/read", response_model=MarkAllReadResponse)
async def mark_conversation_read(
    conversation_id: str,
    current_user: dict = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    return await service.mark_all_read(conversation_id, current_user["_id"])
