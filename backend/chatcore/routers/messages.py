from typing import Dict

from fastapi import APIRouter, Depends

from chatcore.schemas.message import MessageOut
from chatcore.services.message_service import MessageService
from chatcore.utils.dependencies import get_current_user, get_message_service


router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("/unread", response_model=Dict[str, int])
async def get_unread_counts(
    current_user: dict = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    return await service.unread_counts(current_user["_id"])


@router.put("/{message_id}/read", response_model=MessageOut)
async def mark_message_read(
    message_id: str,
    current_user: dict = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    return await service.mark_message_read(message_id, current_user["_id"])
