import asyncio
import json
import logging
import uuid
from typing import Any, Dict

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from chatcore.container import Container
from chatcore.errors import ChatError
from chatcore.schemas.events import STOP_TYPING, TYPING, TypingEvent, encode_frame
from chatcore.utils.dependencies import get_container
from chatcore.utils.security import InvalidTokenError, decode_access_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


async def _presence_heartbeat(container: Container, user_id: str) -> None:
    while True:
        await asyncio.sleep(container.settings.PRESENCE_HEARTBEAT_SECONDS)
        await container.presence.touch(user_id)


async def _reply(websocket: WebSocket, event: str, data: Dict[str, Any]) -> None:
    await websocket.send_text(encode_frame(event, data))


async def _handle_frame(container: Container, websocket: WebSocket, session_id: str, user_id: str, frame: Dict[str, Any]) -> None:
    kind = frame.get("type")
    if kind == "heartbeat":
        await container.presence.touch(user_id)
        await _reply(websocket, "heartbeat_ack", {})
        return

    conversation_id = frame.get("conversationId")
    if not isinstance(conversation_id, str) or not conversation_id:
        await _reply(websocket, "error", {"message": "conversationId is required"})
        return

    if kind == "join_conversation":
        try:
            await container.conversation_service.ensure_participant(conversation_id, user_id, "join")
        except ChatError as exc:
            await _reply(websocket, "error", {"message": exc.message, "conversationId": conversation_id})
            return
        await container.broadcaster.join(conversation_id, session_id)
        await _reply(websocket, "conversation_joined", {"conversationId": conversation_id})
    elif kind == "leave_conversation":
        await container.broadcaster.leave(conversation_id, session_id)
        await _reply(websocket, "conversation_left", {"conversationId": conversation_id})
    elif kind in ("typing_start", "typing_stop"):
        if conversation_id not in container.broadcaster.rooms_of(session_id):
            await _reply(websocket, "error", {"message": "Join the conversation first", "conversationId": conversation_id})
            return
        event = TYPING if kind == "typing_start" else STOP_TYPING
        payload = TypingEvent(conversation_id=conversation_id, user_id=user_id)
        try:
            await container.broadcaster.publish(conversation_id, event, payload.model_dump(by_alias=True))
        except Exception:
            logger.warning("Could not publish %s for conversation %s", event, conversation_id, exc_info=True)
    else:
        await _reply(websocket, "error", {"message": "Unknown message type"})


@router.websocket("/ws")
async def conversation_socket(websocket: WebSocket, container: Container = Depends(get_container)):
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return
    try:
        user_id = str(decode_access_token(token, container.settings)["sub"])
    except InvalidTokenError:
        await websocket.close(code=4401)
        return

    session_id = uuid.uuid4().hex
    await container.connections.connect(session_id, user_id, websocket)
    await container.presence.touch(user_id)
    heartbeat_task = asyncio.create_task(_presence_heartbeat(container, user_id))
    logger.info("Session %s opened for user %s", session_id, user_id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                await _reply(websocket, "error", {"message": "Invalid JSON format"})
                continue
            if not isinstance(frame, dict):
                await _reply(websocket, "error", {"message": "Invalid message payload"})
                continue
            await _handle_frame(container, websocket, session_id, user_id, frame)
    except WebSocketDisconnect:
        logger.info("Session %s closed for user %s", session_id, user_id)
    finally:
        heartbeat_task.cancel()
        await container.broadcaster.leave_all(session_id)
        container.connections.disconnect(session_id)
        await container.presence.clear(user_id)
