from fastapi import Depends, HTTPException, status
from fastapi.requests import HTTPConnection
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from chatcore.container import Container
from chatcore.services.conversation_service import ConversationService
from chatcore.services.message_service import MessageService
from chatcore.utils.security import InvalidTokenError, decode_access_token

bearer_scheme = HTTPBearer(auto_error=False)


def get_container(connection: HTTPConnection) -> Container:
    return connection.app.state.container


def get_conversation_service(container: Container = Depends(get_container)) -> ConversationService:
    return container.conversation_service


def get_message_service(container: Container = Depends(get_container)) -> MessageService:
    return container.message_service


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    container: Container = Depends(get_container),
) -> dict:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        payload = decode_access_token(credentials.credentials, container.settings)
    except InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from None
    return {"_id": str(payload["sub"])}
