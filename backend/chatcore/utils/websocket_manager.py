from typing import Dict, Set

from fastapi import WebSocket


class ConnectionManager:
    """Open WebSocket sessions on this worker, keyed by opaque session id."""

    def __init__(self) -> None:
        self.active_connections: Dict[str, WebSocket] = {}
        self._session_users: Dict[str, str] = {}
        self._user_sessions: Dict[str, Set[str]] = {}

    async def connect(self, session_id: str, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections[session_id] = websocket
        self._session_users[session_id] = user_id
        self._user_sessions.setdefault(user_id, set()).add(session_id)

    def disconnect(self, session_id: str) -> None:
        self.active_connections.pop(session_id, None)
        user_id = self._session_users.pop(session_id, None)
        if user_id is not None and user_id in self._user_sessions:
            self._user_sessions[user_id].discard(session_id)
            if not self._user_sessions[user_id]:
                del self._user_sessions[user_id]

    def is_user_connected(self, user_id: str) -> bool:
        return bool(self._user_sessions.get(user_id))

    async def send_text(self, session_id: str, message: str) -> None:
        websocket = self.active_connections.get(session_id)
        if websocket is None:
            raise LookupError(f"session {session_id} is not connected")
        await websocket.send_text(message)
