import logging
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from chatcore.utils.websocket_manager import ConnectionManager

logger = logging.getLogger(__name__)


class PresenceTracker:
    """Online/offline only. Redis TTL keys when available, local sessions otherwise."""

    def __init__(self, redis: Optional[Redis], connections: ConnectionManager, ttl_seconds: int = 60) -> None:
        self._redis = redis
        self._connections = connections
        self._ttl = ttl_seconds

    @staticmethod
    def _key(user_id: str) -> str:
        return f"presence:{user_id}"

    async def touch(self, user_id: str) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.set(self._key(user_id), "online", ex=self._ttl)
        except RedisError as exc:
            logger.warning("Could not refresh presence for %s: %s", user_id, exc)

    async def clear(self, user_id: str) -> None:
        if self._redis is None or self._connections.is_user_connected(user_id):
            return
        try:
            await self._redis.delete(self._key(user_id))
        except RedisError as exc:
            logger.warning("Could not clear presence for %s: %s", user_id, exc)

    async def is_online(self, user_id: str) -> bool:
        if self._connections.is_user_connected(user_id):
            return True
        if self._redis is None:
            return False
        try:
            ttl = await self._redis.ttl(self._key(user_id))
        except RedisError as exc:
            logger.warning("Presence lookup for %s failed: %s", user_id, exc)
            return False
        return bool(ttl and ttl > 0)
