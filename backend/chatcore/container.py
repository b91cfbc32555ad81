import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from redis.asyncio import Redis

from chatcore.cache.message_cache import MessageCache, NoopMessageCache
from chatcore.config import Settings
from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.repositories.message_repository import MessageRepository
from chatcore.repositories.user_repository import UserRepository
from chatcore.services.conversation_service import ConversationService
from chatcore.services.message_service import MessageService
from chatcore.services.read_tracker import ReadTracker
from chatcore.utils.broadcaster import BusBroadcaster, RoomBroadcaster
from chatcore.utils.presence import PresenceTracker
from chatcore.utils.realtime_bus import create_bus
from chatcore.utils.websocket_manager import ConnectionManager

logger = logging.getLogger(__name__)


class Container:
    """Every collaborator of the messaging core, wired once per process."""

    def __init__(
        self,
        settings: Settings,
        db: AsyncIOMotorDatabase,
        redis: Optional[Redis] = None,
        broadcaster=None,
    ) -> None:
        self.settings = settings
        self.db = db
        self.redis = redis

        self.conversation_repo = ConversationRepository(db)
        self.message_repo = MessageRepository(db)
        self.user_repo = UserRepository(db)

        self.cache = MessageCache(redis, settings) if redis is not None else NoopMessageCache()
        self.connections = ConnectionManager()
        bus = create_bus(redis)
        if broadcaster is not None:
            self.broadcaster = broadcaster
        elif bus.enabled:
            self.broadcaster = BusBroadcaster(self.connections, bus, settings.EVENTS_CHANNEL, settings.BROADCAST_SHARDS)
        else:
            self.broadcaster = RoomBroadcaster(self.connections, settings.BROADCAST_SHARDS)
        self.presence = PresenceTracker(redis, self.connections, settings.PRESENCE_TTL_SECONDS)

        self.read_tracker = ReadTracker(self.message_repo, self.conversation_repo, self.cache, self.broadcaster)
        self.conversation_service = ConversationService(self.conversation_repo, self.user_repo, self.cache)
        self.message_service = MessageService(
            message_repo=self.message_repo,
            conversation_repo=self.conversation_repo,
            user_repo=self.user_repo,
            conversations=self.conversation_service,
            read_tracker=self.read_tracker,
            cache=self.cache,
            broadcaster=self.broadcaster,
            settings=settings,
        )

    async def start(self) -> None:
        logger.info("Message cache %s", "enabled" if self.cache.enabled else "disabled")
        await self.conversation_repo.ensure_indexes()
        await self.message_repo.ensure_indexes()
        if isinstance(self.broadcaster, BusBroadcaster):
            await self.broadcaster.start()

    async def stop(self) -> None:
        if isinstance(self.broadcaster, BusBroadcaster):
            await self.broadcaster.stop()
