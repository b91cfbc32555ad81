import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from chatcore.config import Settings

logger = logging.getLogger(__name__)


class MongoConnection:

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._client: Optional[AsyncIOMotorClient] = None

    async def connect(self) -> AsyncIOMotorDatabase:
        self._client = AsyncIOMotorClient(self._settings.MONGODB_URL)
        db = self._client[self._settings.MONGODB_DB]
        await db.command("ping")
        logger.info("Connected to MongoDB database %s", self._settings.MONGODB_DB)
        return db

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("MongoDB connection closed")
