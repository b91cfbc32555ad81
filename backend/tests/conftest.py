from typing import Any, Dict, List, Tuple

import jwt
import pytest
from fakeredis.aioredis import FakeRedis
from mongomock_motor import AsyncMongoMockClient

from chatcore.config import Settings
from chatcore.container import Container

JWT_SECRET = "test-secret"

USERS = [
    {"_id": "u1", "username": "alice", "user_type": "influencer", "profile": {"name": "Alice", "avatar": "alice.png"}},
    {"_id": "u2", "username": "bob", "user_type": "advertiser", "profile": {}},
    {"_id": "u3", "username": "carol", "user_type": "advertiser"},
]


def make_settings(**overrides) -> Settings:
    values = {
        "JWT_SECRET": JWT_SECRET,
        "CACHE_TIMEOUT_SECONDS": 1.0,
        "RECENT_MESSAGES_LIMIT": 50,
    }
    values.update(overrides)
    return Settings(**values)


def token_for(user_id: str) -> str:
    return jwt.encode({"sub": user_id}, JWT_SECRET, algorithm="HS256")


class RecordingBroadcaster:
    """Captures published events instead of sending them."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []

    async def join(self, conversation_id: str, session_id: str) -> None:
        return

    async def leave(self, conversation_id: str, session_id: str) -> None:
        return

    async def publish(self, conversation_id: str, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((conversation_id, event, payload))

    def named(self, event: str) -> List[Dict[str, Any]]:
        return [payload for _, name, payload in self.events if name == event]


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
async def db():
    database = AsyncMongoMockClient()["chat_test"]
    await database["users"].insert_many([dict(user) for user in USERS])
    return database


@pytest.fixture
async def redis():
    client = FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture(params=["warm", "disabled"])
async def container(request, settings, db, redis, broadcaster) -> Container:
    """A fully wired core, once with the Redis cache and once without it."""
    built = Container(settings, db, redis if request.param == "warm" else None, broadcaster=broadcaster)
    await built.start()
    yield built
    await built.stop()


@pytest.fixture
async def cached_container(settings, db, redis, broadcaster) -> Container:
    built = Container(settings, db, redis, broadcaster=broadcaster)
    await built.start()
    yield built
    await built.stop()


@pytest.fixture
async def conversation(container):
    view = await container.conversation_service.get_or_create("u1", "u2")
    return view.id
