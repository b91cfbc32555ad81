import asyncio
import logging
from typing import Awaitable, Callable, Optional

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


class NoopBus:

    enabled = False

    async def publish(self, channel: str, message: str) -> None:
        return

    async def subscribe(self, channel: str, on_message: Callable[[str], Awaitable[None]]):
        class _Sub:
            async def run(self):
                await asyncio.Future()

            async def cancel(self):
                return

        return _Sub()


class RedisBus:
    """Redis pub/sub fanout shared by every worker."""

    enabled = True

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: Callable[[str], Awaitable[None]]):
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                        if msg and msg.get("type") == "message":
                            data = msg.get("data")
                            if isinstance(data, bytes):
                                data = data.decode("utf-8")
                            await on_message(data)
                    except asyncio.CancelledError:
                        raise
                    except Exception:
                        logger.exception("Event bus listener on %s failed, retrying", channel)
                        await asyncio.sleep(0.5)

            async def cancel(self_inner):
                self_inner._running = False
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()

        return _Sub()


def create_bus(redis: Optional[Redis]):
    if redis is None:
        return NoopBus()
    return RedisBus(redis)
