import functools
import logging
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from chatcore.config import Settings
from chatcore.errors import CacheUnavailableError
from chatcore.schemas.message import MessageOut
from chatcore.utils.time import from_epoch_ms, to_epoch_ms

logger = logging.getLogger(__name__)

# tail entry of a recent list that holds the whole conversation
END_OF_HISTORY = "__end__"
# field present once an unread hash has been rebuilt from the store
READY_FIELD = "__ready__"


def cache_operation(func):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except (RedisError, OSError) as exc:
            raise CacheUnavailableError(f"{func.__name__} failed: {exc}") from exc

    return wrapper


class MessageCache:
    """Redis-backed materialized view of recent messages and read state.

    Nothing here is authoritative; every key can be dropped and rebuilt from
    MongoDB.
    """

    enabled = True

    def __init__(self, redis: Redis, settings: Settings) -> None:
        self._redis = redis
        self._size = settings.RECENT_MESSAGES_LIMIT
        self._recent_ttl = settings.RECENT_MESSAGES_TTL_SECONDS
        self._unread_ttl = settings.UNREAD_TTL_SECONDS
        self._last_read_ttl = settings.LAST_READ_TTL_SECONDS

    @staticmethod
    def _recent_key(conversation_id: str) -> str:
        return f"chat:conversation:{conversation_id}:recent"

    @staticmethod
    def _version_key(conversation_id: str) -> str:
        return f"chat:conversation:{conversation_id}:version"

    @staticmethod
    def _last_read_key(conversation_id: str) -> str:
        return f"chat:conversation:{conversation_id}:lastread"

    @staticmethod
    def _unread_key(user_id: str) -> str:
        return f"chat:unread:{user_id}"

    # recent messages

    @staticmethod
    def _order_key(message: MessageOut):
        # ObjectId hex strings sort like the ids themselves
        return message.created_at, message.id

    def _write_through_action(self, head: Optional[str], message: MessageOut) -> str:
        if head is None:
            return "cold"
        if head == END_OF_HISTORY:
            return "push"
        try:
            newest = MessageOut.model_validate_json(head)
        except ValidationError:
            return "drop"
        if newest.id == message.id:
            return "present"
        if self._order_key(newest) > self._order_key(message):
            return "drop"
        return "push"

    @cache_operation
    async def cache_message(self, message: MessageOut) -> None:
        """Prepend to a warm recent list. A cold conversation stays cold.

        Only a message newer than the current head is pushed. A head that
        already is this message (a page-1 backfill got there first) is left
        alone, and a newer head drops the list rather than store it out of
        order.
        """
        recent_key = self._recent_key(message.conversation_id)
        version_key = self._version_key(message.conversation_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            for _ in range(3):
                try:
                    await pipe.watch(recent_key)
                    action = self._write_through_action(await pipe.lindex(recent_key, 0), message)
                    pipe.multi()
                    pipe.incr(version_key)
                    pipe.expire(version_key, self._recent_ttl)
                    if action == "push":
                        pipe.lpush(recent_key, message.model_dump_json(by_alias=True))
                        pipe.ltrim(recent_key, 0, self._size - 1)
                        pipe.expire(recent_key, self._recent_ttl)
                    elif action == "drop":
                        pipe.delete(recent_key)
                    await pipe.execute()
                    if action == "drop":
                        logger.debug("Dropped recent list of %s, head is newer than %s", message.conversation_id, message.id)
                    return
                except WatchError:
                    continue
        logger.warning("Write-through for %s kept losing races, dropping recent list", message.conversation_id)
        await self._drop_recent(message.conversation_id)

    @cache_operation
    async def get_recent_messages(self, conversation_id: str, limit: int) -> List[MessageOut]:
        """Newest-first messages, or ``[]`` when the cache cannot answer.

        ``[]`` means "ask the store", never "the conversation is empty".
        """
        if limit > self._size:
            return []
        raw = await self._redis.lrange(self._recent_key(conversation_id), 0, limit)
        entries: List[str] = []
        complete = False
        for entry in raw:
            if entry == END_OF_HISTORY:
                complete = True
                break
            entries.append(entry)
        if not complete and len(entries) < limit:
            return []
        try:
            return [MessageOut.model_validate_json(entry) for entry in entries[:limit]]
        except ValidationError as exc:
            logger.warning("Dropping unreadable recent list for conversation %s: %s", conversation_id, exc)
            await self._redis.delete(self._recent_key(conversation_id))
            return []

    @cache_operation
    async def recent_version(self, conversation_id: str) -> str:
        return await self._redis.get(self._version_key(conversation_id)) or "0"

    @cache_operation
    async def backfill_recent(
        self,
        conversation_id: str,
        messages: List[MessageOut],
        version: str,
        complete: bool = False,
    ) -> bool:
        """Install a page read from the store as the recent list.

        Skipped when the list already exists or a message was cached after
        ``version`` was taken, so a backfill never hides a newer message.
        """
        if not messages:
            return False
        recent_key = self._recent_key(conversation_id)
        version_key = self._version_key(conversation_id)
        entries = [message.model_dump_json(by_alias=True) for message in messages[: self._size]]
        if complete and len(messages) < self._size:
            entries.append(END_OF_HISTORY)
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(version_key, recent_key)
                current = await pipe.get(version_key) or "0"
                if current != version or await pipe.exists(recent_key):
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.rpush(recent_key, *entries)
                pipe.expire(recent_key, self._recent_ttl)
                await pipe.execute()
                return True
            except WatchError:
                logger.debug("Recent list backfill for %s lost a race", conversation_id)
                return False

    @cache_operation
    async def invalidate_recent(self, conversation_id: str) -> None:
        await self._drop_recent(conversation_id)

    async def _drop_recent(self, conversation_id: str) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._recent_key(conversation_id))
            pipe.incr(self._version_key(conversation_id))
            pipe.expire(self._version_key(conversation_id), self._recent_ttl)
            await pipe.execute()

    # unread counters

    @cache_operation
    async def increment_unread_count(self, conversation_id: str, sender_id: str, recipient_ids: List[str]) -> None:
        recipients = [uid for uid in recipient_ids if uid != sender_id]
        if not recipients:
            return
        async with self._redis.pipeline(transaction=True) as pipe:
            for user_id in recipients:
                pipe.hincrby(self._unread_key(user_id), conversation_id, 1)
                pipe.expire(self._unread_key(user_id), self._unread_ttl)
            await pipe.execute()

    @cache_operation
    async def register_conversation(self, conversation_id: str, participant_ids: List[str]) -> None:
        """Give rebuilt unread hashes a 0 entry, as the store-derived counts would."""
        for user_id in participant_ids:
            key = self._unread_key(user_id)
            if await self._redis.hexists(key, READY_FIELD):
                await self._redis.hsetnx(key, conversation_id, 0)

    @cache_operation
    async def reset_unread_count(self, conversation_id: str, user_id: str) -> None:
        await self._redis.hset(self._unread_key(user_id), conversation_id, 0)

    @cache_operation
    async def add_unread_count(self, conversation_id: str, user_id: str, amount: int) -> None:
        if amount <= 0:
            return
        await self._redis.hincrby(self._unread_key(user_id), conversation_id, amount)

    @cache_operation
    async def decrement_unread_count(self, conversation_id: str, user_id: str) -> Optional[int]:
        key = self._unread_key(user_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            for _ in range(3):
                try:
                    await pipe.watch(key)
                    current = int(await pipe.hget(key, conversation_id) or 0)
                    if current <= 0:
                        await pipe.unwatch()
                        return 0
                    pipe.multi()
                    pipe.hincrby(key, conversation_id, -1)
                    await pipe.execute()
                    return current - 1
                except WatchError:
                    continue
        logger.warning("Gave up decrementing unread count for %s in %s", user_id, conversation_id)
        return None

    @cache_operation
    async def unread_snapshot(self, user_id: str) -> Dict[str, str]:
        return await self._redis.hgetall(self._unread_key(user_id))

    @cache_operation
    async def get_all_unread_counts(self, user_id: str) -> Optional[Dict[str, int]]:
        """``{conversation_id: count}``, or None when the hash was never rebuilt."""
        data = await self._redis.hgetall(self._unread_key(user_id))
        if READY_FIELD not in data:
            return None
        return {cid: max(int(count), 0) for cid, count in data.items() if cid != READY_FIELD}

    @cache_operation
    async def backfill_unread_counts(self, user_id: str, counts: Dict[str, int], snapshot: Dict[str, str]) -> bool:
        """Replace the hash with store-derived counts.

        ``snapshot`` is the hash as it was before the store was queried; any
        increment since then aborts the backfill, so a count is never lowered
        below what the store has not yet seen.
        """
        key = self._unread_key(user_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                current = await pipe.hgetall(key)
                if READY_FIELD in current or current != snapshot:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.hset(key, mapping={**{cid: count for cid, count in counts.items()}, READY_FIELD: 1})
                pipe.expire(key, self._unread_ttl)
                await pipe.execute()
                return True
            except WatchError:
                logger.debug("Unread backfill for %s lost a race", user_id)
                return False

    # last-read watermarks

    @cache_operation
    async def track_last_read(self, conversation_id: str, user_id: str, timestamp: datetime) -> None:
        key = self._last_read_key(conversation_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            # GT: an older timestamp never moves the watermark back
            pipe.zadd(key, {user_id: to_epoch_ms(timestamp)}, gt=True)
            pipe.expire(key, self._last_read_ttl)
            await pipe.execute()

    @cache_operation
    async def get_last_read(self, conversation_id: str, user_id: str) -> Optional[datetime]:
        score = await self._redis.zscore(self._last_read_key(conversation_id), user_id)
        return from_epoch_ms(score) if score is not None else None

    @cache_operation
    async def get_all_last_read(self, conversation_id: str) -> Dict[str, datetime]:
        rows = await self._redis.zrange(self._last_read_key(conversation_id), 0, -1, withscores=True)
        return {user_id: from_epoch_ms(score) for user_id, score in rows}


class NoopMessageCache:
    """Stands in for the cache when Redis is not configured."""

    enabled = False

    async def cache_message(self, message: MessageOut) -> None:
        return

    async def get_recent_messages(self, conversation_id: str, limit: int) -> List[MessageOut]:
        return []

    async def recent_version(self, conversation_id: str) -> str:
        return "0"

    async def backfill_recent(self, conversation_id, messages, version, complete=False) -> bool:
        return False

    async def invalidate_recent(self, conversation_id: str) -> None:
        return

    async def increment_unread_count(self, conversation_id: str, sender_id: str, recipient_ids: List[str]) -> None:
        return

    async def register_conversation(self, conversation_id: str, participant_ids: List[str]) -> None:
        return

    async def reset_unread_count(self, conversation_id: str, user_id: str) -> None:
        return

    async def add_unread_count(self, conversation_id: str, user_id: str, amount: int) -> None:
        return

    async def decrement_unread_count(self, conversation_id: str, user_id: str) -> Optional[int]:
        return None

    async def unread_snapshot(self, user_id: str) -> Dict[str, str]:
        return {}

    async def get_all_unread_counts(self, user_id: str) -> Optional[Dict[str, int]]:
        return None

    async def backfill_unread_counts(self, user_id, counts, snapshot) -> bool:
        return False

    async def track_last_read(self, conversation_id: str, user_id: str, timestamp: datetime) -> None:
        return

    async def get_last_read(self, conversation_id: str, user_id: str) -> Optional[datetime]:
        return None

    async def get_all_last_read(self, conversation_id: str) -> Dict[str, datetime]:
        return {}
