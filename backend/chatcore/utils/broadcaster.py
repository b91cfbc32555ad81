import asyncio
import json
import logging
import zlib
from typing import Any, Dict, List, Optional, Protocol, Set

from chatcore.schemas.events import encode_frame
from chatcore.utils.websocket_manager import ConnectionManager

logger = logging.getLogger(__name__)


class Broadcaster(Protocol):

    async def join(self, conversation_id: str, session_id: str) -> None: ...

    async def leave(self, conversation_id: str, session_id: str) -> None: ...

    async def publish(self, conversation_id: str, event: str, payload: Dict[str, Any]) -> None: ...


class _RoomShard:

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.rooms: Dict[str, Set[str]] = {}


class RoomBroadcaster:
    """Per-conversation rooms of connected sessions on this worker.

    Membership is sharded by conversation id; a shard lock is never held
    while sending. Delivery is best-effort and at most once per session.
    """

    def __init__(self, connections: ConnectionManager, shards: int = 64) -> None:
        self._connections = connections
        self._shards = [_RoomShard() for _ in range(max(1, shards))]
        self._session_rooms: Dict[str, Set[str]] = {}

    def _shard(self, conversation_id: str) -> _RoomShard:
        return self._shards[zlib.crc32(conversation_id.encode("utf-8")) % len(self._shards)]

    async def join(self, conversation_id: str, session_id: str) -> None:
        shard = self._shard(conversation_id)
        async with shard.lock:
            shard.rooms.setdefault(conversation_id, set()).add(session_id)
        self._session_rooms.setdefault(session_id, set()).add(conversation_id)

    async def leave(self, conversation_id: str, session_id: str) -> None:
        shard = self._shard(conversation_id)
        async with shard.lock:
            members = shard.rooms.get(conversation_id)
            if members is not None:
                members.discard(session_id)
                if not members:
                    del shard.rooms[conversation_id]
        rooms = self._session_rooms.get(session_id)
        if rooms is not None:
            rooms.discard(conversation_id)
            if not rooms:
                del self._session_rooms[session_id]

    async def leave_all(self, session_id: str) -> None:
        for conversation_id in list(self._session_rooms.get(session_id, ())):
            await self.leave(conversation_id, session_id)

    async def members(self, conversation_id: str) -> List[str]:
        shard = self._shard(conversation_id)
        async with shard.lock:
            return list(shard.rooms.get(conversation_id, ()))

    def rooms_of(self, session_id: str) -> Set[str]:
        return set(self._session_rooms.get(session_id, ()))

    async def deliver(self, conversation_id: str, event: str, payload: Dict[str, Any]) -> int:
        """Send to local room members; returns how many sessions got the frame."""
        sessions = await self.members(conversation_id)
        if not sessions:
            return 0
        frame = encode_frame(event, payload)
        results = await asyncio.gather(
            *(self._connections.send_text(session_id, frame) for session_id in sessions),
            return_exceptions=True,
        )
        delivered = 0
        for session_id, result in zip(sessions, results):
            if isinstance(result, Exception):
                logger.debug("Dropping session %s from %s: %s", session_id, conversation_id, result)
                await self.leave_all(session_id)
                self._connections.disconnect(session_id)
            else:
                delivered += 1
        return delivered

    async def publish(self, conversation_id: str, event: str, payload: Dict[str, Any]) -> None:
        await self.deliver(conversation_id, event, payload)


class BusBroadcaster(RoomBroadcaster):
    """Room fanout across workers through the event bus.

    ``publish`` only writes to the bus; every worker's relay (this one
    included) delivers to its own room members.
    """

    def __init__(self, connections: ConnectionManager, bus, channel: str, shards: int = 64) -> None:
        super().__init__(connections, shards)
        self._bus = bus
        self._channel = channel
        self._subscription = None
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        self._subscription = await self._bus.subscribe(self._channel, self.relay)
        self._task = asyncio.create_task(self._subscription.run())
        logger.info("Relaying conversation events from channel %s", self._channel)

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.cancel()
            self._subscription = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def relay(self, raw: str) -> None:
        try:
            envelope = json.loads(raw)
            conversation_id = envelope["conversationId"]
            event = envelope["event"]
            data = envelope["data"]
        except (ValueError, KeyError, TypeError):
            logger.warning("Ignoring malformed event bus message: %r", raw[:200])
            return
        await self.deliver(conversation_id, event, data)

    async def publish(self, conversation_id: str, event: str, payload: Dict[str, Any]) -> None:
        envelope = json.dumps({"conversationId": conversation_id, "event": event, "data": payload}, default=str)
        await self._bus.publish(self._channel, envelope)
