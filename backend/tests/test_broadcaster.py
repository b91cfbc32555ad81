import json

import pytest

from chatcore.utils.broadcaster import BusBroadcaster, RoomBroadcaster
from chatcore.utils.realtime_bus import NoopBus
from chatcore.utils.websocket_manager import ConnectionManager


class FakeSocket:

    def __init__(self, broken: bool = False) -> None:
        self.accepted = False
        self.broken = broken
        self.sent = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, text: str) -> None:
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))


class RecordingBus:

    def __init__(self) -> None:
        self.published = []

    async def publish(self, channel: str, message: str) -> None:
        self.published.append((channel, json.loads(message)))


@pytest.fixture
def connections() -> ConnectionManager:
    return ConnectionManager()


async def connect(connections, session_id, user_id, broken=False) -> FakeSocket:
    socket = FakeSocket(broken)
    await connections.connect(session_id, user_id, socket)
    return socket


async def test_only_room_members_receive(connections):
    rooms = RoomBroadcaster(connections, shards=4)
    alice = await connect(connections, "s1", "u1")
    bob = await connect(connections, "s2", "u2")
    carol = await connect(connections, "s3", "u3")
    await rooms.join("c1", "s1")
    await rooms.join("c1", "s2")
    await rooms.join("c2", "s3")

    await rooms.publish("c1", "typing", {"conversationId": "c1", "userId": "u1"})

    assert alice.accepted
    assert bob.sent == [{"event": "typing", "data": {"conversationId": "c1", "userId": "u1"}}]
    assert alice.sent == bob.sent
    assert carol.sent == []


async def test_broken_session_is_dropped_without_affecting_others(connections):
    rooms = RoomBroadcaster(connections)
    healthy = await connect(connections, "s1", "u1")
    await connect(connections, "s2", "u2", broken=True)
    await rooms.join("c1", "s1")
    await rooms.join("c1", "s2")

    delivered = await rooms.deliver("c1", "messages_read", {"messageIds": []})

    assert delivered == 1
    assert len(healthy.sent) == 1
    assert await rooms.members("c1") == ["s1"]
    assert not connections.is_user_connected("u2")


async def test_leave_and_leave_all(connections):
    rooms = RoomBroadcaster(connections)
    await connect(connections, "s1", "u1")
    await rooms.join("c1", "s1")
    await rooms.join("c2", "s1")

    await rooms.leave("c1", "s1")
    assert rooms.rooms_of("s1") == {"c2"}

    await rooms.leave_all("s1")
    assert rooms.rooms_of("s1") == set()
    assert await rooms.members("c2") == []


async def test_empty_room_delivers_nothing(connections):
    assert await RoomBroadcaster(connections).deliver("nobody-here", "typing", {}) == 0


async def test_bus_publish_goes_through_the_channel(connections):
    bus = RecordingBus()
    rooms = BusBroadcaster(connections, bus, "chat:events")
    socket = await connect(connections, "s1", "u1")
    await rooms.join("c1", "s1")

    await rooms.publish("c1", "typing", {"userId": "u2"})

    assert bus.published == [("chat:events", {"conversationId": "c1", "event": "typing", "data": {"userId": "u2"}})]
    assert socket.sent == []


async def test_relay_delivers_to_local_members(connections):
    rooms = BusBroadcaster(connections, RecordingBus(), "chat:events")
    socket = await connect(connections, "s1", "u1")
    await rooms.join("c1", "s1")

    await rooms.relay(json.dumps({"conversationId": "c1", "event": "stop_typing", "data": {"userId": "u2"}}))
    await rooms.relay("garbage")
    await rooms.relay(json.dumps({"event": "typing"}))

    assert socket.sent == [{"event": "stop_typing", "data": {"userId": "u2"}}]


async def test_start_and_stop_with_an_idle_bus(connections):
    rooms = BusBroadcaster(connections, NoopBus(), "chat:events")

    await rooms.start()
    await rooms.stop()
