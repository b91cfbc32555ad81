from datetime import timedelta

import pytest

from chatcore.errors import ForbiddenError, NotFoundError, ValidationFailedError
from chatcore.utils.time import utc_now


async def test_get_or_create_is_idempotent(container):
    first = await container.conversation_service.get_or_create("u1", "u2")
    second = await container.conversation_service.get_or_create("u1", "u2")
    reverse = await container.conversation_service.get_or_create("u2", "u1")

    assert first.id == second.id == reverse.id
    assert await container.conversation_repo.collection.count_documents({}) == 1


async def test_new_conversation_starts_read_without_summary(container):
    view = await container.conversation_service.get_or_create("u1", "u2")

    assert view.is_read is True
    assert view.last_message is None
    assert [profile.user_id for profile in view.participants] == ["u2"]
    assert view.participants[0].name == "bob"


async def test_new_conversation_appears_in_unread_counts(container):
    assert await container.message_service.unread_counts("u3") == {}

    view = await container.conversation_service.get_or_create("u3", "u1")

    assert await container.message_service.unread_counts("u3") == {view.id: 0}


async def test_participants_exclude_the_viewer(container):
    await container.conversation_service.get_or_create("u1", "u2")

    [view] = await container.conversation_service.list_for_user("u2")

    assert [profile.user_id for profile in view.participants] == ["u1"]
    assert view.participants[0].name == "Alice"
    assert view.participants[0].user_type == "influencer"


async def test_cannot_talk_to_yourself(container):
    with pytest.raises(ValidationFailedError):
        await container.conversation_service.get_or_create("u1", "u1")


async def test_unknown_other_user(container):
    with pytest.raises(NotFoundError):
        await container.conversation_service.get_or_create("u1", "nobody")


class LateReader:
    """Wraps a collection whose first ``find_one`` misses, as if another request had not committed yet."""

    def __init__(self, collection) -> None:
        self._collection = collection
        self.find_calls = 0

    async def find_one(self, *args, **kwargs):
        self.find_calls += 1
        if self.find_calls == 1:
            return None
        return await self._collection.find_one(*args, **kwargs)

    def __getattr__(self, name):
        return getattr(self._collection, name)


async def test_create_race_returns_the_winner(container, monkeypatch):
    winner = await container.conversation_service.get_or_create("u1", "u3")
    late = LateReader(container.conversation_repo.collection)
    monkeypatch.setattr(type(container.conversation_repo), "collection", property(lambda self: late))

    loser = await container.conversation_service.get_or_create("u3", "u1")

    assert loser.id == winner.id
    assert late.find_calls == 2


async def test_list_is_newest_first(container):
    older = await container.conversation_service.get_or_create("u1", "u2")
    newer = await container.conversation_service.get_or_create("u1", "u3")
    await container.conversation_repo.collection.update_one(
        {"participants_key": "u1|u2"}, {"$set": {"updated_at": utc_now() - timedelta(hours=1)}}
    )

    views = await container.conversation_service.list_for_user("u1")
    assert [view.id for view in views] == [newer.id, older.id]

    await container.message_service.send(older.id, "u2", "bump")
    views = await container.conversation_service.list_for_user("u1")
    assert [view.id for view in views] == [older.id, newer.id]


async def test_list_only_returns_own_conversations(container):
    await container.conversation_service.get_or_create("u1", "u2")

    assert await container.conversation_service.list_for_user("u3") == []


async def test_ensure_participant(container):
    view = await container.conversation_service.get_or_create("u1", "u2")

    conversation = await container.conversation_service.ensure_participant(view.id, "u2")
    assert str(conversation["_id"]) == view.id
    with pytest.raises(ForbiddenError):
        await container.conversation_service.ensure_participant(view.id, "u3")
    with pytest.raises(NotFoundError):
        await container.conversation_service.ensure_participant("nope", "u1")
