import httpx
import pytest

from chatcore.main import create_app
from chatcore.schemas.events import MESSAGE_RECEIVED

from conftest import make_settings, token_for


def auth(user_id: str):
    return {"Authorization": f"Bearer {token_for(user_id)}"}


@pytest.fixture
async def client(container):
    app = create_app(container=container)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


async def test_requires_a_token(client):
    response = await client.get("/conversations")
    assert response.status_code == 401

    response = await client.get("/conversations", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


async def test_conversation_flow(client, broadcaster):
    response = await client.get("/conversations/u2", headers=auth("u1"))
    assert response.status_code == 200
    conversation = response.json()
    assert conversation["isRead"] is True
    assert conversation["participants"][0]["userId"] == "u2"

    response = await client.post(
        f"/conversations/{conversation['id']}/messages",
        json={"content": "hello", "attachments": [{"type": "document", "url": "https://cdn.example/f.pdf"}]},
        headers=auth("u1"),
    )
    assert response.status_code == 201
    message = response.json()
    assert message["senderId"] == "u1"
    assert message["readStatus"] == {"isRead": False, "readAt": None}
    assert broadcaster.named(MESSAGE_RECEIVED)[0]["id"] == message["id"]

    response = await client.get("/messages/unread", headers=auth("u2"))
    assert response.json() == {conversation["id"]: 1}

    response = await client.get("/conversations", headers=auth("u2"))
    [listed] = response.json()
    assert listed["isRead"] is False
    assert listed["lastMessage"]["content"] == "hello"

    response = await client.get(f"/conversations/{conversation['id']}/messages", headers=auth("u2"))
    page = response.json()
    assert response.status_code == 200
    assert [item["id"] for item in page["items"]] == [message["id"]]
    assert page["totalCount"] == 1
    assert page["totalPages"] == 1
    assert page["currentPage"] == 1
    assert page["pageSize"] == 20

    response = await client.put(f"/conversations/{conversation['id']}/read", headers=auth("u2"))
    assert response.json() == {"success": True, "message": "All messages marked as read", "messageIds": []}


async def test_mark_single_message_read(client, conversation):
    sent = await client.post(f"/conversations/{conversation}/messages", json={"content": "hi"}, headers=auth("u1"))
    message_id = sent.json()["id"]

    response = await client.put(f"/messages/{message_id}/read", headers=auth("u1"))
    assert response.status_code == 403

    response = await client.put(f"/messages/{message_id}/read", headers=auth("u2"))
    assert response.status_code == 200
    assert response.json()["readStatus"]["isRead"] is True


async def test_errors_use_one_shape(client, conversation):
    response = await client.get("/conversations/ghost", headers=auth("u1"))
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "User not found"}

    response = await client.get("/conversations/u1", headers=auth("u1"))
    assert response.status_code == 400

    response = await client.get(f"/conversations/{conversation}/messages", headers=auth("u3"))
    assert response.status_code == 403
    assert response.json()["success"] is False

    response = await client.post("/conversations/64b7f0c2a1b2c3d4e5f60718/messages", json={"content": "x"}, headers=auth("u1"))
    assert response.status_code == 404

    response = await client.get(f"/conversations/{conversation}/messages?limit=500", headers=auth("u1"))
    assert response.status_code == 400


async def test_blank_message_is_rejected(client, conversation):
    response = await client.post(f"/conversations/{conversation}/messages", json={"content": "   "}, headers=auth("u1"))

    assert response.status_code == 422


async def test_presence_without_sessions(client):
    response = await client.get("/presence/u2", headers=auth("u1"))

    assert response.json() == {"userId": "u2", "online": False}


def test_run_serves_the_app_on_configured_address(monkeypatch):
    import uvicorn

    from chatcore import main

    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
    monkeypatch.setattr(main, "get_settings", lambda: make_settings(HOST="127.0.0.1", PORT=9001))

    main.run()

    assert calls == [("chatcore.main:app", {"host": "127.0.0.1", "port": 9001})]
