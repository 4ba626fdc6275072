import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from starlette.applications import Starlette
from starlette.routing import WebSocketRoute
from starlette.testclient import TestClient

from forumhub.models import GlobalMessage, Message
from forumhub.realtime import (
    ForumClients,
    GlobalChat,
    GlobalChatMessage,
    GlobalChatMessageRequest,
    WSMessage,
)
from forumhub.repository import RepositoryError


class FakeConn:
    def __init__(self, fail=False):
        self.sent = []
        self.closed = False
        self.fail = fail

    async def send_text(self, data):
        if self.fail:
            raise RuntimeError("connection lost")
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True


class FakeRepo:
    def __init__(self, history=None, history_error=False):
        self.stored_history = history or []
        self.history_error = history_error
        self.created = []
        self.history_limits = []

    def get_global_chat_history(self, limit):
        self.history_limits.append(limit)
        if self.history_error:
            raise RepositoryError("database error")
        return list(self.stored_history)

    def create_global_message(self, message):
        self.created.append(message)
        return len(self.created)


def now():
    return datetime.now(timezone.utc)


def test_ws_message_serialises_record_payload():
    msg = Message(id=1, forum_id=1, author="User1", content="Message 1")
    data = WSMessage(type="message_created", payload=msg).to_dict()
    assert data["type"] == "message_created"
    assert data["payload"]["forum_id"] == 1
    assert data["payload"]["author"] == "User1"


def test_ws_message_nested_dict_payload():
    data = WSMessage(type="cleanup", payload={"expiration": 60.0}).to_dict()
    assert data == {"type": "cleanup", "payload": {"expiration": 60.0}}


def test_global_chat_message_round_trip():
    original = GlobalChatMessage("alice", "hello", datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))
    data = original.to_dict()
    assert data["username"] == "alice"
    assert data["text"] == "hello"
    assert GlobalChatMessage.from_dict(data) == original


def test_global_chat_message_parses_z_and_nanoseconds():
    msg = GlobalChatMessage.from_dict(
        {"username": "a", "text": "b", "timestamp": "2024-05-01T12:00:00.123456789Z"}
    )
    assert msg.created_at == datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)


def test_global_chat_message_without_timestamp():
    msg = GlobalChatMessage.from_dict({"username": "a", "text": "b"})
    assert msg.created_at is None


def test_global_chat_message_rejects_non_object():
    with pytest.raises(ValueError):
        GlobalChatMessage.from_dict(["not", "an", "object"])


def test_global_chat_request_from_dict():
    req = GlobalChatMessageRequest.from_dict({"username": "User1", "text": "Test Message"})
    assert req == GlobalChatMessageRequest(author="User1", content="Test Message")


def test_forum_clients_register_and_unregister():
    clients = ForumClients()
    conn = FakeConn()
    clients.register(1, conn)
    assert clients.count(1) == 1
    assert clients.count(2) == 0
    clients.unregister(1, conn)
    assert clients.count(1) == 0


@pytest.mark.asyncio
async def test_broadcast_to_forum_delivers_message():
    clients = ForumClients()
    conn = FakeConn()
    other = FakeConn()
    clients.register(1, conn)
    clients.register(2, other)
    await clients.broadcast(1, WSMessage(type="test", payload="test payload"))
    assert conn.sent == [{"type": "test", "payload": "test payload"}]
    assert other.sent == []


@pytest.mark.asyncio
async def test_broadcast_drops_failed_connection():
    clients = ForumClients()
    good, bad = FakeConn(), FakeConn(fail=True)
    clients.register(1, good)
    clients.register(1, bad)
    await clients.broadcast(1, WSMessage(type="test"))
    assert clients.count(1) == 1
    assert bad.closed is True
    assert len(good.sent) == 1


def test_serve_websocket_tracks_client():
    clients = ForumClients()

    async def endpoint(websocket):
        await clients.serve(websocket, websocket.path_params["forum_id"])

    app = Starlette(routes=[WebSocketRoute("/ws/{forum_id:int}", endpoint)])
    with TestClient(app) as client:
        with client.websocket_connect("/ws/1"):
            assert clients.count(1) == 1
    assert clients.count(1) == 0


@pytest.mark.asyncio
async def test_publish_fresh_message_is_stored_and_sent():
    chat = GlobalChat(FakeRepo())
    conn = FakeConn()
    chat.add_client(conn)
    msg = GlobalChatMessage("test", "test message", now())
    assert await chat.publish(msg) is True
    assert chat.history() == [msg]
    assert conn.sent[0]["text"] == "test message"


@pytest.mark.asyncio
async def test_publish_expired_or_undated_message_is_dropped():
    chat = GlobalChat(FakeRepo())
    conn = FakeConn()
    chat.add_client(conn)
    old = GlobalChatMessage("a", "b", now() - timedelta(minutes=2))
    assert await chat.publish(old) is False
    assert await chat.publish(GlobalChatMessage("a", "b")) is False
    assert chat.history() == []
    assert conn.sent == []


@pytest.mark.asyncio
async def test_publish_trims_history_to_limit():
    chat = GlobalChat(FakeRepo(), history_limit=3)
    for index in range(5):
        await chat.publish(GlobalChatMessage("u", f"m{index}", now()))
    assert [m.content for m in chat.history()] == ["m2", "m3", "m4"]


@pytest.mark.asyncio
async def test_publish_removes_failing_client():
    chat = GlobalChat(FakeRepo())
    bad = FakeConn(fail=True)
    chat.add_client(bad)
    await chat.publish(GlobalChatMessage("u", "m", now()))
    assert chat.client_count() == 0
    assert bad.closed is True


@pytest.mark.asyncio
async def test_cleanup_expired_removes_old_and_notifies():
    chat = GlobalChat(FakeRepo())
    conn = FakeConn()
    chat.add_client(conn)
    start = now()
    await chat.publish(GlobalChatMessage("u", "old", start - timedelta(seconds=50)))
    await chat.publish(GlobalChatMessage("u", "new", start))
    conn.sent.clear()
    removed = await chat.cleanup_expired(start + timedelta(seconds=20))
    assert removed == 1
    assert [m.content for m in chat.history()] == ["new"]
    assert conn.sent == [{"type": "cleanup", "payload": {"expiration": 60.0}}]


@pytest.mark.asyncio
async def test_run_cleanup_repeats_until_cancelled():
    chat = GlobalChat(FakeRepo())
    conn = FakeConn()
    chat.add_client(conn)
    task = asyncio.create_task(chat.run_cleanup(0.01))
    await asyncio.sleep(0.1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(conn.sent) >= 2
    assert all(item["type"] == "cleanup" for item in conn.sent)


def _chat_app(chat):
    return Starlette(routes=[WebSocketRoute("/ws/global", chat.serve)])


def test_serve_global_chat_sends_history_and_relays():
    stored = [GlobalMessage(id=1, author="old", content="earlier", created_at=now())]
    repo = FakeRepo(history=stored)
    chat = GlobalChat(repo)
    with TestClient(_chat_app(chat)) as client:
        with client.websocket_connect("/ws/global") as ws:
            assert chat.client_count() == 1
            first = ws.receive_json()
            assert first["username"] == "old"
            assert first["text"] == "earlier"
            ws.send_json({"username": "test", "text": "test message", "timestamp": now().isoformat()})
            echoed = ws.receive_json()
            assert echoed["username"] == "test"
            assert echoed["text"] == "test message"
    assert repo.history_limits == [100]
    assert [(m.author, m.content) for m in repo.created] == [("test", "test message")]
    assert chat.client_count() == 0


def test_serve_global_chat_survives_history_error():
    repo = FakeRepo(history_error=True)
    chat = GlobalChat(repo)
    with TestClient(_chat_app(chat)) as client:
        with client.websocket_connect("/ws/global") as ws:
            ws.send_json({"username": "u", "text": "hi", "timestamp": now().isoformat()})
            assert ws.receive_json()["text"] == "hi"
    assert len(repo.created) == 1