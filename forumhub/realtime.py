"""Live updates: per-forum websocket subscribers and the expiring global chat."""

from __future__ import annotations

import asyncio
import json
import re
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from starlette.websockets import WebSocket, WebSocketDisconnect

from forumhub.logs import get_logger
from forumhub.models import GlobalMessage
from forumhub.repository import ForumsRepository, RepositoryError

DEFAULT_EXPIRATION = timedelta(minutes=1)
DEFAULT_HISTORY_LIMIT = 100
CLEANUP_INTERVAL = 10.0

_FRACTION = re.compile(r"\.(\d+)")


class Connection(Protocol):
    async def send_text(self, data: str) -> None: ...

    async def close(self) -> None: ...


def _jsonable(value: Any) -> Any:
    """Turn records, containers and datetimes into plain JSON values."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _parse_time(text: str) -> datetime:
    """Parse an RFC 3339 timestamp, including a trailing Z and nanoseconds."""
    text = text.strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WSMessage:
    """An event pushed to websocket subscribers."""

    type: str
    payload: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "payload": _jsonable(self.payload)}


@dataclass
class GlobalChatMessage:
    """A global chat line as it travels over the websocket."""

    author: str = ""
    content: str = ""
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "username": self.author,
            "text": self.content,
            "timestamp": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_dict(cls, data: Any) -> GlobalChatMessage:
        """Build a message from its JSON form; raise ValueError if it is malformed."""
        if not isinstance(data, dict):
            raise ValueError("chat message must be a JSON object")
        author = data.get("username") or ""
        content = data.get("text") or ""
        if not isinstance(author, str) or not isinstance(content, str):
            raise ValueError("username and text must be strings")
        stamp = data.get("timestamp")
        if stamp is None:
            created_at = None
        elif isinstance(stamp, str):
            created_at = _parse_time(stamp)
        else:
            raise ValueError("timestamp must be a string")
        return cls(author=author, content=content, created_at=created_at)


@dataclass
class GlobalChatMessageRequest:
    """Body of a request that posts to the global chat."""

    author: str = ""
    content: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> GlobalChatMessageRequest:
        """Build a request from its JSON form; raise ValueError if it is malformed."""
        if not isinstance(data, dict):
            raise ValueError("request must be a JSON object")
        author = data.get("username") or ""
        content = data.get("text") or ""
        if not isinstance(author, str) or not isinstance(content, str):
            raise ValueError("username and text must be strings")
        return cls(author=author, content=content)


async def _send_all(clients: set, text: str, failure_note: str, **fields: Any) -> None:
    """Send ``text`` to every client; close and drop the ones that fail."""
    log = get_logger()
    for conn in list(clients):
        try:
            await conn.send_text(text)
        except Exception as exc:
            log.error(failure_note, extra={"error": str(exc), **fields})
            clients.discard(conn)
            with suppress(Exception):
                await conn.close()


class ForumClients:
    """Websocket subscribers grouped by the forum they watch."""

    def __init__(self) -> None:
        self._clients: dict[int, set[Connection]] = {}

    def register(self, forum_id: int, conn: Connection) -> None:
        conns = self._clients.setdefault(forum_id, set())
        conns.add(conn)
        get_logger().info(
            "New client connected",
            extra={"forumID": forum_id, "totalClients": len(conns)},
        )

    def unregister(self, forum_id: int, conn: Connection) -> None:
        conns = self._clients.get(forum_id)
        if conns is not None:
            conns.discard(conn)

    def count(self, forum_id: int) -> int:
        return len(self._clients.get(forum_id, ()))

    async def broadcast(self, forum_id: int, message: WSMessage) -> None:
        """Send an event to everyone watching ``forum_id``."""
        conns = self._clients.get(forum_id)
        if not conns:
            return
        await _send_all(conns, json.dumps(message.to_dict()), "WS send error", forumID=forum_id)

    async def serve(self, websocket: WebSocket, forum_id: int) -> None:
        """Keep a subscriber registered until its websocket closes."""
        self.register(forum_id, websocket)
        try:
            await websocket.accept()
            while True:
                event = await websocket.receive()
                if event["type"] == "websocket.disconnect":
                    code = event.get("code", 1000)
                    if code not in (1000, 1001, 1005):
                        get_logger().error("WebSocket error", extra={"code": code})
                    break
        finally:
            self.unregister(forum_id, websocket)
            with suppress(Exception):
                await websocket.close()


class GlobalChat:
    """The site-wide chat: live clients and a short-lived in-memory history."""

    def __init__(
        self,
        repo: ForumsRepository,
        expiration: timedelta = DEFAULT_EXPIRATION,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.repo = repo
        self.expiration = expiration
        self.history_limit = history_limit
        self._clients: set[Connection] = set()
        self._history: list[GlobalChatMessage] = []

    def add_client(self, conn: Connection) -> None:
        self._clients.add(conn)

    def remove_client(self, conn: Connection) -> None:
        self._clients.discard(conn)

    def client_count(self) -> int:
        return len(self._clients)

    def history(self) -> list[GlobalChatMessage]:
        return list(self._history)

    def _is_fresh(self, message: GlobalChatMessage, now: datetime) -> bool:
        if message.created_at is None:
            return False
        return now - _aware(message.created_at) < self.expiration

    async def publish(self, message: GlobalChatMessage) -> bool:
        """Record and deliver a message unless it has already expired."""
        if not self._is_fresh(message, _now()):
            return False
        self._history.append(message)
        if len(self._history) > self.history_limit:
            del self._history[: len(self._history) - self.history_limit]
        await _send_all(self._clients, json.dumps(message.to_dict()), "Error sending message")
        return True

    async def cleanup_expired(self, now: datetime | None = None) -> int:
        """Drop expired history, notify clients, and return how many messages went."""
        now = _aware(now) if now is not None else _now()
        before = len(self._history)
        self._history = [msg for msg in self._history if self._is_fresh(msg, now)]
        notice = WSMessage(
            type="cleanup",
            payload={"expiration": self.expiration.total_seconds()},
        )
        await _send_all(self._clients, json.dumps(notice.to_dict()), "Cleanup broadcast error")
        return before - len(self._history)

    async def run_cleanup(self, interval: float = CLEANUP_INTERVAL) -> None:
        """Run ``cleanup_expired`` every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            await self.cleanup_expired(_now())

    async def _send_history(self, websocket: WebSocket) -> None:
        log = get_logger()
        try:
            stored = self.repo.get_global_chat_history(self.history_limit)
        except RepositoryError as exc:
            log.error("Error loading chat history", extra={"error": str(exc)})
            return
        for item in stored:
            line = GlobalChatMessage(item.author, item.content, item.created_at)
            try:
                await websocket.send_text(json.dumps(line.to_dict()))
            except Exception as exc:
                log.error("Error sending history", extra={"error": str(exc)})
                return

    async def serve(self, websocket: WebSocket) -> None:
        """Send recent history, then store and relay every line the client sends."""
        log = get_logger()
        self.add_client(websocket)
        try:
            await websocket.accept()
            log.info("New WebSocket connection established")
            await self._send_history(websocket)
            while True:
                try:
                    text = await websocket.receive_text()
                    message = GlobalChatMessage.from_dict(json.loads(text))
                except WebSocketDisconnect:
                    break
                except (ValueError, KeyError) as exc:
                    log.error("Global chat error", extra={"error": str(exc)})
                    break
                try:
                    self.repo.create_global_message(
                        GlobalMessage(
                            author=message.author,
                            content=message.content,
                            created_at=_now(),
                        )
                    )
                except RepositoryError as exc:
                    log.error("Error saving message", extra={"error": str(exc)})
                await self.publish(message)
        finally:
            log.info("WebSocket connection closed")
            self.remove_client(websocket)
            with suppress(Exception):
                await websocket.close()