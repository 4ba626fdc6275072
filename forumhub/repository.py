"""Storage for forums, forum messages, the global chat and users."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Protocol

from forumhub.models import Forum, GlobalMessage, Message, User

log = logging.getLogger(__name__)

CHAT_MESSAGE_LIFETIME = timedelta(minutes=1)

_NOW_DEFAULT = "(strftime('%Y-%m-%dT%H:%M:%f000+00:00', 'now'))"

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS forums (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT {_NOW_DEFAULT}
);
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    forum_id INTEGER NOT NULL REFERENCES forums (id) ON DELETE CASCADE,
    author TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT {_NOW_DEFAULT}
);
CREATE TABLE IF NOT EXISTS chat_messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    author TEXT NOT NULL,
    message TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT {_NOW_DEFAULT}
);
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL DEFAULT '',
    role TEXT NOT NULL DEFAULT 'user',
    created_at TEXT NOT NULL DEFAULT {_NOW_DEFAULT},
    updated_at TEXT NOT NULL DEFAULT {_NOW_DEFAULT}
);
"""


class RepositoryError(Exception):
    """A storage operation failed."""


class NotFoundError(RepositoryError):
    """The requested record does not exist."""


def _encode_time(value: datetime | None) -> str:
    if value is None:
        value = datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _decode_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value is not None else None


def open_database(dsn: str) -> sqlite3.Connection:
    """Open the database at ``dsn`` and make sure its tables exist."""
    try:
        db = sqlite3.connect(dsn, check_same_thread=False)
        db.execute("PRAGMA foreign_keys = ON")
        db.executescript(SCHEMA)
    except sqlite3.Error as exc:
        raise RepositoryError(f"failed to open database: {exc}") from exc
    return db


class ForumsRepository(Protocol):
    """What the handlers and services need from storage."""

    def get_all(self) -> list[Forum]: ...

    def get_by_id(self, forum_id: int) -> Forum: ...

    def create(self, forum: Forum) -> int: ...

    def update(self, forum_id: int, forum: Forum) -> None: ...

    def delete(self, forum_id: int) -> None: ...

    def get_messages(self, forum_id: int) -> list[Message]: ...

    def create_message(self, message: Message) -> int: ...

    def get_message_by_id(self, message_id: int) -> Message: ...

    def put_message(self, message_id: int, content: str) -> Message: ...

    def delete_message(self, message_id: int) -> None: ...

    def create_global_message(self, message: GlobalMessage) -> int: ...

    def get_global_chat_history(self, limit: int) -> list[GlobalMessage]: ...

    def get_user_by_id(self, user_id: int) -> User: ...


def _message(row: tuple) -> Message:
    return Message(
        id=row[0],
        forum_id=row[1],
        author=row[2],
        content=row[3],
        created_at=_decode_time(row[4]),
    )


def _global_message(row: tuple) -> GlobalMessage:
    return GlobalMessage(
        id=row[0], author=row[1], content=row[2], created_at=_decode_time(row[3])
    )


class ForumsRepo:
    """Forum storage backed by a SQLite connection."""

    def __init__(self, db: sqlite3.Connection) -> None:
        self.db = db

    def create(self, forum: Forum) -> int:
        try:
            with self.db:
                cursor = self.db.execute(
                    "INSERT INTO forums (name, description) VALUES (?, ?)",
                    (forum.title, forum.description),
                )
        except sqlite3.Error as exc:
            raise RepositoryError(f"insert forum failed: {exc}") from exc
        return cursor.lastrowid

    def get_all(self) -> list[Forum]:
        try:
            rows = self.db.execute(
                "SELECT id, name, description, created_at FROM forums"
            ).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError(str(exc)) from exc
        return [
            Forum(id=fid, title=name, description=desc, created_at=_decode_time(created))
            for fid, name, desc, created in rows
        ]

    def get_by_id(self, forum_id: int) -> Forum:
        try:
            row = self.db.execute(
                "SELECT id, name, description FROM forums WHERE id = ?", (forum_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError(str(exc)) from exc
        if row is None:
            raise NotFoundError("forum not found")
        return Forum(id=row[0], title=row[1], description=row[2])

    def update(self, forum_id: int, forum: Forum) -> None:
        try:
            with self.db:
                cursor = self.db.execute(
                    "UPDATE forums SET name = ?, description = ? WHERE id = ?",
                    (forum.title, forum.description, forum_id),
                )
        except sqlite3.Error as exc:
            raise RepositoryError(str(exc)) from exc
        if cursor.rowcount == 0:
            raise NotFoundError("no forum found with the given ID")

    def delete(self, forum_id: int) -> None:
        try:
            with self.db:
                cursor = self.db.execute("DELETE FROM forums WHERE id = ?", (forum_id,))
        except sqlite3.Error as exc:
            raise RepositoryError(str(exc)) from exc
        if cursor.rowcount == 0:
            raise NotFoundError("no forum found with the given ID")

    def create_message(self, message: Message) -> int:
        try:
            exists = self.db.execute(
                "SELECT EXISTS(SELECT 1 FROM forums WHERE id = ?)", (message.forum_id,)
            ).fetchone()[0]
        except sqlite3.Error as exc:
            raise RepositoryError(f"forum check failed: {exc}") from exc
        if not exists:
            raise NotFoundError(f"forum with ID {message.forum_id} not found")
        try:
            with self.db:
                cursor = self.db.execute(
                    "INSERT INTO messages (forum_id, author, content, created_at)"
                    " VALUES (?, ?, ?, ?)",
                    (
                        message.forum_id,
                        message.author,
                        message.content,
                        _encode_time(message.created_at),
                    ),
                )
        except sqlite3.Error as exc:
            raise RepositoryError(f"insert message failed: {exc}") from exc
        return cursor.lastrowid

    def get_messages(self, forum_id: int) -> list[Message]:
        try:
            rows = self.db.execute(
                "SELECT id, forum_id, author, content, created_at FROM messages"
                " WHERE forum_id = ? ORDER BY created_at, id",
                (forum_id,),
            ).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError(str(exc)) from exc
        return [_message(row) for row in rows]

    def delete_message(self, message_id: int) -> None:
        try:
            with self.db:
                self.db.execute("DELETE FROM messages WHERE id = ?", (message_id,))
        except sqlite3.Error as exc:
            raise RepositoryError(str(exc)) from exc

    def put_message(self, message_id: int, content: str) -> Message:
        try:
            with self.db:
                cursor = self.db.execute(
                    "UPDATE messages SET content = ? WHERE id = ?", (content, message_id)
                )
        except sqlite3.Error as exc:
            raise RepositoryError(f"failed to update message: {exc}") from exc
        if cursor.rowcount == 0:
            raise NotFoundError(f"failed to update message: message {message_id} not found")
        return self.get_message_by_id(message_id)

    def create_global_message(self, message: GlobalMessage) -> int:
        try:
            with self.db:
                cursor = self.db.execute(
                    "INSERT INTO chat_messages (author, message, created_at) VALUES (?, ?, ?)",
                    (message.author, message.content, _encode_time(message.created_at)),
                )
        except sqlite3.Error as exc:
            raise RepositoryError(f"insert global message failed: {exc}") from exc
        return cursor.lastrowid

    def get_global_messages(self, limit: int) -> list[GlobalMessage]:
        """Return up to ``limit`` chat messages, newest first."""
        try:
            rows = self.db.execute(
                "SELECT id, author, message, created_at FROM chat_messages"
                " ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError(f"failed to get global messages: {exc}") from exc
        return [_global_message(row) for row in rows]

    def delete_global_message(self, message_id: int) -> None:
        try:
            with self.db:
                self.db.execute("DELETE FROM chat_messages WHERE id = ?", (message_id,))
        except sqlite3.Error as exc:
            raise RepositoryError(f"failed to delete global message: {exc}") from exc

    def get_global_chat_history(self, limit: int) -> list[GlobalMessage]:
        """Return unexpired chat messages, oldest first, and purge expired ones."""
        cutoff = datetime.now(timezone.utc) - CHAT_MESSAGE_LIFETIME
        try:
            rows = self.db.execute(
                "SELECT id, author, message, created_at FROM chat_messages"
                " WHERE created_at > ? ORDER BY created_at ASC, id ASC LIMIT ?",
                (_encode_time(cutoff), limit),
            ).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError(str(exc)) from exc
        history = [_global_message(row) for row in rows]
        self.cleanup_expired_messages()
        return history

    def cleanup_expired_messages(self) -> int:
        """Delete chat messages older than their lifetime; return how many went."""
        cutoff = datetime.now(timezone.utc) - CHAT_MESSAGE_LIFETIME
        try:
            with self.db:
                cursor = self.db.execute(
                    "DELETE FROM chat_messages WHERE created_at < ?", (_encode_time(cutoff),)
                )
        except sqlite3.Error as exc:
            log.error("Error cleaning up expired messages: %s", exc)
            return 0
        return cursor.rowcount

    def get_user_by_id(self, user_id: int) -> User:
        try:
            row = self.db.execute(
                "SELECT id, username, email, created_at, updated_at, role"
                " FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError(str(exc)) from exc
        if row is None:
            raise NotFoundError("user not found")
        return User(
            id=row[0],
            username=row[1],
            email=row[2],
            created_at=_decode_time(row[3]),
            updated_at=_decode_time(row[4]),
            role=row[5],
        )

    def get_message_by_id(self, message_id: int) -> Message:
        try:
            row = self.db.execute(
                "SELECT id, forum_id, author, content, created_at FROM messages WHERE id = ?",
                (message_id,),
            ).fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError(str(exc)) from exc
        if row is None:
            raise NotFoundError("message not found")
        return _message(row)