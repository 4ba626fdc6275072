"""Data records shared by the forum service and their JSON shapes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


def _timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class IncomingChatMessage:
    """A chat line as sent by a client."""

    author: str = ""
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"author": self.author, "message": self.message}


@dataclass
class GlobalMessage:
    """A message of the site-wide chat."""

    id: int = 0
    author: str = ""
    content: str = ""
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "author": self.author,
            "content": self.content,
            "created_at": _timestamp(self.created_at),
        }


@dataclass
class Forum:
    """A discussion forum."""

    id: int = 0
    title: str = ""
    description: str = ""
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "created_at": _timestamp(self.created_at),
        }


@dataclass
class Message:
    """A message posted in a forum."""

    id: int = 0
    forum_id: int = 0
    author: str = ""
    content: str = ""
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "forum_id": self.forum_id,
            "author": self.author,
            "content": self.content,
            "created_at": _timestamp(self.created_at),
        }


@dataclass
class Topic:
    """A topic inside a forum."""

    id: int = 0
    forum_id: int = 0
    title: str = ""
    desc: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "forum_id": self.forum_id,
            "title": self.title,
            "description": self.desc,
        }


@dataclass
class User:
    """A registered user; the password never appears in its JSON form."""

    id: int = 0
    username: str = ""
    email: str = ""
    password: str = field(default="", repr=False)
    role: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "created_at": _timestamp(self.created_at),
            "updated_at": _timestamp(self.updated_at),
        }


@dataclass
class RegisterRequest:
    """Body of a registration request."""

    username: str = ""
    email: str = ""
    password: str = field(default="", repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "username": self.username,
            "email": self.email,
            "password": self.password,
        }


@dataclass
class LoginRequest:
    """Body of a login request."""

    username: str = ""
    password: str = field(default="", repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {"username": self.username, "password": self.password}


@dataclass
class AuthResponse:
    """Answer to a successful login or registration."""

    token: str = ""
    user: User = field(default_factory=User)

    def to_dict(self) -> dict[str, Any]:
        return {"token": self.token, "user": self.user.to_dict()}