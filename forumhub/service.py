"""Business rules on top of the forum repository."""

from __future__ import annotations

from forumhub.models import Forum, GlobalMessage, Message, User
from forumhub.repository import ForumsRepository

MAX_TITLE_LENGTH = 255
MAX_CONTENT_LENGTH = 5000

EMPTY_TITLE = "forum title cannot be empty"
EMPTY_DESCRIPTION = "forum description cannot be empty"
TITLE_TOO_LONG = "forum title too long"
EMPTY_CONTENT = "message content cannot be empty"
EMPTY_AUTHOR = "message author cannot be empty"
INVALID_FORUM_ID = "invalid forum ID"
INVALID_USER_ID = "invalid user ID"
CONTENT_TOO_LONG = "message content too long"
INVALID_LIMIT = "invalid limit for chat history"


class ValidationError(ValueError):
    """Input rejected before it reaches storage."""


def _byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


def _check_content(content: str) -> None:
    if content == "":
        raise ValidationError(EMPTY_CONTENT)
    if _byte_length(content) > MAX_CONTENT_LENGTH:
        raise ValidationError(CONTENT_TOO_LONG)


def _check_forum_id(forum_id: int) -> None:
    if forum_id <= 0:
        raise ValidationError(f"invalid forum ID: {forum_id}")


def _check_message_id(message_id: int) -> None:
    if message_id <= 0:
        raise ValidationError(f"invalid message ID: {message_id}")


class ForumService:
    """Validates requests and forwards them to the repository."""

    def __init__(self, repo: ForumsRepository) -> None:
        self.repo = repo

    @staticmethod
    def _validate_forum(forum: Forum) -> None:
        if forum.title == "":
            raise ValidationError(EMPTY_TITLE)
        if forum.description == "":
            raise ValidationError(EMPTY_DESCRIPTION)
        if _byte_length(forum.title) > MAX_TITLE_LENGTH:
            raise ValidationError(TITLE_TOO_LONG)

    @staticmethod
    def _validate_message(message: Message) -> None:
        if message.forum_id <= 0:
            raise ValidationError(INVALID_FORUM_ID)
        if message.author == "":
            raise ValidationError(EMPTY_AUTHOR)
        _check_content(message.content)

    @staticmethod
    def _validate_global_message(message: GlobalMessage) -> None:
        if message.author == "":
            raise ValidationError(EMPTY_AUTHOR)
        _check_content(message.content)

    def get_all_forums(self) -> list[Forum]:
        return self.repo.get_all()

    def get_forum_by_id(self, forum_id: int) -> Forum:
        _check_forum_id(forum_id)
        return self.repo.get_by_id(forum_id)

    def create_forum(self, forum: Forum) -> int:
        self._validate_forum(forum)
        return self.repo.create(forum)

    def update_forum(self, forum_id: int, forum: Forum) -> None:
        _check_forum_id(forum_id)
        self._validate_forum(forum)
        self.repo.update(forum_id, forum)

    def delete_forum(self, forum_id: int) -> None:
        _check_forum_id(forum_id)
        self.repo.delete(forum_id)

    def get_messages(self, forum_id: int) -> list[Message]:
        _check_forum_id(forum_id)
        return self.repo.get_messages(forum_id)

    def create_message(self, message: Message) -> int:
        self._validate_message(message)
        return self.repo.create_message(message)

    def get_message_by_id(self, message_id: int) -> Message:
        _check_message_id(message_id)
        return self.repo.get_message_by_id(message_id)

    def update_message(self, message_id: int, content: str) -> Message:
        _check_message_id(message_id)
        _check_content(content)
        return self.repo.put_message(message_id, content)

    def delete_message(self, message_id: int) -> None:
        _check_message_id(message_id)
        self.repo.delete_message(message_id)

    def get_user_by_id(self, user_id: int) -> User:
        if user_id <= 0:
            raise ValidationError(INVALID_USER_ID)
        return self.repo.get_user_by_id(user_id)

    def create_global_message(self, message: GlobalMessage) -> int:
        self._validate_global_message(message)
        return self.repo.create_global_message(message)

    def get_global_chat_history(self, limit: int) -> list[GlobalMessage]:
        if limit <= 0:
            raise ValidationError(INVALID_LIMIT)
        return self.repo.get_global_chat_history(limit)