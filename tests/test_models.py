from datetime import datetime, timezone

from forumhub.models import (
    AuthResponse,
    Forum,
    GlobalMessage,
    IncomingChatMessage,
    LoginRequest,
    Message,
    RegisterRequest,
    Topic,
    User,
)

WHEN = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


def test_forum_to_dict_uses_json_names():
    forum = Forum(id=3, title="Go", description="All about it", created_at=WHEN)
    data = forum.to_dict()
    assert data == {
        "id": 3,
        "title": "Go",
        "description": "All about it",
        "created_at": WHEN.isoformat(),
    }


def test_forum_without_timestamp():
    assert Forum(id=1, title="t", description="d").to_dict()["created_at"] is None


def test_message_to_dict():
    msg = Message(id=2, forum_id=7, author="User1", content="Message 1", created_at=WHEN)
    data = msg.to_dict()
    assert data["forum_id"] == 7
    assert data["author"] == "User1"
    assert data["content"] == "Message 1"
    assert datetime.fromisoformat(data["created_at"]) == WHEN


def test_global_message_to_dict():
    msg = GlobalMessage(id=1, author="user1", content="message 1", created_at=WHEN)
    assert set(msg.to_dict()) == {"id", "author", "content", "created_at"}
    assert msg.to_dict()["content"] == "message 1"


def test_incoming_chat_message():
    msg = IncomingChatMessage(author="a", message="hi")
    assert msg.to_dict() == {"author": "a", "message": "hi"}


def test_topic_desc_is_published_as_description():
    topic = Topic(id=1, forum_id=2, title="T", desc="about")
    data = topic.to_dict()
    assert data["description"] == "about"
    assert "desc" not in data


def test_user_to_dict_hides_password():
    password = "password"
    user = User(
        id=1,
        username="testuser",
        email="test@example.com",
        password=password,
        role="user",
        created_at=WHEN,
        updated_at=WHEN,
    )
    data = user.to_dict()
    assert "password" not in data
    assert password not in data.values()
    assert data["email"] == "test@example.com"
    assert data["role"] == "user"


def test_user_repr_hides_password():
    password = "password"
    user = User(username="alice", password=password)
    assert password not in repr(user)


def test_register_and_login_requests_carry_password():
    password = "password"
    register = RegisterRequest(username="alice", email="alice@example.com", password=password)
    login = LoginRequest(username="alice", password=password)
    assert register.to_dict() == {
        "username": "alice",
        "email": "alice@example.com",
        "password": password,
    }
    assert login.to_dict() == {"username": "alice", "password": password}


def test_auth_response_nests_user():
    user = User(id=5, username="bob", email="bob@example.com", role="admin")
    response = AuthResponse(token="token", user=user)
    data = response.to_dict()
    assert data["token"] == "token"
    assert data["user"] == user.to_dict()
    assert "password" not in data["user"]


def test_defaults_are_empty():
    user = User()
    assert (user.id, user.username, user.role) == (0, "", "")
    assert AuthResponse().user == User()