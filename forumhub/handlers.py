"""HTTP and websocket endpoints of the forum service."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any, Callable, Protocol
from urllib.parse import parse_qs

import jinja2
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import (
    HTMLResponse,
    JSONResponse,
    PlainTextResponse,
    RedirectResponse,
    Response,
)
from starlette.routing import BaseRoute, Route, WebSocketRoute
from starlette.websockets import WebSocket

from forumhub.logs import get_logger
from forumhub.models import Forum, GlobalMessage, Message, User
from forumhub.realtime import (
    ForumClients,
    GlobalChat,
    GlobalChatMessage,
    GlobalChatMessageRequest,
    WSMessage,
)
from forumhub.repository import ForumsRepository, RepositoryError

_INTEGER = re.compile(r"[+-]?[0-9]+")
_DECODER = json.JSONDecoder()
_SCHEME = "Bearer "

TokenParser = Callable[[str], int]
"""Maps a bearer token to a user ID; raises ValueError for an invalid token."""


class AuthClient(Protocol):
    """Remote authentication service that resolves tokens to users."""

    def get_user_by_token(self, token: str) -> Any:
        """Return an object with ``username`` and ``role``; raise on failure."""
        ...

    def close(self) -> None:
        """Release the connection to the service."""
        ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_int(text: str) -> int | None:
    return int(text) if _INTEGER.fullmatch(text) else None


def _bearer_value(header: str) -> str:
    """The Authorization header value with the bearer scheme removed."""
    return header.removeprefix(_SCHEME)


def _decode_json(body: bytes) -> Any:
    """Decode the first JSON value of a request body; raise ValueError if there is none."""
    text = body.decode("utf-8").lstrip()
    value, _ = _DECODER.raw_decode(text)
    return value


def _string_fields(data: Any, *keys: str) -> tuple[str, ...]:
    if data is None:
        return tuple("" for _ in keys)
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    values = []
    for key in keys:
        value = data.get(key)
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise ValueError(f"field {key!r} must be a string")
        values.append(value)
    return tuple(values)


def _parse_timestamp(value: Any) -> datetime:
    if not isinstance(value, str):
        raise ValueError("created_at must be a string")
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def _forum_from_json(data: Any) -> Forum:
    if data is None:
        return Forum()
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    title, description = _string_fields(data, "title", "description")
    forum_id = data.get("id", 0)
    if forum_id is None:
        forum_id = 0
    if isinstance(forum_id, bool) or not isinstance(forum_id, int):
        raise ValueError("id must be an integer")
    created = data.get("created_at")
    return Forum(
        id=forum_id,
        title=title,
        description=description,
        created_at=_parse_timestamp(created) if created is not None else None,
    )


def _json_error(status: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status)


async def _form_values(request: Request) -> dict[str, list[str]]:
    """Form fields of the body first, then those of the query string."""
    values: dict[str, list[str]] = {}
    content_type = request.headers.get("Content-Type", "").split(";")[0].strip().lower()
    if request.method in ("POST", "PUT", "PATCH") and (
        content_type == "application/x-www-form-urlencoded"
    ):
        body = (await request.body()).decode("utf-8", errors="replace")
        values = parse_qs(body, keep_blank_values=True)
    for key, items in parse_qs(request.url.query, keep_blank_values=True).items():
        values.setdefault(key, []).extend(items)
    return values


class ForumHandlers:
    """Request handlers for forums, their messages and the global chat."""

    def __init__(
        self,
        repo: ForumsRepository,
        templates_dir: str | None = None,
        token_parser: TokenParser | None = None,
        auth_client: AuthClient | None = None,
        forum_clients: ForumClients | None = None,
        global_chat: GlobalChat | None = None,
    ) -> None:
        self.repo = repo
        self.token_parser = token_parser
        self.auth_client = auth_client
        self.forum_clients = forum_clients if forum_clients is not None else ForumClients()
        self.global_chat = global_chat if global_chat is not None else GlobalChat(repo)
        loader: jinja2.BaseLoader = (
            jinja2.FileSystemLoader(templates_dir) if templates_dir else jinja2.DictLoader({})
        )
        self.templates = jinja2.Environment(loader=loader, autoescape=True)

    def routes(self) -> list[BaseRoute]:
        """All endpoints, with path parameters parsed by the handlers themselves."""
        return [
            WebSocketRoute("/ws/global", self.global_chat_socket),
            WebSocketRoute("/ws/{forum_id}", self.forum_socket),
            Route("/auth/login", self.login_page, methods=["GET"]),
            Route("/auth/register", self.register_page, methods=["GET"]),
            Route("/api/forums", self.list_forums, methods=["GET"]),
            Route("/api/forums/new", self.new_forum_form, methods=["GET"]),
            Route("/api/forums", self.create_forum, methods=["POST"]),
            Route("/api/forums/{id}", self.get_forum, methods=["GET"]),
            Route("/api/forums/{id}", self.update_forum, methods=["PUT"]),
            Route("/api/forums/{id}", self.delete_forum, methods=["DELETE"]),
            Route("/api/forums/{id}/messages", self.get_messages, methods=["GET"]),
            Route("/api/forums/{id}/messages", self.post_message, methods=["POST"]),
            Route(
                "/api/forums/{id}/messages/{message_id}",
                self.delete_message,
                methods=["DELETE"],
            ),
            Route(
                "/api/forums/{id}/messages/{message_id}",
                self.update_message,
                methods=["PUT"],
            ),
            Route("/api/global-chat", self.post_global_chat_message, methods=["POST"]),
            Route("/api/forums/{id}/messages-list", self.get_messages_api, methods=["GET"]),
        ]

    def render_template(self, name: str, context: dict[str, Any] | None) -> Response:
        """Render an HTML template; a missing or broken template gives a 500."""
        try:
            html = self.templates.get_template(name).render(context or {})
        except jinja2.TemplateError as exc:
            return PlainTextResponse(str(exc) or name, status_code=500)
        return HTMLResponse(html)

    def _current_user(self, request: Request) -> User | None:
        header = request.headers.get("Authorization", "")
        if not header or self.token_parser is None:
            return None
        presented = _bearer_value(header)
        try:
            user_id = self.token_parser(presented)
        except ValueError:
            return None
        try:
            return self.repo.get_user_by_id(user_id)
        except RepositoryError:
            return None

    async def login_page(self, request: Request) -> Response:
        return self.render_template("login.html", None)

    async def register_page(self, request: Request) -> Response:
        return self.render_template("register.html", None)

    async def list_forums(self, request: Request) -> Response:
        try:
            forums = self.repo.get_all()
        except RepositoryError as exc:
            return PlainTextResponse(str(exc), status_code=500)
        return self.render_template("list_forums.html", {"Forums": forums})

    async def new_forum_form(self, request: Request) -> Response:
        return self.render_template("new_forum.html", None)

    async def create_forum(self, request: Request) -> Response:
        values = await _form_values(request)
        forum = Forum(
            title=values.get("title", [""])[0],
            description=values.get("description", [""])[0],
            created_at=_now(),
        )
        try:
            forum.id = self.repo.create(forum)
        except RepositoryError as exc:
            return PlainTextResponse(str(exc), status_code=500)
        await self.forum_clients.broadcast(
            forum.id, WSMessage(type="forum_created", payload={"forum": forum})
        )
        return RedirectResponse("/api/forums", status_code=303)

    async def get_forum(self, request: Request) -> Response:
        forum_id = _parse_int(request.path_params.get("id", ""))
        if forum_id is None:
            return PlainTextResponse("Некорректный ID", status_code=400)
        try:
            forum = self.repo.get_by_id(forum_id)
        except RepositoryError:
            return PlainTextResponse("Форум не найден", status_code=404)
        return self.render_template("forum_detail.html", {"Forum": forum})

    async def get_all_forums(self, request: Request) -> Response:
        try:
            forums = self.repo.get_all()
        except RepositoryError as exc:
            return PlainTextResponse(str(exc), status_code=500)
        return JSONResponse([forum.to_dict() for forum in forums])

    async def update_forum(self, request: Request) -> Response:
        forum_id = _parse_int(request.path_params.get("id", "")) or 0
        try:
            forum = _forum_from_json(_decode_json(await request.body()))
        except ValueError as exc:
            return PlainTextResponse(str(exc), status_code=400)
        try:
            self.repo.update(forum_id, forum)
        except RepositoryError as exc:
            return PlainTextResponse(str(exc), status_code=500)
        return Response(status_code=200)

    async def delete_forum(self, request: Request) -> Response:
        forum_id = _parse_int(request.path_params.get("id", ""))
        if forum_id is None:
            return PlainTextResponse("Invalid forum ID", status_code=400)
        try:
            self.repo.delete(forum_id)
        except RepositoryError as exc:
            return PlainTextResponse(str(exc), status_code=500)
        return Response(status_code=204)

    async def get_messages(self, request: Request) -> Response:
        forum_id = _parse_int(request.path_params.get("id", ""))
        if forum_id is None:
            return PlainTextResponse("Invalid forum ID", status_code=400)
        try:
            forum = self.repo.get_by_id(forum_id)
        except RepositoryError:
            return PlainTextResponse("Forum not found", status_code=404)
        try:
            messages = self.repo.get_messages(forum_id)
        except RepositoryError as exc:
            return PlainTextResponse(str(exc), status_code=500)
        user = self._current_user(request)
        return self.render_template(
            "message_list.html",
            {
                "Forum": forum,
                "Messages": messages,
                "CurrentUser": user.username if user else "",
                "CurrentRole": user.role if user else "",
            },
        )

    async def post_message(self, request: Request) -> Response:
        forum_id = _parse_int(request.path_params.get("id", ""))
        if forum_id is None:
            return _json_error(400, "Invalid forum ID")
        if "application/json" not in request.headers.get("Content-Type", ""):
            return _json_error(400, "Content-Type must be application/json")
        try:
            author, content = _string_fields(
                _decode_json(await request.body()), "author", "content"
            )
        except ValueError:
            return _json_error(400, "Invalid JSON format")
        if not author.strip() or not content.strip():
            return _json_error(400, "Author and content are required")

        user = self._current_user(request)
        if user is None:
            return PlainTextResponse("Unauthorized", status_code=401)
        if user.username != author and user.role != "admin":
            return PlainTextResponse("Forbidden", status_code=403)

        message = Message(forum_id=forum_id, author=author, content=content, created_at=_now())
        try:
            message.id = self.repo.create_message(message)
        except RepositoryError as exc:
            get_logger().error("DB error", extra={"error": str(exc)})
            return _json_error(500, "Failed to save message")

        event = WSMessage(type="message_created", payload=message)
        return JSONResponse(
            message.to_dict(),
            status_code=201,
            background=BackgroundTask(self.forum_clients.broadcast, forum_id, event),
        )

    async def _authorized_message(
        self, request: Request, message_id: int
    ) -> Message | Response:
        user = self._current_user(request)
        if user is None:
            return PlainTextResponse("Unauthorized", status_code=401)
        try:
            message = self.repo.get_message_by_id(message_id)
        except RepositoryError:
            return PlainTextResponse("Message not found", status_code=404)
        if user.username != message.author and user.role != "admin":
            return PlainTextResponse("Forbidden", status_code=403)
        return message

    async def update_message(self, request: Request) -> Response:
        message_id = _parse_int(request.path_params.get("message_id", ""))
        if message_id is None:
            return PlainTextResponse("Invalid message ID", status_code=400)
        try:
            (content,) = _string_fields(_decode_json(await request.body()), "content")
        except ValueError:
            return PlainTextResponse("Invalid request body", status_code=400)
        checked = await self._authorized_message(request, message_id)
        if isinstance(checked, Response):
            return checked
        try:
            updated = self.repo.put_message(message_id, content)
        except RepositoryError as exc:
            return PlainTextResponse(str(exc), status_code=500)
        return JSONResponse(updated.to_dict())

    async def delete_message(self, request: Request) -> Response:
        message_id = _parse_int(request.path_params.get("message_id", ""))
        if message_id is None:
            return PlainTextResponse("Invalid message ID", status_code=400)
        checked = await self._authorized_message(request, message_id)
        if isinstance(checked, Response):
            return checked
        try:
            self.repo.delete_message(message_id)
        except RepositoryError as exc:
            return PlainTextResponse(str(exc), status_code=500)
        return Response(status_code=204)

    async def post_global_chat_message(self, request: Request) -> Response:
        if "application/json" not in request.headers.get("Content-Type", ""):
            return _json_error(400, "Content-Type must be application/json")
        try:
            body = GlobalChatMessageRequest.from_dict(_decode_json(await request.body()))
        except ValueError:
            return _json_error(400, "Invalid JSON format")
        if not body.author.strip() or not body.content.strip():
            return _json_error(400, "Username and text are required")

        try:
            message_id = self.repo.create_global_message(
                GlobalMessage(author=body.author, content=body.content, created_at=_now())
            )
        except RepositoryError as exc:
            get_logger().error("DB error", extra={"error": str(exc)})
            return _json_error(500, "Failed to save message")

        get_logger().info(
            "Sending message to websocket",
            extra={"author": body.author, "text": body.content},
        )
        await self.global_chat.publish(GlobalChatMessage(body.author, body.content, _now()))
        return JSONResponse(
            {
                "id": message_id,
                "username": body.author,
                "text": body.content,
                "timestamp": _now().isoformat(),
            },
            status_code=201,
        )

    async def get_messages_api(self, request: Request) -> Response:
        forum_id = _parse_int(request.path_params.get("id", ""))
        if forum_id is None:
            return PlainTextResponse("Invalid forum ID", status_code=400)
        try:
            messages = self.repo.get_messages(forum_id)
        except RepositoryError as exc:
            return PlainTextResponse(str(exc), status_code=500)

        current_user = current_role = ""
        header = request.headers.get("Authorization", "")
        if header:
            presented = _bearer_value(header)
            if presented and self.auth_client is not None:
                try:
                    user = self.auth_client.get_user_by_token(presented)
                except Exception as exc:  # any failure of the remote service
                    get_logger().error(
                        "Error getting user by token", extra={"error": str(exc)}
                    )
                else:
                    if user is not None:
                        current_user = user.username
                        current_role = user.role

        return JSONResponse(
            {
                "messages": [message.to_dict() for message in messages],
                "currentUser": current_user,
                "currentRole": current_role,
            }
        )

    async def forum_socket(self, websocket: WebSocket) -> None:
        forum_id = _parse_int(websocket.path_params.get("forum_id", ""))
        if forum_id is None:
            await websocket.close(code=1008)
            return
        await self.forum_clients.serve(websocket, forum_id)

    async def global_chat_socket(self, websocket: WebSocket) -> None:
        await self.global_chat.serve(websocket)