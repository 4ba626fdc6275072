# forumhub

A small forum service built on Starlette: forums with messages stored in
SQLite, a short-lived global chat, and WebSocket channels that push new
messages to every browser watching a forum.

## Installing

```
pip install .
```

With the test dependencies:

```
pip install ".[test]"
pytest
```

## Running the server

```
forumhub [--port PORT] [--dsn PATH] [--templates DIR]
```

- `--port` – port to listen on (default `$PORT`, else `8080`)
- `--dsn` – SQLite database file (default `$DB_DSN`, else `forum.db`);
  the tables are created when missing
- `--templates` – directory of Jinja2 HTML templates (default
  `$TEMPLATES_DIR`, else `templates`)

The command builds a `forumhub.app.Server`, serves on `0.0.0.0` until
SIGINT or SIGTERM, then closes the database. While the application runs, the
global chat drops expired messages every ten seconds.

## Routes

Defined by `forumhub.handlers.ForumHandlers.routes()`:

- `GET /auth/login`, `GET /auth/register` – render `login.html` and `register.html`
- `GET /api/forums` – renders `list_forums.html` with `Forums`
- `GET /api/forums/new` – renders `new_forum.html`
- `POST /api/forums` – creates a forum from the form fields `title` and
  `description`, then redirects (303) to `/api/forums`
- `GET /api/forums/{id}` – renders `forum_detail.html` with `Forum`
- `PUT /api/forums/{id}` – updates a forum from a JSON body (`title`, `description`)
- `DELETE /api/forums/{id}` – deletes a forum (204)
- `GET /api/forums/{id}/messages` – renders `message_list.html` with `Forum`,
  `Messages`, `CurrentUser` and `CurrentRole`
- `POST /api/forums/{id}/messages` – posts a message from a JSON body
  (`author`, `content`); answers 201 with the message as JSON
- `PUT /api/forums/{id}/messages/{message_id}` – edits a message (`content`)
- `DELETE /api/forums/{id}/messages/{message_id}` – deletes a message (204)
- `GET /api/forums/{id}/messages-list` – `{"messages", "currentUser", "currentRole"}` as JSON
- `POST /api/global-chat` – posts to the global chat from JSON (`username`, `text`)

WebSocket endpoints:

- `/ws/{forum_id}` – receives `{"type": "message_created", "payload": {...}}`
  whenever a message is posted to that forum
- `/ws/global` – the global chat. A new connection first receives the stored
  messages of the last minute; each frame it then sends,
  `{"username", "text", "timestamp"}`, is stored and relayed to every
  client unless its timestamp is over a minute old. Clients also receive
  `{"type": "cleanup", "payload": {"expiration": 60.0}}` at each cleanup.

Posting, editing and deleting messages needs an `Authorization: Bearer token`
header that resolves to a user; only the message's author or a user with
the role `admin` may do it.

## Using the pieces directly

```python
from forumhub.models import Forum
from forumhub.repository import ForumsRepo, open_database
from forumhub.service import ForumService, ValidationError

repo = ForumsRepo(open_database("forum.db"))
service = ForumService(repo)

forum_id = service.create_forum(Forum(title="General", description="Anything goes"))
```

`ForumService` rejects empty titles, descriptions, authors and contents,
titles over 255 bytes, contents over 5000 bytes, non-positive ids and
non-positive history limits with `ValidationError`. The repository raises
`RepositoryError`, or its subclass `NotFoundError` when a row does not exist.

`ForumHandlers(repo, templates_dir, token_parser, auth_client, forum_clients,
global_chat)` takes the authentication hooks as arguments: `token_parser`
maps a bearer token to a user id (raising `ValueError` when the token is
invalid), and `auth_client` is any object with `get_user_by_token(token)` and
`close()`, used only by the messages-list route.

`forumhub.realtime` holds `ForumClients` (subscribers per forum) and
`GlobalChat` (live clients plus an in-memory history of up to 100 unexpired
messages).

`forumhub.broadcast.BroadcastHub` is a plain fan-out hub: every frame a client
sends is relayed as text to every connected client. `create_app(primary,
global_hub)` serves two hubs at `/ws` and `/ws/global`, and
`start_websocket(host)` runs that application on ports 8081 and 8082.

Logging goes through `forumhub.logs.get_logger()`: one JSON object per line
on stderr at INFO level, or, after `set_development_mode(True)`,
tab-separated lines at DEBUG level.

## What it does not do

- It issues no tokens and keeps no passwords. The `forumhub` command builds
  its handlers without a `token_parser` or `auth_client`, so there every
  request to post, edit or delete a message is answered 401, and
  `currentUser` and `currentRole` are always empty. Users are read from the
  `users` table, which nothing in the package fills.
- It ships no HTML templates; the pages answer 500 until the templates
  directory holds the files named above.
- Storage is SQLite only.