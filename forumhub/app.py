"""Forum service application: storage, routes and the HTTP server."""

from __future__ import annotations

import argparse
import asyncio
import os
from contextlib import asynccontextmanager, suppress

import uvicorn
from starlette.applications import Starlette

from forumhub.handlers import ForumHandlers
from forumhub.logs import get_logger
from forumhub.repository import ForumsRepo, RepositoryError, open_database

DEFAULT_DSN = "forum.db"
DEFAULT_PORT = "8080"
SHUTDOWN_TIMEOUT = 5


class Server:
    """Owns the database connection and serves the forum routes."""

    def __init__(
        self, port: str, dsn: str | None = None, templates_dir: str | None = None
    ) -> None:
        self.port = str(port)
        self.dsn = dsn if dsn is not None else os.environ.get("DB_DSN", DEFAULT_DSN)
        self.templates_dir = templates_dir
        try:
            self.db = open_database(self.dsn)
        except RepositoryError as exc:
            get_logger().critical("Failed to connect to database", extra={"error": str(exc)})
            raise
        self.repo = ForumsRepo(self.db)
        self.handlers = ForumHandlers(self.repo, templates_dir)
        self._app: Starlette | None = None

    def application(self) -> Starlette:
        """The ASGI application; the chat cleanup runs while it is up."""
        if self._app is None:
            handlers = self.handlers

            @asynccontextmanager
            async def lifespan(app: Starlette):
                task = asyncio.create_task(handlers.global_chat.run_cleanup())
                try:
                    yield
                finally:
                    task.cancel()
                    with suppress(asyncio.CancelledError):
                        await task

            self._app = Starlette(routes=handlers.routes(), lifespan=lifespan)
        return self._app

    def run(self) -> None:
        """Serve until SIGINT or SIGTERM, then shut down and close the database."""
        config = uvicorn.Config(
            self.application(),
            host="0.0.0.0",
            port=int(self.port),
            timeout_graceful_shutdown=SHUTDOWN_TIMEOUT,
        )
        try:
            uvicorn.Server(config).run()
        finally:
            get_logger().info("Shutting down...")
            self.close()

    def close(self) -> None:
        self.db.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="forumhub", description="Run the forum service.")
    parser.add_argument("--port", default=os.environ.get("PORT", DEFAULT_PORT))
    parser.add_argument("--dsn", default=None, help="database path (default: $DB_DSN)")
    parser.add_argument(
        "--templates", default=os.environ.get("TEMPLATES_DIR", "templates"),
        help="directory holding the HTML templates",
    )
    args = parser.parse_args(argv)
    try:
        server = Server(args.port, args.dsn, args.templates)
    except RepositoryError:
        return 1
    server.run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())