"""Fan-out of websocket text messages to every connected client."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
from typing import Protocol

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket

from forumhub.logs import get_logger

PRIMARY_PORT = 8081
GLOBAL_PORT = 8082
QUEUE_CAPACITY = 100

_STOP = object()


class Connection(Protocol):
    async def send_text(self, data: str) -> None: ...

    async def close(self) -> None: ...


class BroadcastHub:
    """Relays every message received from one client to all connected clients."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._clients: set[Connection] = set()
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._idle = asyncio.Event()
        self._idle.set()

    def __len__(self) -> int:
        return len(self._clients)

    def register(self, conn: Connection) -> None:
        self._clients.add(conn)

    def unregister(self, conn: Connection) -> None:
        self._clients.discard(conn)

    def publish(self, message: str) -> bool:
        """Queue a message for delivery; drop it and return False when the queue is full."""
        if self._queue.qsize() >= QUEUE_CAPACITY:
            get_logger().warning(
                "Message dropped: channel full", extra={"connection": self.name}
            )
            return False
        self._queue.put_nowait(message)
        return True

    async def _deliver(self, message: str) -> None:
        for conn in list(self._clients):
            try:
                await conn.send_text(message)
            except Exception:
                self._clients.discard(conn)
                with suppress(Exception):
                    await conn.close()

    async def run(self) -> None:
        """Deliver queued messages until the hub is closed."""
        self._idle.clear()
        try:
            while True:
                message = await self._queue.get()
                if message is _STOP:
                    return
                await self._deliver(message)
        finally:
            self._idle.set()

    async def close(self) -> None:
        """Stop the delivery loop after pending messages and drop every client."""
        self._queue.put_nowait(_STOP)
        await self._idle.wait()
        clients = list(self._clients)
        self._clients.clear()
        for conn in clients:
            with suppress(Exception):
                await conn.close()

    async def serve(self, websocket: WebSocket) -> None:
        """Accept a websocket and relay everything it sends until it disconnects."""
        await websocket.accept()
        self.register(websocket)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                text = message.get("text")
                if text is None:
                    text = (message.get("bytes") or b"").decode("utf-8", errors="replace")
                self.publish(text)
        finally:
            self.unregister(websocket)
            with suppress(Exception):
                await websocket.close()


async def _upgrade_required(request: Request) -> PlainTextResponse:
    return PlainTextResponse("Bad Request", status_code=400)


def create_app(primary: BroadcastHub, global_hub: BroadcastHub) -> Starlette:
    """Serve ``primary`` at /ws and ``global_hub`` at /ws/global."""

    @asynccontextmanager
    async def lifespan(app: Starlette):
        tasks = [asyncio.create_task(primary.run()), asyncio.create_task(global_hub.run())]
        try:
            yield
        finally:
            await primary.close()
            await global_hub.close()
            await asyncio.gather(*tasks, return_exceptions=True)

    routes = [
        WebSocketRoute("/ws", primary.serve),
        WebSocketRoute("/ws/global", global_hub.serve),
        Route("/ws", _upgrade_required, methods=["GET"]),
        Route("/ws/global", _upgrade_required, methods=["GET"]),
    ]
    return Starlette(routes=routes, lifespan=lifespan)


async def _serve_both(host: str) -> None:
    log = get_logger()
    app = create_app(BroadcastHub("primary"), BroadcastHub("global"))
    primary_server = uvicorn.Server(uvicorn.Config(app, host=host, port=PRIMARY_PORT))
    global_server = uvicorn.Server(
        uvicorn.Config(app, host=host, port=GLOBAL_PORT, lifespan="off")
    )
    log.info("WebSocket server started", extra={"connection": "primary", "port": str(PRIMARY_PORT)})
    log.info("WebSocket server started", extra={"connection": "global", "port": str(GLOBAL_PORT)})
    await asyncio.gather(primary_server.serve(), global_server.serve())


def start_websocket(host: str = "0.0.0.0") -> None:
    """Run the websocket relay on both ports until interrupted."""
    try:
        asyncio.run(_serve_both(host))
    except Exception as exc:
        get_logger().error("WebSocket server error", extra={"error": str(exc)})