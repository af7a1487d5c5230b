"""Notification relay: the receiving end of the HTTP notification channel.

A small FastAPI app. Writers POST mutation events to ``/notify``; canvas
clients hold a websocket on ``/ws?board=<id>`` and receive the events for
their board, plus project-wide events sent to every board.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, Field

from stickygraph import __version__
from stickygraph.config import Config
from stickygraph.log_config import get_logger
from stickygraph.models import ALL_BOARDS, DEFAULT_BOARD_ID

log = get_logger("relay")


class NotificationPayload(BaseModel):
    """Body of POST /notify, as sent by HttpNotificationChannel."""

    event: str = Field(..., min_length=1)
    data: Any = None
    boardId: str = DEFAULT_BOARD_ID


class ConnectionHub:
    """Tracks websocket clients per board and fans events out to them."""

    def __init__(self):
        self.connections: dict[str, set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, board_id: str) -> None:
        """Accept and register a websocket for a board."""
        self.connections.setdefault(board_id, set()).add(websocket)
        await websocket.accept()
        log.info(f"WebSocket connected to board {board_id}")

    def disconnect(self, websocket: WebSocket, board_id: str) -> None:
        sockets = self.connections.get(board_id)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            del self.connections[board_id]
        log.info(f"WebSocket disconnected from board {board_id}")

    @property
    def count(self) -> int:
        return sum(len(sockets) for sockets in self.connections.values())

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Send a message to the sockets of its board; returns deliveries made.

        Messages scoped to ALL_BOARDS go to every socket. A socket that
        fails to receive is dropped.
        """
        board_id = message.get("boardId", DEFAULT_BOARD_ID)
        if board_id == ALL_BOARDS:
            targets = [(b, ws) for b, sockets in self.connections.items() for ws in sockets]
        else:
            targets = [(board_id, ws) for ws in self.connections.get(board_id, ())]

        delivered = 0
        for target_board, websocket in targets:
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                log.warning(f"Dropping websocket on board {target_board}: {e}")
                self.disconnect(websocket, target_board)
        return delivered


def create_relay_app(hub: ConnectionHub | None = None) -> FastAPI:
    """Create the relay application around a connection hub."""
    hub = hub or ConnectionHub()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        log.info("Notification relay starting")
        yield
        log.info("Notification relay stopped")

    app = FastAPI(title="stickygraph relay", version=__version__, lifespan=lifespan)
    app.state.hub = hub

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "healthy", "version": __version__, "connections": hub.count}

    @app.post("/notify", status_code=status.HTTP_202_ACCEPTED)
    async def notify(payload: NotificationPayload) -> dict[str, Any]:
        delivered = await hub.broadcast(payload.model_dump())
        log.debug(f"Relayed {payload.event} for board {payload.boardId} to {delivered} client(s)")
        return {"accepted": True, "delivered": delivered}

    @app.websocket("/ws")
    async def board_events(websocket: WebSocket, board: str = Query(DEFAULT_BOARD_ID)) -> None:
        await hub.connect(websocket, board)
        try:
            while True:
                # Clients only listen; inbound frames keep the socket alive
                await websocket.receive_text()
        except WebSocketDisconnect:
            hub.disconnect(websocket, board)

    return app


def main():
    """Run the relay under uvicorn."""
    import uvicorn

    config = Config()
    log.info(f"Starting relay on {config.relay_host}:{config.relay_port}")
    uvicorn.run(create_relay_app(), host=config.relay_host, port=config.relay_port)


if __name__ == "__main__":
    main()
