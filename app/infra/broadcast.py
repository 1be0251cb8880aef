from __future__ import annotations

import logging
from typing import Any

from fastapi import WebSocket

from app.domain.models import now_utc

logger = logging.getLogger(__name__)


class LiveHub:
    """Connected websocket sessions, keyed by user id."""

    def __init__(self) -> None:
        self._connections: dict[int, set[WebSocket]] = {}

    async def connect(self, user_id: int, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.setdefault(user_id, set()).add(websocket)

    def disconnect(self, user_id: int, websocket: WebSocket) -> None:
        user_conns = self._connections.get(user_id, set())
        if websocket in user_conns:
            user_conns.remove(websocket)
        if not user_conns and user_id in self._connections:
            del self._connections[user_id]

    @staticmethod
    def envelope(event: str, data: dict[str, Any], message_type: str = "notification") -> dict[str, Any]:
        return {
            "type": message_type,
            "event": event,
            "data": data,
            "timestamp": now_utc().isoformat(),
        }

    async def broadcast_all(self, event: str, data: dict[str, Any]) -> int:
        message = self.envelope(event, data)
        sent = 0
        for user_id, conns in list(self._connections.items()):
            for connection in list(conns):
                try:
                    await connection.send_json(message)
                    sent += 1
                except Exception:
                    logger.warning("dropping live connection for user %s", user_id, exc_info=True)
                    self.disconnect(user_id, connection)
        return sent


live_hub = LiveHub()


async def broadcast_safely(event: str, data: dict[str, Any]) -> None:
    """Best-effort fan-out; failures are logged and never raised."""
    try:
        sent = await live_hub.broadcast_all(event, data)
    except Exception:
        logger.exception("live broadcast of %s failed", event)
        return
    logger.info("live broadcast %s delivered to %d client(s)", event, sent)
