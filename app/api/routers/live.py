from __future__ import annotations

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from app.domain.permissions import PERM_BOUNDARY_READ, has_permission
from app.infra.auth import decode_access_token
from app.infra.broadcast import live_hub

ws_router = APIRouter()


def _extract_ws_token(websocket: WebSocket, token: str | None) -> str | None:
    if token:
        return token
    auth_header = websocket.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return None


@ws_router.websocket("/ws/live")
async def ws_live(websocket: WebSocket, token: str | None = Query(default=None)) -> None:
    resolved_token = _extract_ws_token(websocket, token)
    if not resolved_token:
        await websocket.close(code=4401)
        return
    try:
        claims = decode_access_token(resolved_token)
        user_id = int(claims["sub"])
    except Exception:
        await websocket.close(code=4401)
        return
    if not has_permission(claims, PERM_BOUNDARY_READ):
        await websocket.close(code=4403)
        return

    await live_hub.connect(user_id, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        live_hub.disconnect(user_id, websocket)
