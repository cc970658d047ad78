"""WebSocket endpoint for the real-time relay"""

import json
import logging
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from tempsocial.errors import AppError
from tempsocial.services.relay import ClientConnection, RelayService
from tempsocial.services.sessions import SessionService

logger = logging.getLogger(__name__)

router = APIRouter()

UNAUTHORIZED_CLOSE_CODE = 4401


class WebSocketConnection(ClientConnection):
    """ClientConnection over a Starlette WebSocket"""

    def __init__(self, websocket: WebSocket, **kwargs: Any):
        super().__init__(**kwargs)
        self.websocket = websocket

    async def _send(self, frame: dict[str, Any]) -> None:
        if self.websocket.application_state != WebSocketState.CONNECTED:
            raise ConnectionError(f"WebSocket {self.connection_id} is not connected")
        await self.websocket.send_text(json.dumps(frame, default=str))

    async def _close(self, code: int) -> None:
        if self.websocket.application_state == WebSocketState.CONNECTED:
            await self.websocket.close(code=code)


@router.websocket("/ws")
async def relay_websocket_endpoint(websocket: WebSocket, token: str | None = Query(None)):
    """Relay socket. The token must belong to a live identity before the socket is accepted."""
    relay: RelayService = websocket.app.state.relay
    session_factory = websocket.app.state.session_factory

    try:
        async with session_factory() as db:
            user = await SessionService(db).authenticate(token or "")
    except AppError as e:
        logger.info(f"Rejected relay connection: {e.message}")
        await websocket.close(code=UNAUTHORIZED_CLOSE_CODE)
        return

    await websocket.accept()
    connection = WebSocketConnection(websocket, authenticated_id=user.id)
    logger.info(f"Relay connection {connection.connection_id} opened for {user.id}")

    try:
        while True:
            data = await websocket.receive_text()
            try:
                frame = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON received on {connection.connection_id}")
                await connection.emit("error", {"error": "Invalid JSON"})
                continue
            if not isinstance(frame, dict):
                await connection.emit("error", {"error": "Frames must be objects"})
                continue

            try:
                await relay.dispatch(connection, frame)
            except Exception as e:
                logger.error(
                    f"Error handling {frame.get('event')!r} on {connection.connection_id}: {e}",
                    exc_info=True,
                )
                if connection.closed:
                    break
                await connection.emit("error", {"error": "Failed to process event"})

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"Relay connection {connection.connection_id} failed: {e}")
    finally:
        await relay.disconnect(connection)
        logger.info(f"Relay connection {connection.connection_id} closed")
