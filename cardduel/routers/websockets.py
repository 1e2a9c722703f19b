from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..logging_config import get_logger
from ..room_logic import MessageRouter

router = APIRouter(prefix="", tags=["ws"])

logger = get_logger(__name__)


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    message_router: MessageRouter = ws.app.state.router
    connection = message_router.connections.register(ws)
    await message_router.connect(connection)

    try:
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            try:
                await message_router.handle(connection, raw)
            except Exception as e:
                # One bad message must not take the connection down.
                logger.error(f"Error handling message from {connection.id}: {e}", exc_info=True)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error for {connection.id}: {e}", exc_info=True)
    finally:
        await message_router.disconnect(connection)
