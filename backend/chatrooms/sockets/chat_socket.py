import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from chatrooms.core.errors import Unauthorized
from chatrooms.core.security import verify_websocket_token
from chatrooms.realtime.connection import LiveConnection
from chatrooms.realtime.gateway import SessionGateway

logger = logging.getLogger(__name__)

router = APIRouter()

# close code for a rejected bearer token
WS_UNAUTHORIZED = 4401


@router.websocket("/ws")
async def chat_endpoint(websocket: WebSocket, token: Optional[str] = None):
    """Live channel for chat, typing and presence events.

    The bearer token travels as the ``token`` query parameter; the socket is
    refused before accept when it does not verify.
    """
    try:
        user_id = verify_websocket_token(token)
    except Unauthorized as e:
        logger.info("Refusing live connection: %s", e.message)
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    state = websocket.app.state
    await websocket.accept()

    connection = LiveConnection(websocket)
    writer = asyncio.create_task(connection.run_writer())
    gateway = SessionGateway(
        connection,
        state.registry,
        state.broadcaster,
        state.session_factory,
        authenticated_user_id=user_id,
    )
    gateway.open()

    try:
        while connection.is_open:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            # text and binary frames both go through the same parser
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            await gateway.handle_raw(raw)
    except WebSocketDisconnect:
        logger.debug("Client closed %r", connection)
    except Exception:
        logger.exception("Live connection %r failed", connection)
    finally:
        gateway.close()
        connection.close()
        try:
            await writer
        except asyncio.CancelledError:
            writer.cancel()
            raise
