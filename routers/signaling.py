from fastapi import APIRouter, Depends, WebSocket

from connection import Connection
from dispatcher import dispatch_message
from logging_config import get_logger
from registry import RoomRegistry, get_registry

logger = get_logger(__name__)

signaling_router = APIRouter(tags=["signaling"])


@signaling_router.websocket("/")
@signaling_router.websocket("/ws")
async def signaling_endpoint(websocket: WebSocket, registry: RoomRegistry = Depends(get_registry)):
    """Signaling websocket.

    Clients send JSON envelopes typed ``create``, ``join`` or ``signal``; see
    schemas/envelopes.py for the wire format. A bad frame is dropped, it never
    ends the connection.
    """
    await websocket.accept()
    connection = Connection(websocket)
    connection.start()
    client_host = websocket.client.host if websocket.client else "unknown"
    logger.info(f"Client connected: {connection.id} from {client_host}")

    message_count = 0
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"Client disconnected: {connection.id} (code={message.get('code')})")
                break

            raw = message.get("text")
            if raw is None:
                data = message.get("bytes")
                if data is None:
                    continue
                try:
                    raw = data.decode("utf-8")
                except UnicodeDecodeError:
                    logger.debug(f"Dropping undecodable binary frame from {connection.id}")
                    continue

            message_count += 1
            try:
                await dispatch_message(raw, connection, registry)
            except Exception as e:
                logger.error(f"Error handling message #{message_count} from {connection.id}: {e}", exc_info=True)
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection.id}: {e}", exc_info=True)
    finally:
        await registry.remove_member(connection.room_id, connection)
        await connection.close()
        logger.debug(f"Connection {connection.id} cleaned up after {message_count} message(s)")
