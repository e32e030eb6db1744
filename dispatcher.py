import json
from typing import Awaitable, Callable, Dict, Tuple, Type

from pydantic import BaseModel, ValidationError

from connection import Connection
from logging_config import get_logger
from registry import RoomIdsExhausted, RoomNotFound, RoomRegistry
from relay import relay_signal
from schemas.envelopes import (
    CreateRoomEnvelope,
    ErrorEnvelope,
    JoinRoomEnvelope,
    RoomCreatedEnvelope,
    RoomJoinedEnvelope,
    SignalEnvelope,
)

logger = get_logger(__name__)

ROOM_NOT_FOUND_MESSAGE = "Room not found"
NO_ROOMS_AVAILABLE_MESSAGE = "No rooms available"

Handler = Callable[[BaseModel, Connection, RoomRegistry], Awaitable[None]]


async def handle_create(envelope: CreateRoomEnvelope, connection: Connection, registry: RoomRegistry):
    try:
        snapshot = await registry.create_room(connection)
    except RoomIdsExhausted as e:
        logger.warning(f"Create from {connection.id} rejected: {e}")
        connection.send_envelope(ErrorEnvelope(message=NO_ROOMS_AVAILABLE_MESSAGE))
        return
    connection.send_envelope(RoomCreatedEnvelope(roomId=snapshot.room_id, myId=snapshot.connection_id))


async def handle_join(envelope: JoinRoomEnvelope, connection: Connection, registry: RoomRegistry):
    if envelope.roomId is None:
        logger.info(f"Join without roomId from {connection.id}")
        connection.send_envelope(ErrorEnvelope(message=ROOM_NOT_FOUND_MESSAGE))
        return
    try:
        snapshot = await registry.join(envelope.roomId, connection)
    except RoomNotFound:
        connection.send_envelope(ErrorEnvelope(message=ROOM_NOT_FOUND_MESSAGE))
        return
    connection.send_envelope(RoomJoinedEnvelope(roomId=snapshot.room_id, myId=snapshot.connection_id))


async def handle_signal(envelope: SignalEnvelope, connection: Connection, registry: RoomRegistry):
    await relay_signal(registry, connection, envelope.payload, target_id=envelope.targetId)


MESSAGE_ROUTES: Dict[str, Tuple[Type[BaseModel], Handler]] = {
    "create": (CreateRoomEnvelope, handle_create),
    "join": (JoinRoomEnvelope, handle_join),
    "signal": (SignalEnvelope, handle_signal),
}


async def dispatch_message(raw: str, connection: Connection, registry: RoomRegistry) -> bool:
    """Decode one inbound frame and run the matching handler.

    Anything that is not a JSON object with a known ``type`` and a valid body
    is dropped without a reply. Returns whether a handler ran.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.debug(f"Dropping non-JSON message from {connection.id}: {e}")
        return False

    if not isinstance(data, dict):
        logger.debug(f"Dropping non-object message from {connection.id}")
        return False

    kind = data.get("type")
    route = MESSAGE_ROUTES.get(kind) if isinstance(kind, str) else None
    if route is None:
        logger.debug(f"Dropping message with unknown type {kind!r} from {connection.id}")
        return False

    model, handler = route
    try:
        envelope = model.model_validate(data)
    except ValidationError as e:
        logger.debug(f"Dropping malformed {kind} message from {connection.id}: {e.error_count()} error(s)")
        return False

    await handler(envelope, connection, registry)
    return True
