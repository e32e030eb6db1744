import json
from typing import Any, Optional

from connection import Connection
from logging_config import get_logger
from registry import RoomRegistry
from schemas.envelopes import SignalRelayEnvelope

logger = get_logger(__name__)


async def relay_signal(
    registry: RoomRegistry,
    sender: Connection,
    payload: Any,
    target_id: Optional[str] = None,
) -> int:
    """Forward ``payload`` from ``sender`` to the other members of its room.

    The payload is passed through untouched. With ``target_id`` only that
    member receives it. Per-recipient failures are logged and skipped.
    Returns the number of recipients the envelope was queued for.
    """
    room_id = sender.room_id
    if room_id is None:
        logger.debug(f"Signal from {sender.id} dropped: not in a room")
        return 0

    members = await registry.members_of(room_id)
    if members is None or all(member.id != sender.id for member in members):
        logger.debug(f"Signal from {sender.id} dropped: room {room_id} gone or sender not a member")
        return 0

    text = json.dumps(SignalRelayEnvelope(senderId=sender.id, payload=payload).model_dump())

    delivered = 0
    for member in members:
        if member.id == sender.id:
            continue
        if target_id is not None and member.id != target_id:
            continue
        try:
            if member.deliver(text):
                delivered += 1
        except Exception as e:
            logger.warning(f"Relay to {member.id} in room {room_id} failed: {e}", exc_info=True)

    if target_id is not None and delivered == 0:
        logger.debug(f"Directed signal from {sender.id} to {target_id} in room {room_id} not delivered")
    else:
        logger.debug(f"Relayed signal from {sender.id} to {delivered} member(s) of room {room_id}")
    return delivered
