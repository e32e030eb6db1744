import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from connection import close_connections
from constants import ADMIN_TOKEN
from logging_config import get_logger
from registry import RoomRegistry, get_registry
from schemas.rooms import CloseRoomResponse, RoomDetailsResponse

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])

CLOSED_CLOSE_REASON = "Room closed"


def require_admin_token(x_admin_token: Optional[str] = Header(None)):
    # Without ADMIN_TOKEN configured the admin endpoints are open
    if not ADMIN_TOKEN:
        return
    if not x_admin_token or not secrets.compare_digest(x_admin_token, ADMIN_TOKEN):
        raise HTTPException(status_code=401, detail="Invalid admin token")


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str, request: Request, registry: RoomRegistry = Depends(get_registry)):
    """
    Get details of a live room.

    Returns:
    - room_id: Room identifier
    - member_count: Current number of connected members
    - created_at: Room creation timestamp
    - expires_at: When the room expires unless someone creates/joins first
    """
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Room details request for {room_id} from {client_host}")

    room = await registry.get_room(room_id)
    if room is None:
        logger.warning(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    return RoomDetailsResponse(
        room_id=room.room_id,
        member_count=room.member_count,
        created_at=room.created_at.isoformat(),
        expires_at=room.expires_at.isoformat(),
    )


@rooms_router.post("/{room_id}/close", response_model=CloseRoomResponse, dependencies=[Depends(require_admin_token)])
async def close_room(room_id: str, request: Request, registry: RoomRegistry = Depends(get_registry)):
    # Removes the room immediately and closes every member websocket,
    # exactly like an expiry but without waiting for the timer.
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Close room request for {room_id} from {client_host}")

    members = await registry.close_room(room_id)
    if members is None:
        logger.warning(f"Close room failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    closed = await close_connections(members, reason=CLOSED_CLOSE_REASON)
    logger.info(f"Room {room_id} closed, {closed} connection(s) closed")
    return CloseRoomResponse(message="Room closed successfully", closed_connections=closed)
