from pydantic import BaseModel


class RoomDetailsResponse(BaseModel):
    room_id: str
    member_count: int
    created_at: str
    expires_at: str

class CloseRoomResponse(BaseModel):
    message: str
    closed_connections: int

class HealthResponse(BaseModel):
    status: str
    rooms: int
