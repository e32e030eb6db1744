from pydantic import BaseModel, field_validator
from typing import Any, Literal, Optional


# Client -> server

class CreateRoomEnvelope(BaseModel):
    type: Literal["create"]

class JoinRoomEnvelope(BaseModel):
    type: Literal["join"]
    # A missing roomId is answered like an unknown room
    roomId: Optional[str] = None

    @field_validator("roomId", mode="before")
    @classmethod
    def coerce_numeric_room_id(cls, value):
        # Clients typing the code into a number field send 4321 rather than "4321"
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

class SignalEnvelope(BaseModel):
    type: Literal["signal"]
    payload: Any = None
    targetId: Optional[str] = None


# Server -> client

class RoomCreatedEnvelope(BaseModel):
    type: Literal["room_created"] = "room_created"
    roomId: str
    myId: str

class RoomJoinedEnvelope(BaseModel):
    type: Literal["room_joined"] = "room_joined"
    roomId: str
    myId: str

class ErrorEnvelope(BaseModel):
    type: Literal["error"] = "error"
    message: str

class SignalRelayEnvelope(BaseModel):
    type: Literal["signal"] = "signal"
    senderId: str
    payload: Any = None
