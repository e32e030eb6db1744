import asyncio
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from connection import Connection
from constants import ROOM_ID_MAX, ROOM_ID_MIN, ROOM_TIMEOUT_SECONDS
from expiry import ExpiryScheduler
from logging_config import get_logger

logger = get_logger(__name__)

# Random draws before falling back to picking from the free identifiers directly
MAX_RANDOM_ID_ATTEMPTS = 64


class RegistryError(Exception):
    pass


class RoomNotFound(RegistryError):
    def __init__(self, room_id: str):
        super().__init__(f"Room {room_id} not found")
        self.room_id = room_id


class RoomIdsExhausted(RegistryError):
    def __init__(self, capacity: int):
        super().__init__(f"All {capacity} room identifiers are in use")
        self.capacity = capacity


@dataclass
class Room:
    room_id: str
    created_at: datetime
    expires_at: datetime
    members: Dict[str, Connection] = field(default_factory=dict)


@dataclass(frozen=True)
class RoomSnapshot:
    """What create/join hand back to the caller for its acknowledgement."""
    room_id: str
    connection_id: str
    member_count: int
    expires_at: datetime


@dataclass(frozen=True)
class RoomInfo:
    room_id: str
    member_count: int
    created_at: datetime
    expires_at: datetime


class RoomRegistry:
    """Authoritative room_id -> Room mapping.

    Every public operation runs as one critical section under a single
    asyncio lock, and none of them awaits while holding it, so each operation
    is atomic with respect to every other one. Room internals never leave
    this class: callers get snapshots or member lists copied under the lock.
    """

    def __init__(
        self,
        timeout_seconds: float = ROOM_TIMEOUT_SECONDS,
        id_min: int = ROOM_ID_MIN,
        id_max: int = ROOM_ID_MAX,
        rng: Optional[random.Random] = None,
    ):
        if id_min > id_max:
            raise ValueError(f"Invalid room id range {id_min}-{id_max}")
        self.id_min = id_min
        self.id_max = id_max
        self._rng = rng or random.Random()
        self._rooms: Dict[str, Room] = {}
        self._lock = asyncio.Lock()
        self.scheduler = ExpiryScheduler(self, timeout_seconds)
        logger.info(f"RoomRegistry initialized (timeout={timeout_seconds}s, ids={id_min}-{id_max})")

    @property
    def capacity(self) -> int:
        return self.id_max - self.id_min + 1

    def room_count(self) -> int:
        return len(self._rooms)

    async def create_room(self, connection: Connection) -> RoomSnapshot:
        """Create a room under a freshly generated identifier.

        Generation and insertion happen in the same critical section, so the
        returned identifier is unique among live rooms.
        """
        async with self._lock:
            room_id = self._generate_room_id()
            snapshot = self._create_or_extend(room_id, connection)
        logger.info(f"Room {room_id} created by {connection.id}")
        return snapshot

    async def create_or_extend(self, room_id: str, connection: Connection) -> RoomSnapshot:
        async with self._lock:
            return self._create_or_extend(room_id, connection)

    async def join(self, room_id: str, connection: Connection) -> RoomSnapshot:
        async with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                logger.info(f"Join failed: room {room_id} not found (connection {connection.id})")
                raise RoomNotFound(room_id)
            snapshot = self._add_member(room, connection)
        logger.info(f"Connection {snapshot.connection_id} joined room {room_id} ({snapshot.member_count} member(s)), expiry extended to {snapshot.expires_at.isoformat()}")
        return snapshot

    async def remove_member(self, room_id: Optional[str], connection: Connection):
        """Drop a connection from a room. The room itself is left alone."""
        if room_id is None:
            return
        async with self._lock:
            room = self._rooms.get(room_id)
            if room is not None and room.members.pop(connection.id, None) is not None:
                logger.info(f"Connection {connection.id} left room {room_id} ({len(room.members)} remaining)")
            if connection.room_id == room_id:
                connection.room_id = None

    async def members_of(self, room_id: str) -> Optional[List[Connection]]:
        async with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return None
            return list(room.members.values())

    async def get_room(self, room_id: str) -> Optional[RoomInfo]:
        async with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return None
            return RoomInfo(
                room_id=room.room_id,
                member_count=len(room.members),
                created_at=room.created_at,
                expires_at=room.expires_at,
            )

    async def expire(self, room_id: str, token: int) -> Optional[List[Connection]]:
        """Detach a room whose timer fired. Only the expiry scheduler calls this.

        Returns the final member list, or None if ``token`` no longer identifies
        the room's current timer.
        """
        async with self._lock:
            if not self.scheduler.is_current(room_id, token):
                return None
            self.scheduler.forget(room_id)
            return self._detach(room_id)

    async def close_room(self, room_id: str) -> Optional[List[Connection]]:
        """Administrative teardown: detach the room and cancel its timer."""
        async with self._lock:
            if room_id not in self._rooms:
                return None
            self.scheduler.cancel(room_id)
            members = self._detach(room_id)
        logger.info(f"Room {room_id} closed administratively ({len(members)} member(s))")
        return members

    async def shutdown(self):
        async with self._lock:
            room_ids = list(self._rooms)
            for room_id in room_ids:
                self._detach(room_id)
        await self.scheduler.shutdown()
        logger.info(f"RoomRegistry shut down, dropped {len(room_ids)} room(s)")

    # The helpers below assume the lock is held.

    def _generate_room_id(self) -> str:
        if len(self._rooms) >= self.capacity:
            raise RoomIdsExhausted(self.capacity)
        for _ in range(MAX_RANDOM_ID_ATTEMPTS):
            candidate = str(self._rng.randint(self.id_min, self.id_max))
            if candidate not in self._rooms:
                return candidate
            logger.debug(f"Room id {candidate} collides with a live room, regenerating")
        free_ids = [str(n) for n in range(self.id_min, self.id_max + 1) if str(n) not in self._rooms]
        return self._rng.choice(free_ids)

    def _create_or_extend(self, room_id: str, connection: Connection) -> RoomSnapshot:
        room = self._rooms.get(room_id)
        if room is None:
            now = datetime.now()
            room = Room(room_id=room_id, created_at=now, expires_at=now)
            self._rooms[room_id] = room
        return self._add_member(room, connection)

    def _add_member(self, room: Room, connection: Connection) -> RoomSnapshot:
        previous = connection.room_id
        if previous is not None and previous != room.room_id:
            old_room = self._rooms.get(previous)
            if old_room is not None:
                old_room.members.pop(connection.id, None)
                logger.info(f"Connection {connection.id} moved from room {previous} to {room.room_id}")

        room.members[connection.id] = connection
        connection.room_id = room.room_id
        # Any membership change extends the deadline for the whole room
        room.expires_at = self.scheduler.reset(room.room_id)
        return RoomSnapshot(
            room_id=room.room_id,
            connection_id=connection.id,
            member_count=len(room.members),
            expires_at=room.expires_at,
        )

    def _detach(self, room_id: str) -> List[Connection]:
        room = self._rooms.pop(room_id)
        members = list(room.members.values())
        for member in members:
            if member.room_id == room_id:
                member.room_id = None
        return members


room_registry = RoomRegistry()


def get_registry() -> RoomRegistry:
    return room_registry
