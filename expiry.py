import asyncio
import itertools
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Dict, Set, Tuple

from connection import close_connections
from logging_config import get_logger

if TYPE_CHECKING:
    from registry import RoomRegistry

logger = get_logger(__name__)

EXPIRED_CLOSE_REASON = "Room expired"


class ExpiryScheduler:
    """One cancellable timer task per live room.

    Every timer carries a token. The registry only honours an expiry whose
    token is still the room's current one, so a timer that woke up just as it
    was being replaced can never tear the room down.

    All methods except the timer body are called by the registry while it
    holds its lock.
    """

    def __init__(self, registry: "RoomRegistry", timeout_seconds: float):
        self._registry = registry
        self.timeout_seconds = timeout_seconds
        self._timers: Dict[str, Tuple[int, asyncio.Task]] = {}
        self._firing: Set[asyncio.Task] = set()
        self._tokens = itertools.count(1)

    def __len__(self):
        return len(self._timers)

    def reset(self, room_id: str) -> datetime:
        """Cancel the room's pending timer and start a new one. Returns the new deadline."""
        self.cancel(room_id)
        token = next(self._tokens)
        task = asyncio.create_task(
            self._expire_after(room_id, token, self.timeout_seconds),
            name=f"room-expiry-{room_id}",
        )
        self._timers[room_id] = (token, task)
        logger.debug(f"Room {room_id} expiry reset (token={token}, timeout={self.timeout_seconds}s)")
        return datetime.now() + timedelta(seconds=self.timeout_seconds)

    def cancel(self, room_id: str):
        entry = self._timers.pop(room_id, None)
        if entry is not None:
            entry[1].cancel()

    def is_current(self, room_id: str, token: int) -> bool:
        entry = self._timers.get(room_id)
        return entry is not None and entry[0] == token

    def forget(self, room_id: str):
        # Used from inside the firing timer, which must not cancel itself.
        # It stays tracked until its teardown finishes so shutdown can await it.
        entry = self._timers.pop(room_id, None)
        if entry is not None:
            task = entry[1]
            self._firing.add(task)
            task.add_done_callback(self._firing.discard)

    async def _expire_after(self, room_id: str, token: int, delay: float):
        try:
            await asyncio.sleep(delay)
            members = await self._registry.expire(room_id, token)
        except asyncio.CancelledError:
            logger.debug(f"Expiry timer for room {room_id} cancelled (token={token})")
            raise
        if members is None:
            logger.debug(f"Stale expiry timer for room {room_id} (token={token}) ignored")
            return

        logger.info(f"Room {room_id} expired after {delay}s of inactivity, closing {len(members)} connection(s)")
        closed = await close_connections(members, reason=EXPIRED_CLOSE_REASON)
        logger.debug(f"Room {room_id} teardown closed {closed} open connection(s)")

    async def shutdown(self):
        tasks = [task for _, task in self._timers.values()]
        self._timers.clear()
        for task in tasks:
            task.cancel()
        # Timers already past expire() finish closing their members
        tasks.extend(self._firing)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def firing(self) -> int:
        return len(self._firing)
