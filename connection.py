import asyncio
import json
import uuid
from typing import Iterable, Optional

from fastapi import WebSocket
from pydantic import BaseModel
from starlette.websockets import WebSocketState

from constants import OUTBOUND_QUEUE_SIZE
from logging_config import get_logger

logger = get_logger(__name__)


class Connection:
    """One live client websocket.

    Outbound envelopes go through a bounded queue drained by a single writer
    task, so sends to a slow client never block whoever produced the envelope,
    and envelopes reach the client in the order they were queued.

    ``room_id`` is only ever assigned by the room registry while it holds its
    lock; everything else treats it as read-only.
    """

    def __init__(self, websocket: WebSocket, queue_size: int = OUTBOUND_QUEUE_SIZE):
        self.id = str(uuid.uuid4())
        self.websocket = websocket
        self.room_id: Optional[str] = None
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._writer: Optional[asyncio.Task] = None
        self._closed = False
        self._broken = False

    def __repr__(self):
        return f"Connection(id={self.id!r}, room_id={self.room_id!r})"

    @property
    def is_open(self) -> bool:
        return not (self._closed or self._broken)

    def start(self):
        """Start the writer task. Must be called from the event loop serving the websocket."""
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop(), name=f"ws-writer-{self.id[:8]}")

    def deliver(self, text: str) -> bool:
        """Queue an already serialized envelope. Returns False if it was dropped."""
        if not self.is_open:
            logger.debug(f"Dropping envelope for closed connection {self.id}")
            return False
        try:
            self._outbox.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning(f"Outbound queue full for connection {self.id}, dropping envelope")
            return False
        return True

    def send_envelope(self, envelope: BaseModel) -> bool:
        return self.deliver(json.dumps(envelope.model_dump()))

    async def _write_loop(self):
        while True:
            text = await self._outbox.get()
            try:
                await self.websocket.send_text(text)
            except Exception as e:
                self._broken = True
                logger.warning(f"Send failed for connection {self.id}, stopping writer: {e}")
                return

    async def close(self, code: int = 1000, reason: Optional[str] = None):
        """Cancel pending writes and close the websocket. Idempotent."""
        if self._closed:
            return
        self._closed = True

        writer = self._writer
        if writer is not None and not writer.done() and writer is not asyncio.current_task():
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)

        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            if reason:
                await self.websocket.close(code=code, reason=reason)
            else:
                await self.websocket.close(code=code)
            logger.debug(f"Closed websocket for connection {self.id} (code={code}, reason={reason})")
        except Exception as e:
            logger.debug(f"Error closing websocket for connection {self.id}: {e}")


async def close_connections(connections: Iterable[Connection], reason: Optional[str] = None) -> int:
    """Close every connection, isolating failures. Returns how many were still open."""
    closed = 0
    for connection in list(connections):
        was_open = connection.is_open
        try:
            await connection.close(reason=reason)
            if was_open:
                closed += 1
        except Exception as e:
            logger.warning(f"Failed to close connection {connection.id}: {e}", exc_info=True)
    return closed
