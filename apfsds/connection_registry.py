"""Registry of live client connections, used to route return traffic."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReturnPacket:
    """Traffic coming back from an exit node for one connection."""

    conn_id: int
    rip: bytes
    rport: int
    payload: bytes
    handler_id: int = 0


@dataclass(frozen=True)
class DataFrame:
    """A data frame to be sent to a client over its connection."""

    conn_id: int
    rip: bytes
    rport: int
    payload: bytes
    is_control: bool = field(default=False)


class FrameQueue(Protocol):
    def put_nowait(self, item: Any) -> None: ...


class ConnectionRegistry:
    """Maps connection ids to the queues that feed their outgoing frames."""

    def __init__(self) -> None:
        self._connections: dict[int, FrameQueue] = {}
        self._lock = threading.Lock()

    def register(self, conn_id: int, queue: FrameQueue) -> None:
        with self._lock:
            self._connections[conn_id] = queue

    def unregister(self, conn_id: int) -> None:
        with self._lock:
            self._connections.pop(conn_id, None)

    def count(self) -> int:
        """Number of active connections."""
        with self._lock:
            return len(self._connections)

    def dispatch(self, packet: ReturnPacket) -> bool:
        """Queue ``packet`` as a data frame for its connection; False if it was dropped."""
        with self._lock:
            queue = self._connections.get(packet.conn_id)
        if queue is None:
            return False

        frame = DataFrame(packet.conn_id, packet.rip, packet.rport, packet.payload)
        try:
            queue.put_nowait(frame)
        except asyncio.QueueFull as exc:
            log.warning("Failed to dispatch packet to conn %d: %s", packet.conn_id, exc or "queue full")
            return False
        log.debug("Dispatched return packet to conn %d", packet.conn_id)
        return True