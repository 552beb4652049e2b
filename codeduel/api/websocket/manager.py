import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


@dataclass
class ConnectionInfo:
    """Information about a WebSocket connection."""

    websocket: WebSocket
    connection_id: str
    room_ids: set[str] = field(default_factory=set)


class ConnectionManager:
    """Manages WebSocket connections and duel room membership."""

    def __init__(self):
        self._connections: dict[str, ConnectionInfo] = {}
        self._room_connections: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, connection_id: str) -> None:
        """Accept a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self._connections[connection_id] = ConnectionInfo(
                websocket=websocket,
                connection_id=connection_id,
            )

    async def disconnect(self, connection_id: str) -> set[str]:
        """Forget a connection. Returns the rooms it was in."""
        async with self._lock:
            conn = self._connections.pop(connection_id, None)
            if not conn:
                return set()
            for room_id in conn.room_ids:
                room_conns = self._room_connections.get(room_id)
                if room_conns:
                    room_conns.discard(connection_id)
                    if not room_conns:
                        del self._room_connections[room_id]
            return set(conn.room_ids)

    async def join_room(self, connection_id: str, room_id: str) -> None:
        """Subscribe a connection to a room's broadcasts."""
        async with self._lock:
            conn = self._connections.get(connection_id)
            if conn:
                conn.room_ids.add(room_id)
                self._room_connections.setdefault(room_id, set()).add(connection_id)

    async def leave_room(self, connection_id: str, room_id: str) -> None:
        async with self._lock:
            conn = self._connections.get(connection_id)
            if conn:
                conn.room_ids.discard(room_id)
            room_conns = self._room_connections.get(room_id)
            if room_conns:
                room_conns.discard(connection_id)
                if not room_conns:
                    del self._room_connections[room_id]

    async def send_personal(self, connection_id: str, message: dict[str, Any]) -> bool:
        """Send a message to a specific connection."""
        conn = self._connections.get(connection_id)
        if conn:
            try:
                await conn.websocket.send_json(message)
                return True
            except Exception as e:
                logger.info(f"Dropping connection {connection_id} after failed send: {e}")
                await self.disconnect(connection_id)
        return False

    async def broadcast_to_room(
        self,
        room_id: str,
        message: dict[str, Any],
        exclude: str | None = None,
    ) -> int:
        """Broadcast a message to every connection in a room."""
        connection_ids = self._room_connections.get(room_id, set()).copy()
        if exclude:
            connection_ids.discard(exclude)

        sent_count = 0
        for connection_id in connection_ids:
            if await self.send_personal(connection_id, message):
                sent_count += 1

        return sent_count

    def get_room_connection_ids(self, room_id: str) -> set[str]:
        """Get all connection IDs subscribed to a room."""
        return self._room_connections.get(room_id, set()).copy()

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def get_connection_count(self) -> int:
        """Get total number of connections."""
        return len(self._connections)


manager = ConnectionManager()
