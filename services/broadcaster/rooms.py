import logging
from dataclasses import dataclass, field
from typing import Any

from starlette.websockets import WebSocket

from shared.metrics import broadcast_messages_total, ws_connections

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class WSConnection:
    """A single live client and the rooms it has joined."""
    websocket: WebSocket
    rooms: set = field(default_factory=set)


class RoomManager:
    """Tracks live clients and fans room messages out to them."""

    def __init__(self):
        self.connections: list[WSConnection] = []
        self.rooms: dict[str, set[WSConnection]] = {}

    async def connect(self, websocket: WebSocket) -> WSConnection:
        await websocket.accept()
        conn = WSConnection(websocket=websocket)
        self.connections.append(conn)
        ws_connections.set(len(self.connections))
        logger.info("[ws] connected: clients=%d", len(self.connections))
        return conn

    def disconnect(self, conn: WSConnection) -> None:
        for room in list(conn.rooms):
            self.leave(conn, room)
        if conn in self.connections:
            self.connections.remove(conn)
        ws_connections.set(len(self.connections))
        logger.info("[ws] disconnected: clients=%d", len(self.connections))

    def join(self, conn: WSConnection, room: str) -> None:
        conn.rooms.add(room)
        self.rooms.setdefault(room, set()).add(conn)

    def leave(self, conn: WSConnection, room: str) -> None:
        conn.rooms.discard(room)
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(conn)
        if not members:
            del self.rooms[room]

    def members(self, room: str) -> list[WSConnection]:
        return list(self.rooms.get(room, ()))

    async def broadcast(self, room: str, event: str, data: Any) -> int:
        """Send {event, data} to every member of `room`. Returns clients reached.

        A client whose send fails is dropped from the manager.
        """
        delivered = 0
        for conn in self.members(room):
            try:
                await conn.websocket.send_json({"event": event, "data": data})
                delivered += 1
            except Exception:
                logger.debug("[ws] send failed, dropping client from %s", room)
                self.disconnect(conn)
        if delivered:
            broadcast_messages_total.labels(event=event).inc(delivered)
        return delivered

    @property
    def connection_count(self) -> int:
        return len(self.connections)
