from __future__ import annotations

import uuid
from typing import Any, Dict, Iterator, Optional, Union

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from .logging_config import get_logger
from .room import Room
from .schemas import WireModel

logger = get_logger(__name__)

Payload = Union[WireModel, Dict[str, Any]]


class Connection:
    """One live websocket plus the room it currently occupies (if any)."""

    def __init__(self, connection_id: str, websocket: WebSocket):
        self.id = connection_id
        self.websocket = websocket
        self.room_code: Optional[str] = None
        self.is_host: bool = False

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def enter(self, room_code: str, is_host: bool) -> None:
        self.room_code = room_code
        self.is_host = is_host

    def clear_room(self) -> None:
        self.room_code = None
        self.is_host = False

    async def send(self, payload: Payload) -> bool:
        """Send *payload*; returns False instead of raising when the peer is gone."""
        if not self.is_open:
            return False
        data = payload.to_wire() if isinstance(payload, WireModel) else payload
        try:
            await self.websocket.send_json(data)
        except Exception as e:
            logger.warning(f"Error sending {data.get('type')} to connection {self.id}: {e}")
            return False
        return True

    def __repr__(self) -> str:
        return f"<Connection {self.id} room={self.room_code} host={self.is_host}>"


class ConnectionDirectory:
    """Maps connection ids to live connections for the lifetime of the server."""

    def __init__(self) -> None:
        self.connections: Dict[str, Connection] = {}

    def register(self, websocket: WebSocket) -> Connection:
        connection_id = str(uuid.uuid4())
        while connection_id in self.connections:
            connection_id = str(uuid.uuid4())
        connection = Connection(connection_id, websocket)
        self.connections[connection_id] = connection
        logger.info(f"Player connected: {connection_id} (connections: {len(self.connections)})")
        return connection

    def unregister(self, connection_id: str) -> Optional[Connection]:
        connection = self.connections.pop(connection_id, None)
        if connection is not None:
            logger.info(f"Player disconnected: {connection_id} (connections: {len(self.connections)})")
        return connection

    def get(self, connection_id: Optional[str]) -> Optional[Connection]:
        if connection_id is None:
            return None
        return self.connections.get(connection_id)

    def __len__(self) -> int:
        return len(self.connections)

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self.connections.values()))

    # -------------------- Broadcasting helpers -------------------- #

    async def broadcast(self, room: Room, payload: Payload, exclude: Optional[str] = None) -> int:
        """Send *payload* to the room's occupants except *exclude*.

        Occupants whose connection is gone or closed are skipped; returns the
        number of successful deliveries.
        """
        data = payload.to_wire() if isinstance(payload, WireModel) else payload
        delivered = 0
        for player_id in room.occupant_ids():
            if player_id == exclude:
                continue
            connection = self.connections.get(player_id)
            if connection is None or not connection.is_open:
                logger.debug(f"Skipping {data.get('type')} for absent player {player_id} in room {room.code}")
                continue
            if await connection.send(data):
                delivered += 1
        return delivered

    async def send_all(self, payload: Payload) -> int:
        data = payload.to_wire() if isinstance(payload, WireModel) else payload
        delivered = 0
        for connection in list(self.connections.values()):
            if await connection.send(data):
                delivered += 1
        return delivered


__all__ = ["Connection", "ConnectionDirectory"]
