"""Server-side message handling for room sessions.

Every handler validates against the registry and mutates it before its
first ``await``; outbound payloads are serialised from snapshots taken at
that point. Because the whole server runs on one event loop this keeps
room mutations serialised without any locking.
"""
from __future__ import annotations

import json
from typing import Awaitable, Callable, Dict, Optional, Union

from pydantic import ValidationError

from .connections import Connection, ConnectionDirectory
from .constants import DEFAULT_GUEST_NAME, DEFAULT_HOST_NAME, CloseReason
from .exceptions import JoinError
from .logging_config import get_logger
from .registry import RoomRegistry
from .room import Room
from .schemas import (
    CLIENT_MESSAGES,
    CharacterUpdatedMessage,
    ConnectedMessage,
    CreateRoomRequest,
    GameActionMessage,
    GameActionRequest,
    GameStartedMessage,
    JoinErrorMessage,
    JoinRoomRequest,
    Participant,
    PlayerJoinedMessage,
    PlayerLeftMessage,
    ReadyUpdatedMessage,
    RoomClosedMessage,
    RoomCreatedMessage,
    RoomJoinedMessage,
    ServerShutdownMessage,
    SetReadyRequest,
    UpdateCharacterRequest,
    WireModel,
)

logger = get_logger(__name__)

Handler = Callable[[Connection, WireModel], Awaitable[None]]


async def close_room(
    registry: RoomRegistry,
    connections: ConnectionDirectory,
    room: Room,
    reason: CloseReason,
    exclude: Optional[str] = None,
) -> None:
    """Remove *room* and tell its remaining occupants why."""
    registry.remove(room.code)
    for player_id in room.occupant_ids():
        occupant = connections.get(player_id)
        if occupant is not None and occupant.room_code == room.code:
            occupant.clear_room()
    await connections.broadcast(room, RoomClosedMessage(reason=reason), exclude=exclude)
    logger.info(f"Room {room.code} closed ({reason.value})")


class MessageRouter:
    def __init__(self, registry: RoomRegistry, connections: ConnectionDirectory):
        self.registry = registry
        self.connections = connections
        self._handlers: Dict[str, Handler] = {
            "create_room": self.handle_create_room,
            "join_room": self.handle_join_room,
            "leave_room": self.handle_leave_room,
            "update_character": self.handle_update_character,
            "set_ready": self.handle_set_ready,
            "start_game": self.handle_start_game,
            "game_action": self.handle_game_action,
        }

    # ---------------------------------------------------------------------
    # Connection lifecycle
    # ---------------------------------------------------------------------

    async def connect(self, connection: Connection) -> None:
        await connection.send(ConnectedMessage(player_id=connection.id))

    async def disconnect(self, connection: Connection) -> None:
        await self.leave(connection)
        self.connections.unregister(connection.id)

    async def shutdown(self) -> None:
        """Tell every connected client the server is going away and drop all rooms."""
        delivered = await self.connections.send_all(ServerShutdownMessage())
        logger.info(f"Server shutdown announced to {delivered} connections, dropping {len(self.registry)} rooms")
        for connection in self.connections:
            connection.clear_room()
        self.registry.clear()

    # ---------------------------------------------------------------------
    # Inbound dispatch
    # ---------------------------------------------------------------------

    async def handle(self, connection: Connection, raw: Union[str, bytes]) -> None:
        """Decode and dispatch one inbound frame.

        Malformed frames and unknown types are logged and dropped; the
        connection is never closed from here.
        """
        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Invalid message from {connection.id}: {e}")
            return
        if not isinstance(data, dict):
            logger.warning(f"Invalid message from {connection.id}: expected an object, got {type(data).__name__}")
            return

        msg_type = data.get("type")
        handler = self._handlers.get(msg_type) if isinstance(msg_type, str) else None
        if handler is None:
            logger.warning(f"Unknown message type from {connection.id}: {msg_type!r}")
            return

        try:
            request = CLIENT_MESSAGES[msg_type].model_validate(data)
        except ValidationError as e:
            logger.warning(f"Malformed {msg_type} from {connection.id}: {e.error_count()} validation error(s)")
            return

        logger.debug(f"Message from {connection.id}: {msg_type}")
        await handler(connection, request)

    def current_room(self, connection: Connection) -> Optional[Room]:
        if connection.room_code is None:
            return None
        room = self.registry.get(connection.room_code)
        if room is None or room.participant(connection.id) is None:
            connection.clear_room()
            return None
        return room

    # ---------------------------------------------------------------------
    # Handlers
    # ---------------------------------------------------------------------

    async def handle_create_room(self, connection: Connection, request: CreateRoomRequest) -> None:
        await self.leave(connection)
        host = Participant(
            id=connection.id,
            name=request.player_name or DEFAULT_HOST_NAME,
            character_index=request.character_index,
        )
        room = self.registry.create(host)
        connection.enter(room.code, is_host=True)
        await connection.send(RoomCreatedMessage(room_code=room.code, room=room.snapshot()))

    async def handle_join_room(self, connection: Connection, request: JoinRoomRequest) -> None:
        await self.leave(connection)
        guest = Participant(
            id=connection.id,
            name=request.player_name or DEFAULT_GUEST_NAME,
            character_index=request.character_index,
        )
        try:
            room = self.registry.join(request.room_code, guest)
        except JoinError as e:
            logger.info(f"Join rejected for {connection.id}: {e}")
            await connection.send(JoinErrorMessage(error=e.code))
            return

        connection.enter(room.code, is_host=False)
        snapshot = room.snapshot()
        joined = RoomJoinedMessage(room_code=room.code, room=snapshot)
        notice = PlayerJoinedMessage(guest=snapshot.guest)
        await connection.send(joined)
        if self.registry.get(room.code) is not room:
            # Closed while the reply was in flight.
            return
        await self.connections.broadcast(room, notice, exclude=connection.id)

    async def handle_leave_room(self, connection: Connection, request: WireModel) -> None:
        await self.leave(connection)

    async def handle_update_character(self, connection: Connection, request: UpdateCharacterRequest) -> None:
        room = self.current_room(connection)
        if room is None:
            return
        seat = room.participant(connection.id)
        seat.character_index = request.character_index
        await self.connections.broadcast(
            room,
            CharacterUpdatedMessage(
                player_id=connection.id,
                character_index=request.character_index,
                is_host=room.is_host(connection.id),
            ),
            exclude=connection.id,
        )

    async def handle_set_ready(self, connection: Connection, request: SetReadyRequest) -> None:
        room = self.current_room(connection)
        if room is None:
            return
        seat = room.participant(connection.id)
        seat.ready = request.ready
        await self.connections.broadcast(
            room,
            ReadyUpdatedMessage(
                player_id=connection.id,
                ready=request.ready,
                is_host=room.is_host(connection.id),
            ),
            exclude=connection.id,
        )

    async def handle_start_game(self, connection: Connection, request: WireModel) -> None:
        room = self.current_room(connection)
        if room is None or not room.can_start(connection.id):
            logger.debug(f"Ignoring start_game from {connection.id}")
            return
        self.registry.start(room)
        # Sent to both seats, the host included, so both sides start on the broadcast.
        await self.connections.broadcast(room, GameStartedMessage(room=room.snapshot()))

    async def handle_game_action(self, connection: Connection, request: GameActionRequest) -> None:
        room = self.current_room(connection)
        if room is None:
            return
        await self.connections.broadcast(
            room,
            GameActionMessage(player_id=connection.id, action=request.action, data=request.data),
            exclude=connection.id,
        )

    # ---------------------------------------------------------------------
    # Leaving
    # ---------------------------------------------------------------------

    async def leave(self, connection: Connection) -> None:
        """Vacate the connection's seat; a departing host closes the room."""
        room = self.current_room(connection)
        connection.clear_room()
        if room is None:
            return

        if room.is_host(connection.id):
            await close_room(self.registry, self.connections, room, CloseReason.HOST_LEFT, exclude=connection.id)
            return

        room.clear_guest()
        logger.info(f"Player {connection.id} left room {room.code}")
        await self.connections.broadcast(room, PlayerLeftMessage(player_id=connection.id), exclude=connection.id)


__all__ = ["MessageRouter", "close_room"]
