"""Pydantic models for the room snapshot and every wire message.

Field names are snake_case in Python and camelCase on the wire; always
dump with ``by_alias=True`` (``to_wire`` does this) before sending.
"""
from __future__ import annotations

from typing import Any, Dict, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .constants import (
    DEFAULT_GUEST_NAME,
    DEFAULT_HOST_NAME,
    CloseReason,
    JoinErrorCode,
    RoomStatus,
)


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# -----------------------------
# Room snapshot
# -----------------------------

class Participant(WireModel):
    """One seat in a room; ``id`` is the owning connection id."""

    id: str
    name: str
    character_index: int = 0
    ready: bool = False


class RoomSnapshot(WireModel):
    code: str
    host: Optional[Participant] = None
    guest: Optional[Participant] = None
    status: RoomStatus
    created_at: int
    started_at: Optional[int] = None


# -----------------------------
# Client -> server
# -----------------------------

class CreateRoomRequest(WireModel):
    type: Literal["create_room"] = "create_room"
    player_name: Optional[str] = DEFAULT_HOST_NAME
    character_index: int = 0


class JoinRoomRequest(WireModel):
    type: Literal["join_room"] = "join_room"
    room_code: Optional[str] = None
    player_name: Optional[str] = DEFAULT_GUEST_NAME
    character_index: int = 0


class LeaveRoomRequest(WireModel):
    type: Literal["leave_room"] = "leave_room"


class UpdateCharacterRequest(WireModel):
    type: Literal["update_character"] = "update_character"
    character_index: int


class SetReadyRequest(WireModel):
    type: Literal["set_ready"] = "set_ready"
    ready: bool


class StartGameRequest(WireModel):
    type: Literal["start_game"] = "start_game"


class GameActionRequest(WireModel):
    type: Literal["game_action"] = "game_action"
    action: Any = None
    data: Any = None


CLIENT_MESSAGES: Dict[str, Type[WireModel]] = {
    "create_room": CreateRoomRequest,
    "join_room": JoinRoomRequest,
    "leave_room": LeaveRoomRequest,
    "update_character": UpdateCharacterRequest,
    "set_ready": SetReadyRequest,
    "start_game": StartGameRequest,
    "game_action": GameActionRequest,
}


# -----------------------------
# Server -> client
# -----------------------------

class ConnectedMessage(WireModel):
    type: Literal["connected"] = "connected"
    player_id: str


class RoomCreatedMessage(WireModel):
    type: Literal["room_created"] = "room_created"
    room_code: str
    room: RoomSnapshot


class RoomJoinedMessage(WireModel):
    type: Literal["room_joined"] = "room_joined"
    room_code: str
    room: RoomSnapshot


class JoinErrorMessage(WireModel):
    type: Literal["join_error"] = "join_error"
    error: JoinErrorCode


class PlayerJoinedMessage(WireModel):
    type: Literal["player_joined"] = "player_joined"
    guest: Participant


class PlayerLeftMessage(WireModel):
    type: Literal["player_left"] = "player_left"
    player_id: str


class CharacterUpdatedMessage(WireModel):
    type: Literal["character_updated"] = "character_updated"
    player_id: str
    character_index: int
    is_host: bool


class ReadyUpdatedMessage(WireModel):
    type: Literal["ready_updated"] = "ready_updated"
    player_id: str
    ready: bool
    is_host: bool


class GameStartedMessage(WireModel):
    type: Literal["game_started"] = "game_started"
    room: RoomSnapshot


class GameActionMessage(WireModel):
    type: Literal["game_action"] = "game_action"
    player_id: str
    action: Any = None
    data: Any = None


class RoomClosedMessage(WireModel):
    type: Literal["room_closed"] = "room_closed"
    reason: CloseReason


class ServerShutdownMessage(WireModel):
    type: Literal["server_shutdown"] = "server_shutdown"


SERVER_MESSAGES: Dict[str, Type[WireModel]] = {
    "connected": ConnectedMessage,
    "room_created": RoomCreatedMessage,
    "room_joined": RoomJoinedMessage,
    "join_error": JoinErrorMessage,
    "player_joined": PlayerJoinedMessage,
    "player_left": PlayerLeftMessage,
    "character_updated": CharacterUpdatedMessage,
    "ready_updated": ReadyUpdatedMessage,
    "game_started": GameStartedMessage,
    "game_action": GameActionMessage,
    "room_closed": RoomClosedMessage,
    "server_shutdown": ServerShutdownMessage,
}


__all__ = [
    "WireModel",
    # snapshot
    "Participant",
    "RoomSnapshot",
    # client -> server
    "CreateRoomRequest",
    "JoinRoomRequest",
    "LeaveRoomRequest",
    "UpdateCharacterRequest",
    "SetReadyRequest",
    "StartGameRequest",
    "GameActionRequest",
    "CLIENT_MESSAGES",
    # server -> client
    "ConnectedMessage",
    "RoomCreatedMessage",
    "RoomJoinedMessage",
    "JoinErrorMessage",
    "PlayerJoinedMessage",
    "PlayerLeftMessage",
    "CharacterUpdatedMessage",
    "ReadyUpdatedMessage",
    "GameStartedMessage",
    "GameActionMessage",
    "RoomClosedMessage",
    "ServerShutdownMessage",
    "SERVER_MESSAGES",
]
