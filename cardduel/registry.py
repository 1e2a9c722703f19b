"""Authoritative in-memory store of live rooms.

One ``RoomRegistry`` is created per application (see ``cardduel.app``) and
torn down with it; nothing here is module-level state.
"""
from __future__ import annotations

import secrets
import time
from typing import Callable, Dict, Iterator, List, Optional

from .constants import (
    ROOM_CODE_ALPHABET,
    ROOM_CODE_LENGTH,
    ROOM_MAX_AGE_SEC,
    JoinErrorCode,
    RoomStatus,
)
from .exceptions import JoinError
from .logging_config import get_logger
from .room import Room
from .schemas import Participant

logger = get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_room_code() -> str:
    """Return a random code; uniqueness is enforced by the registry."""
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def normalize_room_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


class RoomRegistry:
    def __init__(
        self,
        clock: Callable[[], int] = now_ms,
        code_factory: Callable[[], str] = generate_room_code,
        max_age_sec: float = ROOM_MAX_AGE_SEC,
    ):
        self.rooms: Dict[str, Room] = {}
        self.clock = clock
        self.code_factory = code_factory
        self.max_age_ms = int(max_age_sec * 1000)

    # ---------------------------------------------------------------------
    # Lookup
    # ---------------------------------------------------------------------

    def get(self, code: Optional[str]) -> Optional[Room]:
        return self.rooms.get(normalize_room_code(code))

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and normalize_room_code(code) in self.rooms

    def __len__(self) -> int:
        return len(self.rooms)

    def __iter__(self) -> Iterator[Room]:
        return iter(list(self.rooms.values()))

    # ---------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------

    def new_code(self) -> str:
        code = self.code_factory()
        while code in self.rooms:
            code = self.code_factory()
        return code

    def create(self, host: Participant) -> Room:
        host.ready = True
        room = Room(self.new_code(), host, created_at=self.clock())
        self.rooms[room.code] = room
        logger.info(f"Room created: {room.code}, total rooms: {len(self.rooms)}")
        return room

    def join(self, code: Optional[str], guest: Participant) -> Room:
        """Seat *guest* in the room or raise :class:`JoinError`."""
        normalized = normalize_room_code(code)
        room = self.rooms.get(normalized)
        if room is None:
            raise JoinError(JoinErrorCode.ROOM_NOT_FOUND, normalized)
        if room.guest is not None:
            raise JoinError(JoinErrorCode.ROOM_FULL, normalized)
        if room.status == RoomStatus.PLAYING:
            raise JoinError(JoinErrorCode.GAME_IN_PROGRESS, normalized)
        guest.ready = False
        room.seat_guest(guest)
        logger.info(f"Player {guest.id} joined room {room.code}")
        return room

    def start(self, room: Room) -> None:
        room.start(self.clock())
        logger.info(f"Game started in room {room.code}")

    def remove(self, code: str) -> Optional[Room]:
        """Delete a room; removing an absent code is a no-op."""
        room = self.rooms.pop(code, None)
        if room is not None:
            logger.info(f"Room {code} removed, total rooms: {len(self.rooms)}")
        return room

    def expired(self, now: Optional[int] = None) -> List[Room]:
        now = self.clock() if now is None else now
        return [room for room in self.rooms.values() if room.age_ms(now) > self.max_age_ms]

    def clear(self) -> None:
        self.rooms.clear()


__all__ = ["RoomRegistry", "generate_room_code", "normalize_room_code", "now_ms"]
