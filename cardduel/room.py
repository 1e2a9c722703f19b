from __future__ import annotations

from typing import List, Optional

from .constants import RoomStatus
from .schemas import Participant, RoomSnapshot


class Room:
    """Runtime state of one two-seat room.

    The status always follows the seats: ``waiting`` while the guest seat is
    empty, ``ready`` once it is taken and ``playing`` after the host starts
    the match. Only :class:`~cardduel.registry.RoomRegistry` creates and
    removes rooms.
    """

    def __init__(self, code: str, host: Participant, created_at: int):
        self.code = code
        self.host: Optional[Participant] = host
        self.guest: Optional[Participant] = None
        self.status = RoomStatus.WAITING
        self.created_at = created_at
        self.started_at: Optional[int] = None

    # -------------------- Seat management -------------------- #

    def seat_guest(self, guest: Participant) -> None:
        self.guest = guest
        self.status = RoomStatus.READY

    def clear_guest(self) -> Optional[Participant]:
        guest, self.guest = self.guest, None
        self.status = RoomStatus.WAITING
        return guest

    def participant(self, player_id: str) -> Optional[Participant]:
        for seat in (self.host, self.guest):
            if seat is not None and seat.id == player_id:
                return seat
        return None

    def is_host(self, player_id: str) -> bool:
        return self.host is not None and self.host.id == player_id

    def occupant_ids(self) -> List[str]:
        return [seat.id for seat in (self.host, self.guest) if seat is not None]

    # -------------------- Match start -------------------- #

    def can_start(self, player_id: str) -> bool:
        """Only a ready host with a seated guest may start the match."""
        return (
            self.is_host(player_id)
            and self.guest is not None
            and self.status == RoomStatus.READY
            and self.host.ready
        )

    def start(self, now: int) -> None:
        self.status = RoomStatus.PLAYING
        self.started_at = now

    def age_ms(self, now: int) -> int:
        return now - self.created_at

    # -------------------- Snapshots -------------------- #

    def snapshot(self) -> RoomSnapshot:
        """Detached copy safe to serialise while the room keeps changing."""
        return RoomSnapshot(
            code=self.code,
            host=self.host.model_copy() if self.host else None,
            guest=self.guest.model_copy() if self.guest else None,
            status=self.status,
            created_at=self.created_at,
            started_at=self.started_at,
        )

    def __repr__(self) -> str:
        return f"<Room {self.code} status={self.status.value} occupants={len(self.occupant_ids())}>"


__all__ = ["Room"]
