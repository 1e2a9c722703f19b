from __future__ import annotations

from .constants import JoinErrorCode


class CardDuelError(Exception):
    """Base class for errors raised by the session layer."""


class JoinError(CardDuelError):
    """A join request was refused; ``code`` is reported back to the joiner."""

    def __init__(self, code: JoinErrorCode, room_code: str = ""):
        self.code = code
        self.room_code = room_code
        super().__init__(f"cannot join room {room_code or '?'}: {code.value}")


class ConnectError(CardDuelError):
    """The client could not establish an acknowledged connection."""


__all__ = ["CardDuelError", "JoinError", "ConnectError"]
