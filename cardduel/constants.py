from enum import Enum

# Room codes avoid 0/O and 1/I so they can be read out loud.
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ROOM_CODE_LENGTH = 6

ROOM_MAX_AGE_SEC = 60 * 60
SWEEP_INTERVAL_SEC = 60

DEFAULT_HOST_NAME = "Host"
DEFAULT_GUEST_NAME = "Guest"

# Client reconnect policy
RECONNECT_BASE_DELAY_SEC = 1.0
RECONNECT_MAX_DELAY_SEC = 30.0
MAX_RECONNECT_ATTEMPTS = 5
CONNECT_TIMEOUT_SEC = 10.0


class RoomStatus(str, Enum):
    WAITING = "waiting"
    READY = "ready"
    PLAYING = "playing"


class JoinErrorCode(str, Enum):
    ROOM_NOT_FOUND = "ROOM_NOT_FOUND"
    ROOM_FULL = "ROOM_FULL"
    GAME_IN_PROGRESS = "GAME_IN_PROGRESS"


class CloseReason(str, Enum):
    HOST_LEFT = "HOST_LEFT"
    TIMEOUT = "TIMEOUT"


__all__ = [
    "ROOM_CODE_ALPHABET",
    "ROOM_CODE_LENGTH",
    "ROOM_MAX_AGE_SEC",
    "SWEEP_INTERVAL_SEC",
    "DEFAULT_HOST_NAME",
    "DEFAULT_GUEST_NAME",
    "RECONNECT_BASE_DELAY_SEC",
    "RECONNECT_MAX_DELAY_SEC",
    "MAX_RECONNECT_ATTEMPTS",
    "CONNECT_TIMEOUT_SEC",
    "RoomStatus",
    "JoinErrorCode",
    "CloseReason",
]
