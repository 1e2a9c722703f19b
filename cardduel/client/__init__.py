from .events import EventEmitter, SessionEvent
from .session import DEFAULT_SERVER_URL, ConnectionState, SessionController

__all__ = [
    "EventEmitter",
    "SessionEvent",
    "SessionController",
    "ConnectionState",
    "DEFAULT_SERVER_URL",
]
