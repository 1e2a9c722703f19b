from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Union

from ..logging_config import get_logger

logger = get_logger(__name__)


class SessionEvent(str, Enum):
    """Events published by :class:`~cardduel.client.SessionController`.

    Handler arguments per event:

    - ``CONNECTED(player_id)``
    - ``DISCONNECTED()``
    - ``RECONNECT_FAILED()``
    - ``ROOM_CREATED(room_code, room)``
    - ``ROOM_JOINED(room_code, room)``
    - ``JOIN_ERROR(error)``
    - ``PLAYER_JOINED(guest)``
    - ``PLAYER_LEFT(player_id)``
    - ``CHARACTER_UPDATED(character_index, is_host)``
    - ``READY_UPDATED(ready, is_host)``
    - ``GAME_STARTED(room)``
    - ``GAME_ACTION(action, data)``
    - ``ROOM_CLOSED(reason)``
    - ``SERVER_SHUTDOWN()``
    - ``ERROR(exc)``
    """

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECT_FAILED = "reconnect_failed"
    ROOM_CREATED = "room_created"
    ROOM_JOINED = "room_joined"
    JOIN_ERROR = "join_error"
    PLAYER_JOINED = "player_joined"
    PLAYER_LEFT = "player_left"
    CHARACTER_UPDATED = "character_updated"
    READY_UPDATED = "ready_updated"
    GAME_STARTED = "game_started"
    GAME_ACTION = "game_action"
    ROOM_CLOSED = "room_closed"
    SERVER_SHUTDOWN = "server_shutdown"
    ERROR = "error"


EventName = Union[SessionEvent, str]
Listener = Callable[..., Any]


class EventEmitter:
    """Small synchronous emitter restricted to :class:`SessionEvent` names.

    Listeners run in registration order. A listener that raises is logged
    and skipped; coroutine listeners are scheduled on the running loop, kept
    until they finish, and logged the same way if they raise.
    """

    def __init__(self) -> None:
        self._listeners: Dict[SessionEvent, List[Listener]] = defaultdict(list)
        self._pending: Set[asyncio.Future] = set()

    def on(self, event: EventName, listener: Optional[Listener] = None):
        """Register *listener*; usable directly or as a decorator."""
        name = SessionEvent(event)

        if listener is None:
            def decorator(func: Listener) -> Listener:
                self._listeners[name].append(func)
                return func
            return decorator

        self._listeners[name].append(listener)
        return listener

    def off(self, event: EventName, listener: Listener) -> None:
        listeners = self._listeners.get(SessionEvent(event), [])
        if listener in listeners:
            listeners.remove(listener)

    def listeners(self, event: EventName) -> List[Listener]:
        return list(self._listeners.get(SessionEvent(event), []))

    def emit(self, event: EventName, *args: Any) -> None:
        name = SessionEvent(event)
        for listener in list(self._listeners.get(name, [])):
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(lambda t, _name=name: self._listener_done(_name, t))
            except Exception as e:
                logger.error(f"Listener for {name.value} failed: {e}", exc_info=True)

    @property
    def pending(self) -> int:
        """Number of coroutine listeners still running."""
        return len(self._pending)

    def _listener_done(self, name: SessionEvent, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Listener for {name.value} failed: {exc}", exc_info=exc)


__all__ = ["SessionEvent", "EventEmitter"]
