"""Client side of the room-session protocol.

``SessionController`` owns one websocket to the server at a time. Requests
are fire-and-forget; every outcome arrives later as a
:class:`~cardduel.client.events.SessionEvent`. Unexpected closures are
retried with exponential backoff until the attempt budget runs out.
"""
from __future__ import annotations

import asyncio
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..constants import (
    CONNECT_TIMEOUT_SEC,
    MAX_RECONNECT_ATTEMPTS,
    RECONNECT_BASE_DELAY_SEC,
    RECONNECT_MAX_DELAY_SEC,
)
from ..exceptions import ConnectError
from ..logging_config import get_logger
from ..schemas import (
    SERVER_MESSAGES,
    CharacterUpdatedMessage,
    ConnectedMessage,
    CreateRoomRequest,
    GameActionMessage,
    GameActionRequest,
    GameStartedMessage,
    JoinErrorMessage,
    JoinRoomRequest,
    LeaveRoomRequest,
    PlayerJoinedMessage,
    PlayerLeftMessage,
    ReadyUpdatedMessage,
    RoomClosedMessage,
    RoomCreatedMessage,
    RoomJoinedMessage,
    SetReadyRequest,
    StartGameRequest,
    UpdateCharacterRequest,
    WireModel,
)
from .events import EventEmitter, SessionEvent

logger = get_logger(__name__)

DEFAULT_SERVER_URL = "ws://localhost:8080/ws"

Connector = Callable[[str], Awaitable[Any]]

TRANSPORT_ERRORS = (OSError, WebSocketException, asyncio.TimeoutError)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


async def websocket_connector(url: str):
    return await websockets.connect(url)


class SessionController:
    def __init__(
        self,
        server_url: str = DEFAULT_SERVER_URL,
        connector: Optional[Connector] = None,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        reconnect_base_delay: float = RECONNECT_BASE_DELAY_SEC,
        reconnect_max_delay: float = RECONNECT_MAX_DELAY_SEC,
        connect_timeout: float = CONNECT_TIMEOUT_SEC,
    ):
        self.server_url = server_url
        self.events = EventEmitter()
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.connect_timeout = connect_timeout
        self.reconnect_attempts = 0

        self._connector: Connector = connector or websocket_connector
        self._ws: Any = None
        self._state = ConnectionState.DISCONNECTED
        self._ack: Optional[asyncio.Future] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._closing = False

        self._player_id: Optional[str] = None
        self._room_code: Optional[str] = None
        self._is_host = False

        self._handlers: Dict[str, Callable[[Any], Awaitable[None]]] = {
            "connected": self._on_connected,
            "room_created": self._on_room_created,
            "room_joined": self._on_room_joined,
            "join_error": self._on_join_error,
            "player_joined": self._on_player_joined,
            "player_left": self._on_player_left,
            "character_updated": self._on_character_updated,
            "ready_updated": self._on_ready_updated,
            "game_started": self._on_game_started,
            "game_action": self._on_game_action,
            "room_closed": self._on_room_closed,
            "server_shutdown": self._on_server_shutdown,
        }

    # ---------------------------------------------------------------------
    # Read-only state
    # ---------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def player_id(self) -> Optional[str]:
        return self._player_id

    @property
    def room_code(self) -> Optional[str]:
        return self._room_code

    @property
    def is_host(self) -> bool:
        return self._is_host

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def on(self, event, listener=None):
        """Shortcut for ``self.events.on``."""
        return self.events.on(event, listener)

    # ---------------------------------------------------------------------
    # Connection lifecycle
    # ---------------------------------------------------------------------

    async def connect(self) -> str:
        """Open the channel and wait for the server to assign a player id.

        Raises :class:`ConnectError` when the transport fails, the channel
        closes before the acknowledgment, or the acknowledgment times out.
        """
        if self.is_connected:
            return self._player_id
        await self._cancel_reconnect()
        self._closing = False
        self.reconnect_attempts = 0
        stale, self._ws = self._ws, None
        if stale is not None:
            # A half-open channel left behind by a cancelled reconnect attempt.
            try:
                await stale.close()
            except TRANSPORT_ERRORS as e:
                logger.debug(f"Error closing stale websocket: {e}")
        return await self._open()

    async def disconnect(self) -> None:
        """Close the channel for good: no reconnect follows."""
        self._closing = True
        await self._cancel_reconnect()
        self.reconnect_attempts = 0

        ws, self._ws = self._ws, None
        self._state = ConnectionState.DISCONNECTED
        self._player_id = None
        self._room_code = None
        self._is_host = False
        self._fail_ack(ConnectError("disconnected before acknowledgment"))

        if ws is not None:
            try:
                await ws.close()
            except TRANSPORT_ERRORS as e:
                logger.debug(f"Error closing websocket: {e}")

        reader, self._reader_task = self._reader_task, None
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        if ws is not None:
            logger.info("Disconnected from server")
            self.events.emit(SessionEvent.DISCONNECTED)

    def reconnect_delay(self, attempt: int) -> float:
        return min(self.reconnect_base_delay * (2 ** attempt), self.reconnect_max_delay)

    async def _open(self) -> str:
        self._state = ConnectionState.CONNECTING
        ack = asyncio.get_running_loop().create_future()
        self._ack = ack
        try:
            ws = await self._connector(self.server_url)
        except TRANSPORT_ERRORS as e:
            self._state = ConnectionState.DISCONNECTED
            self._ack = None
            logger.warning(f"Could not connect to {self.server_url}: {e}")
            self.events.emit(SessionEvent.ERROR, e)
            raise ConnectError(f"could not connect to {self.server_url}: {e}") from e

        self._ws = ws
        self._reader_task = asyncio.create_task(self._read_loop(ws))
        try:
            return await asyncio.wait_for(ack, self.connect_timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"No acknowledgment from {self.server_url} within {self.connect_timeout}s")
            # Detach first so the reader's close is not taken for a dropped session.
            if self._ws is ws:
                self._ws = None
                self._state = ConnectionState.DISCONNECTED
            try:
                await ws.close()
            except TRANSPORT_ERRORS:
                pass
            raise ConnectError("timed out waiting for the server acknowledgment") from e
        finally:
            if self._ack is ack:
                self._ack = None

    def _fail_ack(self, exc: Exception) -> None:
        if self._ack is not None and not self._ack.done():
            self._ack.set_exception(exc)

    async def _read_loop(self, ws) -> None:
        try:
            async for raw in ws:
                await self._dispatch(raw)
        except ConnectionClosed as e:
            logger.info(f"Connection closed by server: {e}")
        except (OSError, WebSocketException) as e:
            logger.error(f"WebSocket error: {e}", exc_info=True)
            self.events.emit(SessionEvent.ERROR, e)
        finally:
            self._on_channel_closed(ws)

    def _on_channel_closed(self, ws) -> None:
        if ws is not self._ws:
            return
        self._ws = None
        self._state = ConnectionState.DISCONNECTED
        awaiting_ack = self._ack is not None and not self._ack.done()
        self._fail_ack(ConnectError("connection closed before acknowledgment"))
        # A close before the ack is reported to the caller of _open() instead.
        if self._closing or awaiting_ack:
            return
        logger.info("Disconnected from server")
        self.events.emit(SessionEvent.DISCONNECTED)
        self._schedule_reconnect()

    # ---------------------------------------------------------------------
    # Reconnection
    # ---------------------------------------------------------------------

    def _schedule_reconnect(self) -> None:
        if self.reconnect_pending:
            return
        if self.reconnect_attempts >= self.max_reconnect_attempts:
            logger.warning("Max reconnect attempts reached")
            self.events.emit(SessionEvent.RECONNECT_FAILED)
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        while self.reconnect_attempts < self.max_reconnect_attempts:
            self.reconnect_attempts += 1
            delay = self.reconnect_delay(self.reconnect_attempts)
            logger.info(f"Reconnecting in {delay:.1f}s... (attempt {self.reconnect_attempts}/{self.max_reconnect_attempts})")
            await asyncio.sleep(delay)
            if self._closing:
                return
            try:
                await self._open()
            except ConnectError as e:
                logger.warning(f"Reconnect attempt {self.reconnect_attempts} failed: {e}")
                continue
            return

        logger.warning("Max reconnect attempts reached")
        self.events.emit(SessionEvent.RECONNECT_FAILED)

    async def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ---------------------------------------------------------------------
    # Outbound requests
    # ---------------------------------------------------------------------

    async def send(self, message: WireModel) -> bool:
        """Write one request; returns False when it could not be sent."""
        ws = self._ws
        if ws is None or not self.is_connected:
            logger.warning(f"WebSocket not connected, dropping {message.type}")
            return False
        try:
            await ws.send(json.dumps(message.to_wire()))
        except TRANSPORT_ERRORS as e:
            logger.warning(f"Failed to send {message.type}: {e}")
            return False
        return True

    async def create_room(self, player_name: str, character_index: int = 0) -> bool:
        return await self.send(CreateRoomRequest(player_name=player_name, character_index=character_index))

    async def join_room(self, room_code: str, player_name: str, character_index: int = 0) -> bool:
        return await self.send(
            JoinRoomRequest(room_code=room_code, player_name=player_name, character_index=character_index)
        )

    async def leave_room(self) -> bool:
        sent = await self.send(LeaveRoomRequest())
        # The server never acknowledges a leave, so forget the room right away.
        self._room_code = None
        self._is_host = False
        return sent

    async def update_character(self, character_index: int) -> bool:
        return await self.send(UpdateCharacterRequest(character_index=character_index))

    async def set_ready(self, ready: bool) -> bool:
        return await self.send(SetReadyRequest(ready=ready))

    async def start_game(self) -> bool:
        if not self._is_host:
            logger.warning("Only the host can start the game")
            return False
        return await self.send(StartGameRequest())

    async def send_game_action(self, action: Any, data: Any = None) -> bool:
        return await self.send(GameActionRequest(action=action, data=data))

    # ---------------------------------------------------------------------
    # Inbound messages
    # ---------------------------------------------------------------------

    async def _dispatch(self, raw) -> None:
        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.error(f"Failed to parse message: {e}")
            return
        if not isinstance(data, dict):
            logger.error(f"Failed to parse message: expected an object, got {type(data).__name__}")
            return

        msg_type = data.get("type")
        model = SERVER_MESSAGES.get(msg_type) if isinstance(msg_type, str) else None
        if model is None:
            logger.warning(f"Unknown message type: {msg_type!r}")
            return
        try:
            message = model.model_validate(data)
        except ValidationError as e:
            logger.error(f"Malformed {msg_type} message: {e.error_count()} validation error(s)")
            return

        logger.debug(f"Received: {msg_type}")
        await self._handlers[msg_type](message)

    async def _on_connected(self, message: ConnectedMessage) -> None:
        self._player_id = message.player_id
        self._state = ConnectionState.CONNECTED
        self.reconnect_attempts = 0
        logger.info(f"Connected to multiplayer server as {message.player_id}")
        if self._ack is not None and not self._ack.done():
            self._ack.set_result(message.player_id)
        self.events.emit(SessionEvent.CONNECTED, message.player_id)

    async def _on_room_created(self, message: RoomCreatedMessage) -> None:
        self._room_code = message.room_code
        self._is_host = True
        self.events.emit(SessionEvent.ROOM_CREATED, message.room_code, message.room)

    async def _on_room_joined(self, message: RoomJoinedMessage) -> None:
        self._room_code = message.room_code
        self._is_host = False
        self.events.emit(SessionEvent.ROOM_JOINED, message.room_code, message.room)

    async def _on_join_error(self, message: JoinErrorMessage) -> None:
        self.events.emit(SessionEvent.JOIN_ERROR, message.error)

    async def _on_player_joined(self, message: PlayerJoinedMessage) -> None:
        self.events.emit(SessionEvent.PLAYER_JOINED, message.guest)

    async def _on_player_left(self, message: PlayerLeftMessage) -> None:
        self.events.emit(SessionEvent.PLAYER_LEFT, message.player_id)

    async def _on_character_updated(self, message: CharacterUpdatedMessage) -> None:
        self.events.emit(SessionEvent.CHARACTER_UPDATED, message.character_index, message.is_host)

    async def _on_ready_updated(self, message: ReadyUpdatedMessage) -> None:
        self.events.emit(SessionEvent.READY_UPDATED, message.ready, message.is_host)

    async def _on_game_started(self, message: GameStartedMessage) -> None:
        self.events.emit(SessionEvent.GAME_STARTED, message.room)

    async def _on_game_action(self, message: GameActionMessage) -> None:
        self.events.emit(SessionEvent.GAME_ACTION, message.action, message.data)

    async def _on_room_closed(self, message: RoomClosedMessage) -> None:
        self._room_code = None
        self._is_host = False
        self.events.emit(SessionEvent.ROOM_CLOSED, message.reason)

    async def _on_server_shutdown(self, message: WireModel) -> None:
        logger.info("Server is shutting down")
        self._closing = True
        self.events.emit(SessionEvent.SERVER_SHUTDOWN)
        await self.disconnect()


__all__ = ["SessionController", "ConnectionState", "DEFAULT_SERVER_URL", "websocket_connector"]
