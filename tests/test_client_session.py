import asyncio
import json

import pytest

from cardduel.client import ConnectionState, SessionController, SessionEvent
from cardduel.constants import CloseReason, JoinErrorCode, RoomStatus
from cardduel.exceptions import ConnectError
from cardduel.schemas import Participant, RoomSnapshot


class FakeChannel:
    """Client-side stand-in for a websockets connection."""

    def __init__(self, player_id='p-1', greet=True):
        self.sent = []
        self.closed = False
        self._incoming = asyncio.Queue()
        if greet:
            self.push({'type': 'connected', 'playerId': player_id})

    def push(self, message):
        self._incoming.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self):
        """Simulate the server going away."""
        self._incoming.put_nowait(None)

    async def send(self, data):
        if self.closed:
            raise OSError('channel closed')
        self.sent.append(json.loads(data))

    async def close(self):
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is None:
            self.closed = True
            raise StopAsyncIteration
        return item


class FakeConnector:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self, url):
        self.calls += 1
        if not self.outcomes:
            raise OSError('connection refused')
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


async def eventually(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError('condition not met in time')
        await asyncio.sleep(0.005)


def room_payload(status='waiting', guest=None, started_at=None):
    return {
        'code': 'ABC234',
        'host': {'id': 'p-1', 'name': 'Alice', 'characterIndex': 2, 'ready': True},
        'guest': guest,
        'status': status,
        'createdAt': 1_700_000_000_000,
        'startedAt': started_at,
    }


BOB = {'id': 'p-2', 'name': 'Bob', 'characterIndex': 5, 'ready': False}


async def connected_session(channel=None, **kwargs):
    channel = channel or FakeChannel()
    connector = FakeConnector(channel)
    session = SessionController('ws://test/ws', connector=connector, **kwargs)
    await session.connect()
    return session, channel, connector


@pytest.mark.asyncio
async def test_connect_resolves_with_player_id():
    channel = FakeChannel('p-1')
    session = SessionController('ws://test/ws', connector=FakeConnector(channel))
    seen = []
    session.on(SessionEvent.CONNECTED, seen.append)
    assert session.state == ConnectionState.DISCONNECTED

    assert await session.connect() == 'p-1'

    assert session.is_connected
    assert session.state == ConnectionState.CONNECTED
    assert session.player_id == 'p-1'
    assert seen == ['p-1']
    await session.disconnect()


@pytest.mark.asyncio
async def test_connect_when_connected_is_a_noop():
    session, channel, connector = await connected_session()
    assert await session.connect() == 'p-1'
    assert connector.calls == 1
    await session.disconnect()


@pytest.mark.asyncio
async def test_connect_transport_failure_raises():
    session = SessionController('ws://test/ws', connector=FakeConnector(OSError('refused')))
    errors = []
    session.on(SessionEvent.ERROR, errors.append)

    with pytest.raises(ConnectError):
        await session.connect()

    assert session.state == ConnectionState.DISCONNECTED
    assert not session.reconnect_pending
    assert len(errors) == 1 and isinstance(errors[0], OSError)


@pytest.mark.asyncio
async def test_connect_fails_when_closed_before_ack():
    channel = FakeChannel(greet=False)
    channel.drop()
    connector = FakeConnector(channel)
    session = SessionController('ws://test/ws', connector=connector, reconnect_base_delay=0)
    downs = []
    session.on(SessionEvent.DISCONNECTED, lambda: downs.append(True))

    with pytest.raises(ConnectError):
        await session.connect()
    await asyncio.sleep(0.02)

    assert not session.is_connected
    assert not session.reconnect_pending
    assert session.reconnect_attempts == 0
    assert connector.calls == 1
    assert downs == []


@pytest.mark.asyncio
async def test_connect_times_out_without_ack():
    channel = FakeChannel(greet=False)
    connector = FakeConnector(channel)
    session = SessionController(
        'ws://test/ws', connector=connector, connect_timeout=0.05, reconnect_base_delay=0,
    )
    downs = []
    session.on(SessionEvent.DISCONNECTED, lambda: downs.append(True))

    with pytest.raises(ConnectError):
        await session.connect()
    assert not session.reconnect_pending
    await asyncio.sleep(0.05)

    assert channel.closed
    assert session.state == ConnectionState.DISCONNECTED
    assert not session.reconnect_pending
    assert session.reconnect_attempts == 0
    assert connector.calls == 1
    assert downs == []


@pytest.mark.asyncio
async def test_requests_are_serialised_for_the_wire():
    session, channel, _ = await connected_session()

    assert await session.create_room('Alice', 2)
    assert await session.join_room('abc234', 'Bob', 5)
    assert await session.update_character(7)
    assert await session.set_ready(False)
    assert await session.send_game_action('attack', {'target': 'rim', 'power': 3})
    assert await session.leave_room()

    assert channel.sent == [
        {'type': 'create_room', 'playerName': 'Alice', 'characterIndex': 2},
        {'type': 'join_room', 'roomCode': 'abc234', 'playerName': 'Bob', 'characterIndex': 5},
        {'type': 'update_character', 'characterIndex': 7},
        {'type': 'set_ready', 'ready': False},
        {'type': 'game_action', 'action': 'attack', 'data': {'target': 'rim', 'power': 3}},
        {'type': 'leave_room'},
    ]
    await session.disconnect()


@pytest.mark.asyncio
async def test_sending_while_disconnected_is_dropped():
    session = SessionController('ws://test/ws', connector=FakeConnector())
    assert await session.create_room('Alice') is False
    assert await session.send_game_action('noop') is False


@pytest.mark.asyncio
async def test_start_game_only_sent_by_host():
    session, channel, _ = await connected_session()

    assert await session.start_game() is False
    assert channel.sent == []

    channel.push({'type': 'room_created', 'roomCode': 'ABC234', 'room': room_payload()})
    await eventually(lambda: session.is_host)

    assert await session.start_game() is True
    assert channel.sent == [{'type': 'start_game'}]
    await session.disconnect()


@pytest.mark.asyncio
async def test_room_state_follows_inbound_messages():
    session, channel, _ = await connected_session()
    created, joined, closed = [], [], []
    session.on(SessionEvent.ROOM_CREATED, lambda code, room: created.append((code, room)))
    session.on(SessionEvent.ROOM_JOINED, lambda code, room: joined.append((code, room)))
    session.on(SessionEvent.ROOM_CLOSED, closed.append)

    channel.push({'type': 'room_created', 'roomCode': 'ABC234', 'room': room_payload()})
    await eventually(lambda: created)
    code, room = created[0]
    assert code == 'ABC234'
    assert isinstance(room, RoomSnapshot)
    assert room.host.character_index == 2
    assert session.room_code == 'ABC234' and session.is_host

    channel.push({'type': 'room_closed', 'reason': 'TIMEOUT'})
    await eventually(lambda: closed)
    assert closed == [CloseReason.TIMEOUT]
    assert session.room_code is None and not session.is_host

    channel.push({'type': 'room_joined', 'roomCode': 'XYZ789', 'room': room_payload('ready', guest=BOB)})
    await eventually(lambda: joined)
    assert joined[0][1].guest.character_index == 5
    assert session.room_code == 'XYZ789' and not session.is_host

    await session.leave_room()
    assert session.room_code is None
    await session.disconnect()


@pytest.mark.asyncio
async def test_event_payload_shapes():
    session, channel, _ = await connected_session()
    seen = []
    for event in (
        SessionEvent.JOIN_ERROR,
        SessionEvent.PLAYER_JOINED,
        SessionEvent.PLAYER_LEFT,
        SessionEvent.CHARACTER_UPDATED,
        SessionEvent.READY_UPDATED,
        SessionEvent.GAME_STARTED,
        SessionEvent.GAME_ACTION,
    ):
        session.on(event, lambda *args, _event=event: seen.append((_event, args)))

    channel.push({'type': 'join_error', 'error': 'ROOM_FULL'})
    channel.push({'type': 'player_joined', 'guest': BOB})
    channel.push({'type': 'player_left', 'playerId': 'p-2'})
    channel.push({'type': 'character_updated', 'playerId': 'p-2', 'characterIndex': 4, 'isHost': False})
    channel.push({'type': 'ready_updated', 'playerId': 'p-2', 'ready': True, 'isHost': False})
    channel.push({'type': 'game_started', 'room': room_payload('playing', guest=BOB, started_at=1_700_000_001_000)})
    channel.push({'type': 'game_action', 'playerId': 'p-2', 'action': 'block', 'data': [1, 2]})
    await eventually(lambda: len(seen) == 7)

    assert seen[0] == (SessionEvent.JOIN_ERROR, (JoinErrorCode.ROOM_FULL,))
    assert seen[1][0] == SessionEvent.PLAYER_JOINED
    assert seen[1][1][0] == Participant(id='p-2', name='Bob', character_index=5, ready=False)
    assert seen[2] == (SessionEvent.PLAYER_LEFT, ('p-2',))
    assert seen[3] == (SessionEvent.CHARACTER_UPDATED, (4, False))
    assert seen[4] == (SessionEvent.READY_UPDATED, (True, False))
    assert seen[5][1][0].status == RoomStatus.PLAYING
    assert seen[6] == (SessionEvent.GAME_ACTION, ('block', [1, 2]))
    await session.disconnect()


@pytest.mark.asyncio
async def test_bad_inbound_messages_are_ignored():
    session, channel, _ = await connected_session()
    left = []
    session.on(SessionEvent.PLAYER_LEFT, left.append)

    channel.push('not json at all')
    channel.push('[]')
    channel.push({'type': 'mystery'})
    channel.push({'type': 'room_created'})
    channel.push({'type': 'player_left', 'playerId': 'p-2'})
    await eventually(lambda: left)

    assert left == ['p-2']
    assert session.is_connected
    assert session.room_code is None
    await session.disconnect()


@pytest.mark.asyncio
async def test_manual_disconnect_does_not_reconnect():
    session, channel, connector = await connected_session(reconnect_base_delay=0)
    downs = []
    session.on(SessionEvent.DISCONNECTED, lambda: downs.append(True))

    await session.disconnect()
    await asyncio.sleep(0.02)

    assert channel.closed
    assert downs == [True]
    assert session.state == ConnectionState.DISCONNECTED
    assert session.player_id is None
    assert not session.reconnect_pending
    assert connector.calls == 1


@pytest.mark.asyncio
async def test_unexpected_close_reconnects_and_resets_counter():
    first, second = FakeChannel('p-1'), FakeChannel('p-2')
    connector = FakeConnector(first, second)
    session = SessionController('ws://test/ws', connector=connector, reconnect_base_delay=0)
    events = []
    session.on(SessionEvent.CONNECTED, events.append)
    session.on(SessionEvent.DISCONNECTED, lambda: events.append('down'))
    await session.connect()

    first.drop()
    await eventually(lambda: session.player_id == 'p-2' and session.is_connected)

    assert events == ['p-1', 'down', 'p-2']
    assert session.reconnect_attempts == 0
    assert connector.calls == 2
    await session.disconnect()


@pytest.mark.asyncio
async def test_reconnect_gives_up_after_five_attempts():
    channel = FakeChannel('p-1')
    connector = FakeConnector(channel)
    session = SessionController('ws://test/ws', connector=connector, reconnect_base_delay=0)
    failed = []
    session.on(SessionEvent.RECONNECT_FAILED, lambda: failed.append(True))
    await session.connect()

    channel.drop()
    await eventually(lambda: failed)
    await asyncio.sleep(0.02)

    assert failed == [True]
    assert connector.calls == 1 + 5
    assert session.reconnect_attempts == 5
    assert not session.reconnect_pending
    assert session.state == ConnectionState.DISCONNECTED

    # a manual connect starts over
    connector.outcomes.append(FakeChannel('p-9'))
    assert await session.connect() == 'p-9'
    assert session.reconnect_attempts == 0
    await session.disconnect()


@pytest.mark.asyncio
async def test_disconnect_cancels_pending_retry():
    session, channel, connector = await connected_session(reconnect_base_delay=10)

    channel.drop()
    await eventually(lambda: session.reconnect_attempts == 1)
    assert session.reconnect_pending

    await session.disconnect()

    assert not session.reconnect_pending
    assert session.reconnect_attempts == 0
    assert connector.calls == 1


@pytest.mark.asyncio
async def test_server_shutdown_disconnects_for_good():
    session, channel, connector = await connected_session(reconnect_base_delay=0)
    shutdowns = []
    session.on(SessionEvent.SERVER_SHUTDOWN, lambda: shutdowns.append(True))

    channel.push({'type': 'server_shutdown'})
    await eventually(lambda: session.state == ConnectionState.DISCONNECTED)
    await asyncio.sleep(0.02)

    assert shutdowns == [True]
    assert channel.closed
    assert not session.reconnect_pending
    assert connector.calls == 1


def test_reconnect_delay_backoff():
    session = SessionController()
    assert [session.reconnect_delay(n) for n in range(1, 6)] == [2.0, 4.0, 8.0, 16.0, 30.0]


@pytest.mark.asyncio
async def test_retry_closed_before_ack_moves_on_to_next_attempt():
    first, third = FakeChannel('p-1'), FakeChannel('p-3')
    second = FakeChannel(greet=False)
    second.drop()
    connector = FakeConnector(first, second, third)
    session = SessionController('ws://test/ws', connector=connector, reconnect_base_delay=0)
    events = []
    session.on(SessionEvent.CONNECTED, events.append)
    session.on(SessionEvent.DISCONNECTED, lambda: events.append('down'))
    await session.connect()

    first.drop()
    await eventually(lambda: session.player_id == 'p-3' and session.is_connected)

    assert events == ['p-1', 'down', 'p-3']
    assert connector.calls == 3
    assert session.reconnect_attempts == 0
    await session.disconnect()
