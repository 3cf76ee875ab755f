import asyncio
import json
import sys
from pathlib import Path
from types import SimpleNamespace

import aiohttp
import pytest

root = Path(__file__).resolve().parents[1] / "vonix"
if str(root) not in sys.path:
    sys.path.append(str(root))

from vonix.client.connection import ChatConnection, ConnectionState


class FakeSocket:
    def __init__(self) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.close_code: int | None = None
        self.sent: list[object] = []

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.queue.get()
        if item is None:
            raise StopAsyncIteration
        return item

    def push_text(self, data: str) -> None:
        self.queue.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=data))

    def push_error(self) -> None:
        self.queue.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.ERROR, data=None))

    def drop(self, code: int = 1006) -> None:
        self.close_code = code
        self.queue.put_nowait(None)

    def exception(self):
        return ConnectionResetError("reset")

    async def close(self) -> None:
        self.closed = True
        self.queue.put_nowait(None)

    async def send_json(self, payload) -> None:
        self.sent.append(payload)


class SocketFactory:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0
        self.sockets: list[FakeSocket] = []

    async def __call__(self, url: str) -> FakeSocket:
        self.calls += 1
        if self.fail:
            raise OSError("connection refused")
        ws = FakeSocket()
        self.sockets.append(ws)
        return ws


class FakeTimer:
    def __init__(self, delay: float, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimers:
    def __init__(self) -> None:
        self.scheduled: list[FakeTimer] = []

    def call_later(self, delay, callback) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.scheduled.append(timer)
        return timer

    @property
    def active(self) -> list[FakeTimer]:
        return [t for t in self.scheduled if not t.cancelled]

    def fire(self) -> None:
        (timer,) = self.active
        timer.cancelled = True
        timer.callback()


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def _make(factory=None, timers=None) -> tuple[ChatConnection, SocketFactory, FakeTimers]:
    factory = factory or SocketFactory()
    timers = timers or FakeTimers()
    conn = ChatConnection(
        "ws://test/ws/chat", socket_factory=factory, call_later=timers.call_later
    )
    return conn, factory, timers


def _frame(msg_id) -> str:
    return json.dumps({"id": msg_id, "author_name": "Alex", "content": "hi"})


@pytest.mark.asyncio
async def test_connect_is_idempotent() -> None:
    conn, factory, _ = _make()

    conn.connect()
    conn.connect()
    assert conn.state is ConnectionState.CONNECTING

    await _settle()
    assert conn.state is ConnectionState.OPEN
    conn.connect()
    await _settle()

    assert factory.calls == 1
    await conn.disconnect()


@pytest.mark.asyncio
async def test_close_schedules_exactly_one_reconnect() -> None:
    conn, factory, timers = _make()
    conn.connect()
    await _settle()

    factory.sockets[0].drop()
    await _settle()

    assert conn.state is ConnectionState.DISCONNECTED
    assert [t.delay for t in timers.active] == [5.0]
    assert conn.reconnect_pending

    timers.fire()
    await _settle()

    assert factory.calls == 2
    assert conn.state is ConnectionState.OPEN
    assert not conn.reconnect_pending
    await conn.disconnect()


@pytest.mark.asyncio
async def test_failed_attempts_keep_a_single_timer() -> None:
    conn, factory, timers = _make(factory=SocketFactory(fail=True))
    conn.connect()
    await _settle()
    assert len(timers.active) == 1

    timers.fire()
    await _settle()
    timers.fire()
    await _settle()

    assert factory.calls == 3
    assert len(timers.active) == 1
    assert all(t.delay == 5.0 for t in timers.scheduled)
    await conn.disconnect()


@pytest.mark.asyncio
async def test_disconnect_cancels_pending_reconnect() -> None:
    conn, factory, timers = _make()
    conn.connect()
    await _settle()
    factory.sockets[0].drop()
    await _settle()
    (timer,) = timers.active

    await conn.disconnect()

    assert timer.cancelled
    assert not conn.reconnect_pending
    assert conn.state is ConnectionState.DISCONNECTED
    await _settle()
    assert factory.calls == 1


@pytest.mark.asyncio
async def test_disconnect_closes_open_socket_without_reconnect() -> None:
    conn, factory, timers = _make()
    conn.connect()
    await _settle()

    await conn.disconnect()
    await _settle()

    assert factory.sockets[0].closed
    assert timers.scheduled == []
    assert conn.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_socket_error_goes_through_close_path() -> None:
    conn, factory, timers = _make()
    conn.connect()
    await _settle()

    factory.sockets[0].push_error()
    await _settle()

    assert factory.sockets[0].closed
    assert conn.state is ConnectionState.DISCONNECTED
    assert len(timers.active) == 1
    await conn.disconnect()


@pytest.mark.asyncio
async def test_send_only_when_open() -> None:
    conn, factory, _ = _make()

    assert await conn.send({"op": "ping"}) is False

    conn.connect()
    await _settle()
    assert await conn.send({"op": "ping"}) is True
    assert factory.sockets[0].sent == [{"op": "ping"}]
    await conn.disconnect()


@pytest.mark.asyncio
async def test_malformed_frame_keeps_connection_open() -> None:
    conn, factory, timers = _make()
    received: list[object] = []
    conn.on_message(lambda m: received.append(m.id))
    conn.connect()
    await _settle()

    ws = factory.sockets[0]
    ws.push_text("{broken")
    ws.push_text(_frame(1))
    await _settle()

    assert received == [1]
    assert conn.state is ConnectionState.OPEN
    assert timers.scheduled == []
    await conn.disconnect()


@pytest.mark.asyncio
async def test_frames_fan_out_to_every_handler() -> None:
    conn, factory, _ = _make()
    first: list[object] = []
    second: list[object] = []
    off = conn.on_message(lambda m: first.append(m.id))
    conn.on_message(lambda m: second.append(m.id))
    conn.connect()
    await _settle()

    ws = factory.sockets[0]
    ws.push_text(_frame(1))
    await _settle()
    off()
    ws.push_text(_frame(2))
    await _settle()

    assert first == [1]
    assert second == [1, 2]
    await conn.disconnect()
