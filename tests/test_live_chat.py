import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

import aiohttp
from aiohttp import test_utils, web
import pytest

root = Path(__file__).resolve().parents[1] / "vonix"
if str(root) not in sys.path:
    sys.path.append(str(root))

from vonix.client.connection import ChatConnection
from vonix.client.credentials import TokenStore
from vonix.client.feed import FeedStatus, ScrollRequest, Viewport
from vonix.client.live_chat import (
    EMPTY_PLACEHOLDER,
    SESSION_EXPIRED,
    LiveChat,
    format_message,
)
from vonix.client.rest import ChatApiClient, ChatApiError, UserNotFoundError
from vonix.http.schemas import ChatMessage


def _data(msg_id) -> dict:
    return {"id": msg_id, "author_name": "Steve", "content": f"message {msg_id}"}


class FakeApi:
    def __init__(self, history=None, error=None, send_error=None) -> None:
        self.history = history or []
        self.error = error
        self.send_error = send_error
        self.sent: list[str] = []
        self.limits: list[int] = []

    async def fetch_history(self, limit: int = 20):
        self.limits.append(limit)
        if self.error is not None:
            raise self.error
        return [ChatMessage.model_validate(d) for d in self.history]

    async def send_message(self, content: str) -> None:
        self.sent.append(content)
        if self.send_error is not None:
            raise self.send_error


class FakeConnection:
    def __init__(self) -> None:
        self.handlers: list = []
        self.connects = 0
        self.disconnects = 0

    def on_message(self, handler):
        self.handlers.append(handler)
        return lambda: self.handlers.remove(handler)

    def connect(self) -> None:
        self.connects += 1

    async def disconnect(self) -> None:
        self.disconnects += 1

    def push(self, msg_id) -> None:
        message = ChatMessage.model_validate(_data(msg_id))
        for handler in list(self.handlers):
            handler(message)


class QueueSocket:
    def __init__(self) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.queue.get()
        if item is None:
            raise StopAsyncIteration
        return item

    def push(self, payload: dict) -> None:
        self.queue.put_nowait(
            SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=json.dumps(payload))
        )

    async def close(self) -> None:
        self.closed = True
        self.queue.put_nowait(None)


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def _store(tmp_path: Path, token: str | None = "token-123") -> TokenStore:
    store = TokenStore(tmp_path / "token")
    if token is not None:
        store.save(token)
    return store


@pytest.mark.asyncio
async def test_history_then_push_without_duplicates(tmp_path) -> None:
    sockets: list[QueueSocket] = []

    async def factory(url: str) -> QueueSocket:
        ws = QueueSocket()
        sockets.append(ws)
        return ws

    conn = ChatConnection(
        "ws://test/ws/chat", socket_factory=factory, call_later=lambda d, cb: None
    )
    api = FakeApi(history=[_data(1), _data(2)])
    view = LiveChat(conn, api, _store(tmp_path))

    await view.mount()
    await _settle()
    ws = sockets[0]
    ws.push(_data(3))
    ws.push(_data(1))
    ws.push(_data(2))
    ws.push(_data(3))
    await _settle()

    assert [m.id for m in view.feed.messages] == [1, 2, 3]
    assert len(view.feed) == 3

    await view.unmount()
    assert len(conn.dispatcher) == 0
    assert ws.closed


@pytest.mark.asyncio
async def test_mount_scrolls_once_then_follows_bottom(tmp_path) -> None:
    conn = FakeConnection()
    scrolls: list[ScrollRequest] = []
    viewport = {"value": Viewport(scroll_height=1050, scroll_top=500, client_height=500)}
    view = LiveChat(
        conn,
        FakeApi(history=[_data(1)]),
        _store(tmp_path),
        viewport=lambda: viewport["value"],
        on_scroll=scrolls.append,
    )

    await view.mount()
    assert conn.connects == 1
    assert scrolls == [ScrollRequest(smooth=False)]

    conn.push(2)
    assert scrolls[-1] == ScrollRequest(smooth=True)

    viewport["value"] = Viewport(scroll_height=2000, scroll_top=0, client_height=500)
    conn.push(3)
    assert len(scrolls) == 2
    assert [m.id for m in view.feed.messages] == [1, 2, 3]


@pytest.mark.asyncio
async def test_unmount_unsubscribes_and_disconnects(tmp_path) -> None:
    conn = FakeConnection()
    view = LiveChat(conn, FakeApi(), _store(tmp_path))

    await view.mount()
    await view.unmount()

    assert conn.handlers == []
    assert conn.disconnects == 1


@pytest.mark.asyncio
async def test_failed_history_shows_placeholder(tmp_path) -> None:
    view = LiveChat(
        FakeConnection(), FakeApi(error=ChatApiError("offline")), _store(tmp_path)
    )
    assert view.placeholder == "Loading messages..."

    await view.mount()

    assert view.placeholder.startswith("Could not load chat history")
    assert view.feed.messages == []



@pytest.mark.asyncio
async def test_html_history_response_marks_feed_failed(tmp_path) -> None:
    async def history(request: web.Request) -> web.Response:
        return web.Response(text="<!doctype html><title>app</title>", content_type="text/html")

    app = web.Application()
    app.router.add_get("/api/chat/messages", history)
    conn = FakeConnection()
    async with test_utils.TestServer(app) as server:
        api = ChatApiClient(str(server.make_url("/api")), _store(tmp_path))
        view = LiveChat(conn, api, _store(tmp_path))
        try:
            await view.mount()
            assert view.feed.status is FeedStatus.FAILED
            assert view.feed.messages == []
            assert view.placeholder.startswith("Could not load chat history")
            assert conn.connects == 1
            await view.unmount()
        finally:
            await api.close()

    assert conn.handlers == []

@pytest.mark.asyncio
async def test_empty_history_placeholder(tmp_path) -> None:
    view = LiveChat(FakeConnection(), FakeApi(), _store(tmp_path), history_limit=5)
    await view.mount()
    assert view.placeholder == EMPTY_PLACEHOLDER
    assert view.api.limits == [5]


@pytest.mark.asyncio
async def test_user_not_found_forces_logout(tmp_path) -> None:
    alerts: list[str] = []
    routes: list[str] = []
    store = _store(tmp_path)
    api = FakeApi(
        send_error=UserNotFoundError("User not found", status=404, code="USER_NOT_FOUND")
    )
    view = LiveChat(
        FakeConnection(), api, store, alert=alerts.append, navigate=routes.append
    )

    assert await view.send("hello") is False

    assert alerts == [SESSION_EXPIRED]
    assert routes == ["/login"]
    assert store.token is None
    assert not (tmp_path / "token").exists()


@pytest.mark.asyncio
async def test_generic_failure_only_alerts(tmp_path) -> None:
    alerts: list[str] = []
    routes: list[str] = []
    store = _store(tmp_path)
    api = FakeApi(send_error=ChatApiError("Failed to send message", status=500))
    view = LiveChat(
        FakeConnection(), api, store, alert=alerts.append, navigate=routes.append
    )

    assert await view.send("hello") is False

    assert alerts == ["Failed to send message"]
    assert routes == []
    assert store.token == "token-123"


@pytest.mark.asyncio
async def test_send_trims_and_skips_blank_text(tmp_path) -> None:
    api = FakeApi()
    view = LiveChat(FakeConnection(), api, _store(tmp_path))

    assert await view.send("   ") is False
    assert await view.send("  hi there \n") is True
    assert api.sent == ["hi there"]

    view.sending = True
    assert await view.send("again") is False
    assert api.sent == ["hi there"]


def test_format_message_renders_blocks() -> None:
    message = ChatMessage.model_validate(
        {
            "id": 4,
            "author_name": "Alex",
            "content": "look",
            "timestamp": datetime(2024, 5, 1, 18, 7),
            "attachments": [
                {"id": "1", "filename": "base.png", "url": "https://cdn/base.png"}
            ],
            "embeds": [
                {"title": "Event", "description": "Build night", "fields": [
                    {"name": "When", "value": "Friday"}
                ]}
            ],
        }
    )

    assert format_message(message).splitlines() == [
        "[18:07] Alex: look",
        "    [attachment] base.png",
        "    Event - Build night",
        "    When: Friday",
    ]
