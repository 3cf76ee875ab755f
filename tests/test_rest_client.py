import sys
from pathlib import Path

import pytest
from aiohttp import web
from aiohttp import test_utils

root = Path(__file__).resolve().parents[1] / "vonix"
if str(root) not in sys.path:
    sys.path.append(str(root))

from vonix.client.credentials import TokenStore
from vonix.client.rest import ChatApiClient, ChatApiError, UserNotFoundError


def _app(seen: dict, send_status: int = 200, send_body=None) -> web.Application:
    async def history(request: web.Request) -> web.Response:
        seen["limit"] = request.query.get("limit")
        return web.json_response(
            [
                {"id": 1, "author_name": "Steve", "content": "first"},
                {
                    "id": 2,
                    "discord_message_id": "555",
                    "author_name": "Alex",
                    "content": "",
                    "embeds": '[{"title": "Restart"}]',
                },
            ]
        )

    async def send(request: web.Request) -> web.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = await request.json()
        body = send_body or {"success": True, "message": "Message sent"}
        return web.json_response(body, status=send_status)

    app = web.Application()
    app.router.add_get("/api/chat/messages", history)
    app.router.add_post("/api/chat/send", send)
    return app


@pytest.mark.asyncio
async def test_fetch_history_parses_messages(tmp_path) -> None:
    seen: dict = {}
    async with test_utils.TestServer(_app(seen)) as server:
        client = ChatApiClient(str(server.make_url("/api")), TokenStore(tmp_path / "t"))
        try:
            messages = await client.fetch_history(20)
        finally:
            await client.close()

    assert seen["limit"] == "20"
    assert [m.id for m in messages] == [1, 2]
    assert messages[1].embeds[0].title == "Restart"


@pytest.mark.asyncio
async def test_send_uses_bearer_token(tmp_path) -> None:
    seen: dict = {}
    store = TokenStore(tmp_path / "t")
    store.save("abc")
    async with test_utils.TestServer(_app(seen)) as server:
        client = ChatApiClient(str(server.make_url("/api")), store)
        try:
            await client.send_message("hello")
        finally:
            await client.close()

    assert seen["auth"] == "Bearer abc"
    assert seen["body"] == {"message": "hello"}


@pytest.mark.asyncio
async def test_user_not_found_is_distinct(tmp_path) -> None:
    body = {
        "error": "User not found. Please log out and log in again.",
        "code": "USER_NOT_FOUND",
    }
    async with test_utils.TestServer(_app({}, send_status=404, send_body=body)) as server:
        client = ChatApiClient(str(server.make_url("/api")), TokenStore(tmp_path / "t"))
        try:
            with pytest.raises(UserNotFoundError) as exc_info:
                await client.send_message("hello")
        finally:
            await client.close()

    assert exc_info.value.status == 404
    assert exc_info.value.code == "USER_NOT_FOUND"


@pytest.mark.asyncio
async def test_server_error_carries_message(tmp_path) -> None:
    body = {"error": "Failed to send message"}
    async with test_utils.TestServer(_app({}, send_status=500, send_body=body)) as server:
        client = ChatApiClient(str(server.make_url("/api")), TokenStore(tmp_path / "t"))
        try:
            with pytest.raises(ChatApiError) as exc_info:
                await client.send_message("hello")
        finally:
            await client.close()

    assert not isinstance(exc_info.value, UserNotFoundError)
    assert exc_info.value.status == 500
    assert exc_info.value.message == "Failed to send message"


@pytest.mark.asyncio
async def test_transport_error_is_wrapped(tmp_path) -> None:
    client = ChatApiClient("http://127.0.0.1:1/api", TokenStore(tmp_path / "t"))
    try:
        with pytest.raises(ChatApiError) as exc_info:
            await client.send_message("hello")
    finally:
        await client.close()

    assert exc_info.value.message == "Failed to send message"
    assert exc_info.value.status is None


def _html_app() -> web.Application:
    async def history(request: web.Request) -> web.Response:
        return web.Response(
            text="<!doctype html><html><body>app</body></html>", content_type="text/html"
        )

    app = web.Application()
    app.router.add_get("/api/chat/messages", history)
    return app


@pytest.mark.asyncio
async def test_html_history_body_is_wrapped(tmp_path) -> None:
    async with test_utils.TestServer(_html_app()) as server:
        client = ChatApiClient(str(server.make_url("/api")), TokenStore(tmp_path / "t"))
        try:
            with pytest.raises(ChatApiError) as exc_info:
                await client.fetch_history(20)
        finally:
            await client.close()

    assert exc_info.value.message == "Malformed message history"
    assert exc_info.value.status == 200


@pytest.mark.asyncio
async def test_history_drops_only_invalid_rows(tmp_path) -> None:
    async def history(request: web.Request) -> web.Response:
        return web.json_response(
            [
                {"id": 1, "author_name": "Steve", "content": "first"},
                {"content": "missing id and author"},
                {"id": 3, "author_name": "Alex", "content": "third"},
            ]
        )

    app = web.Application()
    app.router.add_get("/api/chat/messages", history)
    async with test_utils.TestServer(app) as server:
        client = ChatApiClient(str(server.make_url("/api")), TokenStore(tmp_path / "t"))
        try:
            messages = await client.fetch_history(20)
        finally:
            await client.close()

    assert [m.id for m in messages] == [1, 3]


@pytest.mark.asyncio
async def test_non_list_history_is_rejected(tmp_path) -> None:
    async def history(request: web.Request) -> web.Response:
        return web.json_response({"messages": []})

    app = web.Application()
    app.router.add_get("/api/chat/messages", history)
    async with test_utils.TestServer(app) as server:
        client = ChatApiClient(str(server.make_url("/api")), TokenStore(tmp_path / "t"))
        try:
            with pytest.raises(ChatApiError):
                await client.fetch_history(20)
        finally:
            await client.close()


def test_token_store_round_trip(tmp_path) -> None:
    path = tmp_path / "nested" / "token"
    store = TokenStore(path)
    assert store.token is None

    store.save(" secret \n")
    assert TokenStore(path).token == "secret"
    assert path.stat().st_mode & 0o777 == 0o600

    store.clear()
    store.clear()
    assert TokenStore(path).token is None
