from __future__ import annotations

"""Reconnecting websocket connection to the chat relay.

One :class:`ChatConnection` owns at most one socket and at most one pending
reconnect timer. Callers create and pass it around explicitly; views register
handlers with :meth:`ChatConnection.on_message` and must call the returned
unsubscribe function and :meth:`ChatConnection.disconnect` when they go away.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

import aiohttp

from .dispatcher import MessageDispatcher, MessageHandler

logger = logging.getLogger(__name__)

RECONNECT_DELAY = 5.0
HEARTBEAT = 30.0


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


CallLater = Callable[[float, Callable[[], None]], TimerHandle]
SocketFactory = Callable[[str], Awaitable[Any]]


class ChatConnection:
    def __init__(
        self,
        url: str,
        *,
        dispatcher: MessageDispatcher | None = None,
        socket_factory: SocketFactory | None = None,
        call_later: CallLater | None = None,
        reconnect_delay: float = RECONNECT_DELAY,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.url = url
        self.dispatcher = dispatcher or MessageDispatcher()
        self.reconnect_delay = reconnect_delay
        self.state = ConnectionState.DISCONNECTED
        self._socket_factory = socket_factory
        self._call_later = call_later
        self._headers = headers or {}
        self._ws: Any = None
        self._task: asyncio.Task | None = None
        self._reconnect_handle: TimerHandle | None = None
        self._session: aiohttp.ClientSession | None = None

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def on_message(self, handler: MessageHandler) -> Callable[[], None]:
        return self.dispatcher.add_handler(handler)

    def connect(self) -> None:
        if self.state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            logger.debug("chat.client already %s", self.state.value)
            return
        self.state = ConnectionState.CONNECTING
        logger.info("chat.client connecting url=%s", self.url)
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def disconnect(self) -> None:
        self._cancel_reconnect()
        task, self._task = self._task, None
        ws, self._ws = self._ws, None
        self.state = ConnectionState.DISCONNECTED
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if ws is not None and not ws.closed:
            await ws.close()
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
        logger.info("chat.client disconnected url=%s", self.url)

    async def send(self, payload: Any) -> bool:
        """Send JSON if the socket is open; otherwise drop it silently."""
        ws = self._ws
        if self.state is not ConnectionState.OPEN or ws is None:
            logger.debug("chat.client send dropped state=%s", self.state.value)
            return False
        await ws.send_json(payload)
        return True

    async def _open(self) -> Any:
        if self._socket_factory is not None:
            return await self._socket_factory(self.url)
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return await self._session.ws_connect(
            self.url, headers=self._headers, heartbeat=HEARTBEAT
        )

    async def _run(self) -> None:
        ws = None
        try:
            ws = await self._open()
            self._ws = ws
            self.state = ConnectionState.OPEN
            self._cancel_reconnect()
            logger.info("chat.client connected url=%s", self.url)
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self.dispatcher.dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("chat.client socket error=%s", ws.exception())
                    break
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("chat.client connection failed url=%s error=%s", self.url, exc)
        if ws is not None and not ws.closed:
            try:
                await ws.close()
            except Exception as exc:
                logger.debug("chat.client close failed error=%s", exc)
        self._handle_close(ws)

    def _handle_close(self, ws: Any) -> None:
        self._ws = None
        self._task = None
        self.state = ConnectionState.DISCONNECTED
        code = getattr(ws, "close_code", None)
        logger.info("chat.client closed code=%s", code)
        if self._reconnect_handle is None:
            logger.info("chat.client reconnect in %.1fs", self.reconnect_delay)
            call_later = self._call_later or asyncio.get_running_loop().call_later
            self._reconnect_handle = call_later(self.reconnect_delay, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        self.connect()

    def _cancel_reconnect(self) -> None:
        handle, self._reconnect_handle = self._reconnect_handle, None
        if handle is not None:
            handle.cancel()
