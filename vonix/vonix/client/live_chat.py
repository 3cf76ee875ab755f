from __future__ import annotations

"""Headless live chat view.

``LiveChat`` wires one :class:`ChatFeed` to a shared :class:`ChatConnection`
and the REST client. Rendering is left to the caller through small hooks:
``on_change`` after the window changes, ``on_scroll`` when the view should
move to the bottom, ``alert`` for user facing errors and ``navigate`` for the
forced logout.
"""

import logging
from typing import Callable

from ..http.schemas import ChatMessage, FieldBlock, ImageBlock
from .connection import ChatConnection
from .credentials import TokenStore
from .feed import AutoScroll, ChatFeed, FeedStatus, ScrollRequest, Viewport
from .rest import SEND_FAILED, ChatApiClient, ChatApiError, UserNotFoundError

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20
LOGIN_PATH = "/login"
SESSION_EXPIRED = "Your session is no longer valid. Please log in again."

PLACEHOLDERS = {
    FeedStatus.LOADING: "Loading messages...",
    FeedStatus.FAILED: "Could not load chat history. Reload to try again.",
}
EMPTY_PLACEHOLDER = "No messages yet. Be the first to chat!"


def _noop(*_args) -> None:
    return None


class LiveChat:
    def __init__(
        self,
        connection: ChatConnection,
        api: ChatApiClient,
        credentials: TokenStore,
        *,
        feed: ChatFeed | None = None,
        scroll: AutoScroll | None = None,
        viewport: Callable[[], Viewport | None] = lambda: None,
        on_change: Callable[[ChatMessage | None], None] = _noop,
        on_scroll: Callable[[ScrollRequest], None] = _noop,
        alert: Callable[[str], None] = _noop,
        navigate: Callable[[str], None] = _noop,
        history_limit: int = HISTORY_LIMIT,
    ) -> None:
        self.connection = connection
        self.api = api
        self.credentials = credentials
        self.feed = feed or ChatFeed()
        self.scroll = scroll or AutoScroll()
        self.history_limit = history_limit
        self.sending = False
        self._viewport = viewport
        self._on_change = on_change
        self._on_scroll = on_scroll
        self._alert = alert
        self._navigate = navigate
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def placeholder(self) -> str | None:
        """Text shown instead of the message list, if any."""
        if self.feed.status in PLACEHOLDERS:
            return PLACEHOLDERS[self.feed.status]
        if not len(self.feed):
            return EMPTY_PLACEHOLDER
        return None

    async def mount(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.connection.on_message(self._handle_message)
        self.connection.connect()
        await self.load_history()

    async def unmount(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
        await self.connection.disconnect()

    async def load_history(self) -> None:
        try:
            history = await self.api.fetch_history(self.history_limit)
        except ChatApiError as exc:
            logger.error("chat.view history load failed error=%s", exc.message)
            self.feed.load_failed()
            self._on_change(None)
            return
        self.feed.load_history(history)
        self._on_change(None)
        request = self.scroll.after_history()
        if request is not None:
            self._on_scroll(request)

    def _handle_message(self, message: ChatMessage) -> None:
        # Measure before the new row is laid out.
        near_bottom = self.scroll.is_near_bottom(self._viewport())
        if not self.feed.append_if_new(message):
            return
        self._on_change(message)
        if near_bottom:
            request = self.scroll.after_append(None)
            if request is not None:
                self._on_scroll(request)

    async def send(self, text: str) -> bool:
        content = text.strip()
        if not content or self.sending:
            return False
        self.sending = True
        try:
            await self.api.send_message(content)
            return True
        except UserNotFoundError:
            logger.warning("chat.view stale session, forcing logout")
            self._alert(SESSION_EXPIRED)
            self.credentials.clear()
            self._navigate(LOGIN_PATH)
            return False
        except ChatApiError as exc:
            self._alert(exc.message or SEND_FAILED)
            return False
        finally:
            self.sending = False


def format_message(message: ChatMessage) -> str:
    """Plain text rendering used by the terminal client."""
    stamp = message.timestamp.strftime("%H:%M") if message.timestamp else "--:--"
    lines = [f"[{stamp}] {message.author_name}: {message.content}".rstrip()]
    for block in message.blocks():
        if isinstance(block, ImageBlock):
            lines.append(f"    [{block.role}] {block.filename or block.url}")
        elif isinstance(block, FieldBlock):
            lines.append(f"    {block.name}: {block.value}")
        else:
            head = block.author_name or block.title
            text = " - ".join(part for part in (head, block.description) if part)
            if text:
                lines.append(f"    {text}")
    return "\n".join(lines)
