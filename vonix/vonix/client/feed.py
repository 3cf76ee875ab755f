from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List

from ..http.schemas import ChatMessage

logger = logging.getLogger(__name__)

WINDOW_SIZE = 20
HIGHLIGHT_SECONDS = 1.0
SCROLL_THRESHOLD = 100


class FeedStatus(str, Enum):
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


def same_message(a: ChatMessage, b: ChatMessage) -> bool:
    """Match on ``id`` or on one message's ``id`` being the other's Discord id."""
    if a.key == b.key:
        return True
    if a.discord_message_id is not None and a.discord_message_id == b.key:
        return True
    if b.discord_message_id is not None and b.discord_message_id == a.key:
        return True
    return False


class ChatFeed:
    """Bounded window of the most recent chat messages for one view.

    "New" highlighting is an expiring marker per message id, evaluated against
    ``clock`` whenever it is read.
    """

    def __init__(
        self,
        window: int = WINDOW_SIZE,
        highlight_seconds: float = HIGHLIGHT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window = window
        self.highlight_seconds = highlight_seconds
        self.status = FeedStatus.LOADING
        self._clock = clock
        self._messages: List[ChatMessage] = []
        self._pending: List[ChatMessage] = []
        self._new_until: Dict[str, float] = {}

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def contains(self, message: ChatMessage) -> bool:
        return any(same_message(existing, message) for existing in self._messages)

    def append_if_new(self, message: ChatMessage) -> bool:
        if self.contains(message):
            logger.debug("chat.feed duplicate id=%s", message.id)
            return False
        self._messages.append(message)
        if self.status is FeedStatus.LOADING:
            self._pending.append(message)
        self._trim()
        self._mark_new(message.key)
        return True

    def load_history(self, messages: Iterable[ChatMessage]) -> None:
        """Replace the window with fetched history, keeping pushed messages."""
        pending, self._pending = self._pending, []
        self._messages = list(messages)[-self.window:]
        self.status = FeedStatus.READY
        for message in pending:
            self.append_if_new(message)
        self._trim()

    def load_failed(self) -> None:
        self._pending = []
        self._messages = []
        self.status = FeedStatus.FAILED

    def is_new(self, message_id: int | str) -> bool:
        key = str(message_id)
        expiry = self._new_until.get(key)
        if expiry is None:
            return False
        if self._clock() >= expiry:
            del self._new_until[key]
            return False
        return True

    def new_ids(self) -> set[str]:
        return {key for key in list(self._new_until) if self.is_new(key)}

    def _mark_new(self, key: str) -> None:
        now = self._clock()
        for stale in [k for k, until in self._new_until.items() if until <= now]:
            del self._new_until[stale]
        self._new_until[key] = now + self.highlight_seconds

    def _trim(self) -> None:
        overflow = len(self._messages) - self.window
        if overflow > 0:
            for evicted in self._messages[:overflow]:
                self._new_until.pop(evicted.key, None)
            del self._messages[:overflow]


@dataclass(frozen=True)
class Viewport:
    scroll_height: float
    scroll_top: float
    client_height: float

    @property
    def bottom_distance(self) -> float:
        return self.scroll_height - self.scroll_top - self.client_height


@dataclass(frozen=True)
class ScrollRequest:
    smooth: bool


class AutoScroll:
    """Decide when the view should jump to the newest message.

    After the first history load there is one instant scroll; later appends
    scroll smoothly only if the reader was already near the bottom.
    """

    def __init__(self, threshold: float = SCROLL_THRESHOLD) -> None:
        self.threshold = threshold
        self.initial_done = False

    def is_near_bottom(self, viewport: Viewport | None) -> bool:
        if viewport is None:
            return True
        return viewport.bottom_distance < self.threshold

    def after_history(self) -> ScrollRequest | None:
        if self.initial_done:
            return None
        self.initial_done = True
        return ScrollRequest(smooth=False)

    def after_append(self, viewport: Viewport | None) -> ScrollRequest | None:
        if not self.initial_done:
            return None
        if self.is_near_bottom(viewport):
            return ScrollRequest(smooth=True)
        return None
