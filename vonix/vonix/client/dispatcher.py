from __future__ import annotations

import json
import logging
from typing import Callable, List

from pydantic import ValidationError

from ..http.schemas import ChatMessage

logger = logging.getLogger(__name__)

MessageHandler = Callable[[ChatMessage], None]


class MessageDispatcher:
    """Decode inbound frames and hand them to every registered handler.

    Handlers run synchronously in registration order. The dispatcher keeps no
    message state; de-duplication belongs to the feed.
    """

    def __init__(self) -> None:
        self._handlers: List[MessageHandler] = []

    def __len__(self) -> int:
        return len(self._handlers)

    def add_handler(self, handler: MessageHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            self._handlers = [h for h in self._handlers if h is not handler]

        return unsubscribe

    def decode(self, raw: str | bytes) -> ChatMessage | None:
        try:
            data = json.loads(raw)
            return ChatMessage.model_validate(data)
        except (ValueError, ValidationError) as exc:
            logger.warning("chat.client dropping malformed frame error=%s", exc)
            return None

    def dispatch(self, raw: str | bytes) -> ChatMessage | None:
        message = self.decode(raw)
        if message is None:
            return None
        for handler in list(self._handlers):
            try:
                handler(message)
            except Exception:
                logger.exception("chat.client handler failed id=%s", message.id)
        return message
