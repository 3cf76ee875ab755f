from __future__ import annotations

import asyncio
import logging

import aiohttp
from pydantic import ValidationError

from ..http.errors import USER_NOT_FOUND
from ..http.schemas import ChatMessage
from .credentials import TokenStore

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10.0
SEND_FAILED = "Failed to send message"


class ChatApiError(Exception):
    def __init__(self, message: str, status: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code


class UserNotFoundError(ChatApiError):
    """The bearer token names an account that no longer exists."""


class ChatApiClient:
    """REST side of the chat: history reads and authenticated sends."""

    def __init__(
        self,
        base_url: str,
        credentials: TokenStore,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    def _headers(self) -> dict[str, str]:
        token = self.credentials.token
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    async def fetch_history(self, limit: int = 20) -> list[ChatMessage]:
        """Return the newest ``limit`` messages, oldest first.

        Rows that fail validation are dropped one at a time; a body that is
        not a JSON list raises :class:`ChatApiError`.
        """
        url = f"{self.base_url}/chat/messages"
        try:
            async with self._get_session().get(url, params={"limit": limit}) as resp:
                if resp.status >= 400:
                    raise await _error_from(resp, "Failed to load messages")
                try:
                    data = await resp.json(content_type=None)
                except ValueError as exc:
                    logger.warning(
                        "chat.client history not json content_type=%s", resp.content_type
                    )
                    raise ChatApiError("Malformed message history", status=resp.status) from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ChatApiError(f"Failed to load messages: {exc}") from exc
        if not isinstance(data, list):
            raise ChatApiError("Malformed message history")
        return _parse_history(data)

    async def send_message(self, content: str) -> None:
        """Post a chat message; the stored copy arrives over the websocket."""
        url = f"{self.base_url}/chat/send"
        try:
            async with self._get_session().post(
                url, json={"message": content}, headers=self._headers()
            ) as resp:
                if resp.status >= 400:
                    raise await _error_from(resp, SEND_FAILED)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("chat.client send transport error=%s", exc)
            raise ChatApiError(SEND_FAILED) from exc


async def _error_from(resp: aiohttp.ClientResponse, fallback: str) -> ChatApiError:
    try:
        body = await resp.json(content_type=None)
    except ValueError:
        body = None
    if not isinstance(body, dict):
        body = {}
    message = body.get("error") or fallback
    code = body.get("code")
    logger.warning(
        "chat.client request failed status=%s code=%s error=%s", resp.status, code, message
    )
    if code == USER_NOT_FOUND:
        return UserNotFoundError(message, status=resp.status, code=code)
    return ChatApiError(message, status=resp.status, code=code)


def _parse_history(rows: list) -> list[ChatMessage]:
    messages = []
    for row in rows:
        try:
            messages.append(ChatMessage.model_validate(row))
        except ValidationError as exc:
            logger.warning("chat.client dropping malformed history row error=%s", exc)
    return messages
