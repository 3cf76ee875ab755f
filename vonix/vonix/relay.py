from __future__ import annotations

"""Chat relay: the single writer of ``chat_messages``.

Website messages are forwarded to the Discord webhook, persisted and pushed to
every websocket client. Messages mirrored from Discord are persisted once per
Discord id and pushed the same way, so all viewers see one ordering decided
here.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Sequence
from urllib.parse import quote

import aiohttp
import discord
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .db.models import ChatMessage as ChatMessageRow, User
from .db.session import get_session
from .discordbot.utils import api_call_with_retries
from .http.chat_events import emit_chat_message
from .http.discord_helpers import WEB_PREFIX
from .http.schemas import ChatMessage

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT = 5.0
WEBHOOK_ATTEMPTS = 2
RETRY_BASE = 0.5
KEEP_ON_CLEAR = 20

Broadcast = Callable[[dict], Awaitable[Any]]


def display_name(user: User) -> str:
    return user.minecraft_username or user.username or f"User{user.id}"


def build_avatar_url(user: User) -> str:
    """Pick the avatar shown next to a website user's messages."""
    if user.minecraft_username:
        return f"https://mc-heads.net/head/{user.minecraft_username}"
    if user.minecraft_uuid:
        return f"https://mc-heads.net/head/{user.minecraft_uuid.replace('-', '')}"
    name = user.username or f"User{user.id}"
    return (
        f"https://ui-avatars.com/api/?name={quote(name, safe='')}"
        "&background=6366f1&color=fff"
    )


def _dump_blob(value: Sequence[dict] | str | None) -> str | None:
    if not value:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(list(value))


class ChatRelay:
    def __init__(
        self,
        webhook_url: str = "",
        *,
        broadcast: Broadcast = emit_chat_message,
        webhook_timeout: float = WEBHOOK_TIMEOUT,
        http_session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession,
        db_session=get_session,
    ) -> None:
        self.webhook_url = webhook_url
        self.webhook_timeout = webhook_timeout
        self._broadcast = broadcast
        self._http_session_factory = http_session_factory
        self._db_session = db_session

    async def recent(self, db: AsyncSession, limit: int) -> list[ChatMessage]:
        """Return the newest ``limit`` messages, oldest first."""
        result = await db.execute(
            select(ChatMessageRow)
            .order_by(ChatMessageRow.timestamp.desc(), ChatMessageRow.id.desc())
            .limit(limit)
        )
        rows = list(result.scalars())
        rows.reverse()
        return [ChatMessage.model_validate(row) for row in rows]

    async def send_from_web(
        self, db: AsyncSession, user: User, content: str
    ) -> ChatMessageRow:
        content = content.strip()
        name = display_name(user)
        avatar_url = build_avatar_url(user)
        logger.info("chat.relay web message user=%s name=%s", user.id, name)

        await self.forward_to_discord(name, avatar_url, content)

        row = ChatMessageRow(
            discord_message_id=None,
            author_name=name,
            author_avatar=avatar_url,
            content=content,
            embeds=None,
            attachments=None,
            timestamp=datetime.utcnow(),
        )
        db.add(row)
        await db.commit()
        logger.info("chat.relay saved id=%s", row.id)
        await self._publish(row)
        return row

    async def forward_to_discord(self, name: str, avatar_url: str, content: str) -> bool:
        """Post a website message to Discord; failures never propagate."""
        if not self.webhook_url:
            logger.warning("chat.relay webhook not configured, skipping Discord send")
            return False

        async def _send() -> None:
            async with self._http_session_factory() as session:
                webhook = discord.Webhook.from_url(self.webhook_url, session=session)
                await asyncio.wait_for(
                    webhook.send(
                        content,
                        username=f"{WEB_PREFIX} {name}",
                        avatar_url=avatar_url,
                        wait=True,
                    ),
                    self.webhook_timeout,
                )

        try:
            await api_call_with_retries(
                _send, retries=WEBHOOK_ATTEMPTS, base_delay=RETRY_BASE, log=logger
            )
        except Exception as exc:
            logger.warning("chat.relay webhook failed error=%s", exc)
            return False
        logger.info("chat.relay webhook delivered")
        return True

    async def ingest_discord(self, payload: dict) -> ChatMessageRow | None:
        """Store a mirrored Discord message; duplicates are ignored."""
        row = ChatMessageRow(
            discord_message_id=payload["discord_message_id"],
            author_name=payload.get("author_name") or "Unknown",
            author_avatar=payload.get("author_avatar"),
            content=payload.get("content") or "",
            embeds=_dump_blob(payload.get("embeds")),
            attachments=_dump_blob(payload.get("attachments")),
            timestamp=payload.get("timestamp") or datetime.utcnow(),
        )
        async with self._db_session() as db:
            db.add(row)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.debug(
                    "chat.relay duplicate discord_message_id=%s",
                    payload["discord_message_id"],
                )
                return None
        logger.info(
            "chat.relay mirrored id=%s discord_message_id=%s",
            row.id,
            row.discord_message_id,
        )
        await self._publish(row)
        return row

    async def clear_old(self, db: AsyncSession, keep: int = KEEP_ON_CLEAR) -> int:
        """Delete everything older than the ``keep`` newest messages."""
        threshold = await db.scalar(
            select(ChatMessageRow.id)
            .order_by(ChatMessageRow.timestamp.desc(), ChatMessageRow.id.desc())
            .offset(keep - 1)
            .limit(1)
        )
        if threshold is None:
            return 0
        result = await db.execute(
            delete(ChatMessageRow).where(ChatMessageRow.id < threshold)
        )
        await db.commit()
        return result.rowcount or 0

    async def _publish(self, row: ChatMessageRow) -> None:
        await self._broadcast(ChatMessage.model_validate(row).to_wire())
