from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ...db.models import User, UserRole
from ...relay import KEEP_ON_CLEAR, ChatRelay
from ..deps import current_user, get_db
from ..errors import ApiError
from ..schemas import ChatMessage, ClearResult, SendBody, SendResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat")

MAX_HISTORY_LIMIT = 200


def get_relay(request: Request) -> ChatRelay:
    return request.app.state.relay


def _default_limit(request: Request) -> int:
    return request.app.state.config.chat.history_limit


def _history_limit(raw: str | None, default: int) -> int:
    """Unparseable or non-positive values use ``default``; the rest are capped."""
    try:
        limit = int(raw) if raw is not None else 0
    except ValueError:
        limit = 0
    if limit < 1:
        return default
    return min(limit, MAX_HISTORY_LIMIT)


@router.get("/messages", response_model=list[ChatMessage], response_model_exclude_none=True)
async def get_messages(
    request: Request,
    limit: str | None = Query(None),
    relay: ChatRelay = Depends(get_relay),
    db: AsyncSession = Depends(get_db),
):
    return await relay.recent(db, _history_limit(limit, _default_limit(request)))


@router.post("/send", response_model=SendResult)
async def send_message(
    body: SendBody,
    user: User = Depends(current_user),
    relay: ChatRelay = Depends(get_relay),
    db: AsyncSession = Depends(get_db),
):
    if not body.message or not body.message.strip():
        raise ApiError(400, "Message cannot be empty")
    try:
        await relay.send_from_web(db, user, body.message)
    except Exception:
        logger.exception("chat.send failed user=%s", user.id)
        raise ApiError(500, "Failed to send message")
    # The stored message reaches the sender through the websocket broadcast.
    return SendResult()


@router.delete("/messages/clear-old", response_model=ClearResult)
async def clear_old_messages(
    user: User = Depends(current_user),
    relay: ChatRelay = Depends(get_relay),
    db: AsyncSession = Depends(get_db),
):
    if user.role != UserRole.ADMIN.value:
        raise ApiError(403, "Admin access required")
    deleted = await relay.clear_old(db, KEEP_ON_CLEAR)
    if not deleted:
        return ClearResult(
            message=f"Less than {KEEP_ON_CLEAR} messages exist, nothing to delete",
            deleted=0,
        )
    logger.info("chat.clear admin=%s deleted=%s", user.username, deleted)
    return ClearResult(
        message=f"Cleared {deleted} old messages, kept newest {KEEP_ON_CLEAR}",
        deleted=deleted,
    )
