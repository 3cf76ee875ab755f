from __future__ import annotations

"""Helpers for translating ``discord.py`` objects into chat wire shapes.

The mirror cog and the relay both rely on these so that a message posted in
Discord is stored and broadcast exactly like one written on the website.
"""

from datetime import datetime, timezone

import discord

from .schemas import AttachmentDto, EmbedAuthorDto, EmbedDto, EmbedFieldDto

WEB_PREFIX = "[WEB]"
AVATAR_SIZE = 64


def embed_to_dto(embed: discord.Embed) -> EmbedDto:
    """Convert a Discord embed into an :class:`EmbedDto`."""

    data = embed.to_dict()
    author_data = data.get("author") or {}
    author = None
    if author_data.get("name"):
        author = EmbedAuthorDto(
            name=author_data.get("name"),
            icon_url=author_data.get("icon_url"),
            url=author_data.get("url"),
        )
    return EmbedDto(
        title=data.get("title"),
        description=data.get("description"),
        url=data.get("url"),
        color=data.get("color"),
        thumbnail=(data.get("thumbnail") or {}).get("url"),
        image=(data.get("image") or {}).get("url"),
        author=author,
        fields=[
            EmbedFieldDto(
                name=f.get("name", ""),
                value=f.get("value", ""),
                inline=f.get("inline"),
            )
            for f in data.get("fields", []) or []
        ],
    )


def attachment_to_dto(attachment: discord.Attachment) -> AttachmentDto:
    """Convert a Discord attachment into an :class:`AttachmentDto`."""
    return AttachmentDto(
        id=str(attachment.id),
        filename=attachment.filename,
        url=attachment.url,
        proxy_url=attachment.proxy_url,
        size=attachment.size,
        width=attachment.width,
        height=attachment.height,
        content_type=attachment.content_type,
    )


def _avatar_url(author) -> str | None:
    avatar = getattr(author, "display_avatar", None)
    if avatar is None:
        return None
    try:
        return avatar.replace(size=AVATAR_SIZE).url
    except (AttributeError, ValueError, TypeError):
        return getattr(avatar, "url", None)


def _utc_naive(value: datetime | None) -> datetime:
    if value is None:
        return datetime.utcnow()
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def is_relayable(
    message: discord.Message, channel_id: int | None, bot_user_id: int | None
) -> bool:
    """Return ``True`` when a Discord message should be mirrored to the site.

    Messages outside the bridged channel, the bot's own posts, website
    messages echoed back through the webhook and empty messages are skipped.
    """

    if channel_id is None or message.channel.id != channel_id:
        return False
    if bot_user_id is not None and message.author.id == bot_user_id:
        return False
    name = getattr(message.author, "name", None) or ""
    if name.startswith(WEB_PREFIX):
        return False
    if not message.content and not message.embeds and not message.attachments:
        return False
    return True


def message_to_chat_payload(message: discord.Message) -> dict:
    """Serialize a Discord message into the relay's ingest payload."""

    author = message.author
    embeds = [embed_to_dto(e).model_dump(mode="json", exclude_none=True) for e in message.embeds]
    attachments = [
        attachment_to_dto(a).model_dump(mode="json", exclude_none=True)
        for a in message.attachments
    ]
    return {
        "discord_message_id": str(message.id),
        "author_name": getattr(author, "name", None)
        or getattr(author, "display_name", None)
        or "Unknown",
        "author_avatar": _avatar_url(author),
        "content": message.content or "",
        "embeds": embeds or None,
        "attachments": attachments or None,
        "timestamp": _utc_naive(getattr(message, "created_at", None)),
    }
