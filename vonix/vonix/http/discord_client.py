from __future__ import annotations

from discord.ext import commands


_bot: commands.Bot | None = None


def set_discord_client(client: commands.Bot | None) -> None:
    """Register the running bot (or ``None`` on shutdown) for status checks."""

    global _bot
    _bot = client


def is_discord_client_ready(client: commands.Bot | None = None) -> bool:
    """Whether the mirror bot is logged in and its gateway is open.

    The health route calls this, so lifecycle errors count as "not ready"
    instead of propagating.
    """

    bot = client if client is not None else _bot
    if bot is None:
        return False
    try:
        return not bot.is_closed() and bool(bot.is_ready())
    except Exception:
        return False
