from __future__ import annotations

import logging

import discord
from discord.ext import commands

from ...http.discord_helpers import is_relayable, message_to_chat_payload


class ChatMirror(commands.Cog):
    """Copy messages from the bridged Discord channel into the site chat."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    @property
    def channel_id(self) -> int | None:
        return self.bot.cfg.discord.channel_id

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        bot_user_id = self.bot.user.id if self.bot.user else None
        if not is_relayable(message, self.channel_id, bot_user_id):
            return
        logging.debug("chat.mirror message from %s", message.author)
        try:
            await self.bot.relay.ingest_discord(message_to_chat_payload(message))
        except Exception:
            logging.exception(
                "chat.mirror failed to store message %s", getattr(message, "id", None)
            )


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(ChatMirror(bot))
