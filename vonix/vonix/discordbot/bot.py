from __future__ import annotations

import pkgutil
import logging
from pathlib import Path

import discord
from discord.ext import commands

from ..config import AppConfig
from ..relay import ChatRelay

logger = logging.getLogger(__name__)

COGS_DIR = Path(__file__).parent / "cogs"


def _chat_intents() -> discord.Intents:
    # Mirroring needs message bodies from guild channels only.
    intents = discord.Intents.default()
    intents.guilds = True
    intents.guild_messages = True
    intents.message_content = True
    return intents


class VonixBot(commands.Bot):
    """Discord side of the relay; cogs reach the relay through ``bot.relay``."""

    def __init__(
        self,
        cfg: AppConfig,
        relay: ChatRelay,
        intents: discord.Intents | None = None,
    ) -> None:
        super().__init__(command_prefix="!", intents=intents or _chat_intents())
        self.cfg = cfg
        self.relay = relay

    async def setup_hook(self) -> None:
        names = sorted(mod.name for mod in pkgutil.iter_modules([str(COGS_DIR)]))
        for name in names:
            extension = f"{__package__}.cogs.{name}"
            try:
                await self.load_extension(extension)
            except Exception:
                logger.exception("Could not load cog %s", extension)
                continue
            logger.info("Cog %s loaded", extension)

    async def on_ready(self) -> None:
        logger.info(
            "Discord bot ready as %s, mirroring channel %s",
            self.user,
            self.cfg.discord.channel_id,
        )


def create_bot(
    cfg: AppConfig, relay: ChatRelay, intents: discord.Intents | None = None
) -> VonixBot:
    return VonixBot(cfg, relay, intents=intents)
