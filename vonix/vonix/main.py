from __future__ import annotations

"""Entry point for starting the Vonix chat relay."""

import asyncio
import logging
import sys

import uvicorn

from .config import AppConfig, ensure_config
from .db.session import mask_url, close_db, init_db
from .discordbot.bot import create_bot
from .http.api import create_app
from .http.discord_client import set_discord_client
from .relay import ChatRelay


async def serve(cfg: AppConfig) -> None:
    logging.info("Initialising database at %s", mask_url(cfg.database.url))
    try:
        await init_db(cfg.database.url)
    except Exception:
        logging.exception("Database initialization failed")
        sys.exit(1)

    relay = ChatRelay(cfg.discord.webhook_url)
    if not cfg.discord.webhook_url:
        logging.warning("No Discord webhook configured; website messages stay local")

    logging.info("Starting FastAPI server on %s:%s", cfg.server.host, cfg.server.port)
    try:
        app = create_app(cfg, relay)
        server = uvicorn.Server(
            uvicorn.Config(app, host=cfg.server.host, port=cfg.server.port, log_level="info")
        )
        services = [server.serve()]
        if cfg.discord.enabled:
            bot = create_bot(cfg, relay)
            set_discord_client(bot)
            services.append(bot.start(cfg.discord.token))
        else:
            logging.warning("Discord bot token or channel id missing; mirroring disabled")
        logging.info("ApiBaseUrl: http://%s:%s/api", cfg.server.host, cfg.server.port)
        await asyncio.gather(*services)
    except Exception:
        logging.exception("Failed to start services")
        sys.exit(1)
    finally:
        set_discord_client(None)
        await close_db()


async def main_async(reconfigure: bool = False) -> None:
    cfg = ensure_config(force_reconfigure=reconfigure)
    await serve(cfg)


if __name__ == "__main__":
    from .log_config import setup_logging

    setup_logging()
    asyncio.run(main_async("--reconfigure" in sys.argv[1:]))
