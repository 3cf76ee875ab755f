from __future__ import annotations

"""Configuration handling for the Vonix chat relay and client.

Settings live in a JSON file that is created on first run with permissions
``0o600``. Any value can be overridden through the environment, which is how
container deployments supply secrets. ``ensure_config`` prompts for the values
the relay cannot start without.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
import json
import logging
import os
import secrets

CFG_DIR = Path.home() / ".config" / "vonix"
CFG_PATH = CFG_DIR / "config.json"


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 3001


@dataclass
class DatabaseConfig:
    url: str = f"sqlite+aiosqlite:///{CFG_DIR / 'vonix.db'}"


@dataclass
class DiscordConfig:
    """Bot credentials for mirroring plus the webhook for website messages."""

    token: str = ""
    channel_id: int | None = None
    webhook_url: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.channel_id)


@dataclass
class AuthConfig:
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"


@dataclass
class ChatConfig:
    welcome_message: str = "Connected to Vonix.Network chat!"
    history_limit: int = 50


@dataclass
class ClientConfig:
    api_url: str = "http://127.0.0.1:3001/api"
    ws_url: str = "ws://127.0.0.1:3001/ws/chat"


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    discord: DiscordConfig = field(default_factory=DiscordConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    client: ClientConfig = field(default_factory=ClientConfig)


def _parse_channel_id(value) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logging.warning("Ignoring invalid Discord channel id %r", value)
        return None


def apply_env_overrides(cfg: AppConfig, environ: dict[str, str] | None = None) -> AppConfig:
    """Overlay environment variables on top of the file based settings."""

    env = os.environ if environ is None else environ
    if env.get("VONIX_DATABASE_URL"):
        cfg.database.url = env["VONIX_DATABASE_URL"]
    if env.get("DISCORD_BOT_TOKEN"):
        cfg.discord.token = env["DISCORD_BOT_TOKEN"]
    if env.get("DISCORD_CHANNEL_ID"):
        cfg.discord.channel_id = _parse_channel_id(env["DISCORD_CHANNEL_ID"])
    if env.get("DISCORD_WEBHOOK_URL"):
        cfg.discord.webhook_url = env["DISCORD_WEBHOOK_URL"]
    if env.get("JWT_SECRET"):
        cfg.auth.jwt_secret = env["JWT_SECRET"]
    if env.get("VONIX_API_URL"):
        cfg.client.api_url = env["VONIX_API_URL"]
    if env.get("VONIX_WS_URL"):
        cfg.client.ws_url = env["VONIX_WS_URL"]
    return cfg


def load_config(path: Path | None = None) -> AppConfig:
    path = path or CFG_PATH
    cfg = AppConfig()
    if path.exists():
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError:
            logging.warning("Invalid JSON in %s, using defaults", path)
            return apply_env_overrides(cfg)
        discord_data = dict(data.get("discord", {}))
        discord_data["channel_id"] = _parse_channel_id(discord_data.get("channel_id"))
        cfg = AppConfig(
            server=ServerConfig(**data.get("server", {})),
            database=DatabaseConfig(**data.get("database", {})),
            discord=DiscordConfig(**discord_data),
            auth=AuthConfig(**data.get("auth", {})),
            chat=ChatConfig(**data.get("chat", {})),
            client=ClientConfig(**data.get("client", {})),
        )
    return apply_env_overrides(cfg)


def save_config(cfg: AppConfig, path: Path | None = None) -> None:
    path = path or CFG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(cfg), indent=2))
    try:
        path.chmod(0o600)
    except OSError as exc:  # pragma: no cover - platform dependent
        logging.warning("Unable to set permissions on %s: %s", path, exc)


def ensure_config(force_reconfigure: bool = False) -> AppConfig:
    """Load configuration, prompting for anything the relay needs.

    Parameters
    ----------
    force_reconfigure:
        If ``True`` every value is prompted for even when ``config.json``
        already exists.
    """

    cfg = load_config()

    def _prompt_server() -> None:
        host = input(f"Server host [{cfg.server.host}]: ").strip()
        if host:
            cfg.server.host = host
        port = input(f"Server port [{cfg.server.port}]: ").strip()
        if port:
            cfg.server.port = int(port)

    def _prompt_discord() -> None:
        cfg.discord.token = (
            input("Discord bot token (blank to disable mirroring): ").strip()
            or cfg.discord.token
        )
        channel = input(f"Discord channel id [{cfg.discord.channel_id or ''}]: ")
        if channel.strip():
            cfg.discord.channel_id = _parse_channel_id(channel.strip())
        cfg.discord.webhook_url = (
            input("Discord webhook URL (blank to skip): ").strip()
            or cfg.discord.webhook_url
        )

    if force_reconfigure:
        _prompt_server()
        _prompt_discord()

    if force_reconfigure or not cfg.auth.jwt_secret:
        secret = input("JWT secret shared with the auth service (blank to generate): ")
        cfg.auth.jwt_secret = secret.strip() or secrets.token_urlsafe(48)

    save_config(cfg)
    return cfg
