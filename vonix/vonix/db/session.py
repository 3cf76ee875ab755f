from __future__ import annotations

"""Engine and session management for the chat store.

SQLite databases (the default, and every test) are created straight from the
ORM metadata. Other backends are brought to the latest alembic revision before
the async engine is handed out.
"""

import asyncio
import logging
import os
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from alembic import command
from alembic.config import Config
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from . import models  # noqa: F401
from .base import Base

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

_SYNC_DRIVERS = {
    "+aiosqlite": "",
    "+asyncpg": "+psycopg2",
    "+aiomysql": "+pymysql",
}

_engine: AsyncEngine | None = None
_Session: async_sessionmaker[AsyncSession] | None = None
_init_lock = asyncio.Lock()
_echo = os.getenv("VONIX_DEBUG_SQLALCHEMY", "").lower() in {"1", "true", "yes"}


def _sync_url(url: str) -> str:
    """Swap an async driver for the blocking one alembic can drive."""
    sa_url = make_url(url)
    driver = sa_url.drivername
    for async_suffix, sync_suffix in _SYNC_DRIVERS.items():
        if driver.endswith(async_suffix):
            driver = driver[: -len(async_suffix)] + sync_suffix
            break
    return sa_url.set(drivername=driver).render_as_string(hide_password=False)


def mask_url(url: str) -> str:
    return re.sub(r":[^:@/]+@", ":***@", url)


def _is_memory(sa_url: URL) -> bool:
    return sa_url.database in (None, "", ":memory:")


async def _create_sqlite(url: str, sa_url: URL) -> AsyncEngine:
    if _is_memory(sa_url):
        # One shared connection, otherwise every checkout sees an empty DB.
        engine = create_async_engine(
            url,
            echo=_echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        Path(sa_url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
        engine = create_async_engine(url, echo=_echo)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


async def _migrate(url: str, sa_url: URL) -> None:
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", _sync_url(url).replace("%", "%%"))
    try:
        await asyncio.to_thread(command.upgrade, config, "head")
    except OperationalError as exc:  # pragma: no cover - requires real DB
        logging.error(
            "Migration failed for %s:%s as %s: %s",
            sa_url.host,
            sa_url.port,
            sa_url.username,
            exc,
        )
        raise


async def init_db(url: str) -> AsyncEngine:
    """Return the process wide engine, creating it on first use."""

    global _engine, _Session
    async with _init_lock:
        if _engine is not None:
            return _engine

        sa_url = make_url(url)
        logging.debug("init_db url=%s backend=%s", mask_url(url), sa_url.get_backend_name())
        if sa_url.get_backend_name() == "sqlite":
            engine = await _create_sqlite(url, sa_url)
        else:
            await _migrate(url, sa_url)
            engine = create_async_engine(url, echo=_echo, pool_pre_ping=True)

        _engine = engine
        _Session = async_sessionmaker(engine, expire_on_commit=False)
        return engine


async def close_db() -> None:
    """Dispose of the engine so a later :func:`init_db` starts fresh."""

    global _engine, _Session
    engine, _engine, _Session = _engine, None, None
    if engine is not None:
        await engine.dispose()


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    if _Session is None:
        raise RuntimeError("Database not initialised; call init_db() first")
    async with _Session() as session:
        yield session
