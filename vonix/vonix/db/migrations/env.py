from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from vonix.db import models  # noqa: F401
from vonix.db.base import Base

config = context.config
target_metadata = Base.metadata

if config.config_file_name is not None and config.get_section("loggers"):
    fileConfig(config.config_file_name)

_ASYNC_PREFIXES = {
    "sqlite+aiosqlite://": "sqlite://",
    "postgresql+asyncpg://": "postgresql+psycopg2://",
    "mysql+aiomysql://": "mysql+pymysql://",
}


def database_url() -> str:
    """``VONIX_DATABASE_URL`` wins over the URL handed in by ``init_db``."""
    url = (
        os.getenv("VONIX_DATABASE_URL")
        or config.get_main_option("sqlalchemy.url")
        or "sqlite:///vonix.db"
    ).strip()
    for prefix, sync_prefix in _ASYNC_PREFIXES.items():
        if url.startswith(prefix):
            return sync_prefix + url[len(prefix):]
    return url


config.set_main_option("sqlalchemy.url", database_url().replace("%", "%%"))


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            # SQLite needs table rebuilds for ALTER.
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
