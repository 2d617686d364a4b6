"""Async SQLAlchemy engine and schema management."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from alembic import command  # type: ignore[attr-defined]
from alembic.config import Config

from . import settings as common_settings

logger = logging.getLogger(__name__)

Base = declarative_base()

_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        url = common_settings.settings.postgres_dsn
        kwargs: dict[str, object] = {}
        if _is_sqlite(url) and ":memory:" in url:
            # Every connection must see the same in-memory database.
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        else:
            kwargs["pool_pre_ping"] = True
        _engine = create_async_engine(url, **kwargs)
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    global _sessionmaker
    if _sessionmaker is None:
        _sessionmaker = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _sessionmaker


async def create_all() -> None:
    """Create missing tables straight from the models' metadata."""

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def alembic_config() -> Config:
    cfg = Config("alembic.ini")
    cfg.set_main_option("sqlalchemy.url", common_settings.settings.postgres_dsn)
    return cfg


async def prepare_schema() -> None:
    """SQLite gets ``create_all``; real databases are migrated to head."""

    url = common_settings.settings.postgres_dsn
    if _is_sqlite(url):
        await create_all()
        return
    logger.info("Running database migrations")
    # env.py drives its own event loop, so it runs in a worker thread.
    await asyncio.to_thread(command.upgrade, alembic_config(), "head")


async def dispose_engine() -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None
