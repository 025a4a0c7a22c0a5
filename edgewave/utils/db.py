"""Async-движок SQLModel для durable-уровня кеша."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import DatabaseSettings
from edgewave import models  # noqa: F401  импортируем модели для регистрации метаданных


def build_engine(cfg: DatabaseSettings) -> AsyncEngine:
    return create_async_engine(cfg.dsn, echo=cfg.echo, poolclass=NullPool)


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Создаёт таблицы (миграций для одной таблицы кеша не держим)."""

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


__all__ = ["build_engine", "build_session_maker", "init_db"]
