"""Durable-уровень кеша снапшотов.

Один явный протокол ``DurableCache``; реализация выбирается из настроек
(``none | redis | sql``) один раз при сборке сервисов.
"""

from __future__ import annotations

import asyncio
import math
import time
from typing import Callable, Protocol

from aiocache.base import BaseCache
from loguru import logger
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import AppSettings
from edgewave.repositories import get_snapshot_entry, upsert_snapshot_entry
from edgewave.services.rpc.errors import GatewayError
from edgewave.utils.cache import create_cache


class DurableTierUnavailable(GatewayError):
    """Durable-хранилище недоступно (чтение или запись)."""


class DurableCache(Protocol):
    """Строковое KV с нативным TTL."""

    async def get(self, key: str) -> str | None: ...

    async def put(self, key: str, value: str, ttl_seconds: float) -> None: ...


class NullDurableCache:
    """Durable-уровень выключен: всегда промах, запись игнорируется."""

    async def get(self, key: str) -> str | None:
        return None

    async def put(self, key: str, value: str, ttl_seconds: float) -> None:
        return None


class AiocacheDurableCache:
    """Обёртка над aiocache (алиас ``durable``, обычно RedisCache)."""

    def __init__(self, cache: BaseCache) -> None:
        self._cache = cache

    async def get(self, key: str) -> str | None:
        try:
            value = await self._cache.get(key)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise DurableTierUnavailable(f"durable get {key}: {exc!r}") from exc
        if value is None:
            return None
        return value.decode() if isinstance(value, bytes) else str(value)

    async def put(self, key: str, value: str, ttl_seconds: float) -> None:
        try:
            await self._cache.set(key, value, ttl=native_ttl(ttl_seconds))
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise DurableTierUnavailable(f"durable put {key}: {exc!r}") from exc

    async def close(self) -> None:
        await self._cache.close()


class SqlDurableCache:
    """Таблица ``snapshot_cache`` через SQLModel; просроченные строки считаются промахом."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_maker = session_maker
        self._clock = clock

    async def get(self, key: str) -> str | None:
        try:
            async with self._session_maker() as session:
                entry = await get_snapshot_entry(session, key)
        except (SQLAlchemyError, OSError) as exc:
            raise DurableTierUnavailable(f"sql get {key}: {exc!r}") from exc
        if entry is None or self._clock() >= entry.expires_at:
            return None
        return entry.value

    async def put(self, key: str, value: str, ttl_seconds: float) -> None:
        expires_at = self._clock() + native_ttl(ttl_seconds)
        try:
            async with self._session_maker() as session:
                await upsert_snapshot_entry(session, key, value, expires_at)
        except (SQLAlchemyError, OSError) as exc:
            raise DurableTierUnavailable(f"sql put {key}: {exc!r}") from exc


def native_ttl(ttl_seconds: float) -> int:
    """TTL хранилища в целых секундах, не меньше одной."""

    return max(1, math.floor(ttl_seconds + 0.5))


def build_durable_cache(
    settings: AppSettings,
    session_maker: async_sessionmaker[AsyncSession] | None = None,
) -> DurableCache:
    backend = settings.cache.durable_backend
    if backend == "redis":
        logger.info("Durable-кеш: redis ({dsn})", dsn=settings.cache.redis_dsn)
        return AiocacheDurableCache(create_cache("durable", settings.cache))
    if backend == "sql":
        if session_maker is None:
            raise RuntimeError("durable_backend=sql требует session_maker")
        logger.info("Durable-кеш: sql ({dsn})", dsn=settings.database.dsn)
        return SqlDurableCache(session_maker)
    logger.info("Durable-кеш выключен")
    return NullDurableCache()


__all__ = [
    "AiocacheDurableCache",
    "DurableCache",
    "DurableTierUnavailable",
    "NullDurableCache",
    "SqlDurableCache",
    "build_durable_cache",
    "native_ttl",
]
