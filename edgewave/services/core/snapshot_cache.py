"""Трёхуровневый кеш снапшота: memory → durable → live.

Промах по памяти идёт в durable-хранилище, промах там запускает живой пересчёт
(обычно ``DefiAggregator.load``). Свежий результат пишется в оба уровня.
Срок жизни исключающий: запись с ``now == expires_at`` уже просрочена.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple

from aiocache.base import BaseCache
from loguru import logger
from pydantic import BaseModel, ValidationError

from edgewave.services.defi.snapshot import CacheLayer, Snapshot
from edgewave.services.rpc.router import RaceResult
from edgewave.utils.cache import create_cache
from .durable_cache import DurableCache, DurableTierUnavailable, NullDurableCache

DEFAULT_TTL_SECONDS = 30.0

# previous -> (snapshot, гонка, которая его дала)
SnapshotLoader = Callable[[Optional[Snapshot]], Awaitable[Tuple[Snapshot, Optional[RaceResult]]]]


@dataclass(slots=True, frozen=True)
class CacheEntry:
    payload: Snapshot
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(slots=True, frozen=True)
class CacheLookup:
    """Результат чтения: снапшот и уровень, который его отдал.

    ``race`` заполнен только для ``live`` и относится именно к этому пересчёту.
    """

    snapshot: Snapshot
    layer: CacheLayer
    race: RaceResult | None = None

    @property
    def hit(self) -> bool:
        return self.layer != "live"


class DurableEnvelope(BaseModel):
    """То, что лежит в durable-хранилище. Встроенный expires_at главнее нативного TTL."""

    expires_at: float
    payload: Snapshot


class MemoryTier:
    """Процесс-локальный уровень поверх aiocache SimpleMemoryCache.

    У каждого экземпляра своё пространство имён, поэтому два кеша в одном
    процессе не видят записей друг друга.
    """

    def __init__(self, cache: BaseCache | None = None) -> None:
        self._cache = cache or create_cache("default", namespace=f"mem:{uuid.uuid4().hex[:12]}:")

    async def get(self, key: str, now: float) -> CacheEntry | None:
        entry = await self._cache.get(key)
        if entry is None:
            return None
        if entry.is_expired(now):
            await self._cache.delete(key)
            return None
        return entry

    async def put(self, key: str, entry: CacheEntry) -> None:
        await self._cache.set(key, entry)

    async def delete(self, key: str) -> None:
        await self._cache.delete(key)


class TieredSnapshotCache:
    """Кеш снапшота с single-flight пересчётом на ключ."""

    def __init__(
        self,
        loader: SnapshotLoader,
        *,
        durable: DurableCache | None = None,
        memory: MemoryTier | None = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._loader = loader
        self._durable = durable or NullDurableCache()
        self._memory = memory or MemoryTier()
        self._ttl = ttl_seconds
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def ttl_ms(self) -> int:
        return int(self._ttl * 1000)

    @property
    def memory(self) -> MemoryTier:
        return self._memory

    async def get(self, key: str, force_refresh: bool = False) -> CacheLookup:
        """Снапшот по ключу.

        ``force_refresh=True`` не отдаёт закешированное и всегда пересчитывает,
        но свежая запись из memory или durable уходит в загрузчик как ``previous``.
        Иначе параллельные промахи по одному ключу ждут один общий пересчёт.
        """

        if force_refresh:
            logger.debug("Кеш {key}: принудительный пересчёт", key=key)
            return await self._recompute(key, await self._peek(key))

        cached = await self._lookup(key)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            entry = await self._memory.get(key, self._clock())
            if entry is not None:
                logger.debug("Кеш {key}: memory (после ожидания пересчёта)", key=key)
                return CacheLookup(entry.payload, "memory")
            return await self._recompute(key, None)

    async def _peek(self, key: str) -> Snapshot | None:
        now = self._clock()
        entry = await self._memory.get(key, now)
        if entry is not None:
            return entry.payload
        envelope = await self._durable_get(key)
        if envelope is None or now >= envelope.expires_at:
            return None
        return envelope.payload

    async def _lookup(self, key: str) -> CacheLookup | None:
        now = self._clock()
        entry = await self._memory.get(key, now)
        if entry is not None:
            logger.debug("Кеш {key}: memory", key=key)
            return CacheLookup(entry.payload, "memory")

        envelope = await self._durable_get(key)
        if envelope is None or now >= envelope.expires_at:
            return None
        # промоушен в память с полным TTL
        await self._memory.put(key, CacheEntry(envelope.payload, now + self._ttl))
        logger.debug("Кеш {key}: durable -> memory", key=key)
        return CacheLookup(envelope.payload, "durable")

    async def _recompute(self, key: str, previous: Snapshot | None) -> CacheLookup:
        snapshot, race = await self._loader(previous)
        entry = CacheEntry(snapshot, self._clock() + self._ttl)
        await self._memory.put(key, entry)
        await self._durable_put(key, entry)
        logger.debug("Кеш {key}: live, до {expires:.3f}", key=key, expires=entry.expires_at)
        return CacheLookup(snapshot, "live", race)

    async def _durable_get(self, key: str) -> DurableEnvelope | None:
        try:
            raw = await self._durable.get(key)
        except DurableTierUnavailable as exc:
            logger.warning("Durable-кеш недоступен на чтение: {error}", error=str(exc))
            return None
        if raw is None:
            return None
        try:
            return DurableEnvelope.model_validate_json(raw)
        except ValidationError:
            logger.warning("Durable-кеш {key}: битый конверт, считаем промахом", key=key)
            return None

    async def _durable_put(self, key: str, entry: CacheEntry) -> None:
        envelope = DurableEnvelope(expires_at=entry.expires_at, payload=entry.payload)
        try:
            await self._durable.put(key, envelope.model_dump_json(), self._ttl)
        except DurableTierUnavailable as exc:
            logger.warning("Durable-кеш недоступен на запись: {error}", error=str(exc))


__all__ = [
    "CacheEntry",
    "CacheLookup",
    "DEFAULT_TTL_SECONDS",
    "DurableEnvelope",
    "MemoryTier",
    "SnapshotLoader",
    "TieredSnapshotCache",
]
