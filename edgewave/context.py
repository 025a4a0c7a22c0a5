"""Сборка сервисов EdgeWave: роутер, агрегатор, кеш, фоновое обновление."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine

from config.settings import AppSettings, get_settings
from .services.core.durable_cache import DurableCache, build_durable_cache
from .services.core.snapshot_cache import TieredSnapshotCache
from .services.defi.aggregator import DefiAggregator
from .services.defi.contracts import snapshot_cache_key
from .services.defi.refresher import SnapshotRefresher
from .services.rpc.router import RpcRaceRouter
from .utils.cache import configure_cache
from .utils.db import build_engine, build_session_maker, init_db


@dataclass(slots=True)
class ServiceContainer:
    """Все долгоживущие объекты процесса. Создаётся в lifespan приложения."""

    settings: AppSettings
    router: RpcRaceRouter
    aggregator: DefiAggregator
    cache: TieredSnapshotCache
    durable: DurableCache
    snapshot_key: str
    refresher: SnapshotRefresher | None = None
    engine: AsyncEngine | None = None

    async def start(self) -> None:
        await self.router.start()
        if self.refresher is not None:
            await self.refresher.start()

    async def close(self) -> None:
        if self.refresher is not None:
            await self.refresher.stop()
        await self.router.close()
        close_durable = getattr(self.durable, "close", None)
        if close_durable is not None:
            await close_durable()
        if self.engine is not None:
            await self.engine.dispose()
        logger.info("Сервисы EdgeWave остановлены")


async def build_services(settings: AppSettings | None = None) -> ServiceContainer:
    settings = settings or get_settings()
    configure_cache(settings.cache)

    engine: AsyncEngine | None = None
    session_maker = None
    if settings.cache.durable_backend == "sql":
        engine = build_engine(settings.database)
        await init_db(engine)
        session_maker = build_session_maker(engine)

    router = RpcRaceRouter(
        settings.rpc.resolved_endpoints(),
        attempt_timeout=settings.rpc.attempt_timeout,
    )
    aggregator = DefiAggregator(router, settings.defi)
    durable = build_durable_cache(settings, session_maker)
    cache = TieredSnapshotCache(
        aggregator.load,
        durable=durable,
        ttl_seconds=settings.cache.ttl_seconds,
    )
    key = snapshot_cache_key(settings.defi)
    refresher = None
    if settings.defi.refresh_interval_sec > 0:
        refresher = SnapshotRefresher(cache, key, settings.defi.refresh_interval_sec)

    return ServiceContainer(
        settings=settings,
        router=router,
        aggregator=aggregator,
        cache=cache,
        durable=durable,
        snapshot_key=key,
        refresher=refresher,
        engine=engine,
    )


__all__ = ["ServiceContainer", "build_services"]
