from __future__ import annotations

from config.settings import AppSettings, CacheSettings, DatabaseSettings, DefiSettings
from edgewave.context import build_services
from edgewave.services.core.durable_cache import NullDurableCache, SqlDurableCache
from edgewave.services.defi.contracts import snapshot_cache_key


async def test_default_container():
    settings = AppSettings()
    services = await build_services(settings)

    assert isinstance(services.durable, NullDurableCache)
    assert services.engine is None
    assert services.refresher is None
    assert services.snapshot_key == snapshot_cache_key(settings.defi)
    assert list(services.router.endpoints) == settings.rpc.resolved_endpoints()
    await services.close()


async def test_sql_backend_and_refresher(tmp_path):
    settings = AppSettings(
        cache=CacheSettings(durable_backend="sql", ttl_seconds=12),
        database=DatabaseSettings(dsn=f"sqlite+aiosqlite:///{tmp_path / 'edge.db'}"),
        defi=DefiSettings(refresh_interval_sec=60),
    )
    services = await build_services(settings)

    assert isinstance(services.durable, SqlDurableCache)
    assert services.engine is not None
    assert services.refresher is not None
    assert services.cache.ttl_seconds == 12
    await services.durable.put("k", "v", 12)
    assert await services.durable.get("k") == "v"
    await services.close()
