"""Единая точка настройки aiocache."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlparse

from aiocache import RedisCache, SimpleMemoryCache, caches
from aiocache.base import BaseCache

from config.settings import CacheSettings, get_settings

_configured = False


def configure_cache(cfg: CacheSettings | None = None) -> None:
    """Регистрирует алиасы aiocache: ``default`` (память) всегда, ``durable`` при backend=redis."""

    global _configured
    if _configured and cfg is None:
        return
    cfg = cfg or get_settings().cache

    config: dict[str, Any] = {
        "default": {
            "cache": SimpleMemoryCache,
            "namespace": f"{cfg.namespace}:mem:",
        }
    }
    if cfg.durable_backend == "redis":
        config["durable"] = {
            "cache": RedisCache,
            **_build_redis_config(cfg.redis_dsn),
            "namespace": f"{cfg.namespace}:",
            "serializer": {"class": "aiocache.serializers.StringSerializer"},
        }
    caches.set_config(config)
    _configured = True


def create_cache(alias: str, cfg: CacheSettings | None = None, **overrides: Any) -> BaseCache:
    """Новый экземпляр кеша по алиасу (у каждого сервиса свой, без глобального состояния)."""

    configure_cache(cfg)
    return caches.create(alias, **overrides)


def _build_redis_config(dsn: str | None) -> dict[str, Any]:
    if not dsn:
        raise RuntimeError("CACHE__DURABLE_BACKEND=redis, но redis_dsn не указан")
    parsed = urlparse(dsn)
    if parsed.scheme not in {"redis", "rediss"}:
        raise ValueError(f"Неподдерживаемая схема Redis DSN: {parsed.scheme}")
    db = parsed.path.strip("/")
    return {
        "endpoint": parsed.hostname or "localhost",
        "port": parsed.port or 6379,
        "password": parsed.password,
        "db": int(db) if db.isdigit() else 0,
    }


__all__ = ["configure_cache", "create_cache"]
