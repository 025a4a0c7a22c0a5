"""Модели снапшота DeFi-метрик."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

Health = Literal["ok", "degraded"]
CacheLayer = Literal["memory", "durable", "live"]

NO_DATA_NOTE = "no data yet"


class ProtocolMetrics(BaseModel):
    """Метрики одного протокола.

    ``tvl_usd_approx``: масштабированный ончейн-сигнал, а не точный TVL.
    ``volume_usd_proxy``: |Δtvl| × вес между соседними обновлениями:
    индикатор импульса, НЕ реальный торговый объём.
    """

    tvl_usd_approx: float = 0.0
    volume_usd_proxy: float = 0.0
    health: Health = "degraded"
    note: str = NO_DATA_NOTE


class Snapshot(BaseModel):
    """Снапшот, который отдаётся клиентам и кладётся во все уровни кеша."""

    updated_at: datetime
    source: str = "edge"
    chain_id: int
    block_number: int | None = None
    protocols: dict[str, ProtocolMetrics] = Field(default_factory=dict)

    def degraded_ids(self) -> list[str]:
        return [pid for pid, metrics in self.protocols.items() if metrics.health != "ok"]


class CacheInfo(BaseModel):
    hit: bool
    layer: CacheLayer
    ttl_ms: int


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_empty(chain_id: int, protocol_ids: list[str], now: datetime | None = None) -> Snapshot:
    """Пустой снапшот: каждый протокол присутствует, degraded/ноль."""

    return Snapshot(
        updated_at=now or utcnow(),
        chain_id=chain_id,
        protocols={pid: ProtocolMetrics() for pid in protocol_ids},
    )


__all__ = [
    "CacheInfo",
    "CacheLayer",
    "Health",
    "NO_DATA_NOTE",
    "ProtocolMetrics",
    "Snapshot",
    "build_empty",
    "utcnow",
]
