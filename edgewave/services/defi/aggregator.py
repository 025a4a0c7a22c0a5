"""DeFi Metric Aggregator.

Один refresh = одна batch-гонка через RpcRaceRouter (eth_blockNumber + eth_call
по таблице источников). Каждый источник декодируется независимо: ошибка одного
не портит остальные, упавший источник помечается degraded и сохраняет прошлые значения.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, NamedTuple

from loguru import logger

from config.settings import DefiSettings
from edgewave.services.rpc.errors import AllEndpointsFailed, SourceDecodeFailed
from edgewave.services.rpc.router import RaceResult, RpcRaceRouter
from .contracts import BLOCK_NUMBER_ID, ProtocolSource, build_sources
from .decoding import hex_to_int, to_display_number
from .snapshot import ProtocolMetrics, Snapshot, build_empty, utcnow

BATCH_FAILED_NOTE = "RPC batch request failed"
BATCH_MALFORMED_NOTE = "RPC batch response malformed"


@dataclass(slots=True, frozen=True)
class SourceReading:
    """Явный результат чтения одного источника: ``tvl`` при успехе, иначе ``error``."""

    protocol_id: str
    tvl: float | None = None
    error: str | None = None


class Refreshed(NamedTuple):
    snapshot: Snapshot
    race: RaceResult | None


class DefiAggregator:
    """Собирает Snapshot из одной batch-гонки."""

    def __init__(
        self,
        router: RpcRaceRouter,
        settings: DefiSettings,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._router = router
        self._chain_id = settings.chain_id
        self._sources = build_sources(settings)
        self._clock = clock
        self._batch, self._source_ids = self._build_batch()
        self._latest: Snapshot | None = None

    @property
    def protocol_ids(self) -> list[str]:
        return [source.protocol_id for source in self._sources]

    @property
    def batch(self) -> list[dict[str, Any]]:
        return [dict(call) for call in self._batch]

    def get_snapshot(self) -> Snapshot:
        """Синхронный доступ к последнему снапшоту (для генератора отчётов)."""

        if self._latest is None:
            return build_empty(self._chain_id, self.protocol_ids, now=self._clock())
        return self._latest

    async def refresh(self, previous: Snapshot | None = None) -> Snapshot:
        """Пересчитывает снапшот и запоминает результат."""

        return (await self.load(previous)).snapshot

    async def load(self, previous: Snapshot | None = None) -> Refreshed:
        """Загрузчик для кеша: снапшот вместе с гонкой, которая его дала.

        ``previous``: снапшот из кеша (например, поднятый из durable после
        рестарта). Базой служит более свежий из него и собственного последнего.
        """

        known = [snap for snap in (self._latest, previous) if snap is not None]
        base = max(known, key=lambda snap: snap.updated_at) if known else None
        refreshed = await self.compute(base)
        self._latest = refreshed.snapshot
        return refreshed

    async def compute_snapshot(self, previous: Snapshot | None) -> Snapshot:
        return (await self.compute(previous)).snapshot

    async def compute(self, previous: Snapshot | None) -> Refreshed:
        base = previous or build_empty(self._chain_id, self.protocol_ids, now=self._clock())
        draft = self._copy(base)
        try:
            race = await self._router.race(self._batch)
        except AllEndpointsFailed as exc:
            logger.warning("Batch через RPC роутер упал: {error}", error=str(exc))
            return Refreshed(self._degrade_all(draft, BATCH_FAILED_NOTE), None)
        if not isinstance(race.payload, list):
            logger.warning("Batch-ответ от {url} не массив", url=race.source_url)
            return Refreshed(self._degrade_all(draft, BATCH_MALFORMED_NOTE), race)
        snapshot = self.fold(draft, base, race.payload)
        logger.info(
            "Снапшот обновлён: блок {block}, источник {url}, degraded={degraded}",
            block=snapshot.block_number,
            url=race.source_url,
            degraded=snapshot.degraded_ids() or "-",
        )
        return Refreshed(snapshot, race)

    def fold(self, draft: Snapshot, previous: Snapshot, results: list[Any]) -> Snapshot:
        """Детерминированно вливает batch-ответ в копию снапшота."""

        by_id = {item.get("id"): item for item in results if isinstance(item, dict)}
        try:
            draft.block_number = hex_to_int(_batch_result(by_id, BLOCK_NUMBER_ID))
        except SourceDecodeFailed as exc:
            logger.debug("blockNumber не получен: {error}", error=exc)

        readings = [
            self._read_source(source, ids, by_id)
            for source, ids in zip(self._sources, self._source_ids)
        ]
        for source, reading in zip(self._sources, readings):
            prev = previous.protocols.get(source.protocol_id) or ProtocolMetrics()
            if reading.tvl is not None:
                draft.protocols[source.protocol_id] = ProtocolMetrics(
                    tvl_usd_approx=reading.tvl,
                    volume_usd_proxy=abs(reading.tvl - prev.tvl_usd_approx) * source.weight,
                    health="ok",
                    note=source.note,
                )
            else:
                logger.debug(
                    "{pid} degraded: {error}", pid=source.protocol_id, error=reading.error
                )
                draft.protocols[source.protocol_id] = prev.model_copy(
                    update={"health": "degraded", "note": f"{source.failure_note}: {reading.error}"}
                )
        return draft

    def _read_source(
        self,
        source: ProtocolSource,
        ids: tuple[int, ...],
        by_id: Mapping[Any, Any],
    ) -> SourceReading:
        try:
            raw = [hex_to_int(_batch_result(by_id, call_id)) for call_id in ids]
            tvl = to_display_number(source.combine(raw), source.scale)
        except SourceDecodeFailed as exc:
            return SourceReading(source.protocol_id, error=str(exc))
        return SourceReading(source.protocol_id, tvl=tvl)

    def _build_batch(self) -> tuple[list[dict[str, Any]], list[tuple[int, ...]]]:
        batch: list[dict[str, Any]] = [
            {"jsonrpc": "2.0", "id": BLOCK_NUMBER_ID, "method": "eth_blockNumber", "params": []}
        ]
        source_ids: list[tuple[int, ...]] = []
        next_id = BLOCK_NUMBER_ID + 1
        for source in self._sources:
            ids = []
            for read in source.reads:
                batch.append(
                    {"jsonrpc": "2.0", "id": next_id, "method": "eth_call", "params": read.as_params()}
                )
                ids.append(next_id)
                next_id += 1
            source_ids.append(tuple(ids))
        return batch, source_ids

    def _copy(self, base: Snapshot) -> Snapshot:
        protocols = {
            pid: (base.protocols.get(pid) or ProtocolMetrics()).model_copy()
            for pid in self.protocol_ids
        }
        return base.model_copy(
            update={
                "updated_at": self._clock(),
                "source": "edge",
                "chain_id": self._chain_id,
                "protocols": protocols,
            }
        )

    def _degrade_all(self, draft: Snapshot, note: str) -> Snapshot:
        for pid, metrics in list(draft.protocols.items()):
            draft.protocols[pid] = metrics.model_copy(update={"health": "degraded", "note": note})
        return draft


def _batch_result(by_id: Mapping[Any, Any], call_id: int) -> Any:
    item = by_id.get(call_id)
    if not isinstance(item, dict):
        raise SourceDecodeFailed(f"missing batch result id={call_id}")
    if "error" in item:
        raise SourceDecodeFailed(f"batch JSON-RPC error id={call_id}")
    return item.get("result")


__all__ = ["BATCH_FAILED_NOTE", "BATCH_MALFORMED_NOTE", "DefiAggregator", "Refreshed", "SourceReading"]
