"""Фоновое обновление снапшота (опционально, refresh_interval_sec > 0)."""

from __future__ import annotations

import asyncio

from loguru import logger

from edgewave.services.core.snapshot_cache import TieredSnapshotCache


class SnapshotRefresher:
    """Периодически дёргает кеш, чтобы тёплый снапшот был готов до первого запроса.

    Чтение не принудительное: апстримы опрашиваются не чаще раза за TTL.
    """

    def __init__(self, cache: TieredSnapshotCache, key: str, interval: float) -> None:
        self._cache = cache
        self._key = key
        self._interval = interval
        self._task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run_loop(), name="snapshot-refresh-loop")
        logger.info("SnapshotRefresher запущен, интервал {interval}s", interval=self._interval)

    async def stop(self) -> None:
        self._stop.set()
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def _run_loop(self) -> None:
        while not self._stop.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue

    async def tick(self) -> None:
        try:
            lookup = await self._cache.get(self._key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Фоновое обновление снапшота упало: {error}", error=exc)
            return
        self.ticks += 1
        logger.debug("Фоновое обновление: слой {layer}", layer=lookup.layer)


__all__ = ["SnapshotRefresher"]
