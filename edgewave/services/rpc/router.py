"""RPC Race Router.

Отправляет один и тот же JSON-RPC запрос (одиночный или batch) сразу во все
апстримы и возвращает самый быстрый *успешный* ответ:

1. fastest-settled: ждём первую завершившуюся попытку; если она успешна, отдаём её;
2. downgrade: иначе ждём первую успешную среди остальных (включая ещё летящие).

Ответ считается провалом при HTTP не 2xx, невалидном JSON или поле ``error``
в конверте (в любом элементе batch-ответа). ``result: null`` или ``0x0``: успех.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Literal, Sequence

import aiohttp
from loguru import logger

from .errors import AllEndpointsFailed, AttemptFailed
from .jsonrpc import dumps, has_rpc_error

_HEADERS = {"content-type": "application/json"}

AttemptOutcome = Literal["pending", "success", "failure"]


@dataclass(slots=True)
class RaceAttempt:
    """Состояние одной попытки внутри гонки."""

    endpoint: str
    started_at: float
    outcome: AttemptOutcome = "pending"
    body: str | None = None
    payload: Any = None
    elapsed_ms: float = 0.0
    error: str | None = None


@dataclass(slots=True, frozen=True)
class RaceResult:
    """Победитель гонки."""

    source_url: str
    raw_body: str
    elapsed_ms: float
    payload: Any


class RpcRaceRouter:
    """Гонка JSON-RPC запросов поверх одной aiohttp-сессии."""

    def __init__(
        self,
        endpoints: Sequence[str],
        *,
        attempt_timeout: float = 4.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._endpoints = tuple(endpoints)
        self._attempt_timeout = attempt_timeout
        self._timeout = aiohttp.ClientTimeout(total=attempt_timeout)
        self._session = session
        self._owns_session = session is None

    @property
    def endpoints(self) -> tuple[str, ...]:
        return self._endpoints

    async def start(self) -> None:
        """Инициализирует HTTP session."""

        await self._ensure_session()
        logger.info(
            "RpcRaceRouter готов: {count} эндпоинтов, таймаут попытки {timeout}s",
            count=len(self._endpoints),
            timeout=self._attempt_timeout,
        )

    async def close(self) -> None:
        """Чисто закрывает сессию (если она наша)."""

        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def race(
        self,
        payload: Any,
        *,
        cancel: asyncio.Event | None = None,
        endpoints: Sequence[str] | None = None,
    ) -> RaceResult:
        """Запускает гонку и возвращает первый успешный ответ.

        ``payload``: dict/list JSON-RPC либо уже сериализованная строка.
        ``cancel``: внешний сигнал: при его срабатывании все летящие попытки
        отменяются и гонка завершается ``AllEndpointsFailed``.
        """

        urls = list(endpoints if endpoints is not None else self._endpoints)
        if not urls:
            raise ValueError("Не настроено ни одного RPC эндпоинта")
        body = payload if isinstance(payload, str) else dumps(payload)
        session = await self._ensure_session()

        order = {url: index for index, url in enumerate(urls)}
        attempts: dict[asyncio.Task[RaceAttempt], str] = {
            asyncio.create_task(self._attempt(session, url, body), name=f"rpc-attempt:{url}"): url
            for url in urls
        }
        watcher = asyncio.create_task(cancel.wait(), name="rpc-race-cancel") if cancel else None
        pending: set[asyncio.Task[Any]] = set(attempts)
        failures: dict[str, str] = {}
        downgraded = False
        try:
            while pending:
                waitset = pending | {watcher} if watcher is not None else pending
                done, _ = await asyncio.wait(waitset, return_when=asyncio.FIRST_COMPLETED)
                if watcher is not None and watcher in done:
                    for task in pending:
                        failures.setdefault(attempts[task], "cancelled")
                    logger.debug("Гонка RPC отменена вызывающей стороной")
                    raise AllEndpointsFailed(failures)
                pending -= done
                for task in sorted(done, key=lambda t: order[attempts[t]]):
                    attempt = task.result()
                    if attempt.outcome == "success":
                        logger.debug(
                            "RPC гонка выиграна {url} за {elapsed:.1f} ms (downgrade={downgraded})",
                            url=attempt.endpoint,
                            elapsed=attempt.elapsed_ms,
                            downgraded=downgraded,
                        )
                        return RaceResult(
                            source_url=attempt.endpoint,
                            raw_body=attempt.body or "",
                            elapsed_ms=attempt.elapsed_ms,
                            payload=attempt.payload,
                        )
                    failures[attempt.endpoint] = attempt.error or "unknown"
                if not downgraded and pending:
                    downgraded = True
                    logger.info(
                        "fastest-settled провалился ({reasons}) -> ждём первый успешный из {left}",
                        reasons=", ".join(failures.values()),
                        left=len(pending),
                    )
            logger.warning("Все RPC эндпоинты упали: {failures}", failures=failures)
            raise AllEndpointsFailed(failures)
        finally:
            leftovers = [task for task in attempts if not task.done()]
            for task in leftovers:
                task.cancel()
            if watcher is not None:
                watcher.cancel()
                leftovers.append(watcher)
            if leftovers:
                await asyncio.gather(*leftovers, return_exceptions=True)

    async def _attempt(self, session: aiohttp.ClientSession, url: str, body: str) -> RaceAttempt:
        """Одна попытка; ошибки не пробрасываются, а фиксируются в RaceAttempt."""

        attempt = RaceAttempt(endpoint=url, started_at=time.time())
        started = time.perf_counter()
        try:
            text, decoded = await self._post(session, url, body)
        except AttemptFailed as exc:
            attempt.outcome = "failure"
            attempt.error = exc.reason
            logger.debug("RPC попытка {url} провалилась: {reason}", url=url, reason=exc.reason)
        else:
            attempt.outcome = "success"
            attempt.body = text
            attempt.payload = decoded
        attempt.elapsed_ms = (time.perf_counter() - started) * 1000
        return attempt

    async def _post(self, session: aiohttp.ClientSession, url: str, body: str) -> tuple[str, Any]:
        try:
            async with session.post(url, data=body, headers=_HEADERS, timeout=self._timeout) as resp:
                status = resp.status
                text = await resp.text()
        except asyncio.TimeoutError as exc:
            raise AttemptFailed(url, f"timeout {self._attempt_timeout}s") from exc
        except (aiohttp.ClientError, ValueError) as exc:
            raise AttemptFailed(url, f"transport: {exc.__class__.__name__}") from exc
        if not 200 <= status < 300:
            raise AttemptFailed(url, f"HTTP {status}")
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError as exc:
            raise AttemptFailed(url, "invalid JSON") from exc
        if has_rpc_error(decoded):
            raise AttemptFailed(url, "JSON-RPC error")
        return text, decoded

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session


__all__ = ["RaceAttempt", "RaceResult", "RpcRaceRouter"]
