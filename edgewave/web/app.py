"""FastAPI-поверхность EdgeWave: /rpc, /snapshot, /insight, /health."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from loguru import logger

from config.settings import AppSettings, get_settings
from edgewave.context import ServiceContainer, build_services
from edgewave.services.core.insight import extract_question, render_report, stream_lines
from edgewave.services.defi.snapshot import CacheInfo, Snapshot
from edgewave.services.rpc.errors import AllEndpointsFailed, MalformedRequest
from edgewave.services.rpc.jsonrpc import error_envelope, first_request_id, parse_request_body

FASTEST_HEADER = "x-edgewave-fastest"
ELAPSED_HEADER = "x-edgewave-elapsed-ms"
CACHE_LAYER_HEADER = "x-edgewave-defi-cache"

_OTHER_METHODS = ["GET", "PUT", "PATCH", "DELETE"]


class SnapshotResponse(Snapshot):
    """Снапшот плюс информация о том, какой уровень кеша его отдал."""

    cache: CacheInfo


def _services(request: Request) -> ServiceContainer:
    return request.app.state.services


def _race_headers(source_url: str, elapsed_ms: float) -> dict[str, str]:
    return {FASTEST_HEADER: source_url, ELAPSED_HEADER: str(round(elapsed_ms))}


def create_app(
    services: ServiceContainer | None = None,
    settings: AppSettings | None = None,
) -> FastAPI:
    """Собирает приложение.

    Если ``services`` переданы снаружи (тесты), lifespan их не запускает и не
    закрывает. Иначе контейнер строится из настроек при старте.
    """

    settings = settings or (services.settings if services is not None else get_settings())
    owns_services = services is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_services:
            app.state.services = await build_services(settings)
            await app.state.services.start()
        try:
            yield
        finally:
            if owns_services and app.state.services is not None:
                await app.state.services.close()
                app.state.services = None

    app = FastAPI(title="EdgeWave Gateway", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.web.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[FASTEST_HEADER, ELAPSED_HEADER, CACHE_LAYER_HEADER],
    )

    @app.middleware("http")
    async def no_store(request: Request, call_next):
        response = await call_next(request)
        response.headers["cache-control"] = "no-store"
        return response

    @app.post("/rpc")
    async def rpc(request: Request) -> Response:
        """Проксирует JSON-RPC запрос (или batch) в самый быстрый успешный апстрим."""

        body = await request.body()
        try:
            payload = parse_request_body(body)
        except MalformedRequest as exc:
            logger.debug("Невалидный /rpc запрос: {error}", error=str(exc))
            return JSONResponse(error_envelope(None, exc.code), status_code=400)

        request_id = first_request_id(payload)
        try:
            result = await _services(request).router.race(body.decode("utf-8"))
        except AllEndpointsFailed as exc:
            logger.warning("RPC_ROUTING_FAILED: {error}", error=str(exc))
            return JSONResponse(error_envelope(request_id, "RPC_ROUTING_FAILED"), status_code=500)
        except Exception:  # noqa: BLE001
            logger.exception("Необработанная ошибка в /rpc")
            return JSONResponse(error_envelope(request_id, "RPC_ROUTING_FAILED"), status_code=500)

        return Response(
            content=result.raw_body,
            media_type="application/json",
            headers=_race_headers(result.source_url, result.elapsed_ms),
        )

    @app.api_route("/rpc", methods=_OTHER_METHODS, include_in_schema=False)
    async def rpc_method_not_allowed() -> JSONResponse:
        return JSONResponse(error_envelope(None, "METHOD_NOT_ALLOWED"), status_code=405)

    @app.get("/snapshot", response_model=SnapshotResponse)
    async def snapshot(request: Request, force: str | None = None) -> JSONResponse:
        """Снапшот DeFi-метрик через memory → durable → live. ``?force=1``: мимо кеша."""

        services = _services(request)
        try:
            lookup = await services.cache.get(services.snapshot_key, force_refresh=force == "1")
        except Exception:  # noqa: BLE001
            logger.exception("DEFI_AGGREGATION_FAILED")
            return JSONResponse({"ok": False, "error": "DEFI_AGGREGATION_FAILED"}, status_code=500)

        body = SnapshotResponse(
            **lookup.snapshot.model_dump(),
            cache=CacheInfo(hit=lookup.hit, layer=lookup.layer, ttl_ms=services.cache.ttl_ms),
        )
        headers = {CACHE_LAYER_HEADER: lookup.layer}
        race = lookup.race
        if race is not None:
            headers.update(_race_headers(race.source_url, race.elapsed_ms))
        return JSONResponse(body.model_dump(mode="json"), headers=headers)

    @app.api_route("/snapshot", methods=["POST", "PUT", "PATCH", "DELETE"], include_in_schema=False)
    async def snapshot_method_not_allowed() -> JSONResponse:
        return JSONResponse({"ok": False, "error": "METHOD_NOT_ALLOWED"}, status_code=405)

    @app.post("/insight")
    async def insight(request: Request) -> Response:
        """Потоковый текстовый отчёт по текущему снапшоту."""

        services = _services(request)
        try:
            data: Any = await request.json()
        except ValueError:
            data = {}
        messages = data.get("messages") if isinstance(data, dict) else None
        question = extract_question(messages)

        layer: str | None = None
        try:
            lookup = await services.cache.get(services.snapshot_key)
            current, layer = lookup.snapshot, lookup.layer
        except Exception as exc:  # noqa: BLE001
            logger.warning("Снапшот для /insight недоступен, берём последний: {error}", error=exc)
            current = services.aggregator.get_snapshot()

        try:
            text = render_report(question, current, layer)
        except Exception:  # noqa: BLE001
            logger.exception("AI_INSIGHT_FAILED")
            return PlainTextResponse("AI_INSIGHT_FAILED", status_code=500)

        delay = services.settings.web.stream_delay_ms / 1000
        return StreamingResponse(stream_lines(text, delay), media_type="text/plain; charset=utf-8")

    @app.api_route("/insight", methods=_OTHER_METHODS, include_in_schema=False)
    async def insight_method_not_allowed() -> PlainTextResponse:
        return PlainTextResponse("METHOD_NOT_ALLOWED", status_code=405)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()


__all__ = ["SnapshotResponse", "app", "create_app"]
