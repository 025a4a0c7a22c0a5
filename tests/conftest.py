"""Общие фикстуры: локальные апстримы на aiohttp и фейки для кеша/роутера."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Callable

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from edgewave.services.rpc.router import RaceResult, RpcRaceRouter


@dataclass
class Upstream:
    """Программируемый JSON-RPC апстрим."""

    delay: float = 0.0
    status: int = 200
    body: str | None = None
    reply: Callable[[Any], Any] | None = None
    calls: int = 0
    received: list[str] = field(default_factory=list)
    content_types: list[str] = field(default_factory=list)

    def render(self, request_text: str) -> str:
        if self.body is not None:
            return self.body
        payload = json.loads(request_text)
        if self.reply is not None:
            return json.dumps(self.reply(payload))
        return json.dumps({"jsonrpc": "2.0", "id": payload.get("id"), "result": "0x1"})


def _make_app(upstream: Upstream) -> web.Application:
    async def handle(request: web.Request) -> web.Response:
        upstream.calls += 1
        text = await request.text()
        upstream.received.append(text)
        upstream.content_types.append(request.headers.get("content-type", ""))
        if upstream.delay:
            await asyncio.sleep(upstream.delay)
        return web.Response(status=upstream.status, text=upstream.render(text), content_type="application/json")

    app = web.Application()
    app.router.add_post("/rpc", handle)
    return app


@pytest.fixture
async def upstreams():
    servers: list[TestServer] = []

    async def factory(*upstreams_: Upstream) -> list[str]:
        urls = []
        for upstream in upstreams_:
            server = TestServer(_make_app(upstream))
            await server.start_server()
            servers.append(server)
            urls.append(str(server.make_url("/rpc")))
        return urls

    yield factory
    for server in servers:
        await server.close()


@pytest.fixture
async def make_router():
    routers: list[RpcRaceRouter] = []

    def factory(urls: list[str], timeout: float = 4.0) -> RpcRaceRouter:
        router = RpcRaceRouter(urls, attempt_timeout=timeout)
        routers.append(router)
        return router

    yield factory
    for router in routers:
        await router.close()


class FakeRouter:
    """Отдаёт заранее заготовленные ответы вместо гонки."""

    def __init__(self, *replies: Any) -> None:
        self.replies = list(replies)
        self.calls: list[Any] = []

    async def race(self, payload: Any, **_: Any) -> RaceResult:
        self.calls.append(payload)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return RaceResult(
            source_url="http://fake-upstream/rpc",
            raw_body=json.dumps(reply),
            elapsed_ms=12.4,
            payload=reply,
        )

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None


class FakeDurable:
    """Durable-хранилище в словаре; умеет изображать отказ."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, float] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.reads = 0
        self.writes = 0

    async def get(self, key: str) -> str | None:
        from edgewave.services.core.durable_cache import DurableTierUnavailable

        self.reads += 1
        if self.fail_reads:
            raise DurableTierUnavailable("durable get: connection refused")
        return self.data.get(key)

    async def put(self, key: str, value: str, ttl_seconds: float) -> None:
        from edgewave.services.core.durable_cache import DurableTierUnavailable

        self.writes += 1
        if self.fail_writes:
            raise DurableTierUnavailable("durable put: connection refused")
        self.data[key] = value
        self.ttls[key] = ttl_seconds


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def hex_of(value: int) -> str:
    return hex(value)


def batch_reply(
    *,
    block: int | None = 0x10,
    uniswap: int | None = 5 * 10**18,
    aave: int | None = 2 * 10**12,
    compound_supply: int | None = 5 * 10**16,
    compound_rate: int | None = 2 * 10**14,
) -> list[dict[str, Any]]:
    """Batch-ответ на ids 1..5; ``None`` означает, что id в ответе отсутствует."""

    values = {1: block, 2: uniswap, 3: aave, 4: compound_supply, 5: compound_rate}
    return [
        {"jsonrpc": "2.0", "id": call_id, "result": hex_of(value)}
        for call_id, value in values.items()
        if value is not None
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def durable() -> FakeDurable:
    return FakeDurable()
