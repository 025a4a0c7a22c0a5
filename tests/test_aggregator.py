"""DefiAggregator: batch, частичные отказы, дельты и детерминизм."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from config.settings import DefiSettings
from conftest import FakeRouter, batch_reply
from edgewave.services.core.snapshot_cache import TieredSnapshotCache
from edgewave.services.defi.aggregator import BATCH_FAILED_NOTE, BATCH_MALFORMED_NOTE, DefiAggregator
from edgewave.services.defi.contracts import SELECTORS, snapshot_cache_key
from edgewave.services.defi.snapshot import NO_DATA_NOTE
from edgewave.services.rpc.errors import AllEndpointsFailed

FIXED_NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _aggregator(router) -> DefiAggregator:
    return DefiAggregator(router, DefiSettings(), clock=lambda: FIXED_NOW)


def test_batch_layout():
    cfg = DefiSettings()
    batch = _aggregator(FakeRouter(batch_reply())).batch

    assert [call["id"] for call in batch] == [1, 2, 3, 4, 5]
    assert batch[0]["method"] == "eth_blockNumber"
    assert all(call["method"] == "eth_call" for call in batch[1:])
    assert batch[1]["params"] == [{"to": cfg.uniswap_v3_pool, "data": SELECTORS["liquidity"]}, "latest"]
    assert batch[2]["params"][0] == {"to": cfg.aave_ausdc, "data": "0x18160ddd"}
    assert batch[3]["params"][0]["data"] == "0x18160ddd"
    assert batch[4]["params"][0] == {"to": cfg.compound_cusdc, "data": "0x182df0f5"}


async def test_full_batch_gives_healthy_snapshot():
    router = FakeRouter(batch_reply())
    snapshot = await _aggregator(router).refresh()

    assert len(router.calls) == 1
    assert snapshot.block_number == 16
    assert snapshot.updated_at == FIXED_NOW
    assert snapshot.protocols["uniswap_v3"].tvl_usd_approx == 5_000_000.0
    assert snapshot.protocols["aave"].tvl_usd_approx == 2_000_000.0
    assert snapshot.protocols["compound"].tvl_usd_approx == 10_000_000.0
    assert snapshot.degraded_ids() == []
    # первый прогон: дельта от нуля
    assert snapshot.protocols["uniswap_v3"].volume_usd_proxy == pytest.approx(5_000_000.0 * 0.25)


async def test_volume_proxy_is_weighted_delta_against_previous():
    router = FakeRouter(batch_reply(), batch_reply(aave=3 * 10**12))
    aggregator = _aggregator(router)

    await aggregator.refresh()
    second = await aggregator.refresh()

    assert second.protocols["aave"].volume_usd_proxy == pytest.approx(1_000_000.0 * 0.2)
    assert second.protocols["uniswap_v3"].volume_usd_proxy == 0.0
    assert second.protocols["compound"].volume_usd_proxy == 0.0


async def test_three_of_five_results_degrades_only_missing_sources():
    router = FakeRouter(batch_reply(), batch_reply(compound_supply=None, compound_rate=None))
    aggregator = _aggregator(router)
    first = await aggregator.refresh()

    second = await aggregator.refresh()

    assert second.protocols["uniswap_v3"].health == "ok"
    assert second.protocols["aave"].health == "ok"
    compound = second.protocols["compound"]
    assert compound.health == "degraded"
    assert compound.tvl_usd_approx == first.protocols["compound"].tvl_usd_approx
    assert compound.volume_usd_proxy == first.protocols["compound"].volume_usd_proxy
    assert "missing batch result id=4" in compound.note


async def test_error_entry_degrades_its_source():
    reply = batch_reply()
    reply[2] = {"jsonrpc": "2.0", "id": 3, "error": {"code": -32000, "message": "reverted"}}
    snapshot = await _aggregator(FakeRouter(reply)).refresh()

    assert snapshot.protocols["aave"].health == "degraded"
    assert snapshot.protocols["aave"].tvl_usd_approx == 0.0
    assert snapshot.protocols["uniswap_v3"].health == "ok"


async def test_zero_value_is_healthy():
    snapshot = await _aggregator(FakeRouter(batch_reply(uniswap=0))).refresh()

    uniswap = snapshot.protocols["uniswap_v3"]
    assert uniswap.tvl_usd_approx == 0.0
    assert uniswap.health == "ok"


async def test_all_endpoints_failed_degrades_everything():
    failure = AllEndpointsFailed({"http://a": "HTTP 500", "http://b": "timeout 4.0s"})
    aggregator = _aggregator(FakeRouter(failure))

    snapshot, race = await aggregator.load()

    assert set(snapshot.protocols) == {"uniswap_v3", "aave", "compound"}
    assert snapshot.degraded_ids() == ["uniswap_v3", "aave", "compound"]
    assert {m.note for m in snapshot.protocols.values()} == {BATCH_FAILED_NOTE}
    assert race is None


async def test_batch_failure_keeps_previous_values():
    failure = AllEndpointsFailed({"http://a": "HTTP 500"})
    aggregator = _aggregator(FakeRouter(batch_reply(), failure))
    first = await aggregator.refresh()

    second = await aggregator.refresh()

    assert second.block_number == first.block_number
    for pid, metrics in second.protocols.items():
        assert metrics.health == "degraded"
        assert metrics.tvl_usd_approx == first.protocols[pid].tvl_usd_approx


async def test_non_list_reply_is_treated_as_batch_failure():
    snapshot = await _aggregator(FakeRouter({"jsonrpc": "2.0", "id": 1, "result": "0x1"})).refresh()

    assert {m.note for m in snapshot.protocols.values()} == {BATCH_MALFORMED_NOTE}
    assert snapshot.degraded_ids() == ["uniswap_v3", "aave", "compound"]


async def test_block_number_failure_keeps_previous_block():
    router = FakeRouter(batch_reply(block=0x20), batch_reply(block=None))
    aggregator = _aggregator(router)
    await aggregator.refresh()

    second = await aggregator.refresh()

    assert second.block_number == 0x20
    assert second.degraded_ids() == []


async def test_same_inputs_give_same_snapshot():
    reply = batch_reply(aave=None)
    first = await _aggregator(FakeRouter(reply)).compute_snapshot(None)
    second = await _aggregator(FakeRouter(reply)).compute_snapshot(None)

    assert first.model_dump() == second.model_dump()


def test_get_snapshot_before_first_refresh_is_empty_but_complete():
    snapshot = _aggregator(FakeRouter(batch_reply())).get_snapshot()

    assert set(snapshot.protocols) == {"uniswap_v3", "aave", "compound"}
    assert all(m.health == "degraded" and m.note == NO_DATA_NOTE for m in snapshot.protocols.values())
    assert snapshot.block_number is None



async def test_load_returns_the_race_it_used():
    aggregator = _aggregator(FakeRouter(batch_reply()))

    snapshot, race = await aggregator.load()

    assert race is not None
    assert race.source_url == "http://fake-upstream/rpc"
    assert aggregator.get_snapshot() is snapshot


async def test_signed_hex_result_degrades_its_source():
    reply = batch_reply()
    reply[1] = {"jsonrpc": "2.0", "id": 2, "result": "0x-de0b6b3a7640000"}

    snapshot = await _aggregator(FakeRouter(reply)).refresh()

    uniswap = snapshot.protocols["uniswap_v3"]
    assert uniswap.health == "degraded"
    assert uniswap.tvl_usd_approx == 0.0
    assert "Невалидный hex" in uniswap.note
    assert snapshot.protocols["aave"].health == "ok"


async def test_explicit_previous_is_used_when_nothing_is_known():
    previous = await _aggregator(FakeRouter(batch_reply())).refresh()
    aggregator = _aggregator(FakeRouter(batch_reply(aave=None)))

    snapshot = await aggregator.refresh(previous)

    aave = snapshot.protocols["aave"]
    assert aave.health == "degraded"
    assert aave.tvl_usd_approx == 2_000_000.0
    assert snapshot.protocols["uniswap_v3"].volume_usd_proxy == 0.0


@pytest.mark.parametrize("served_from_durable_first", [True, False])
async def test_restart_keeps_values_of_degraded_source(clock, durable, served_from_durable_first):
    key = snapshot_cache_key(DefiSettings())
    first_process = TieredSnapshotCache(
        _aggregator(FakeRouter(batch_reply())).load, durable=durable, clock=clock
    )
    await first_process.get(key)

    # новый процесс: пустая память и пустой агрегатор, тот же durable
    second_process = TieredSnapshotCache(
        _aggregator(FakeRouter(batch_reply(aave=None))).load, durable=durable, clock=clock
    )
    clock.advance(5)
    if served_from_durable_first:
        assert (await second_process.get(key)).layer == "durable"
    lookup = await second_process.get(key, force_refresh=True)

    aave = lookup.snapshot.protocols["aave"]
    assert lookup.layer == "live"
    assert aave.health == "degraded"
    assert aave.tvl_usd_approx == 2_000_000.0
    assert lookup.snapshot.protocols["uniswap_v3"].volume_usd_proxy == 0.0
    assert lookup.race is not None


def test_cache_key_is_deterministic():
    cfg = DefiSettings()
    assert snapshot_cache_key(cfg) == (
        f"defi_v1_1_{cfg.uniswap_v3_pool}_{cfg.aave_ausdc}_{cfg.compound_cusdc}"
    )
    assert snapshot_cache_key(cfg) != snapshot_cache_key(DefiSettings(chain_id=5))
