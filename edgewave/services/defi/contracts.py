"""Таблица источников: адреса, 4-байтовые селекторы, масштабы и веса."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from config.settings import DefiSettings

# keccak256(signature)[:4], посчитаны заранее
SELECTORS = {
    "totalSupply": "0x18160ddd",
    "exchangeRateStored": "0x182df0f5",
    "liquidity": "0x1a686502",
}

BLOCK_NUMBER_ID = 1


@dataclass(slots=True, frozen=True)
class ContractRead:
    """Один eth_call: адрес + селектор."""

    to: str
    selector: str

    def as_params(self) -> list[Any]:
        return [{"to": self.to, "data": SELECTORS[self.selector]}, "latest"]


@dataclass(slots=True, frozen=True)
class ProtocolSource:
    """Описание источника и того, как из сырых чисел получить TVL-сигнал."""

    protocol_id: str
    reads: tuple[ContractRead, ...]
    combine: Callable[[list[int]], int]
    scale: int
    weight: float
    note: str
    failure_note: str


def _single(values: list[int]) -> int:
    return values[0]


def _underlying(values: list[int]) -> int:
    # totalSupply * exchangeRateStored / 1e18
    total_supply, exchange_rate = values
    return total_supply * exchange_rate // 10**18


def build_sources(cfg: DefiSettings) -> tuple[ProtocolSource, ...]:
    return (
        ProtocolSource(
            protocol_id="uniswap_v3",
            reads=(ContractRead(cfg.uniswap_v3_pool, "liquidity"),),
            combine=_single,
            scale=10**12,
            weight=0.25,
            note="tvl_usd_approx derived from pool.liquidity() (proxy signal)",
            failure_note="Uniswap V3 signal unavailable",
        ),
        ProtocolSource(
            protocol_id="aave",
            reads=(ContractRead(cfg.aave_ausdc, "totalSupply"),),
            combine=_single,
            scale=10**6,
            weight=0.2,
            note="tvl_usd_approx derived from aUSDC.totalSupply() (proxy signal)",
            failure_note="Aave signal unavailable (check aUSDC address)",
        ),
        ProtocolSource(
            protocol_id="compound",
            reads=(
                ContractRead(cfg.compound_cusdc, "totalSupply"),
                ContractRead(cfg.compound_cusdc, "exchangeRateStored"),
            ),
            combine=_underlying,
            scale=10**6,
            weight=0.15,
            note="tvl_usd_approx derived from cUSDC.totalSupply()*exchangeRateStored() (proxy signal)",
            failure_note="Compound signal unavailable",
        ),
    )


def snapshot_cache_key(cfg: DefiSettings) -> str:
    """Детерминированный ключ, одинаковый для всех уровней кеша."""

    return f"defi_v1_{cfg.chain_id}_{cfg.uniswap_v3_pool}_{cfg.aave_ausdc}_{cfg.compound_cusdc}"


__all__ = [
    "BLOCK_NUMBER_ID",
    "ContractRead",
    "ProtocolSource",
    "SELECTORS",
    "build_sources",
    "snapshot_cache_key",
]
