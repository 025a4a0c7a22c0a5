"""Глобальные настройки EdgeWave Gateway.

Настройки разделены по доменам (RPC, кеш, БД, DeFi-источники, HTTP),
все значения читаются из переменных окружения через Pydantic Settings.
У каждого поля есть значение по умолчанию, поэтому сервис стартует без .env.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    Field,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent
ACCESSIBLE_ENV_FILE = BASE_DIR / "config" / "runtime.env"
DEFAULT_ENV_FILE = BASE_DIR / ".env"
ENV_FILE = ACCESSIBLE_ENV_FILE if ACCESSIBLE_ENV_FILE.exists() else DEFAULT_ENV_FILE

DEFAULT_RPC_ENDPOINTS = [
    "https://cloudflare-eth.com",
    "https://eth.llamarpc.com",
    "https://rpc.ankr.com/eth",
]


class RpcSettings(BaseModel):
    """Публичные JSON-RPC эндпоинты, между которыми идёт гонка."""

    endpoints: list[AnyHttpUrl] = Field(
        default_factory=lambda: list(DEFAULT_RPC_ENDPOINTS),
        validate_default=True,
        description="Упорядоченный список апстримов (порядок не влияет на выбор)",
    )
    infura_api_key: SecretStr | None = Field(
        None, description="Если задан, первый эндпоинт заменяется на Infura"
    )
    alchemy_api_key: SecretStr | None = Field(
        None, description="Если задан, второй эндпоинт заменяется на Alchemy"
    )
    attempt_timeout_ms: PositiveInt = 4_000

    @field_validator("endpoints", mode="before")
    @classmethod
    def _split_csv(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("infura_api_key", "alchemy_api_key", mode="before")
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def resolved_endpoints(self) -> list[str]:
        """Итоговый список URL с учётом ключей Infura/Alchemy."""

        urls = [str(url).rstrip("/") for url in self.endpoints]
        if self.infura_api_key is not None:
            keyed = f"https://mainnet.infura.io/v3/{self.infura_api_key.get_secret_value()}"
            urls = [keyed, *urls[1:]] if urls else [keyed]
        if self.alchemy_api_key is not None:
            keyed = f"https://eth-mainnet.g.alchemy.com/v2/{self.alchemy_api_key.get_secret_value()}"
            if len(urls) >= 2:
                urls[1] = keyed
            else:
                urls.append(keyed)
        return urls

    @property
    def attempt_timeout(self) -> float:
        return self.attempt_timeout_ms / 1000


class CacheSettings(BaseModel):
    """Настройки трёхуровневого кеша (memory → durable → live)."""

    ttl_seconds: PositiveFloat = 30.0
    durable_backend: Literal["none", "redis", "sql"] = "none"
    redis_dsn: str | None = None
    namespace: str = "edgewave"


class DatabaseSettings(BaseModel):
    """SQLModel + aiosqlite для durable-уровня кеша (backend=sql)."""

    dsn: str = Field(
        "sqlite+aiosqlite:///./edgewave.db",
        description="Строка подключения SQLAlchemy/SQLModel",
    )
    echo: bool = False


class DefiSettings(BaseModel):
    """Контракты-представители протоколов (Ethereum mainnet по умолчанию)."""

    chain_id: int = 1
    # Uniswap V3 USDC/WETH 0.05%
    uniswap_v3_pool: str = "0x88e6A0c2dDD26FEEb64F039a2c41296FcB3f5640"
    # Aave v3 aEthUSDC
    aave_ausdc: str = "0x98C23E9d8f34FEFb1B7BD6a91B7FF122F4e16F5c"
    # Compound v2 cUSDC
    compound_cusdc: str = "0x39AA39c021dfbaE8faC545936693aC917d5E7563"
    refresh_interval_sec: int = Field(
        0, ge=0, description="Фоновое обновление снапшота; 0: только по запросу"
    )


class WebSettings(BaseModel):
    """HTTP-поверхность (FastAPI + uvicorn)."""

    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    stream_delay_ms: int = Field(20, ge=0)


class AppSettings(BaseSettings):
    """Главный контейнер настроек EdgeWave."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: Literal["dev", "prod"] = "dev"
    log_json: bool = False
    rpc: RpcSettings = RpcSettings()
    cache: CacheSettings = CacheSettings()
    database: DatabaseSettings = DatabaseSettings()
    defi: DefiSettings = DefiSettings()
    web: WebSettings = WebSettings()

    @property
    def is_production(self) -> bool:
        """True, если сервис запущен в продовой среде."""

        return self.environment == "prod"


# Ленивый синглтон (избегаем глобальных переменных в модулях).
_settings: AppSettings | None = None


def get_settings() -> AppSettings:
    """Возвращает единый экземпляр настроек.

    Значения кэшируются, поэтому .env читается ровно один раз за процесс.
    """

    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


__all__ = [
    "AppSettings",
    "CacheSettings",
    "DatabaseSettings",
    "DefiSettings",
    "RpcSettings",
    "WebSettings",
    "get_settings",
]
