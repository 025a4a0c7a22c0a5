"""Durable-уровень кеша снапшотов (backend=sql)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SnapshotCacheEntry(SQLModel, table=True):
    """Одна строка на ключ кеша; ``value``: JSON-конверт ``{expires_at, payload}``."""

    __tablename__ = "snapshot_cache"

    id: Optional[int] = Field(default=None, primary_key=True)
    key: str = Field(max_length=255, unique=True, index=True)
    value: str = Field(default="", sa_column=Column(Text, nullable=False))
    expires_at: float = Field(default=0.0, description="Нативный TTL хранилища (epoch seconds)")
    created_at: datetime = Field(default_factory=_now, nullable=False)
    updated_at: datetime = Field(default_factory=_now, nullable=False)

    def refresh_value(self, value: str, expires_at: float) -> None:
        self.value = value
        self.expires_at = expires_at
        self.updated_at = _now()


__all__ = ["SnapshotCacheEntry"]
