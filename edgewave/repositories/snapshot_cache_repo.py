"""Работа с таблицей snapshot_cache."""

from __future__ import annotations

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from edgewave.models import SnapshotCacheEntry


async def get_snapshot_entry(session: AsyncSession, key: str) -> SnapshotCacheEntry | None:
    stmt = select(SnapshotCacheEntry).where(SnapshotCacheEntry.key == key)
    return (await session.exec(stmt)).one_or_none()


async def upsert_snapshot_entry(
    session: AsyncSession,
    key: str,
    value: str,
    expires_at: float,
) -> SnapshotCacheEntry:
    entry = await get_snapshot_entry(session, key)
    if entry is None:
        entry = SnapshotCacheEntry(key=key, value=value, expires_at=expires_at)
    else:
        entry.refresh_value(value, expires_at)
    session.add(entry)
    await session.commit()
    await session.refresh(entry)
    return entry


__all__ = ["get_snapshot_entry", "upsert_snapshot_entry"]
