"""Репозитории для работы с БД."""

from .snapshot_cache_repo import get_snapshot_entry, upsert_snapshot_entry

__all__ = [
    "get_snapshot_entry",
    "upsert_snapshot_entry",
]
