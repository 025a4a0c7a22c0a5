"""SQLModel сущности EdgeWave."""

from .snapshot_cache import SnapshotCacheEntry  # noqa: F401

__all__ = ["SnapshotCacheEntry"]
