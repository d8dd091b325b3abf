"""
Cache store backends.

Both backends expose the same coroutine surface:
find_latest_block_snapshot, append_block_snapshot, find_by_key, create,
upsert_by_key, health_check, plus start/stop for lifecycle.
"""

from shared.errors import ConfigurationError

from .models import BlockHeightSnapshot, CachedRecord, CallKey, RecordKind
from .memory import MemoryCacheStore
from .postgres import PostgresCacheStore

__all__ = [
    "BlockHeightSnapshot",
    "CachedRecord",
    "CallKey",
    "RecordKind",
    "MemoryCacheStore",
    "PostgresCacheStore",
    "create_store",
]


def create_store(backend: str, postgres_dsn: str):
    """Build the store named by ``backend`` (``postgres`` or ``memory``)."""
    if backend == "postgres":
        return PostgresCacheStore(postgres_dsn)
    if backend == "memory":
        return MemoryCacheStore()
    raise ConfigurationError(f"Unknown store backend: {backend}")
