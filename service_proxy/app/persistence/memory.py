"""
In-process cache store, for local runs without PostgreSQL.
"""

from typing import Dict, List, Optional, Tuple

from shared.logging import get_logger
from .models import BlockHeightSnapshot, CachedRecord, CallKey, RecordKind, utcnow


class MemoryCacheStore:
    """Dictionary-backed store with the same surface as ``PostgresCacheStore``.

    Contents are lost when the process exits.
    """

    def __init__(self):
        self.logger = get_logger("proxy.persistence.memory")
        self._records: Dict[Tuple[RecordKind, CallKey], CachedRecord] = {}
        self._snapshots: List[BlockHeightSnapshot] = []

    async def start(self):
        self.logger.info("Memory cache store started")

    async def stop(self):
        self.logger.info("Memory cache store stopped")

    async def find_latest_block_snapshot(self) -> Optional[BlockHeightSnapshot]:
        if not self._snapshots:
            return None
        # max() keeps the first of equal timestamps, so scan newest-first
        return max(reversed(self._snapshots), key=lambda s: s.updated_at)

    async def append_block_snapshot(self, height: int) -> BlockHeightSnapshot:
        snapshot = BlockHeightSnapshot(height=height)
        self._snapshots.append(snapshot)
        return snapshot

    async def find_by_key(self, kind: RecordKind, key: CallKey) -> Optional[CachedRecord]:
        return self._records.get((kind, key))

    async def create(self, kind: RecordKind, record: CachedRecord) -> CachedRecord:
        self._records[(kind, record.key)] = record
        return record

    async def upsert_by_key(self, kind: RecordKind, key: CallKey, value: str) -> CachedRecord:
        record = self._records.get((kind, key))
        if record is None:
            record = CachedRecord(key=key, value=value)
            self._records[(kind, key)] = record
        else:
            record.value = value
            record.updated_at = utcnow()
        return record

    async def health_check(self) -> bool:
        return True

    def snapshot_count(self) -> int:
        """Number of block snapshots appended so far."""
        return len(self._snapshots)

    def record_count(self, kind: Optional[RecordKind] = None) -> int:
        """Number of cached records, optionally of one kind."""
        if kind is None:
            return len(self._records)
        return sum(1 for record_kind, _ in self._records if record_kind == kind)
