"""
PostgreSQL cache store for the contract read proxy.
"""

import asyncio
from typing import Dict, Optional

import asyncpg

from shared.logging import get_logger
from shared.errors import StoreError
from .models import BlockHeightSnapshot, CachedRecord, CallKey, RecordKind, utcnow


_TABLES: Dict[RecordKind, str] = {
    RecordKind.CONSTANT: "constant_values",
    RecordKind.FUNCTION_CALL: "function_results",
}

_STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class PostgresCacheStore:
    """PostgreSQL persistence for cached contract reads and block snapshots.

    Every operation is an independent statement; read-then-write sequences
    issued by callers are not wrapped in a transaction.
    """

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.logger = get_logger("proxy.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=30
            )

            await self._create_tables()

            self.logger.info("PostgreSQL cache store started")

        except _STORE_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL cache store", error=str(e))
            raise StoreError(f"Failed to start cache store: {e}")

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL cache store stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS block_snapshots (
                    id BIGSERIAL PRIMARY KEY,
                    height BIGINT NOT NULL,
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_block_snapshots_updated_at
                ON block_snapshots(updated_at DESC);
            """)

            for table in _TABLES.values():
                await conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        name TEXT NOT NULL,
                        args TEXT[] NOT NULL DEFAULT '{{}}',
                        value TEXT NOT NULL,
                        updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                        PRIMARY KEY (name, args)
                    );
                """)

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise StoreError("Cache store is not started")
        return self.pool

    async def find_latest_block_snapshot(self) -> Optional[BlockHeightSnapshot]:
        """Return the snapshot with the greatest ``updated_at``."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow("""
                    SELECT height, updated_at FROM block_snapshots
                    ORDER BY updated_at DESC, id DESC
                    LIMIT 1
                """)
        except _STORE_ERRORS as e:
            self.logger.error("Error loading latest block snapshot", error=str(e))
            raise StoreError(f"Failed to read block snapshot: {e}")

        if row is None:
            return None
        return BlockHeightSnapshot(height=row["height"], updated_at=row["updated_at"])

    async def append_block_snapshot(self, height: int) -> BlockHeightSnapshot:
        """Insert a new snapshot row."""
        snapshot = BlockHeightSnapshot(height=height)
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute("""
                    INSERT INTO block_snapshots (height, updated_at) VALUES ($1, $2)
                """, snapshot.height, snapshot.updated_at)
        except _STORE_ERRORS as e:
            self.logger.error("Error saving block snapshot", height=height, error=str(e))
            raise StoreError(f"Failed to write block snapshot: {e}")

        return snapshot

    async def find_by_key(self, kind: RecordKind, key: CallKey) -> Optional[CachedRecord]:
        """Load the record stored for ``key``."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(f"""
                    SELECT value, updated_at FROM {_TABLES[kind]}
                    WHERE name = $1 AND args = $2
                """, key.name, list(key.args))
        except _STORE_ERRORS as e:
            self.logger.error("Error loading cached record", kind=kind.value, key=str(key), error=str(e))
            raise StoreError(f"Failed to read cached value for {key}: {e}")

        if row is None:
            return None
        return CachedRecord(key=key, value=row["value"], updated_at=row["updated_at"])

    async def create(self, kind: RecordKind, record: CachedRecord) -> CachedRecord:
        """Insert a record; a concurrent insert for the same key is overwritten."""
        await self._write(kind, record)
        return record

    async def upsert_by_key(self, kind: RecordKind, key: CallKey, value: str) -> CachedRecord:
        """Replace the stored value for ``key`` with a fresh timestamp."""
        record = CachedRecord(key=key, value=value, updated_at=utcnow())
        await self._write(kind, record)
        return record

    async def _write(self, kind: RecordKind, record: CachedRecord):
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(f"""
                    INSERT INTO {_TABLES[kind]} (name, args, value, updated_at)
                    VALUES ($1, $2, $3, $4)
                    ON CONFLICT (name, args) DO UPDATE SET
                        value = EXCLUDED.value,
                        updated_at = EXCLUDED.updated_at
                """, record.key.name, list(record.key.args), record.value, record.updated_at)
        except _STORE_ERRORS as e:
            self.logger.error("Error saving cached record", kind=kind.value, key=str(record.key), error=str(e))
            raise StoreError(f"Failed to write cached value for {record.key}: {e}")

        self.logger.debug("Cached record saved", kind=kind.value, key=str(record.key))

    async def health_check(self) -> bool:
        """Check database health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except _STORE_ERRORS:
            return False
