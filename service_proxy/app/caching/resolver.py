"""
Stale-while-revalidate resolution of cached contract reads.
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple, TYPE_CHECKING

from fastapi import BackgroundTasks

from shared.logging import get_logger
from shared.errors import ProxyException, UpstreamCallFailed
from service_proxy.app.persistence.models import CachedRecord, CallKey, RecordKind

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

Invoke = Callable[[], Awaitable[Any]]
_Slot = Tuple[RecordKind, CallKey]


class RefreshOutcome(str, Enum):
    """Result of one background refresh."""

    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    SKIPPED = "skipped"


class StaleWhileRevalidateResolver:
    """Serves cached contract reads and refreshes them after the response.

    A hit returns the stored value and schedules one re-invocation; if the
    chain now returns something different the record is overwritten. A miss
    invokes synchronously and stores the result before returning it.

    Concurrent misses for the same key share one in-flight invocation, and a
    key never has more than one background refresh running at a time. This
    holds per process only; separate processes writing to the same store
    still race, and the last write wins.
    """

    def __init__(
        self,
        store,
        *,
        metrics: Optional["MetricsCollector"] = None,
        refresh_after_miss: bool = False,
    ):
        self.store = store
        self.metrics = metrics
        self.refresh_after_miss = refresh_after_miss
        self.logger = get_logger("proxy.resolver")

        self._inflight: Dict[_Slot, asyncio.Future] = {}
        self._refreshing: Set[_Slot] = set()
        self._background: Set[asyncio.Task] = set()

    async def resolve(
        self,
        kind: RecordKind,
        key: CallKey,
        invoke: Invoke,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> str:
        """Return the value for ``key``, scheduling a refresh for after the response.

        With ``background_tasks`` the refresh runs once the response has been
        sent; without it, it is started as a detached task.

        Raises:
            UpstreamCallFailed: the key was not cached and ``invoke`` failed.
            StoreError: the store could not be read, or the fetched value
                could not be written.
        """
        record = await self.store.find_by_key(kind, key)

        if record is not None:
            self._count_lookup(kind, "hit")
            self.logger.debug("Cache hit", kind=kind.value, key=str(key))
            self._schedule_refresh(kind, key, invoke, record.value, background_tasks)
            return record.value

        self._count_lookup(kind, "miss")
        self.logger.debug("Cache miss", kind=kind.value, key=str(key))
        value = await self._populate(kind, key, invoke)

        if self.refresh_after_miss:
            self._schedule_refresh(kind, key, invoke, value, background_tasks)
        return value

    async def _populate(self, kind: RecordKind, key: CallKey, invoke: Invoke) -> str:
        slot = (kind, key)
        while True:
            pending = self._inflight.get(slot)
            if pending is None:
                break
            self.logger.debug("Joining in-flight fetch", kind=kind.value, key=str(key))
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                # shield keeps ``pending`` alive when only this waiter is cancelled
                if not pending.cancelled():
                    raise
                self.logger.debug("In-flight fetch was cancelled, fetching again", kind=kind.value, key=str(key))

        future = asyncio.get_running_loop().create_future()
        self._inflight[slot] = future
        try:
            value = await self._fetch(key, invoke)
            await self.store.create(kind, CachedRecord(key=key, value=value))
        except Exception as exc:
            future.set_exception(exc)
            # waiters re-raise it; mark retrieved so a lone caller does not warn
            future.exception()
            raise
        else:
            future.set_result(value)
            self.logger.info("Fetched from chain and stored", kind=kind.value, key=str(key))
            return value
        finally:
            self._inflight.pop(slot, None)
            if not future.done():
                future.cancel()

    async def _fetch(self, key: CallKey, invoke: Invoke) -> str:
        try:
            result = await invoke()
        except ProxyException:
            raise
        except Exception as exc:
            raise UpstreamCallFailed(str(exc) or type(exc).__name__, details={"key": str(key)}) from exc
        return str(result)

    def _schedule_refresh(
        self,
        kind: RecordKind,
        key: CallKey,
        invoke: Invoke,
        known_value: str,
        background_tasks: Optional[BackgroundTasks],
    ) -> None:
        if background_tasks is not None:
            background_tasks.add_task(self.refresh, kind, key, invoke, known_value)
            return

        task = asyncio.create_task(self.refresh(kind, key, invoke, known_value))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def refresh(self, kind: RecordKind, key: CallKey, invoke: Invoke, known_value: str) -> RefreshOutcome:
        """Re-invoke and overwrite the record if the chain value moved.

        Never raises; failures are logged and reported as ``FAILED``.
        """
        slot = (kind, key)
        if slot in self._refreshing:
            return self._finish_refresh(kind, key, RefreshOutcome.SKIPPED)

        self._refreshing.add(slot)
        try:
            try:
                value = str(await invoke())
            except Exception as exc:
                self.logger.warning("Background refresh call failed", kind=kind.value, key=str(key), error=str(exc))
                return self._finish_refresh(kind, key, RefreshOutcome.FAILED)

            if value == known_value:
                return self._finish_refresh(kind, key, RefreshOutcome.UNCHANGED)

            try:
                await self.store.upsert_by_key(kind, key, value)
            except Exception as exc:
                self.logger.warning("Background refresh write failed", kind=kind.value, key=str(key), error=str(exc))
                return self._finish_refresh(kind, key, RefreshOutcome.FAILED)

            self.logger.info("Cached value updated", kind=kind.value, key=str(key))
            return self._finish_refresh(kind, key, RefreshOutcome.UPDATED)
        finally:
            self._refreshing.discard(slot)

    def _finish_refresh(self, kind: RecordKind, key: CallKey, outcome: RefreshOutcome) -> RefreshOutcome:
        self.logger.debug("Background refresh finished", kind=kind.value, key=str(key), outcome=outcome.value)
        if self.metrics:
            self.metrics.increment_counter("cache_refreshes_total", kind=kind.value, outcome=outcome.value)
        return outcome

    def _count_lookup(self, kind: RecordKind, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_lookups_total", kind=kind.value, outcome=outcome)

    async def drain(self) -> None:
        """Wait for detached refresh tasks to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
