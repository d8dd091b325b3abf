"""
Unit tests for the stale-while-revalidate resolver.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from fastapi import BackgroundTasks

from service_proxy.app.caching.resolver import RefreshOutcome, StaleWhileRevalidateResolver
from service_proxy.app.persistence.memory import MemoryCacheStore
from service_proxy.app.persistence.models import CachedRecord, CallKey, RecordKind
from shared.errors import NotFound, StoreError, UpstreamCallFailed
from shared.metrics import MetricsCollector


KEY = CallKey("getLoan", ("true", "5"))


class TestStaleWhileRevalidateResolver:
    """Test cases for StaleWhileRevalidateResolver."""

    @pytest.fixture
    def store(self):
        """Create an empty in-memory store."""
        return MemoryCacheStore()

    @pytest.fixture
    def metrics(self):
        """Create a metrics collector with its own registry."""
        return MetricsCollector("proxy")

    @pytest.fixture
    def resolver(self, store, metrics):
        """Create resolver instance."""
        return StaleWhileRevalidateResolver(store, metrics=metrics)

    @pytest.fixture
    def background_tasks(self):
        return BackgroundTasks()

    async def _seed(self, store, value: str):
        await store.create(RecordKind.FUNCTION_CALL, CachedRecord(key=KEY, value=value))

    @pytest.mark.asyncio
    async def test_hit_returns_before_invoking(self, resolver, store, background_tasks):
        """A hit answers from the store and defers the chain call."""
        await self._seed(store, "7")
        invoke = AsyncMock(return_value="7")

        value = await resolver.resolve(RecordKind.FUNCTION_CALL, KEY, invoke, background_tasks)

        assert value == "7"
        invoke.assert_not_awaited()
        assert len(background_tasks.tasks) == 1

        await background_tasks()

        invoke.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_miss_populates_store(self, resolver, store, background_tasks):
        """A miss fetches synchronously and stores the value."""
        invoke = AsyncMock(return_value="42")

        value = await resolver.resolve(RecordKind.FUNCTION_CALL, KEY, invoke, background_tasks)

        assert value == "42"
        invoke.assert_awaited_once()
        record = await store.find_by_key(RecordKind.FUNCTION_CALL, KEY)
        assert record.value == "42"
        assert background_tasks.tasks == []

    @pytest.mark.asyncio
    async def test_miss_result_is_stringified(self, resolver, store, background_tasks):
        invoke = AsyncMock(return_value=1000000)

        value = await resolver.resolve(RecordKind.CONSTANT, CallKey("totalSupply"), invoke, background_tasks)

        assert value == "1000000"

    @pytest.mark.asyncio
    async def test_refresh_after_miss_is_opt_in(self, store, background_tasks):
        """The post-miss refresh only runs when enabled."""
        resolver = StaleWhileRevalidateResolver(store, refresh_after_miss=True)
        invoke = AsyncMock(return_value="42")

        await resolver.resolve(RecordKind.FUNCTION_CALL, KEY, invoke, background_tasks)
        assert len(background_tasks.tasks) == 1

        await background_tasks()

        assert invoke.await_count == 2

    @pytest.mark.asyncio
    async def test_background_refresh_updates_changed_value(self, resolver, store, background_tasks):
        await self._seed(store, "1")
        invoke = AsyncMock(return_value="2")

        value = await resolver.resolve(RecordKind.FUNCTION_CALL, KEY, invoke, background_tasks)
        assert value == "1"

        await background_tasks()

        record = await store.find_by_key(RecordKind.FUNCTION_CALL, KEY)
        assert record.value == "2"

    @pytest.mark.asyncio
    async def test_background_refresh_bumps_timestamp_on_change(self, resolver, store):
        await self._seed(store, "1")
        before = (await store.find_by_key(RecordKind.FUNCTION_CALL, KEY)).updated_at

        outcome = await resolver.refresh(RecordKind.FUNCTION_CALL, KEY, AsyncMock(return_value="2"), "1")

        assert outcome == RefreshOutcome.UPDATED
        after = (await store.find_by_key(RecordKind.FUNCTION_CALL, KEY)).updated_at
        assert after >= before

    @pytest.mark.asyncio
    async def test_unchanged_value_is_not_written(self, resolver, store):
        await self._seed(store, "1")
        store.upsert_by_key = AsyncMock()

        outcome = await resolver.refresh(RecordKind.FUNCTION_CALL, KEY, AsyncMock(return_value="1"), "1")

        assert outcome == RefreshOutcome.UNCHANGED
        store.upsert_by_key.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_background_failure_is_invisible(self, resolver, store, background_tasks):
        """A failing refresh neither raises nor touches the stored value."""
        await self._seed(store, "1")
        invoke = AsyncMock(side_effect=RuntimeError("execution reverted"))

        value = await resolver.resolve(RecordKind.FUNCTION_CALL, KEY, invoke, background_tasks)
        await background_tasks()

        assert value == "1"
        record = await store.find_by_key(RecordKind.FUNCTION_CALL, KEY)
        assert record.value == "1"

    @pytest.mark.asyncio
    async def test_background_write_failure_is_swallowed(self, resolver, store):
        await self._seed(store, "1")
        store.upsert_by_key = AsyncMock(side_effect=StoreError("connection reset"))

        outcome = await resolver.refresh(RecordKind.FUNCTION_CALL, KEY, AsyncMock(return_value="2"), "1")

        assert outcome == RefreshOutcome.FAILED

    @pytest.mark.asyncio
    async def test_miss_failure_raises_upstream_error_without_write(self, resolver, store, background_tasks):
        invoke = AsyncMock(side_effect=RuntimeError("execution reverted"))

        with pytest.raises(UpstreamCallFailed) as exc_info:
            await resolver.resolve(RecordKind.FUNCTION_CALL, KEY, invoke, background_tasks)

        assert "execution reverted" in exc_info.value.message
        assert await store.find_by_key(RecordKind.FUNCTION_CALL, KEY) is None
        assert store.record_count() == 0

    @pytest.mark.asyncio
    async def test_proxy_errors_from_invoke_pass_through(self, resolver):
        invoke = AsyncMock(side_effect=NotFound("Function does not exist in the contract"))

        with pytest.raises(NotFound):
            await resolver.resolve(RecordKind.FUNCTION_CALL, KEY, invoke)

    @pytest.mark.asyncio
    async def test_miss_write_failure_raises_store_error(self, resolver, store):
        store.create = AsyncMock(side_effect=StoreError("disk full"))

        with pytest.raises(StoreError):
            await resolver.resolve(RecordKind.FUNCTION_CALL, KEY, AsyncMock(return_value="42"))

    @pytest.mark.asyncio
    async def test_store_read_failure_raises_store_error(self, resolver, store):
        store.find_by_key = AsyncMock(side_effect=StoreError("connection refused"))
        invoke = AsyncMock(return_value="42")

        with pytest.raises(StoreError):
            await resolver.resolve(RecordKind.FUNCTION_CALL, KEY, invoke)

        invoke.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_call(self, resolver, store):
        """Single-flight: concurrent misses for a key hit the chain once."""
        release = asyncio.Event()
        calls = []

        async def invoke():
            calls.append(1)
            await release.wait()
            return "42"

        first = asyncio.create_task(resolver.resolve(RecordKind.FUNCTION_CALL, KEY, invoke))
        second = asyncio.create_task(resolver.resolve(RecordKind.FUNCTION_CALL, KEY, invoke))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        release.set()

        assert await asyncio.gather(first, second) == ["42", "42"]
        assert len(calls) == 1
        assert store.record_count() == 1

    @pytest.mark.asyncio
    async def test_concurrent_miss_failure_reaches_every_waiter(self, resolver):
        release = asyncio.Event()

        async def invoke():
            await release.wait()
            raise RuntimeError("timeout")

        first = asyncio.create_task(resolver.resolve(RecordKind.FUNCTION_CALL, KEY, invoke))
        second = asyncio.create_task(resolver.resolve(RecordKind.FUNCTION_CALL, KEY, invoke))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        release.set()

        results = await asyncio.gather(first, second, return_exceptions=True)

        assert all(isinstance(result, UpstreamCallFailed) for result in results)

    @pytest.mark.asyncio
    async def test_cancelled_first_caller_does_not_cancel_waiters(self, resolver, store):
        """A waiter whose shared fetch was cancelled fetches on its own."""
        release = asyncio.Event()
        calls = []

        async def invoke():
            calls.append(1)
            await release.wait()
            return "42"

        first = asyncio.create_task(resolver.resolve(RecordKind.FUNCTION_CALL, KEY, invoke))
        second = asyncio.create_task(resolver.resolve(RecordKind.FUNCTION_CALL, KEY, invoke))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        await asyncio.sleep(0)
        release.set()

        assert await second == "42"
        assert len(calls) == 2
        assert (await store.find_by_key(RecordKind.FUNCTION_CALL, KEY)).value == "42"

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_shared_fetch_running(self, resolver):
        release = asyncio.Event()

        async def invoke():
            await release.wait()
            return "42"

        first = asyncio.create_task(resolver.resolve(RecordKind.FUNCTION_CALL, KEY, invoke))
        second = asyncio.create_task(resolver.resolve(RecordKind.FUNCTION_CALL, KEY, invoke))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        second.cancel()
        with pytest.raises(asyncio.CancelledError):
            await second
        release.set()

        assert await first == "42"

    @pytest.mark.asyncio
    async def test_overlapping_refresh_is_skipped(self, resolver, store):
        await self._seed(store, "1")
        release = asyncio.Event()

        async def slow_invoke():
            await release.wait()
            return "2"

        running = asyncio.create_task(resolver.refresh(RecordKind.FUNCTION_CALL, KEY, slow_invoke, "1"))
        await asyncio.sleep(0)

        skipped = await resolver.refresh(RecordKind.FUNCTION_CALL, KEY, AsyncMock(return_value="3"), "1")
        release.set()

        assert skipped == RefreshOutcome.SKIPPED
        assert await running == RefreshOutcome.UPDATED

    @pytest.mark.asyncio
    async def test_refresh_without_background_tasks_is_detached(self, resolver, store):
        await self._seed(store, "1")

        value = await resolver.resolve(RecordKind.FUNCTION_CALL, KEY, AsyncMock(return_value="2"))
        await resolver.drain()

        assert value == "1"
        record = await store.find_by_key(RecordKind.FUNCTION_CALL, KEY)
        assert record.value == "2"

    @pytest.mark.asyncio
    async def test_lookups_and_refreshes_are_counted(self, resolver, store, metrics, background_tasks):
        await resolver.resolve(RecordKind.CONSTANT, CallKey("owner"), AsyncMock(return_value="0xabc"), background_tasks)
        await resolver.resolve(RecordKind.CONSTANT, CallKey("owner"), AsyncMock(return_value="0xabc"), background_tasks)
        await background_tasks()

        registry = metrics.registry
        assert registry.get_sample_value("cache_lookups_total", {"kind": "constant", "outcome": "miss"}) == 1.0
        assert registry.get_sample_value("cache_lookups_total", {"kind": "constant", "outcome": "hit"}) == 1.0
        assert registry.get_sample_value("cache_refreshes_total", {"kind": "constant", "outcome": "unchanged"}) == 1.0
