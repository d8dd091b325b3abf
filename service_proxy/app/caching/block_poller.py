"""
Periodic block height poller.
"""

import asyncio
from enum import Enum
from typing import Optional, TYPE_CHECKING

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class PollOutcome(str, Enum):
    """Result of one poller tick."""

    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILED = "failed"


class BlockHeightPoller:
    """Appends a block height snapshot whenever the chain height changes.

    Runs on a fixed interval regardless of request traffic. A failed tick is
    logged and the loop carries on with the next one.
    """

    def __init__(
        self,
        gateway,
        store,
        *,
        interval_seconds: float = 10.0,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.gateway = gateway
        self.store = store
        self.interval_seconds = interval_seconds
        self.metrics = metrics
        self.logger = get_logger("proxy.block_poller")

        self.poll_task: Optional[asyncio.Task] = None
        self.running = False

    async def start(self):
        """Start the polling loop."""
        self.running = True
        self.poll_task = asyncio.create_task(self._poll_loop())
        self.logger.info("Block height poller started", interval=self.interval_seconds)

    async def stop(self):
        """Stop the polling loop."""
        self.running = False
        if self.poll_task:
            self.poll_task.cancel()
            try:
                await self.poll_task
            except asyncio.CancelledError:
                pass
            self.poll_task = None

        self.logger.info("Block height poller stopped")

    async def _poll_loop(self):
        while self.running:
            await self.tick()
            await asyncio.sleep(self.interval_seconds)

    async def tick(self) -> PollOutcome:
        """Fetch the current height and store it if it moved."""
        try:
            height = await self.gateway.get_block_height()
            latest = await self.store.find_latest_block_snapshot()

            if latest is not None and latest.height == height:
                self.logger.debug("Block height is up-to-date", height=height)
                return self._finish(PollOutcome.UNCHANGED)

            await self.store.append_block_snapshot(height)
            self.logger.info(
                "Block height updated",
                height=height,
                previous=latest.height if latest else None,
            )
            return self._finish(PollOutcome.UPDATED)

        except Exception as e:
            self.logger.error("Error fetching or updating block height", error=str(e))
            return self._finish(PollOutcome.FAILED)

    def _finish(self, outcome: PollOutcome) -> PollOutcome:
        if self.metrics:
            self.metrics.increment_counter("block_poll_ticks_total", outcome=outcome.value)
        return outcome
