"""
sync/synchronizer.py - Polling loop + live channel feeding one collection.

Both paths write through BlockCollection.apply(). Pushed records are
normalized the same way the pipeline does it and cached only on a miss,
so a copy already cached by a poll is kept.

stop() tears down the poll timer and the live channel. A fetch already
in flight is left to finish and may apply its result once more. A tick
that comes due while an earlier poll is still in flight is skipped.
"""

import asyncio
from typing import Optional

from core.constants import DEFAULT_POLL_INTERVAL_SECONDS
from core.exceptions import BlockflowError, FetchError
from core.logging import get_logger
from core.models import Block, normalize_block
from sync.collection import BlockCollection
from sync.live import LiveUpdateChannel, Subscription
from sync.pipeline import FetchPipeline, FetchReport

logger = get_logger(__name__)


class BlockSynchronizer:
    """Keeps a BlockCollection current from polling and push."""

    def __init__(
        self,
        pipeline: FetchPipeline,
        collection: BlockCollection,
        channel: Optional[LiveUpdateChannel] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        fetch_count: Optional[int] = None,
    ):
        self.pipeline = pipeline
        self.collection = collection
        self.channel = channel
        self.poll_interval = poll_interval
        self.fetch_count = fetch_count

        self._poll_task: Optional[asyncio.Task] = None
        self._inflight: set[asyncio.Task] = set()
        self._subscription: Optional[Subscription] = None
        self.polls_completed = 0
        self.pushed_blocks = 0
        self.polls_skipped = 0

    @property
    def running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def poll_once(self) -> FetchReport:
        """One bulk fetch merged into the collection."""
        report = await self.pipeline.fetch_latest_report(self.fetch_count)
        if report.total_failure:
            error = FetchError(
                f"Failed to fetch blocks: {report.failures[-1].error}",
                report=report,
                details=report.to_dict(),
            )
            self.collection.record_failure(error)
            logger.error(str(error), extra={"context": report.to_dict()})
        else:
            self.collection.record_success()
            self.collection.apply(report.blocks)
        self.polls_completed += 1
        return report

    def handle_pushed_block(self, raw: dict) -> Optional[Block]:
        """Normalize, cache and merge one pushed block record."""
        try:
            block = normalize_block(raw)
        except BlockflowError as e:
            logger.error(f"Dropping malformed pushed block: {e}")
            return None
        if self.pipeline.cache.get(block.hash) is None:
            self.pipeline.cache.add(block.hash, block)
        self.collection.apply([block])
        self.pushed_blocks += 1
        return block

    def start(self) -> None:
        """Start polling (first fetch immediately) and the live channel."""
        if self.running:
            raise RuntimeError("BlockSynchronizer is already running")
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())
        if self.channel is not None:
            self._subscription = self.channel.connect(self.handle_pushed_block)

    def stop(self) -> None:
        """Stop the poll timer and the live channel."""
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        if self._subscription is not None:
            self._subscription.stop()
            self._subscription = None

    async def wait_inflight(self) -> None:
        """Wait for fetches started before stop() to finish."""
        if self._inflight:
            await asyncio.wait(list(self._inflight))

    async def _poll_loop(self) -> None:
        while True:
            if self._inflight:
                self.polls_skipped += 1
                logger.debug(
                    "Previous poll still in flight, skipping tick",
                    extra={"context": {"inflight": len(self._inflight)}},
                )
            else:
                task = asyncio.create_task(self._guarded_poll())
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
            await asyncio.sleep(self.poll_interval)

    async def _guarded_poll(self) -> None:
        try:
            await self.poll_once()
        except Exception as e:
            self.collection.record_failure(e)
            logger.error(f"Poll failed: {e}", exc_info=True)
