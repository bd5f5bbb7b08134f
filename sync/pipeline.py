"""
sync/pipeline.py - Concurrent, rate-limited block retrieval.

FETCH CONTRACT
==============
fetch_latest(count):
  - work is partitioned by chain-pair over range(groups) x range(groups)
  - per pair: current height, then heights
    max(0, current - count + 1) .. current, newest first
  - per height: cache by (pair, height) first; on miss resolve the hash
    at that height, then fetch the block by hash (both through failover
    + retry)
  - at most batch_size height fetches in flight per pair, at most
    pair_concurrency pairs at once, request_delay_ms between batches
  - results deduped by hash (first kept), sorted by timestamp desc,
    truncated to count
  - one height or one pair failing is recorded and dropped; FetchError
    only when zero blocks were accumulated and something failed
==============
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from chains.failover import EndpointFailoverClient
from chains.providers import NodeClient
from core.constants import (
    AVERAGE_BLOCK_TIME_SAMPLE,
    BATCH_SIZE,
    DEFAULT_AVERAGE_BLOCK_TIME_MS,
    DEFAULT_FETCH_COUNT,
    PAIR_CONCURRENCY,
    REQUEST_DELAY_MS,
    SINGLE_BLOCK_MAX_RETRIES,
    TOTAL_GROUPS,
)
from core.exceptions import FetchError, NotFoundError
from core.logging import get_logger
from core.models import Block, NetworkInfo, merge_blocks, normalize_block
from core.time import now_ms
from sync.cache import BlockCache

logger = get_logger(__name__)


@dataclass(frozen=True)
class ItemFailure:
    """One failed unit of work: a whole chain-pair (height None) or one height."""
    chain_from: int
    chain_to: int
    height: Optional[int]
    error: str
    error_type: str


@dataclass
class FetchReport:
    """Outcome of a bulk fetch."""
    blocks: list[Block] = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)
    pairs_attempted: int = 0
    cache_hits: int = 0

    @property
    def pairs_failed(self) -> int:
        return sum(1 for f in self.failures if f.height is None)

    @property
    def heights_failed(self) -> int:
        return sum(1 for f in self.failures if f.height is not None)

    @property
    def total_failure(self) -> bool:
        """No blocks and at least one failure: nothing reachable."""
        return not self.blocks and bool(self.failures)

    def to_dict(self) -> dict:
        return {
            "blocks": len(self.blocks),
            "pairs_attempted": self.pairs_attempted,
            "pairs_failed": self.pairs_failed,
            "heights_failed": self.heights_failed,
            "cache_hits": self.cache_hits,
        }


@dataclass
class FetchSettings:
    """Concurrency and rate limits for the pipeline."""
    groups: int = TOTAL_GROUPS
    batch_size: int = BATCH_SIZE
    pair_concurrency: int = PAIR_CONCURRENCY
    request_delay_ms: int = REQUEST_DELAY_MS
    default_count: int = DEFAULT_FETCH_COUNT


@dataclass
class _PairResult:
    blocks: list[Block] = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)
    cache_hits: int = 0


def _failure(
    chain_from: int,
    chain_to: int,
    height: Optional[int],
    error: Exception,
) -> ItemFailure:
    return ItemFailure(
        chain_from=chain_from,
        chain_to=chain_to,
        height=height,
        error=str(error),
        error_type=type(error).__name__,
    )


class FetchPipeline:
    """
    Pulls blocks from the node through failover + retry, via the cache.
    """

    def __init__(
        self,
        client: EndpointFailoverClient[NodeClient],
        cache: BlockCache,
        settings: Optional[FetchSettings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.cache = cache
        self.settings = settings or FetchSettings()
        self._sleep = sleep

    @property
    def chain_pairs(self) -> list[tuple[int, int]]:
        groups = self.settings.groups
        return [(f, t) for f in range(groups) for t in range(groups)]

    # =========================================================================
    # BULK FETCH
    # =========================================================================

    async def fetch_latest(self, count: Optional[int] = None) -> list[Block]:
        """
        Latest blocks across every chain-pair, newest first.

        Raises:
            FetchError: If nothing was fetched and at least one item failed
        """
        report = await self.fetch_latest_report(count)
        if report.total_failure:
            raise FetchError(
                f"Failed to fetch blocks: {report.failures[-1].error}",
                report=report,
                details=report.to_dict(),
            )
        return report.blocks

    async def fetch_latest_report(self, count: Optional[int] = None) -> FetchReport:
        """Like fetch_latest(), returning blocks plus per-item failures."""
        count = self.settings.default_count if count is None else count
        report = FetchReport()
        if count <= 0:
            return report

        async def heights_for(f: int, t: int) -> list[int]:
            current = await self._chain_height(f, t)
            return list(range(current, max(current - count + 1, 0) - 1, -1))

        results = await self._fetch_pairs(heights_for)
        self._collect(report, results)
        report.blocks = merge_blocks(report.blocks, limit=count)

        logger.info(
            f"Fetched {len(report.blocks)} unique blocks",
            extra={"context": report.to_dict()},
        )
        return report

    async def check_for_new_blocks(
        self,
        last_known_height: int,
        limit: Optional[int] = None,
    ) -> list[Block]:
        """
        Blocks above last_known_height on every chain-pair, oldest first.

        Per-pair catch-up covers at most `limit` heights (the newest ones).
        """
        if last_known_height < 0:
            logger.error(
                "Invalid last_known_height",
                extra={"context": {"last_known_height": last_known_height}},
            )
            return []
        limit = self.settings.default_count if limit is None else limit

        async def heights_for(f: int, t: int) -> list[int]:
            current = await self._chain_height(f, t)
            lowest = max(last_known_height + 1, current - limit + 1)
            return list(range(current, lowest - 1, -1))

        report = FetchReport()
        self._collect(report, await self._fetch_pairs(heights_for))
        unique = merge_blocks(report.blocks)
        return sorted(unique, key=lambda b: (b.height, b.timestamp, b.hash))

    def _collect(self, report: FetchReport, results: list[_PairResult]) -> None:
        report.pairs_attempted += len(results)
        for result in results:
            report.blocks.extend(result.blocks)
            report.failures.extend(result.failures)
            report.cache_hits += result.cache_hits

    async def _fetch_pairs(
        self,
        heights_for: Callable[[int, int], Awaitable[list[int]]],
    ) -> list[_PairResult]:
        semaphore = asyncio.Semaphore(self.settings.pair_concurrency)

        async def run(f: int, t: int) -> _PairResult:
            async with semaphore:
                return await self._fetch_pair(f, t, heights_for)

        return await asyncio.gather(*(run(f, t) for f, t in self.chain_pairs))

    async def _fetch_pair(
        self,
        chain_from: int,
        chain_to: int,
        heights_for: Callable[[int, int], Awaitable[list[int]]],
    ) -> _PairResult:
        result = _PairResult()
        try:
            heights = await heights_for(chain_from, chain_to)
        except Exception as e:
            logger.warning(
                f"Chain-pair {chain_from}->{chain_to} failed: {e}",
                extra={"context": {"chain_from": chain_from, "chain_to": chain_to}},
            )
            result.failures.append(_failure(chain_from, chain_to, None, e))
            return result

        batch_size = max(self.settings.batch_size, 1)
        for i in range(0, len(heights), batch_size):
            batch = heights[i:i + batch_size]
            outcomes = await asyncio.gather(
                *(self._fetch_height(chain_from, chain_to, h) for h in batch),
                return_exceptions=True,
            )
            for height, outcome in zip(batch, outcomes):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                if isinstance(outcome, Exception):
                    logger.warning(
                        f"Error fetching block at height {height}: {outcome}",
                        extra={"context": {
                            "chain_from": chain_from,
                            "chain_to": chain_to,
                            "height": height,
                        }},
                    )
                    result.failures.append(_failure(chain_from, chain_to, height, outcome))
                    continue
                block, from_cache = outcome
                if block is not None:
                    result.blocks.append(block)
                    result.cache_hits += int(from_cache)

            if i + batch_size < len(heights):
                await self._sleep(self.settings.request_delay_ms / 1000)

        return result

    async def _fetch_height(
        self,
        chain_from: int,
        chain_to: int,
        height: int,
    ) -> tuple[Optional[Block], bool]:
        """(block or None, served from cache)."""
        cached = self.cache.get_by_height(height, chain_from, chain_to)
        if cached is not None:
            return cached, True

        block_hash = await self.client.call(
            lambda node: node.get_block_hash_at_height(chain_from, chain_to, height),
            operation_name=f"get_block_hash_at_height({chain_from},{chain_to},{height})",
        )
        if not block_hash:
            return None, False

        cached = self.cache.get(block_hash)
        if cached is not None:
            return cached, True

        try:
            raw = await self.client.call(
                lambda node: node.get_block_by_hash(block_hash),
                operation_name=f"get_block_by_hash({block_hash[:8]}...)",
            )
        except NotFoundError:
            return None, False

        block = normalize_block(raw)
        self.cache.add(block.hash, block)
        return block, False

    async def _chain_height(self, chain_from: int, chain_to: int) -> int:
        return await self.client.call(
            lambda node: node.get_chain_height(chain_from, chain_to),
            operation_name=f"get_chain_height({chain_from},{chain_to})",
        )

    # =========================================================================
    # SINGLE BLOCK
    # =========================================================================

    async def fetch_block(self, block_hash: str) -> Optional[Block]:
        """
        One block by hash.

        Returns:
            Block, or None if the hash is empty or unknown upstream

        Raises:
            InfraError: If every endpoint and retry failed
        """
        if not block_hash:
            logger.error("fetch_block called with empty hash")
            return None

        cached = self.cache.get(block_hash)
        if cached is not None:
            logger.debug(f"Cache hit for block {block_hash[:8]}...")
            return cached

        config = self.client.retry_config.with_retries(SINGLE_BLOCK_MAX_RETRIES)
        try:
            raw = await self.client.call(
                lambda node: node.get_block_by_hash(block_hash),
                operation_name=f"get_block_by_hash({block_hash[:8]}...)",
                retry_config=config,
            )
        except NotFoundError:
            logger.warning(f"Block not found: {block_hash}")
            return None

        block = normalize_block(raw)
        self.cache.add(block.hash, block)
        return block

    async def get_block_transactions(self, block_hash: str) -> list:
        """
        Transactions of a block.

        Falls back to the block-with-events payload when the block has
        none. Never raises: failures yield [].
        """
        try:
            block = await self.fetch_block(block_hash)
        except Exception as e:
            logger.error(f"Error fetching transactions for block {block_hash}: {e}")
            return []
        if block is None:
            return []
        if block.transactions:
            return list(block.transactions)

        try:
            payload = await self.client.call(
                lambda node: node.get_block_with_events(block_hash),
                operation_name=f"get_block_with_events({block_hash[:8]}...)",
            )
        except Exception as e:
            logger.error(f"Error fetching events for block {block_hash}: {e}")
            return []
        return list(payload.get("events") or []) if isinstance(payload, dict) else []

    # =========================================================================
    # NETWORK INFO
    # =========================================================================

    async def get_network_info(self) -> NetworkInfo:
        """
        Current height, node version and average block time of chain (0,0).

        Never raises: unreachable parts fall back to defaults.
        """
        info = NetworkInfo(
            average_block_time_ms=DEFAULT_AVERAGE_BLOCK_TIME_MS,
            timestamp=now_ms(),
        )

        try:
            info.current_height = await self._chain_height(0, 0)
        except Exception as e:
            logger.warning(f"Could not fetch chain height: {e}")

        try:
            info.node_version = await self.client.call(
                lambda node: node.get_version(),
                operation_name="get_version",
                retry_config=self.client.retry_config.with_retries(2),
            )
        except Exception as e:
            logger.warning(f"Could not fetch node version: {e}")

        if info.current_height > AVERAGE_BLOCK_TIME_SAMPLE:
            sampled = await self._sample_recent_blocks(0, 0, info.current_height)
            if len(sampled) > 1:
                span = sampled[0].timestamp - sampled[-1].timestamp
                info.average_block_time_ms = span // (len(sampled) - 1)

        return info

    async def _sample_recent_blocks(
        self,
        chain_from: int,
        chain_to: int,
        current_height: int,
    ) -> list[Block]:
        sampled = []
        for offset in range(1, AVERAGE_BLOCK_TIME_SAMPLE + 1):
            try:
                block, _ = await self._fetch_height(chain_from, chain_to, current_height - offset)
            except Exception as e:
                logger.debug(f"Skipping sample at offset {offset}: {e}")
                continue
            if block is not None:
                sampled.append(block)
        return sampled
