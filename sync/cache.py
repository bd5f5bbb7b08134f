"""
sync/cache.py - Bounded, expiring, LRU block cache.

CACHE CONTRACT
==============
- primary index: hash -> CacheEntry
- height indexes: (chain_from, chain_to, height) -> hash, and the legacy
  height -> hash (last writer wins across chain-pairs)
- get(): lazy expiry; an entry older than expiry_ms is evicted on read
- cleanup(): runs at most once per cleanup_interval_ms; drops expired
  entries, then least-recently-accessed ones down to capacity
- writes never evict beyond what cleanup() does
- bookkeeping failures are logged, never raised: the cache is advisory
==============
"""

from dataclasses import dataclass
from typing import Optional

from core.constants import (
    CACHE_CLEANUP_INTERVAL_MS,
    CACHE_EXPIRY_MS,
    MAX_KNOWN_BLOCKS,
)
from core.logging import get_logger
from core.models import Block
from core.time import Clock, is_expired, now_ms

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    """A cached block with its fetch and access times."""
    block: Block
    fetched_at: int
    last_accessed_at: int


class BlockCache:
    """
    Block cache indexed by hash and by height.

    The clock is injectable (ms) so expiry and LRU order can be tested
    deterministically.
    """

    def __init__(
        self,
        capacity: int = MAX_KNOWN_BLOCKS,
        expiry_ms: int = CACHE_EXPIRY_MS,
        cleanup_interval_ms: int = CACHE_CLEANUP_INTERVAL_MS,
        clock: Clock = now_ms,
    ):
        self.capacity = capacity
        self.expiry_ms = expiry_ms
        self.cleanup_interval_ms = cleanup_interval_ms
        self._clock = clock

        self._entries: dict[str, CacheEntry] = {}
        self._pair_height_index: dict[tuple[int, int, int], str] = {}
        self._height_index: dict[int, str] = {}

        self._last_cleanup = clock()
        self.hit_count = 0
        self.miss_count = 0
        self.evicted_count = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, block_hash: str) -> bool:
        return block_hash in self._entries

    def add(self, block_hash: str, block: Block) -> None:
        """Insert or replace a block, then run the amortized cleanup."""
        now = self._clock()
        self._entries[block_hash] = CacheEntry(
            block=block,
            fetched_at=now,
            last_accessed_at=now,
        )
        self._pair_height_index[(block.chain_from, block.chain_to, block.height)] = block_hash
        self._height_index[block.height] = block_hash
        self.cleanup()

    def get(self, block_hash: str) -> Optional[Block]:
        """Block by hash, or None if absent or expired."""
        entry = self._entries.get(block_hash)
        if entry is None:
            self.miss_count += 1
            return None

        now = self._clock()
        if is_expired(entry.fetched_at, self.expiry_ms, now):
            self._remove(block_hash)
            self.miss_count += 1
            return None

        entry.last_accessed_at = now
        self.hit_count += 1
        return entry.block

    def get_by_height(
        self,
        height: int,
        chain_from: Optional[int] = None,
        chain_to: Optional[int] = None,
    ) -> Optional[Block]:
        """
        Block by height.

        With a chain-pair, the lookup is exact. Without one, the legacy
        height-only index is used: the most recently added block at that
        height on any chain-pair.
        """
        if chain_from is not None and chain_to is not None:
            block_hash = self._pair_height_index.get((chain_from, chain_to, height))
        else:
            block_hash = self._height_index.get(height)

        if block_hash is None:
            self.miss_count += 1
            return None
        return self.get(block_hash)

    @property
    def hit_rate(self) -> float:
        """Hit rate in percent."""
        total = self.hit_count + self.miss_count
        return (self.hit_count / total) * 100 if total > 0 else 0.0

    def _remove(self, block_hash: str) -> None:
        entry = self._entries.pop(block_hash, None)
        if entry is None:
            return
        block = entry.block
        pair_key = (block.chain_from, block.chain_to, block.height)
        if self._pair_height_index.get(pair_key) == block_hash:
            del self._pair_height_index[pair_key]
        if self._height_index.get(block.height) == block_hash:
            del self._height_index[block.height]

    def cleanup(self, force: bool = False) -> int:
        """
        Eviction pass.

        Args:
            force: Run even if the last pass was under cleanup_interval_ms ago

        Returns:
            Number of evicted entries
        """
        now = self._clock()
        if not force and now - self._last_cleanup < self.cleanup_interval_ms:
            return 0

        try:
            removed = self._evict(now)
        except Exception:
            logger.warning("Cache cleanup failed", exc_info=True)
            return 0

        self._last_cleanup = now
        self.evicted_count += removed
        logger.debug(
            "Cache cleanup",
            extra={"context": {
                "removed": removed,
                "size": len(self._entries),
                "hit_rate": round(self.hit_rate, 2),
            }},
        )
        return removed

    def _evict(self, now: int) -> int:
        expired = [
            block_hash
            for block_hash, entry in self._entries.items()
            if is_expired(entry.fetched_at, self.expiry_ms, now)
        ]
        for block_hash in expired:
            self._remove(block_hash)

        overflow = len(self._entries) - self.capacity
        lru_removed = 0
        if overflow > 0:
            by_access = sorted(
                self._entries.items(),
                key=lambda item: (item[1].last_accessed_at, item[1].fetched_at),
            )
            for block_hash, _ in by_access[:overflow]:
                self._remove(block_hash)
            lru_removed = overflow
            logger.info(
                f"Cache cleanup: removed {lru_removed} least recently used entries",
            )

        return len(expired) + lru_removed

    def clear(self) -> None:
        self._entries.clear()
        self._pair_height_index.clear()
        self._height_index.clear()

    def get_stats(self) -> dict:
        return {
            "size": len(self._entries),
            "capacity": self.capacity,
            "hit_count": self.hit_count,
            "miss_count": self.miss_count,
            "hit_rate": round(self.hit_rate, 2),
            "evicted_count": self.evicted_count,
        }
