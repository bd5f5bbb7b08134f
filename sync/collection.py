"""
sync/collection.py - Canonical in-memory block collection.

Both the polling path and the push path write through apply(), which
uses merge_blocks(): existing blocks win on hash collisions, so neither
path can regress the other's results, and re-applying is a no-op.
"""

from typing import Callable, Iterable, Optional

from core.logging import get_logger
from core.models import Block, merge_blocks

logger = get_logger(__name__)

Listener = Callable[[list[Block]], None]


class BlockCollection:
    """
    Merged, deduplicated, newest-first view of every known block.

    last_error distinguishes "nothing to show" (None) from "could not
    reach any endpoint" (the error of the last failed bulk fetch).
    """

    def __init__(self, max_blocks: Optional[int] = None):
        self.max_blocks = max_blocks
        self._blocks: list[Block] = []
        self._listeners: list[Listener] = []
        self.last_error: Optional[Exception] = None

    def __len__(self) -> int:
        return len(self._blocks)

    def __iter__(self):
        return iter(list(self._blocks))

    def __contains__(self, block_hash: str) -> bool:
        return any(b.hash == block_hash for b in self._blocks)

    @property
    def blocks(self) -> list[Block]:
        return list(self._blocks)

    @property
    def latest_height(self) -> Optional[int]:
        if not self._blocks:
            return None
        return max(b.height for b in self._blocks)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def apply(self, blocks: Iterable[Block]) -> bool:
        """
        Merge blocks into the collection.

        Returns:
            True if the collection changed (listeners were notified)
        """
        merged = merge_blocks(self._blocks, blocks, limit=self.max_blocks)
        changed = [b.hash for b in merged] != [b.hash for b in self._blocks]
        self._blocks = merged
        if changed:
            self._notify()
        return changed

    def record_success(self) -> None:
        self.last_error = None

    def record_failure(self, error: Exception) -> None:
        self.last_error = error

    def _notify(self) -> None:
        snapshot = list(self._blocks)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.error("Block collection listener failed", exc_info=True)
