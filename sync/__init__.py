"""
sync/ - Block synchronization layer.

Modules:
- cache: bounded, expiring, LRU block cache
- pipeline: concurrent, rate-limited retrieval across chain-pairs
- live: reconnecting push channel
- collection: canonical merged block collection
- synchronizer: poll loop + push channel feeding the collection
"""

from sync.cache import BlockCache, CacheEntry
from sync.pipeline import (
    FetchPipeline,
    FetchReport,
    FetchSettings,
    ItemFailure,
)
from sync.live import LiveUpdateChannel, Subscription
from sync.collection import BlockCollection
from sync.synchronizer import BlockSynchronizer

__all__ = [
    # Cache
    "BlockCache",
    "CacheEntry",
    # Pipeline
    "FetchPipeline",
    "FetchReport",
    "FetchSettings",
    "ItemFailure",
    # Live
    "LiveUpdateChannel",
    "Subscription",
    # Collection
    "BlockCollection",
    "BlockSynchronizer",
]
