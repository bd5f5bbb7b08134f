# PATH: core/constants.py
"""
Constants for the blockflow sync layer.

Contains enums, defaults, and fixed configuration constants.

Timing values are in milliseconds unless the name says otherwise.
"""

from enum import Enum
from typing import Final

# =============================================================================
# NETWORK
# =============================================================================

DEFAULT_NODE_URLS: Final[tuple[str, ...]] = (
    "https://node.mainnet.alephium.org",
    "https://backend.mainnet.alephium.org",
)

DEFAULT_WS_URLS: Final[tuple[str, ...]] = (
    "wss://node.mainnet.alephium.org/ws",
)

DEFAULT_TIMEOUT_SECONDS: Final[int] = 10

# Shard grid: chain-pairs are (from_group, to_group) over range(TOTAL_GROUPS)
TOTAL_GROUPS: Final[int] = 4

# =============================================================================
# CACHE
# =============================================================================

MAX_KNOWN_BLOCKS: Final[int] = 2000
CACHE_EXPIRY_MS: Final[int] = 15 * 60 * 1000  # 15 minutes
CACHE_CLEANUP_INTERVAL_MS: Final[int] = 60_000

# =============================================================================
# FETCH PIPELINE
# =============================================================================

BATCH_SIZE: Final[int] = 5  # in-flight height fetches per chain-pair
PAIR_CONCURRENCY: Final[int] = 5  # chain-pairs processed at once
REQUEST_DELAY_MS: Final[int] = 100  # pause between batches
DEFAULT_FETCH_COUNT: Final[int] = 50
SINGLE_BLOCK_MAX_RETRIES: Final[int] = 5

# Network info
AVERAGE_BLOCK_TIME_SAMPLE: Final[int] = 10
DEFAULT_AVERAGE_BLOCK_TIME_MS: Final[int] = 64_000

# =============================================================================
# RETRY
# =============================================================================

DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_BASE_DELAY_MS: Final[int] = 1000
DEFAULT_MAX_DELAY_MS: Final[int] = 10_000
RETRY_JITTER_MS: Final[int] = 500

# =============================================================================
# LIVE CHANNEL
# =============================================================================

KEEPALIVE_INTERVAL_SECONDS: Final[float] = 30.0
RECONNECT_DELAY_SECONDS: Final[float] = 1.0
KEEPALIVE_MESSAGE: Final[str] = "ping"
NEW_BLOCK_MESSAGE_TYPE: Final[str] = "new-block"

DEFAULT_POLL_INTERVAL_SECONDS: Final[float] = 30.0

# =============================================================================
# DAG
# =============================================================================

TIMESTAMP_BUCKET_MS: Final[int] = 1000


class ErrorCode(str, Enum):
    """Error codes carried by every BlockflowError."""
    # Transient infrastructure
    INFRA_RPC_ERROR = "INFRA_RPC_ERROR"
    INFRA_TIMEOUT = "INFRA_TIMEOUT"
    INFRA_RATE_LIMIT = "INFRA_RATE_LIMIT"

    # Permanent request failures
    INFRA_BAD_REQUEST = "INFRA_BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"

    # Data quality
    INVALID_BLOCK = "INVALID_BLOCK"
    INVALID_CONFIG = "INVALID_CONFIG"

    # Bulk fetch
    FETCH_FAILED = "FETCH_FAILED"

    UNKNOWN = "UNKNOWN"


RETRYABLE_CODES: Final[frozenset[ErrorCode]] = frozenset([
    ErrorCode.INFRA_RPC_ERROR,
    ErrorCode.INFRA_TIMEOUT,
    ErrorCode.INFRA_RATE_LIMIT,
])


class ChannelStatus(str, Enum):
    """Live update channel states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
