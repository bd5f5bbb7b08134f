"""
core - Core utilities and models for the blockflow sync layer.

This package contains:
- models.py: Block model, normalization and the merge function
- constants.py: Enums, error codes and fixed configuration constants
- exceptions.py: Typed exceptions with error codes
- time.py: Millisecond clock and age helpers
- logging.py: Structured JSON logging
"""

from core.constants import ChannelStatus, ErrorCode, RETRYABLE_CODES
from core.exceptions import (
    BlockflowError,
    FetchError,
    InfraError,
    NotFoundError,
    RateLimitError,
    RequestRejectedError,
    RPCError,
    RPCTimeoutError,
    ValidationError,
)
from core.logging import get_logger, setup_logging
from core.models import Block, NetworkInfo, merge_blocks, normalize_block

__all__ = [
    # Constants
    "ChannelStatus",
    "ErrorCode",
    "RETRYABLE_CODES",
    # Exceptions
    "BlockflowError",
    "FetchError",
    "InfraError",
    "NotFoundError",
    "RateLimitError",
    "RequestRejectedError",
    "RPCError",
    "RPCTimeoutError",
    "ValidationError",
    # Models
    "Block",
    "NetworkInfo",
    "merge_blocks",
    "normalize_block",
    # Logging
    "get_logger",
    "setup_logging",
]
