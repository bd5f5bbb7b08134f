# PATH: core/time.py
"""
Time utilities.

Millisecond clock and age helpers used by the cache and the pipeline;
UTC wall-clock and ISO helpers used by the CLI session summary.
"""

import time
from datetime import datetime, timezone
from typing import Callable, Optional

# Injectable millisecond clock signature
Clock = Callable[[], int]


def now_utc() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Get current UTC datetime as ISO string."""
    return now_utc().isoformat()


def now_ms() -> int:
    """Get current Unix timestamp in milliseconds."""
    return int(time.time() * 1000)


def age_ms(timestamp_ms: int, current_ms: Optional[int] = None) -> int:
    """Age of a millisecond timestamp relative to now (or current_ms)."""
    current = now_ms() if current_ms is None else current_ms
    return current - timestamp_ms


def is_expired(
    timestamp_ms: int,
    window_ms: int,
    current_ms: Optional[int] = None,
) -> bool:
    """
    Check if a timestamp is older than window_ms.

    The boundary itself is not expired: an entry exactly window_ms old
    is still valid.
    """
    return age_ms(timestamp_ms, current_ms) > window_ms


def ms_to_iso(timestamp_ms: int) -> str:
    """Format a millisecond timestamp as UTC ISO string."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()
