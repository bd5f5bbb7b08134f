# PATH: core/exceptions.py
"""
Typed exceptions for the blockflow sync layer.

Transient infrastructure errors (InfraError family) are retried and
rotate endpoints; NotFoundError is an answer, not a failure.
"""

from typing import TYPE_CHECKING, Optional

from core.constants import ErrorCode, RETRYABLE_CODES

if TYPE_CHECKING:
    from sync.pipeline import FetchReport


class BlockflowError(Exception):
    """Base exception for the sync layer."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES

    def __str__(self):
        return f"[{self.code.value}] {self.message}"


class InfraError(BlockflowError):
    """Infrastructure-related errors (RPC, timeouts, rate limits)."""
    pass


class RPCError(InfraError):
    """RPC call failed (transport error, 5xx, malformed payload)."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.INFRA_RPC_ERROR, details)


class RPCTimeoutError(InfraError):
    """RPC call timed out."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.INFRA_TIMEOUT, details)


class RateLimitError(InfraError):
    """Rate limit exceeded."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.INFRA_RATE_LIMIT, details)


class RequestRejectedError(InfraError):
    """Node rejected the request (4xx other than 404/429). Not retried."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.INFRA_BAD_REQUEST, details)


class NotFoundError(BlockflowError):
    """Requested hash or height does not exist upstream."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.NOT_FOUND, details)


class ValidationError(BlockflowError):
    """Raw record or configuration failed validation."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVALID_BLOCK,
        details: Optional[dict] = None,
    ):
        super().__init__(message, code, details)


class FetchError(BlockflowError):
    """
    Bulk fetch produced no blocks and at least one failure.

    Carries the FetchReport so callers can inspect per-item failures.
    """

    def __init__(
        self,
        message: str,
        report: Optional["FetchReport"] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, ErrorCode.FETCH_FAILED, details)
        self.report = report
