"""
chains/failover.py - Endpoint failover.

Holds an ordered list of equivalent endpoints and a sticky cursor:
- an operation runs against the current endpoint
- on failure the cursor advances (wrap-around) and the next one is tried
- at most len(endpoints) attempts per call
- the cursor is never reset per call; it only moves on failure

Retrying the same endpoint (RetryPolicy) and rotating endpoints are
independent layers; call() stacks them.
"""

from typing import Awaitable, Callable, Generic, Optional, Sequence, TypeVar

from core.exceptions import NotFoundError, ValidationError
from core.constants import ErrorCode
from core.logging import get_logger
from chains.providers import NodeClient
from chains.retry import RetryConfig, RetryPolicy

logger = get_logger(__name__)

E = TypeVar("E")
T = TypeVar("T")


def rotates_on(error: BaseException) -> bool:
    """
    Default rotation predicate.

    Not-found is the node answering, so the same answer is expected from
    every equivalent endpoint: it propagates without rotating.
    """
    return not isinstance(error, NotFoundError)


class EndpointFailoverClient(Generic[E]):
    """
    Failover across equivalent endpoints.

    Rotation state belongs to the instance; share the instance to share
    the cursor. A failure only advances the cursor if it still points at
    the endpoint that failed, so concurrent failures on one endpoint
    rotate once.
    """

    def __init__(
        self,
        endpoints: Sequence[E],
        retry_policy: Optional[RetryPolicy] = None,
        retry_config: Optional[RetryConfig] = None,
        rotate_when: Callable[[BaseException], bool] = rotates_on,
    ):
        if not endpoints:
            raise ValidationError(
                "EndpointFailoverClient requires at least one endpoint",
                code=ErrorCode.INVALID_CONFIG,
            )
        self.endpoints: list[E] = list(endpoints)
        self.retry_policy = retry_policy or RetryPolicy()
        self.retry_config = retry_config or RetryConfig()
        self._rotate_when = rotate_when
        self._index = 0
        self.rotations = 0

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_endpoint(self) -> E:
        return self.endpoints[self._index]

    def rotate(self) -> E:
        """Advance the cursor to the next endpoint (wrap-around)."""
        self._index = (self._index + 1) % len(self.endpoints)
        self.rotations += 1
        return self.current_endpoint

    async def execute_with_failover(
        self,
        operation: Callable[[E], Awaitable[T]],
        operation_name: str = "operation",
    ) -> T:
        """
        Run operation(endpoint), rotating on failure.

        Raises:
            The last error once every endpoint failed, or a
            non-rotating error (not-found) immediately.
        """
        for attempt in range(len(self.endpoints)):
            index = self._index
            endpoint = self.endpoints[index]
            try:
                return await operation(endpoint)
            except Exception as e:
                if not self._rotate_when(e):
                    raise
                if self._index == index:
                    self.rotate()
                if attempt == len(self.endpoints) - 1:
                    logger.error(
                        f"All {len(self.endpoints)} endpoints failed for {operation_name}",
                        extra={"context": {"last_error": str(e)}},
                    )
                    raise
                logger.warning(
                    f"Endpoint failed for {operation_name}, rotating",
                    extra={"context": {
                        "endpoint": str(endpoint),
                        "next_endpoint": str(self.current_endpoint),
                        "attempt": attempt + 1,
                        "error": str(e),
                    }},
                )

        raise RuntimeError("EndpointFailoverClient has no endpoints")

    async def call(
        self,
        operation: Callable[[E], Awaitable[T]],
        operation_name: str = "operation",
        retry_config: Optional[RetryConfig] = None,
    ) -> T:
        """
        Failover with a bounded retry per endpoint.

        Args:
            operation: Coroutine factory taking an endpoint
            operation_name: Label for logs
            retry_config: Overrides the client's default retry config
        """
        config = retry_config or self.retry_config

        async def attempt(endpoint: E) -> T:
            return await self.retry_policy.execute(
                lambda: operation(endpoint),
                config,
                operation_name=f"{operation_name}@{endpoint}",
            )

        return await self.execute_with_failover(attempt, operation_name)

    async def close(self) -> None:
        """Close every endpoint that owns resources."""
        for endpoint in self.endpoints:
            close = getattr(endpoint, "close", None)
            if close is not None:
                await close()

    def get_stats_summary(self) -> dict:
        """Per-endpoint statistics plus cursor state."""
        endpoints = {}
        for endpoint in self.endpoints:
            summary = getattr(endpoint, "get_stats_summary", None)
            endpoints[str(endpoint)] = summary() if summary else {}
        return {
            "current_index": self._index,
            "rotations": self.rotations,
            "endpoints": endpoints,
        }


def build_failover_client(
    urls: Sequence[str],
    timeout_seconds: float,
    retry_config: Optional[RetryConfig] = None,
) -> EndpointFailoverClient[NodeClient]:
    """Failover client over one NodeClient per URL."""
    return EndpointFailoverClient(
        [NodeClient(url, timeout_seconds=timeout_seconds) for url in urls],
        retry_config=retry_config,
    )
