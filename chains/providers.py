"""
chains/providers.py - Blockflow node REST client.

Provides access to one node endpoint with:
- Request timeout handling
- Connection pooling
- HTTP status -> typed error mapping
- Latency tracking

Failover across endpoints lives in chains/failover.py.
"""

import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from core.constants import DEFAULT_TIMEOUT_SECONDS
from core.exceptions import (
    NotFoundError,
    RateLimitError,
    RequestRejectedError,
    RPCError,
    RPCTimeoutError,
)
from core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RPCStats:
    """Statistics for a node endpoint."""
    url: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_latency_ms: int = 0
    last_error: str | None = None
    last_success_ts: int | None = None

    @property
    def avg_latency_ms(self) -> int:
        if self.successful_requests == 0:
            return 0
        return self.total_latency_ms // self.successful_requests

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests


class NodeClient:
    """
    REST client for a single blockflow node.

    Not-found is a valid answer: it is counted as a successful request
    and surfaces as NotFoundError (or None where absence is expected).
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.stats = RPCStats(url=self.base_url)

    def __repr__(self) -> str:
        return f"NodeClient({self.base_url!r})"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout_seconds),
                limits=httpx.Limits(max_connections=10),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _record_failure(self, message: str) -> None:
        self.stats.failed_requests += 1
        self.stats.last_error = message
        logger.debug(f"Request failed on {self.base_url}: {message}")

    async def _get(self, path: str, params: dict | None = None) -> Any:
        """
        GET a JSON document.

        Raises:
            NotFoundError: 404
            RateLimitError: 429
            RequestRejectedError: other 4xx
            RPCError: 5xx, transport failure, malformed JSON
            RPCTimeoutError: timeout
        """
        client = await self._get_client()
        details = {"url": self.base_url, "path": path, "params": params}
        self.stats.total_requests += 1
        start_ms = int(time.time() * 1000)

        try:
            resp = await client.get(path, params=params)
        except httpx.TimeoutException as e:
            latency_ms = int(time.time() * 1000) - start_ms
            self._record_failure(f"Timeout after {latency_ms}ms")
            raise RPCTimeoutError(
                f"Timeout after {latency_ms}ms on {path}", details=details
            ) from e
        except httpx.HTTPError as e:
            self._record_failure(str(e))
            raise RPCError(f"Transport error on {path}: {e}", details=details) from e

        latency_ms = int(time.time() * 1000) - start_ms
        status = resp.status_code

        if status == 404:
            self.stats.successful_requests += 1
            self.stats.total_latency_ms += latency_ms
            raise NotFoundError(f"Not found: {path}", details=details)
        if status == 429:
            self._record_failure("HTTP 429")
            raise RateLimitError(f"Rate limited on {path}", details=details)
        if 400 <= status < 500:
            self._record_failure(f"HTTP {status}")
            raise RequestRejectedError(
                f"HTTP {status} on {path}: {resp.text[:200]}",
                details={**details, "status": status},
            )
        if status >= 500:
            self._record_failure(f"HTTP {status}")
            raise RPCError(
                f"HTTP {status} on {path}",
                details={**details, "status": status},
            )

        try:
            payload = resp.json()
        except ValueError as e:
            self._record_failure("Malformed JSON")
            raise RPCError(f"Malformed JSON from {path}", details=details) from e

        self.stats.successful_requests += 1
        self.stats.total_latency_ms += latency_ms
        self.stats.last_success_ts = int(time.time() * 1000)
        return payload

    async def get_chain_height(self, from_group: int, to_group: int) -> int:
        """Current height of chain-pair (from_group, to_group)."""
        payload = await self._get(
            "/blockflow/chain-info",
            {"fromGroup": from_group, "toGroup": to_group},
        )
        try:
            return int(payload["currentHeight"])
        except (KeyError, TypeError, ValueError) as e:
            raise RPCError(
                "chain-info response has no currentHeight",
                details={"url": self.base_url, "payload": payload},
            ) from e

    async def get_block_hash_at_height(
        self,
        from_group: int,
        to_group: int,
        height: int,
    ) -> str | None:
        """
        Canonical block hash at a height, or None if the height is empty.
        """
        try:
            payload = await self._get(
                "/blockflow/hashes",
                {"fromGroup": from_group, "toGroup": to_group, "height": height},
            )
        except NotFoundError:
            return None
        headers = payload.get("headers") if isinstance(payload, dict) else None
        if not headers:
            return None
        return headers[0]

    async def get_block_by_hash(self, block_hash: str) -> dict:
        """
        Raw block record.

        Raises:
            NotFoundError: If the node does not know the hash
        """
        payload = await self._get(f"/blockflow/blocks/{block_hash}")
        if not isinstance(payload, dict):
            raise RPCError(
                f"Unexpected block payload for {block_hash[:8]}",
                details={"url": self.base_url},
            )
        return payload

    async def get_block_with_events(self, block_hash: str) -> dict:
        """Raw block-and-events record ({"block": ..., "events": [...]})."""
        return await self._get(f"/blockflow/blocks-with-events/{block_hash}")

    async def get_version(self) -> str:
        """Node software version."""
        payload = await self._get("/infos/version")
        if not isinstance(payload, dict) or "version" not in payload:
            raise RPCError("version response has no version", details={"url": self.base_url})
        return str(payload["version"])

    def get_stats_summary(self) -> dict:
        """Statistics summary for this endpoint."""
        return {
            "total_requests": self.stats.total_requests,
            "success_rate": round(self.stats.success_rate, 3),
            "avg_latency_ms": self.stats.avg_latency_ms,
            "last_error": self.stats.last_error,
        }

