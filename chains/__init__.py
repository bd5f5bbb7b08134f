"""
chains/ - Blockflow node access layer.

Modules:
- providers: REST client for one node endpoint
- retry: exponential backoff with jitter
- failover: sticky endpoint rotation, stacked on retry
"""

from chains.providers import NodeClient, RPCStats
from chains.retry import RetryConfig, RetryPolicy, is_retryable
from chains.failover import (
    EndpointFailoverClient,
    build_failover_client,
    rotates_on,
)

__all__ = [
    # Providers
    "NodeClient",
    "RPCStats",
    # Retry
    "RetryConfig",
    "RetryPolicy",
    "is_retryable",
    # Failover
    "EndpointFailoverClient",
    "build_failover_client",
    "rotates_on",
]
