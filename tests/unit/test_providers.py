"""
tests/unit/test_providers.py - NodeClient HTTP mapping via httpx.MockTransport.
"""

import httpx
import pytest

from chains.providers import NodeClient, RPCStats
from core.exceptions import (
    NotFoundError,
    RateLimitError,
    RequestRejectedError,
    RPCError,
    RPCTimeoutError,
)


def make_client(handler) -> NodeClient:
    return NodeClient("https://node.test/", transport=httpx.MockTransport(handler))


class TestRPCStats:

    def test_empty(self):
        stats = RPCStats(url="u")
        assert stats.avg_latency_ms == 0
        assert stats.success_rate == 0.0

    def test_ratios(self):
        stats = RPCStats(url="u", total_requests=4, successful_requests=3, total_latency_ms=90)
        assert stats.avg_latency_ms == 30
        assert stats.success_rate == 0.75


class TestEndpoints:

    @pytest.mark.asyncio
    async def test_chain_height(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"currentHeight": 1234})

        client = make_client(handler)
        try:
            assert await client.get_chain_height(1, 2) == 1234
        finally:
            await client.close()

        assert seen["path"] == "/blockflow/chain-info"
        assert seen["params"] == {"fromGroup": "1", "toGroup": "2"}

    @pytest.mark.asyncio
    async def test_hash_at_height_takes_first_header(self):
        def handler(request):
            assert request.url.params["height"] == "77"
            return httpx.Response(200, json={"headers": ["h-main", "h-uncle"]})

        client = make_client(handler)
        assert await client.get_block_hash_at_height(0, 0, 77) == "h-main"
        await client.close()

    @pytest.mark.asyncio
    async def test_hash_at_empty_height(self):
        client = make_client(lambda request: httpx.Response(200, json={"headers": []}))
        assert await client.get_block_hash_at_height(0, 0, 1) is None
        await client.close()

    @pytest.mark.asyncio
    async def test_hash_at_unknown_height(self):
        client = make_client(lambda request: httpx.Response(404, json={"detail": "nope"}))
        assert await client.get_block_hash_at_height(0, 0, 1) is None
        await client.close()

    @pytest.mark.asyncio
    async def test_block_by_hash(self):
        def handler(request):
            assert request.url.path == "/blockflow/blocks/abc"
            return httpx.Response(200, json={"hash": "abc", "height": 1})

        client = make_client(handler)
        assert (await client.get_block_by_hash("abc"))["hash"] == "abc"
        await client.close()

    @pytest.mark.asyncio
    async def test_block_with_events(self):
        def handler(request):
            assert request.url.path == "/blockflow/blocks-with-events/abc"
            return httpx.Response(200, json={"block": {}, "events": [{"txId": "t"}]})

        client = make_client(handler)
        assert (await client.get_block_with_events("abc"))["events"] == [{"txId": "t"}]
        await client.close()

    @pytest.mark.asyncio
    async def test_version(self):
        client = make_client(lambda request: httpx.Response(200, json={"version": "v3.2.1"}))
        assert await client.get_version() == "v3.2.1"
        await client.close()


class TestErrorMapping:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,error_type", [
        (404, NotFoundError),
        (429, RateLimitError),
        (400, RequestRejectedError),
        (500, RPCError),
        (503, RPCError),
    ])
    async def test_status_codes(self, status, error_type):
        client = make_client(lambda request: httpx.Response(status, text="err"))
        with pytest.raises(error_type):
            await client.get_block_by_hash("abc")
        await client.close()

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = make_client(handler)
        with pytest.raises(RPCTimeoutError) as exc_info:
            await client.get_chain_height(0, 0)
        await client.close()

        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler)
        with pytest.raises(RPCError):
            await client.get_chain_height(0, 0)

        assert client.stats.failed_requests == 1
        assert "refused" in client.stats.last_error
        await client.close()

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        client = make_client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(RPCError):
            await client.get_version()
        await client.close()

    @pytest.mark.asyncio
    async def test_missing_height_field(self):
        client = make_client(lambda request: httpx.Response(200, json={"other": 1}))
        with pytest.raises(RPCError):
            await client.get_chain_height(0, 0)
        await client.close()

    @pytest.mark.asyncio
    async def test_not_found_counts_as_success(self):
        client = make_client(lambda request: httpx.Response(404))
        with pytest.raises(NotFoundError):
            await client.get_block_by_hash("abc")

        summary = client.get_stats_summary()
        assert summary["total_requests"] == 1
        assert summary["success_rate"] == 1.0
        await client.close()


def test_repr_strips_trailing_slash():
    assert repr(NodeClient("https://node.test/")) == "NodeClient('https://node.test')"
