"""
tests/unit/test_live.py - LiveUpdateChannel with scripted connections.
"""

import asyncio
import json

import pytest

from core.constants import ChannelStatus
from core.exceptions import ValidationError
from sync.live import LiveUpdateChannel


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)
    await asyncio.wait_for(poll(), timeout)


class FakeConnection:
    """Yields scripted messages, then closes or stays open until cancelled."""

    def __init__(self, messages=(), hold_open: bool = True):
        self.messages = list(messages)
        self.hold_open = hold_open
        self.sent: list[str] = []
        self.exited = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.exited = True
        return False

    def __aiter__(self):
        return self._receive()

    async def _receive(self):
        for message in self.messages:
            yield message
        if self.hold_open:
            await asyncio.Event().wait()

    async def send(self, message: str) -> None:
        self.sent.append(message)


class RefusedConnection:
    async def __aenter__(self):
        raise ConnectionRefusedError("refused")

    async def __aexit__(self, *exc_info):
        return False


class ScriptedConnector:
    """Hands out one scripted connection per attempt; repeats the last."""

    def __init__(self, *script):
        self.script = list(script)
        self.attempts: list[str] = []

    def __call__(self, url: str):
        self.attempts.append(url)
        index = min(len(self.attempts) - 1, len(self.script) - 1)
        return self.script[index]


def new_block_message(block_hash: str) -> str:
    return json.dumps({
        "type": "new-block",
        "block": {"hash": block_hash, "height": 1, "timestamp": 1000, "chainFrom": 0, "chainTo": 0},
    })


class TestConstruction:

    def test_requires_endpoint(self):
        with pytest.raises(ValidationError):
            LiveUpdateChannel([])

    def test_initial_state(self):
        channel = LiveUpdateChannel(["ws://a"])
        assert channel.status == ChannelStatus.DISCONNECTED
        assert channel.current_index == 0
        assert not channel.running


class TestReconnect:

    @pytest.mark.asyncio
    async def test_rotation_wraps_around(self):
        connector = ScriptedConnector(RefusedConnection())
        channel = LiveUpdateChannel(
            ["ws://a", "ws://b"],
            reconnect_delay=0,
            connector=connector,
        )

        subscription = channel.connect(lambda block: None)
        await wait_until(lambda: len(connector.attempts) >= 3)
        subscription.stop()
        await subscription.wait_closed()

        assert connector.attempts[:3] == ["ws://a", "ws://b", "ws://a"]

    @pytest.mark.asyncio
    async def test_closed_connection_reconnects_to_next(self):
        first = FakeConnection(hold_open=False)
        second = FakeConnection()
        connector = ScriptedConnector(first, second)
        channel = LiveUpdateChannel(
            ["ws://a", "ws://b"],
            reconnect_delay=0,
            connector=connector,
        )

        channel.connect(lambda block: None)
        await wait_until(lambda: channel.status == ChannelStatus.CONNECTED and len(connector.attempts) == 2)
        channel.disconnect()
        await channel.wait_closed()

        assert connector.attempts == ["ws://a", "ws://b"]
        assert first.exited and second.exited

    @pytest.mark.asyncio
    async def test_status_transitions(self):
        statuses = []
        connector = ScriptedConnector(RefusedConnection(), FakeConnection())
        channel = LiveUpdateChannel(["ws://a"], reconnect_delay=0, connector=connector)

        channel.connect(lambda block: None, on_status_change=statuses.append)
        await wait_until(lambda: channel.status == ChannelStatus.CONNECTED)
        channel.disconnect()
        await channel.wait_closed()

        assert statuses == [
            ChannelStatus.CONNECTING,
            ChannelStatus.DISCONNECTED,
            ChannelStatus.CONNECTING,
            ChannelStatus.CONNECTED,
            ChannelStatus.DISCONNECTED,
        ]


class TestDisconnect:

    @pytest.mark.asyncio
    async def test_disconnect_suppresses_reconnect(self):
        connection = FakeConnection()
        connector = ScriptedConnector(connection)
        channel = LiveUpdateChannel(["ws://a", "ws://b"], reconnect_delay=0, connector=connector)

        subscription = channel.connect(lambda block: None)
        await wait_until(lambda: channel.status == ChannelStatus.CONNECTED)
        subscription.stop()
        await subscription.wait_closed()
        await asyncio.sleep(0.01)

        assert connector.attempts == ["ws://a"]
        assert connection.exited
        assert not subscription.active
        assert channel.status == ChannelStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_connect_twice_rejected(self):
        channel = LiveUpdateChannel(["ws://a"], connector=ScriptedConnector(FakeConnection()))
        channel.connect(lambda block: None)
        try:
            with pytest.raises(RuntimeError):
                channel.connect(lambda block: None)
        finally:
            channel.disconnect()
            await channel.wait_closed()

    @pytest.mark.asyncio
    async def test_can_reconnect_after_disconnect(self):
        connector = ScriptedConnector(FakeConnection())
        channel = LiveUpdateChannel(["ws://a"], connector=connector)

        channel.connect(lambda block: None)
        await wait_until(lambda: channel.status == ChannelStatus.CONNECTED)
        channel.disconnect()
        await channel.wait_closed()

        channel.connect(lambda block: None)
        await wait_until(lambda: channel.status == ChannelStatus.CONNECTED)
        channel.disconnect()
        await channel.wait_closed()

        assert len(connector.attempts) == 2

    @pytest.mark.asyncio
    async def test_stop_takes_effect_immediately(self):
        first, second = FakeConnection(), FakeConnection()
        connector = ScriptedConnector(first, second)
        channel = LiveUpdateChannel(["ws://a"], connector=connector)

        old = channel.connect(lambda block: None)
        await wait_until(lambda: channel.status == ChannelStatus.CONNECTED)
        old.stop()

        assert not old.active
        assert not channel.running
        assert channel.status == ChannelStatus.DISCONNECTED

        new = channel.connect(lambda block: None)
        await old.wait_closed()
        await wait_until(lambda: channel.status == ChannelStatus.CONNECTED)

        assert first.exited
        assert new.active
        assert not old.active
        # A stale handle cannot stop the newer subscription
        old.stop()
        assert new.active

        new.stop()
        await channel.wait_closed()
        assert second.exited
        assert connector.attempts == ["ws://a", "ws://a"]


class TestMessages:

    @pytest.mark.asyncio
    async def test_new_block_dispatched_and_malformed_dropped(self):
        received = []
        connection = FakeConnection([
            new_block_message("b1"),
            "not json",
            json.dumps({"type": "heartbeat"}),
            json.dumps({"type": "new-block", "block": "oops"}),
            new_block_message("b2"),
        ])
        channel = LiveUpdateChannel(["ws://a"], connector=ScriptedConnector(connection))

        channel.connect(received.append)
        await wait_until(lambda: len(received) == 2)
        channel.disconnect()
        await channel.wait_closed()

        assert [b["hash"] for b in received] == ["b1", "b2"]
        assert channel.blocks_received == 2
        assert channel.parse_failures == 2

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_channel(self):
        seen = []

        def handler(block):
            seen.append(block["hash"])
            raise RuntimeError("consumer bug")

        connection = FakeConnection([new_block_message("b1"), new_block_message("b2")])
        connector = ScriptedConnector(connection)
        channel = LiveUpdateChannel(["ws://a"], connector=connector)

        channel.connect(handler)
        await wait_until(lambda: len(seen) == 2)
        channel.disconnect()
        await channel.wait_closed()

        assert seen == ["b1", "b2"]
        assert len(connector.attempts) == 1

    @pytest.mark.asyncio
    async def test_keepalive_ping_sent(self):
        connection = FakeConnection()
        channel = LiveUpdateChannel(
            ["ws://a"],
            keepalive_interval=0.01,
            connector=ScriptedConnector(connection),
        )

        channel.connect(lambda block: None)
        await wait_until(lambda: len(connection.sent) >= 2)
        channel.disconnect()
        await channel.wait_closed()
        sent_before = len(connection.sent)
        await asyncio.sleep(0.03)

        assert set(connection.sent) == {"ping"}
        assert len(connection.sent) == sent_before
