"""
sync/live.py - Push channel for newly produced blocks.

CHANNEL STATE CONTRACT:
=======================

States (ChannelStatus):
  disconnected -> connecting -> connected -> disconnected (loop)

- connect attempts the endpoint at the current rotation index
- while connected: keepalive "ping" every keepalive_interval seconds;
  {"type": "new-block", "block": {...}} messages go to on_block (raw,
  not normalized); malformed payloads are logged and dropped
- any error or close: report disconnected, rotate endpoint, reconnect
  after reconnect_delay seconds, forever (no backoff, no ceiling)
- disconnect(): synchronous. running is False on return and no reconnect
  follows; the connection is closed as the cancelled loop unwinds, which
  wait_closed() waits for. connect() may be called again right away
=======================
"""

import asyncio
import functools
import json
from typing import Any, Callable, Optional, Sequence

import websockets

from core.constants import (
    DEFAULT_WS_URLS,
    KEEPALIVE_INTERVAL_SECONDS,
    KEEPALIVE_MESSAGE,
    NEW_BLOCK_MESSAGE_TYPE,
    RECONNECT_DELAY_SECONDS,
    ChannelStatus,
    ErrorCode,
)
from core.exceptions import ValidationError
from core.logging import get_logger

logger = get_logger(__name__)

BlockHandler = Callable[[dict], None]
StatusHandler = Callable[[ChannelStatus], None]

# url -> async context manager yielding a connection with send(), close()
# and async iteration over inbound messages
Connector = Callable[[str], Any]

default_connector: Connector = functools.partial(
    websockets.connect,
    open_timeout=10,
    ping_interval=None,
)


class Subscription:
    """Handle returned by LiveUpdateChannel.connect()."""

    def __init__(self, channel: "LiveUpdateChannel", task: asyncio.Task):
        self._channel = channel
        self._task = task

    @property
    def active(self) -> bool:
        return self._channel._run_task is self._task and self._channel.running

    def stop(self) -> None:
        """Stop the channel; no reconnect follows. No-op once superseded."""
        if self._channel._run_task is self._task:
            self._channel.disconnect()

    async def wait_closed(self) -> None:
        await asyncio.wait([self._task])


class LiveUpdateChannel:
    """
    Reconnecting websocket subscription with endpoint rotation.
    """

    def __init__(
        self,
        endpoints: Sequence[str] = DEFAULT_WS_URLS,
        keepalive_interval: float = KEEPALIVE_INTERVAL_SECONDS,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        connector: Connector = default_connector,
    ):
        if not endpoints:
            raise ValidationError(
                "LiveUpdateChannel requires at least one endpoint",
                code=ErrorCode.INVALID_CONFIG,
            )
        self.endpoints = list(endpoints)
        self.keepalive_interval = keepalive_interval
        self.reconnect_delay = reconnect_delay
        self._connector = connector

        self._index = 0
        self.status = ChannelStatus.DISCONNECTED
        self._on_block: Optional[BlockHandler] = None
        self._on_status: Optional[StatusHandler] = None
        self._run_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._closing: set[asyncio.Task] = set()

        self.blocks_received = 0
        self.parse_failures = 0

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_endpoint(self) -> str:
        return self.endpoints[self._index]

    @property
    def running(self) -> bool:
        return self._run_task is not None and not self._run_task.done()

    def _is_current(self) -> bool:
        return self._run_task is not None and self._run_task is asyncio.current_task()

    def connect(
        self,
        on_block: BlockHandler,
        on_status_change: Optional[StatusHandler] = None,
    ) -> Subscription:
        """
        Start the channel. Must be called from a running event loop.

        Returns:
            Subscription handle with stop()
        """
        if self.running:
            raise RuntimeError("LiveUpdateChannel is already connected")
        self._on_block = on_block
        self._on_status = on_status_change
        self._run_task = asyncio.get_running_loop().create_task(self._run())
        return Subscription(self, self._run_task)

    def disconnect(self) -> None:
        """Stop keepalive, close the connection, suppress reconnect."""
        task, self._run_task = self._run_task, None
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            self._keepalive_task = None
        if task is not None and not task.done():
            task.cancel()
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)
        self._set_status(ChannelStatus.DISCONNECTED)

    async def wait_closed(self) -> None:
        """Wait until every run loop stopped so far has fully exited."""
        tasks = list(self._closing)
        if self._run_task is not None:
            tasks.append(self._run_task)
        if tasks:
            await asyncio.wait(tasks)

    def _set_status(self, status: ChannelStatus) -> None:
        if status == self.status:
            return
        self.status = status
        logger.info(
            f"Live channel {status.value}",
            extra={"context": {"endpoint": self.current_endpoint}},
        )
        if self._on_status is not None:
            try:
                self._on_status(status)
            except Exception:
                logger.error("Status handler failed", exc_info=True)

    def _rotate(self) -> None:
        self._index = (self._index + 1) % len(self.endpoints)

    async def _run(self) -> None:
        while self._is_current():
            url = self.current_endpoint
            self._set_status(ChannelStatus.CONNECTING)
            keepalive: Optional[asyncio.Task] = None
            try:
                async with self._connector(url) as connection:
                    self._set_status(ChannelStatus.CONNECTED)
                    keepalive = asyncio.create_task(self._keepalive(connection))
                    self._keepalive_task = keepalive
                    async for message in connection:
                        self._handle_message(message)
                logger.warning("Live channel closed", extra={"context": {"endpoint": url}})
            except Exception as e:
                logger.error(
                    f"Live channel error: {e}",
                    extra={"context": {"endpoint": url}},
                )
            finally:
                if keepalive is not None:
                    keepalive.cancel()
                    if self._keepalive_task is keepalive:
                        self._keepalive_task = None

            if not self._is_current():
                break
            self._set_status(ChannelStatus.DISCONNECTED)
            self._rotate()
            await asyncio.sleep(self.reconnect_delay)

    async def _keepalive(self, connection: Any) -> None:
        while True:
            await asyncio.sleep(self.keepalive_interval)
            try:
                await connection.send(KEEPALIVE_MESSAGE)
            except Exception as e:
                # Connection loss is picked up by the receive loop
                logger.debug(f"Keepalive failed: {e}")

    def _handle_message(self, message: Any) -> None:
        try:
            data = json.loads(message)
        except (TypeError, ValueError) as e:
            self.parse_failures += 1
            logger.error(f"Live channel parse error: {e}")
            return

        if not isinstance(data, dict) or data.get("type") != NEW_BLOCK_MESSAGE_TYPE:
            return
        block = data.get("block")
        if not isinstance(block, dict):
            self.parse_failures += 1
            logger.error("Live channel new-block message without block payload")
            return

        self.blocks_received += 1
        if self._on_block is None:
            return
        try:
            self._on_block(block)
        except Exception:
            logger.error("Block handler failed", exc_info=True)
