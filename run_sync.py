#!/usr/bin/env python3
"""
run_sync.py - CLI entrypoint for block synchronization.

Usage:
    python run_sync.py --duration 120
    python run_sync.py --count 100 --no-live --graph-out data/graph.json
"""

import asyncio
import json
import signal
from datetime import timedelta
from pathlib import Path

import click

from chains.failover import build_failover_client
from config.settings import SyncSettings, load_sync_settings
from core.logging import get_logger, set_global_context, setup_logging
from core.time import ms_to_iso, now_iso, now_utc
from dag.builder import DagBuilder
from sync.cache import BlockCache
from sync.collection import BlockCollection
from sync.live import LiveUpdateChannel
from sync.pipeline import FetchPipeline
from sync.synchronizer import BlockSynchronizer

logger = get_logger("blockflow.sync")

# Graceful shutdown flag
_shutdown_requested = False


def handle_shutdown(signum: int, frame: object) -> None:
    """Handle shutdown signals."""
    global _shutdown_requested
    _shutdown_requested = True
    logger.info("Shutdown requested", extra={"context": {"signal": signum}})


def build_synchronizer(settings: SyncSettings, count: int, live: bool) -> BlockSynchronizer:
    """Wire client, cache, pipeline, channel and collection from settings."""
    client = build_failover_client(
        settings.node_urls,
        timeout_seconds=settings.timeout_seconds,
        retry_config=settings.retry.to_config(),
    )
    cache = BlockCache(
        capacity=settings.cache.capacity,
        expiry_ms=settings.cache.expiry_ms,
        cleanup_interval_ms=settings.cache.cleanup_interval_ms,
    )
    pipeline = FetchPipeline(client, cache, settings.fetch)

    channel = None
    if live and settings.live.enabled:
        channel = LiveUpdateChannel(
            settings.live.endpoints,
            keepalive_interval=settings.live.keepalive_interval_seconds,
            reconnect_delay=settings.live.reconnect_delay_seconds,
        )

    return BlockSynchronizer(
        pipeline,
        BlockCollection(max_blocks=settings.cache.capacity),
        channel=channel,
        poll_interval=settings.poll_interval_seconds,
        fetch_count=count,
    )


async def run(
    settings: SyncSettings,
    count: int,
    live: bool,
    duration_seconds: int | None,
    graph_out: Path | None,
) -> None:
    """Run until shutdown or duration limit, then write the graph."""
    synchronizer = build_synchronizer(settings, count, live)
    builder = DagBuilder(bucket_ms=settings.bucket_ms)

    started_at = now_iso()
    end_time = None
    if duration_seconds:
        end_time = now_utc() + timedelta(seconds=duration_seconds)

    synchronizer.start()
    try:
        while not _shutdown_requested:
            if end_time and now_utc() >= end_time:
                logger.info("Duration limit reached")
                break
            await asyncio.sleep(1)
    finally:
        synchronizer.stop()
        await synchronizer.wait_inflight()
        if synchronizer.channel is not None:
            await synchronizer.channel.wait_closed()
        await synchronizer.pipeline.client.close()

    blocks = synchronizer.collection.blocks
    graph = builder.build(blocks)
    summary = {
        "started_at": started_at,
        "finished_at": now_iso(),
        "blocks": len(blocks),
        "latest_block_at": ms_to_iso(blocks[0].timestamp) if blocks else None,
        "edges": len(graph.edges),
        "lanes": graph.lanes,
        "polls": synchronizer.polls_completed,
        "pushed": synchronizer.pushed_blocks,
        "last_error": str(synchronizer.collection.last_error or ""),
        "cache": synchronizer.pipeline.cache.get_stats(),
        "endpoints": synchronizer.pipeline.client.get_stats_summary(),
    }
    logger.info("Sync session complete", extra={"context": summary})

    if graph_out:
        graph_out.parent.mkdir(parents=True, exist_ok=True)
        graph_out.write_text(json.dumps(graph.to_dict(), indent=2), encoding="utf-8")
        logger.info(f"Graph written to {graph_out}")


@click.command()
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(path_type=Path),
    help="Path to sync.yaml (default: config/sync.yaml)",
)
@click.option(
    "--count",
    "-n",
    default=50,
    help="Latest blocks to fetch per poll",
)
@click.option(
    "--live/--no-live",
    default=True,
    help="Subscribe to the push channel",
)
@click.option(
    "--duration",
    "-d",
    default=None,
    type=int,
    help="Session duration in seconds (default: infinite)",
)
@click.option(
    "--graph-out",
    default=None,
    type=click.Path(path_type=Path),
    help="Write the final DAG as JSON",
)
@click.option(
    "--log-level",
    "-l",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Log level",
)
@click.option(
    "--json-logs/--no-json-logs",
    default=True,
    help="Use JSON log format",
)
def main(
    config_path: Path | None,
    count: int,
    live: bool,
    duration: int | None,
    graph_out: Path | None,
    log_level: str,
    json_logs: bool,
) -> None:
    """
    Blockflow block synchronization.

    Polls every chain-pair, follows the push channel and keeps the
    merged block collection and its DAG current.
    """
    setup_logging(level=log_level, json_output=json_logs)
    set_global_context(service="blockflow-sync", version="0.1.0")

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    settings = load_sync_settings(config_path)

    logger.info(
        "Starting blockflow sync",
        extra={"context": {
            "node_urls": settings.node_urls,
            "count": count,
            "live": live,
            "duration_seconds": duration,
        }},
    )

    asyncio.run(run(settings, count, live, duration, graph_out))


if __name__ == "__main__":
    main()
