"""
config/settings.py - Sync configuration.

Defaults live in the dataclasses; config/sync.yaml overrides them;
environment variables (after load_dotenv) override both:
  BLOCKFLOW_NODE_URLS       comma-separated REST endpoints
  BLOCKFLOW_WS_URLS         comma-separated push endpoints
  BLOCKFLOW_TIMEOUT_SECONDS request timeout
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import load_dotenv

from chains.retry import RetryConfig
from core.constants import (
    CACHE_CLEANUP_INTERVAL_MS,
    CACHE_EXPIRY_MS,
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_MAX_DELAY_MS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_NODE_URLS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_WS_URLS,
    ErrorCode,
    KEEPALIVE_INTERVAL_SECONDS,
    MAX_KNOWN_BLOCKS,
    RECONNECT_DELAY_SECONDS,
    RETRY_JITTER_MS,
    TIMESTAMP_BUCKET_MS,
)
from core.exceptions import ValidationError
from sync.pipeline import FetchSettings

CONFIG_DIR = Path(__file__).parent
DEFAULT_CONFIG_PATH = CONFIG_DIR / "sync.yaml"


def load_yaml(filename: str | Path) -> dict[str, Any]:
    """
    Load a YAML configuration file.

    Args:
        filename: Path, or name of a file in the config directory when
            no such path exists

    Returns:
        Parsed YAML as dict
    """
    filepath = Path(filename)
    if not filepath.is_absolute() and not filepath.exists():
        filepath = CONFIG_DIR / filepath
    if not filepath.exists():
        raise FileNotFoundError(f"Config file not found: {filepath}")

    with open(filepath, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


@dataclass
class RetrySettings:
    """Retry thresholds."""
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS
    jitter_ms: int = RETRY_JITTER_MS

    def to_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.max_retries,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            jitter_ms=self.jitter_ms,
        )


@dataclass
class CacheSettings:
    """Block cache limits."""
    capacity: int = MAX_KNOWN_BLOCKS
    expiry_ms: int = CACHE_EXPIRY_MS
    cleanup_interval_ms: int = CACHE_CLEANUP_INTERVAL_MS


@dataclass
class LiveSettings:
    """Push channel settings."""
    enabled: bool = True
    endpoints: list[str] = field(default_factory=lambda: list(DEFAULT_WS_URLS))
    keepalive_interval_seconds: float = KEEPALIVE_INTERVAL_SECONDS
    reconnect_delay_seconds: float = RECONNECT_DELAY_SECONDS


@dataclass
class SyncSettings:
    """Full sync configuration."""
    node_urls: list[str] = field(default_factory=lambda: list(DEFAULT_NODE_URLS))
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    bucket_ms: int = TIMESTAMP_BUCKET_MS
    retry: RetrySettings = field(default_factory=RetrySettings)
    fetch: FetchSettings = field(default_factory=FetchSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    live: LiveSettings = field(default_factory=LiveSettings)

    def validate(self) -> None:
        """
        Raises:
            ValidationError: If an endpoint list is empty or a limit is not positive
        """
        if not self.node_urls:
            raise ValidationError("No node URLs configured", code=ErrorCode.INVALID_CONFIG)
        if self.live.enabled and not self.live.endpoints:
            raise ValidationError("No push endpoints configured", code=ErrorCode.INVALID_CONFIG)
        for name, value in (
            ("fetch.batch_size", self.fetch.batch_size),
            ("fetch.pair_concurrency", self.fetch.pair_concurrency),
            ("fetch.groups", self.fetch.groups),
            ("retry.max_retries", self.retry.max_retries),
            ("cache.capacity", self.cache.capacity),
        ):
            if value < 1:
                raise ValidationError(
                    f"{name} must be >= 1, got {value}",
                    code=ErrorCode.INVALID_CONFIG,
                )


def _section(cls: type, data: Mapping[str, Any] | None) -> Any:
    """Build a settings dataclass from a mapping, ignoring unknown keys."""
    data = data or {}
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


def _split_urls(value: str) -> list[str]:
    return [u.strip() for u in value.split(",") if u.strip()]


def apply_env_overrides(settings: SyncSettings, env: Mapping[str, str]) -> SyncSettings:
    """Apply BLOCKFLOW_* environment overrides in place."""
    if env.get("BLOCKFLOW_NODE_URLS"):
        settings.node_urls = _split_urls(env["BLOCKFLOW_NODE_URLS"])
    if env.get("BLOCKFLOW_WS_URLS"):
        settings.live.endpoints = _split_urls(env["BLOCKFLOW_WS_URLS"])
    if env.get("BLOCKFLOW_TIMEOUT_SECONDS"):
        try:
            settings.timeout_seconds = float(env["BLOCKFLOW_TIMEOUT_SECONDS"])
        except ValueError as e:
            raise ValidationError(
                f"Invalid BLOCKFLOW_TIMEOUT_SECONDS: {env['BLOCKFLOW_TIMEOUT_SECONDS']}",
                code=ErrorCode.INVALID_CONFIG,
            ) from e
    return settings


def load_sync_settings(
    config_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> SyncSettings:
    """
    Load sync settings from YAML and the environment.

    Args:
        config_path: Path to sync.yaml (default: config/sync.yaml)
        env: Environment mapping (default: os.environ after load_dotenv())

    Returns:
        Validated SyncSettings; a missing file means defaults
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        data = load_yaml(config_path)

    settings = SyncSettings(
        node_urls=list(data.get("node_urls") or DEFAULT_NODE_URLS),
        timeout_seconds=data.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS),
        poll_interval_seconds=data.get("poll_interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS),
        bucket_ms=data.get("bucket_ms", TIMESTAMP_BUCKET_MS),
        retry=_section(RetrySettings, data.get("retry")),
        fetch=_section(FetchSettings, data.get("fetch")),
        cache=_section(CacheSettings, data.get("cache")),
        live=_section(LiveSettings, data.get("live")),
    )

    if env is None:
        load_dotenv()
        env = os.environ
    apply_env_overrides(settings, env)

    settings.validate()
    return settings
