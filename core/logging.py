# PATH: core/logging.py
"""
Structured JSON logging.

All contextual fields are passed only via extra={"context": {...}}.

All logs include:
- timestamp (ISO 8601)
- level
- logger
- message
- context (chain pair, height, endpoint, attempt, etc.)
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# Global context that gets added to all log entries
_global_context: dict[str, Any] = {}


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Output format:
    {
        "timestamp": "2026-01-04T12:00:00.000+00:00",
        "level": "WARNING",
        "logger": "sync.pipeline",
        "message": "Height fetch failed",
        "context": {
            "chain_from": 0,
            "chain_to": 3,
            "height": 4211873
        }
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = {}
        context.update(_global_context)

        if hasattr(record, "context") and record.context:
            context.update(record.context)

        if record.exc_info:
            context["exception"] = self.formatException(record.exc_info)

        if context:
            log_entry["context"] = context

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable formatter for console output.
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        base = f"{timestamp} | {record.levelname:<8} | {record.name} | {record.getMessage()}"

        if hasattr(record, "context") and record.context:
            items = list(record.context.items())
            ctx_str = ", ".join(f"{k}={v}" for k, v in items[:4])
            if len(items) > 4:
                ctx_str += f", ... (+{len(items) - 4} more)"
            base += f" | {ctx_str}"

        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)

        return base


class ContextAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds context to all log entries.
    """

    def process(
        self, msg: str, kwargs: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        extra = kwargs.get("extra", {})
        context = {**self.extra, **extra.get("context", {})}

        kwargs["extra"] = {"context": context}
        return msg, kwargs


def set_global_context(**kwargs: Any) -> None:
    """
    Set global context that gets added to all log entries.

    Example:
        set_global_context(network="mainnet", version="0.1.0")
    """
    global _global_context
    _global_context.update(kwargs)


def clear_global_context() -> None:
    """Clear global logging context."""
    global _global_context
    _global_context = {}


def get_logger(name: str, **context: Any) -> ContextAdapter:
    """
    Get a logger with optional default context.

    Args:
        name: Logger name (typically module name)
        **context: Default context for all log entries from this logger

    Returns:
        ContextAdapter with structured logging

    Example:
        logger = get_logger("sync.pipeline", network="mainnet")
        logger.info("Fetched blocks", extra={"context": {"count": 50}})
    """
    logger = logging.getLogger(name)
    return ContextAdapter(logger, context)


def setup_logging(
    level: str = "INFO",
    json_output: bool = True,
    log_file: str | None = None,
) -> None:
    """
    Setup logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Use JSON formatting (recommended for production)
        log_file: Optional file path for logging (always JSON)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
