"""Logging setup: JSON for deployed environments, text for local development."""

import logging
from typing import TextIO

from pythonjsonlogger.json import JsonFormatter

from fitness_analyst.core.config import Settings, get_settings

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "hpack", "websockets")


def build_formatter(log_format: str) -> logging.Formatter:
    """Formatter for ``log_format`` ("json" or "text")."""
    if log_format == "json":
        return JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
            static_fields={"app": "fitness-analyst"},
        )
    return logging.Formatter(TEXT_FORMAT)


def configure_logging(settings: Settings | None = None, stream: TextIO | None = None) -> None:
    """Install a single root handler according to the settings.

    The format comes from ``Settings.log_format`` (explicit LOG_FORMAT,
    else text in development and JSON elsewhere).  HTTP and realtime
    client loggers are held at WARNING unless LOG_LEVEL is DEBUG.

    Args:
        settings: Settings to read; the cached settings when omitted.
        stream: Handler output; stderr when omitted.
    """
    settings = settings or get_settings()
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream)
    handler.setFormatter(build_formatter(settings.log_format))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    library_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
