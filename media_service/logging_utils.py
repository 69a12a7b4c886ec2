"""Centralized logging configuration for the media processing service."""

from __future__ import annotations

import logging
from logging import Logger
from typing import Iterable


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def resolve_log_level(value: str | int) -> int:
    """Return the numeric logging level for *value*, defaulting to ``INFO``."""

    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value).strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(
    level: str | int = logging.INFO,
    *,
    handlers: Iterable[logging.Handler] | None = None,
) -> Logger:
    """Configure the root logger with sensible defaults."""

    logger = logging.getLogger()
    logger.setLevel(resolve_log_level(level))

    if handlers is None:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        logger.addHandler(stream_handler)
    else:
        for handler in handlers:
            logger.addHandler(handler)

    return logger


__all__ = ["configure_logging", "resolve_log_level", "DEFAULT_LOG_FORMAT"]
