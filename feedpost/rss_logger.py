"""
Pipeline logger for feed ingestion.

Ingestion code logs through the "feedpost.rss" logger so its verbosity can
be tuned independently of the server (RSS_LOG_LEVEL).
"""

import logging

RSS_LOGGER_NAME = "feedpost.rss"

LEVELS = {
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": logging.DEBUG,
}

rss_logger = logging.getLogger(RSS_LOGGER_NAME)


def resolve_level(name: str | None) -> int:
    """Map an RSS log level name to a logging level (unknown names mean info)."""
    if not name:
        return logging.INFO
    return LEVELS.get(name.strip().lower(), logging.INFO)


def configure_rss_logger(level_name: str | None) -> logging.Logger:
    rss_logger.setLevel(resolve_level(level_name))
    return rss_logger
