"""Logging setup utilities for devbridge."""

from __future__ import annotations

import logging
import sys

from devbridge.config.settings import LoggingConfig

PACKAGE_LOGGER = "devbridge"

# Marks handlers installed here so a later call can replace them.
_HANDLER_TAG = "_devbridge_handler"


def _tag(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_TAG, True)
    return handler


def setup_logging(config: LoggingConfig | None = None) -> logging.Logger:
    """Configure the ``devbridge`` package logger.

    Safe to call more than once: handlers from an earlier call are
    closed and replaced, so reconfiguring (e.g. ``--verbose`` after the
    config file was loaded) never duplicates log lines. Handlers added
    by anyone else are left alone.

    Args:
        config: Logging configuration. If None, uses defaults
                (INFO level, stderr output).

    Returns:
        The configured package logger.
    """
    if config is None:
        config = LoggingConfig()

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    for handler in list(package_logger.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            package_logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(config.format)

    console_handler = _tag(logging.StreamHandler(sys.stderr))
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    if config.file:
        file_handler = _tag(logging.FileHandler(config.file))
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    package_logger.info("Logging initialized at %s level", config.level)
    return package_logger
