"""Logging configuration and utilities.

This module sets up the logging configuration for the application and provides
a utility function to get loggers with consistent naming.
"""

import logging
import sys

from .config import LoggingSettings, get_settings


def configure_logging(
    level: str | None = None,
    format_string: str | None = None,
    settings: LoggingSettings | None = None,
) -> None:
    """Configure logging for the application.

    Arguments take priority, then the given logging settings, then the
    settings loaded from the environment.

    Args:
        level: Optional logging level (e.g., "DEBUG", "INFO").
        format_string: Optional logging format string.
        settings: Optional logging settings to use instead of the global ones.
    """
    logging_settings = settings or get_settings().logging

    log_level = level or logging_settings.level
    log_format = format_string or logging_settings.format

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=log_format,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Silence noisy loggers
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)

    logging.info("Logging configured with level: %s", log_level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the specified name.

    Args:
        name: The name of the logger.

    Returns:
        A logger instance.
    """
    return logging.getLogger(name)
