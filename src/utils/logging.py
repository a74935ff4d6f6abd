"""
Logging configuration utilities for the FIX terminal client.

Log records go to stderr so that they never mix with the console's
operator output on stdout.
"""

import logging
import sys
from typing import Optional, TextIO


CLIENT_LOGGERS = ['src', 'src.fixclient']


def setup_logger(
    name: str,
    level: int = logging.INFO,
    format_string: Optional[str] = None,
    include_timestamp: bool = True,
    stream: Optional[TextIO] = None
) -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    Args:
        name: Logger name
        level: Logging level
        format_string: Custom format string
        include_timestamp: Whether to include timestamp in logs
        stream: Output stream, stderr by default

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid adding multiple handlers
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(level)

    if format_string is None:
        if include_timestamp:
            format_string = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        else:
            format_string = '%(name)s - %(levelname)s - %(message)s'

    handler.setFormatter(logging.Formatter(format_string))
    logger.addHandler(handler)

    return logger


def set_global_log_level(level: int) -> None:
    """
    Set the global logging level for all loggers.

    Args:
        level: Logging level (e.g., logging.DEBUG, logging.INFO)
    """
    logging.getLogger().setLevel(level)

    for logger_name in CLIENT_LOGGERS:
        logger = logging.getLogger(logger_name)
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)


def configure_debug_logging() -> None:
    """Configure debug-level logging, enabled by --verbose."""
    set_global_log_level(logging.DEBUG)

    debug_format = '%(asctime)s - %(name)s:%(lineno)d - %(threadName)s - %(levelname)s - %(message)s'

    for logger_name in [''] + CLIENT_LOGGERS:
        for handler in logging.getLogger(logger_name).handlers:
            handler.setFormatter(logging.Formatter(debug_format))


def silence_external_loggers() -> None:
    """Silence noisy external library loggers."""
    logging.getLogger('asyncio').setLevel(logging.WARNING)
    logging.getLogger('prompt_toolkit').setLevel(logging.WARNING)
    logging.getLogger('rich').setLevel(logging.WARNING)
