"""
Centralized Logging Configuration for Krib Dispatch

This module provides a unified logging configuration that:
1. Respects the KRIB_DEBUG environment variable for debug logging
2. Uses consistent formatting across the entire codebase
3. Eliminates the need for individual logging.basicConfig() calls

Usage:
    from utils.logging_config import setup_logging, get_logger

    # Initialize logging (typically done once per module)
    setup_logging()
    logger = get_logger(__name__)

    # Use logging methods
    logger.debug("Debug message - only shown when KRIB_DEBUG=true")
    logger.info("Info message - always shown")
    logger.warning("Warning message")
    logger.error("Error message")

Environment Variables:
    KRIB_DEBUG: Set to "true" to enable debug logging
"""

import os, sys, logging

from typing import Optional


_console_handler: Optional[logging.Handler] = None


def setup_logging(level: Optional[str] = None) -> None:
    """
    Set up centralized logging configuration for the application.

    Args:
        level: Override the logging level. If None, uses KRIB_DEBUG environment variable.
    """
    global _console_handler

    # Determine logging level
    if level is not None:
        log_level = getattr(logging, level.upper(), logging.INFO)
    else:
        log_level = logging.DEBUG if is_debug_enabled() else logging.INFO

    # Get root logger
    root_logger = logging.getLogger()

    # Only configure once; later calls just adjust the level
    if _console_handler is None:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        # Console handler for terminal output
        _console_handler = logging.StreamHandler(sys.stdout)
        _console_handler.setFormatter(formatter)

        root_logger.setLevel(logging.DEBUG)
        root_logger.addHandler(_console_handler)

    if level is not None or _console_handler.level == logging.NOTSET:
        _console_handler.setLevel(log_level)

    # Log the configuration
    logger = logging.getLogger(__name__)
    logger.debug("Debug logging enabled via KRIB_DEBUG environment variable")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Name for the logger, typically __name__

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def is_debug_enabled() -> bool:
    """Check if debug logging is enabled via environment variable."""
    return os.getenv("KRIB_DEBUG", "false").lower() == "true"
