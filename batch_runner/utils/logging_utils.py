"""Logging utilities for the batch runner."""

import logging
from typing import Optional


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Configure logging for applications embedding the batch runner.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR). None reads
            ``batching.log_level`` from settings.
        log_file: Optional path of a file that receives the same records

    """
    if level is None:
        from batch_runner.utils.settings import get_batching_settings

        level = str(get_batching_settings()["log_level"])

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the specified module.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance

    """
    return logging.getLogger(name)
