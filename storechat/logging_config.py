"""
Logging configuration for storechat.

A single package logger writes to stdout; modules obtain children of it
through get_logger(__name__).
"""
import logging
import sys

from storechat.config import settings

logger = logging.getLogger("storechat")


def setup_logging(level: str | None = None) -> None:
    """Attach the stdout handler once and apply the configured level."""
    level = (level or settings.LOG_LEVEL).upper()
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(handler)

    # Uvicorn configures the root logger too; avoid duplicate lines
    logger.propagate = False


def get_logger(name: str | None = None) -> logging.Logger:
    """Return the package logger, or a child for a module name like 'storechat.services.llm'."""
    if not name:
        return logger
    if name == "storechat" or name.startswith("storechat."):
        return logging.getLogger(name)
    return logging.getLogger(f"storechat.{name}")
