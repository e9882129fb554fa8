"""
Logging helpers shared by every module of the coin market pipeline.
"""
import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure the root logger for the whole process

    The handler is installed once; later calls only change the level.

    Args:
        level: Log level name. Defaults to the LOG_LEVEL environment variable.
    """
    global _configured

    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    # httpx logs every request at INFO, once per tick
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a module logger, configuring logging on first use"""
    if not _configured:
        configure_logging()
    return logging.getLogger(name)


def log_startup_banner(logger: logging.Logger, title: str, url: str):
    """Log a startup banner with the server URL"""
    logger.info("=" * 60)
    logger.info(title)
    logger.info(f"Listening on {url}")
    logger.info("=" * 60)
