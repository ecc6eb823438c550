"""Logging setup shared by every Sellerboard module."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

LOG_DIR = os.getenv("SELLERBOARD_LOG_DIR", "logs")
LOG_FILE = os.path.join(LOG_DIR, "app.log")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DEFAULT_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
# SELLERBOARD_LOG_FILE=0 keeps output on the console only.
FILE_LOGGING = os.getenv("SELLERBOARD_LOG_FILE", "1").strip().lower() not in {"0", "false", "no", "off"}


def _handlers() -> list[logging.Handler]:
    formatter = logging.Formatter(LOG_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if FILE_LOGGING:
        os.makedirs(LOG_DIR, exist_ok=True)
        handlers.append(
            RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        )
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(DEFAULT_LEVEL)
    return handlers


def get_logger(name: str) -> logging.Logger:
    """Return a logger writing to the console and ``logs/app.log``."""

    logger = logging.getLogger(name)
    logger.setLevel(DEFAULT_LEVEL)
    logger.propagate = False
    if not logger.handlers:
        for handler in _handlers():
            logger.addHandler(handler)
    return logger
