"""Logging setup for the planning engine."""

from __future__ import annotations

import logging

from .config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)8s | %(name)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str | int | None = None) -> logging.Logger:
    """Attach a console handler to the package logger once and set its level."""

    resolved = level if level is not None else settings.log_level
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO

    logger = logging.getLogger("fieldroute")
    logger.setLevel(resolved)
    if not any(getattr(handler, "_fieldroute", False) for handler in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        handler._fieldroute = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger
