"""
Logging setup — one append-only log file plus console echo.

Line format: ``2024-05-01 09:30:12 [INFO] message``
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOGGER_NAME = "safelist_sync"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(log_file: str | Path, verbose: bool = False) -> logging.Logger:
    """
    Attach a file handler (append mode) and a console handler to the
    package logger. Handlers from a previous call are closed and replaced.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    path = Path(log_file)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    logger.addHandler(console)

    return logger


def shutdown_logging() -> None:
    """Flush and detach all handlers from the package logger."""
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.flush()
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True


class TenantLogger(logging.LoggerAdapter):
    """Prefixes every record with the tenant it belongs to."""

    def process(self, msg, kwargs):
        return f"[{self.extra['tenant']}] {msg}", kwargs


def tenant_logger(logger: logging.Logger, tenant: str) -> TenantLogger:
    return TenantLogger(logger, {"tenant": tenant})
