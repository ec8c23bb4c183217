"""Logging setup: rich console output plus a daily log file."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "debloater"

FILE_FORMAT = "%(asctime)s %(levelname)-5s [%(filename)s:%(lineno)d] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def log_file_path(cache_dir: Path, today: Optional[datetime] = None) -> Path:
    return cache_dir / f"uad_{(today or datetime.now()).strftime('%Y%m%d')}.log"


def setup_logging(
    cache_dir: Path,
    verbose: bool = False,
    console: Optional[Console] = None,
) -> Path:
    """Attach console and file handlers to the package logger."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
    )
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.addHandler(console_handler)

    cache_dir.mkdir(parents=True, exist_ok=True)
    path = log_file_path(cache_dir)
    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
    logger.addHandler(file_handler)
    return path
