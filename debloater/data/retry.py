"""Retry helper for local file operations held by antivirus or indexers."""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterator, Optional, TypeVar

from debloater.core.errors import PermissionDenied

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_WAIT_SECONDS = 28.0
DELAY_UNIT = 0.12


def fibonacci_delays(limit: float = MAX_WAIT_SECONDS, unit: float = DELAY_UNIT) -> Iterator[float]:
    """Fibonacci-spaced delays whose sum stays within `limit`."""
    a, b = 1, 1
    spent = 0.0
    while spent + a * unit <= limit:
        yield a * unit
        spent += a * unit
        a, b = b, a + b


def retry_on_permission_error(
    operation: Callable[[], T],
    description: str = "file operation",
    limit: float = MAX_WAIT_SECONDS,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """Run `operation`, retrying PermissionError with growing delays."""
    delays = fibonacci_delays(limit)
    while True:
        try:
            return operation()
        except PermissionError as e:
            delay = next(delays, None)
            if delay is None:
                raise PermissionDenied(f"{description}: {e}") from e
            logger.debug("%s denied, retrying in %.1fs", description, delay)
            (sleep or time.sleep)(delay)
