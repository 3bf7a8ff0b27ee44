# -*- coding: utf-8 -*-
"""
Retry delay helpers.
"""

from __future__ import annotations

from typing import Iterator

from chatsync.config import RESUBSCRIBE_BACKOFF_START, RESUBSCRIBE_MAX_DELAY


def backoff_delays(start: float = RESUBSCRIBE_BACKOFF_START, limit: float = RESUBSCRIBE_MAX_DELAY) -> Iterator[float]:
    """Exponential delays in seconds, capped at ``limit``. Never ends."""
    delay = start
    while True:
        yield delay
        delay = min(delay * 2, limit)
