"""Fixed-window admission control for connector endpoints."""

from __future__ import annotations

import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class FixedWindowRateLimiter:
    """Counts calls per ``(endpoint, window index)`` bucket.

    State is local to one connector instance and one process; it is an
    advisory guard in front of the exchange's own limits.
    """

    def __init__(self, clock: Callable[[], int] | None = None):
        self._clock = clock or _now_ms
        self._counters: dict[tuple[str, int], int] = {}

    def check(self, endpoint: str, limit: int, window_ms: int) -> bool:
        """Admit one call for ``endpoint`` if the current window has room.

        Args:
            endpoint: Logical endpoint name (e.g. 'order')
            limit: Maximum calls per window
            window_ms: Window length in milliseconds

        Returns:
            True if admitted (and counted), False if denied
        """
        window = self._clock() // window_ms
        self._purge(endpoint, window)

        key = (endpoint, window)
        current = self._counters.get(key, 0)
        if current >= limit:
            logger.warning("Rate limit exceeded for %s", endpoint)
            return False

        self._counters[key] = current + 1
        return True

    def count(self, endpoint: str, window_ms: int) -> int:
        """Calls admitted for ``endpoint`` in the current window."""
        return self._counters.get((endpoint, self._clock() // window_ms), 0)

    def __len__(self) -> int:
        return len(self._counters)

    def _purge(self, endpoint: str, window: int) -> None:
        stale = [key for key in self._counters if key[0] == endpoint and key[1] < window]
        for key in stale:
            del self._counters[key]
