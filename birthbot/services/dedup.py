"""
Duplicate suppression for redelivered webhook events.

The gateway may deliver the same inbound message more than once; an event key
seen within the window is reported as a duplicate and not processed again.
"""

import time
from collections.abc import Callable
from threading import Lock


class InboundDeduplicator:
    def __init__(self, window_seconds: float = 86400, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = Lock()
        self._seen: dict[str, float] = {}

    def seen(self, key: str) -> bool:
        """
        Record key and report whether it was already seen inside the window.
        """
        now = self._clock()
        with self._lock:
            self._purge(now)
            if key in self._seen:
                return True
            self._seen[key] = now
            return False

    def _purge(self, now: float) -> None:
        expired = [k for k, ts in self._seen.items() if now - ts >= self.window_seconds]
        for key in expired:
            del self._seen[key]

    def __len__(self) -> int:
        return len(self._seen)
