"""Minimum spacing between transcription requests."""

import time
import logging
import threading
from typing import Callable, Optional

from .errors import TranscriptionCancelled

logger = logging.getLogger(__name__)


class RateLimiter:
    """Hands out request slots at least ``min_interval`` seconds apart.

    The slot is reserved under the lock before the caller sleeps, so
    concurrent callers always get distinct, evenly spaced slots.
    """

    def __init__(self, min_interval: float = 0.0, clock: Callable[[], float] = time.monotonic):
        self.min_interval = min_interval
        self.clock = clock
        self.lock = threading.Lock()
        self._last_slot: Optional[float] = None

    def time_until_next_allowed(self) -> float:
        with self.lock:
            if self._last_slot is None:
                return 0.0
            return max(0.0, self._last_slot + self.min_interval - self.clock())

    def reserve(self) -> float:
        """Reserve the next slot and return how long the caller must wait for it."""
        with self.lock:
            now = self.clock()
            if self._last_slot is None:
                slot = now
            else:
                slot = max(now, self._last_slot + self.min_interval)
            self._last_slot = slot
        return max(0.0, slot - now)

    def wait_and_record(self, cancel_event: Optional[threading.Event] = None) -> None:
        """Reserve a slot and block until it is due.

        Raises TranscriptionCancelled if ``cancel_event`` is set before or during the wait.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise TranscriptionCancelled()

        wait = self.reserve()
        if wait <= 0:
            return

        logger.debug(f"Rate limiter: waiting {wait:.2f}s for next request slot")
        if cancel_event is not None:
            if cancel_event.wait(wait):
                raise TranscriptionCancelled()
        else:
            time.sleep(wait)

    def reset(self) -> None:
        with self.lock:
            self._last_slot = None
