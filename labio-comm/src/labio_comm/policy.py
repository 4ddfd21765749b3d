"""Timing and retry policies for instrument connections."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How often a malformed response is re-queried.

    Attributes:
        attempts: Total number of tries, so 2 means one retry.
        backoff_ms: Pause between tries, in milliseconds.
    """

    attempts: int = 2
    backoff_ms: int = 0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.backoff_ms < 0:
            raise ValueError("backoff_ms must be >= 0")

    def pause(self) -> None:
        """Sleep for the backoff interval, if any."""
        if self.backoff_ms > 0:
            time.sleep(self.backoff_ms / 1000.0)


class IOLimiter:
    """Enforce a minimum spacing between consecutive I/O operations.

    A single permit is taken before each operation and handed back by a
    timer once *interval_ms* has elapsed, so the next operation waits until
    then. An interval of zero disables limiting.

    Args:
        interval_ms: Minimum spacing in milliseconds.

    Example:
        >>> limiter = IOLimiter(50)
        >>> limiter.acquire()
        >>> handle.write(b"MEAS?\\n")
        >>> limiter.release_later()
    """

    def __init__(self, interval_ms: int = 0) -> None:
        if interval_ms < 0:
            raise ValueError("interval_ms must be >= 0")
        self._interval_ms = interval_ms
        self._permit = threading.Semaphore(1)
        self._lock = threading.Lock()
        self._held = False
        self._timer: threading.Timer | None = None

    @property
    def interval_ms(self) -> int:
        """The minimum spacing in milliseconds."""
        return self._interval_ms

    @property
    def enabled(self) -> bool:
        """True if the interval is non-zero."""
        return self._interval_ms > 0

    def acquire(self) -> None:
        """Block until the previous operation's interval has elapsed."""
        if not self.enabled:
            return
        if not self._permit.acquire(blocking=False):
            logger.debug("Waiting %d ms for IO interval", self._interval_ms)
            self._permit.acquire()
        with self._lock:
            self._held = True

    def release_later(self) -> None:
        """Return the permit once the interval has elapsed."""
        if not self.enabled:
            return
        timer = threading.Timer(self._interval_ms / 1000.0, self._release)
        timer.daemon = True
        self._timer = timer
        timer.start()

    def cancel(self) -> None:
        """Release immediately, dropping any pending timer."""
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        self._release()

    def _release(self) -> None:
        with self._lock:
            if self._held:
                self._held = False
                self._permit.release()
