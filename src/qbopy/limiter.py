"""Fixed-window rate limiting for QuickBooks Online API calls."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any

logger = logging.getLogger(__name__)


class Permit:
    """Admission handle returned by a rate limiter.

    Releasing hands the slot back to the window that admitted it. Releasing
    more than once, or after that window has rolled over, does nothing.
    """

    def __init__(self, limiter: _FixedWindow, window_start: float) -> None:
        self._limiter = limiter
        self.window_start = window_start
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Return the slot to the limiter."""
        if self._released:
            return
        self._released = True
        self._limiter._release(self.window_start)

    def __enter__(self) -> Permit:
        return self

    def __exit__(self, *args: Any) -> None:
        self.release()

    async def __aenter__(self) -> Permit:
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.release()


class _FixedWindow:
    """Shared window bookkeeping for the sync and async limiters.

    The window check, reset and admission run as one critical section under
    a lock, so two callers can never both reset the same expired window.
    """

    def __init__(self, max_requests: int, duration: float) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if duration <= 0:
            raise ValueError("duration must be positive")
        self.max_requests = max_requests
        self.duration = duration
        self._lock = threading.Lock()
        self._window_start = time.monotonic()
        self._requests = 0

    @property
    def requests_in_window(self) -> int:
        """Number of admitted, unreleased requests in the current window."""
        with self._lock:
            return self._requests

    def _try_admit(self) -> tuple[Permit | None, float]:
        """Admit the caller or report how long until the window resets."""
        with self._lock:
            now = time.monotonic()
            if now - self._window_start >= self.duration:
                self._window_start = now
                self._requests = 0
            if self._requests < self.max_requests:
                self._requests += 1
                return Permit(self, self._window_start), 0.0
            return None, self.duration - (now - self._window_start)

    def _release(self, window_start: float) -> None:
        with self._lock:
            # Only give back a slot to the window that handed it out
            if window_start == self._window_start and self._requests > 0:
                self._requests -= 1

    @staticmethod
    def _check_deadline(deadline: float | None, wait: float) -> None:
        if deadline is not None and time.monotonic() + wait > deadline:
            raise TimeoutError("Timed out waiting for rate limit permit")


class RateLimiter(_FixedWindow):
    """Rate limiter admitting at most ``max_requests`` per ``duration`` seconds.

    Blocks the calling thread until a permit is available. Safe to share
    between threads.
    """

    def acquire(self, timeout: float | None = None) -> Permit:
        """Acquire a permit, sleeping until the current window resets if full.

        Args:
            timeout: Maximum seconds to wait; None waits as long as needed

        Returns:
            Permit to release once the request has finished

        Raises:
            TimeoutError: If no permit could be granted within ``timeout``
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            permit, wait = self._try_admit()
            if permit is not None:
                return permit
            self._check_deadline(deadline, wait)
            logger.debug("Rate limit of %d reached, waiting %.3fs", self.max_requests, wait)
            # Every waiter re-contends for the fresh window after sleeping
            time.sleep(wait)


class AsyncRateLimiter(_FixedWindow):
    """Async rate limiter admitting at most ``max_requests`` per ``duration`` seconds.

    Suspends the calling task instead of blocking the event loop. Cancelling
    a waiting task leaves the limiter untouched.
    """

    async def acquire(self, timeout: float | None = None) -> Permit:
        """Acquire a permit, suspending until the current window resets if full.

        Args:
            timeout: Maximum seconds to wait; None waits as long as needed

        Returns:
            Permit to release once the request has finished

        Raises:
            TimeoutError: If no permit could be granted within ``timeout``
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            permit, wait = self._try_admit()
            if permit is not None:
                return permit
            self._check_deadline(deadline, wait)
            logger.debug("Rate limit of %d reached, waiting %.3fs", self.max_requests, wait)
            await asyncio.sleep(wait)
