"""Per-source request throttling."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque


class RateLimiter:
    """Grant callers one at a time, at least ``delay`` seconds apart.

    Waiters are queued in arrival order and released by a single drain thread,
    so under contention the grant order matches the call order. A drain thread
    is started when the first waiter arrives and exits once the queue is empty.
    """

    def __init__(
        self,
        delay: float,
        *,
        time_source: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._delay = max(0.0, float(delay))
        self._time_source = time_source or time.monotonic
        self._sleep = sleep or time.sleep
        self._lock = threading.Lock()
        self._queue: Deque[threading.Event] = deque()
        self._draining = False
        self._last_grant_at: float | None = None

    @property
    def delay(self) -> float:
        return self._delay

    def wait(self) -> None:
        ticket = threading.Event()
        with self._lock:
            self._queue.append(ticket)
            if not self._draining:
                self._draining = True
                drainer = threading.Thread(target=self._drain, name="rate-limiter-drain", daemon=True)
                drainer.start()
        ticket.wait()

    def _drain(self) -> None:
        while True:
            with self._lock:
                if not self._queue:
                    self._draining = False
                    return
                last_grant_at = self._last_grant_at

            if last_grant_at is not None:
                remaining = self._delay - (self._time_source() - last_grant_at)
                if remaining > 0:
                    self._sleep(remaining)

            with self._lock:
                ticket = self._queue.popleft()
                self._last_grant_at = self._time_source()
            ticket.set()
