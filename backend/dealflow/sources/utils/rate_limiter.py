"""Per-adapter request throttle."""

import asyncio
import time
from typing import Callable, Optional


class RequestThrottle:
    """Enforces a minimum interval between consecutive requests.

    Each source adapter owns one throttle. Callers that arrive before the
    interval has elapsed since the previous request sleep until it has;
    concurrent callers are serialized by the lock so no two requests are
    released closer together than ``min_interval``. State lives only in
    memory and resets with the process.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize throttle.

        Args:
            min_interval: Seconds between two requests (e.g. 0.2 = 5 RPS)
            clock: Monotonic clock, injectable for tests
        """
        self.min_interval = max(0.0, min_interval)
        self._clock = clock
        self._last_request: Optional[float] = None
        self._lock = asyncio.Lock()

    @classmethod
    def per_minute(cls, requests_per_minute: float) -> "RequestThrottle":
        return cls(60.0 / requests_per_minute)

    @property
    def last_request(self) -> Optional[float]:
        return self._last_request

    async def wait(self) -> float:
        """Wait until a request may be issued, then claim the slot.

        Returns:
            Seconds spent waiting
        """
        waited = 0.0
        async with self._lock:
            while True:
                now = self._clock()
                if self._last_request is None:
                    break
                remaining = self.min_interval - (now - self._last_request)
                if remaining <= 0:
                    break
                await asyncio.sleep(remaining)
                waited += remaining
            self._last_request = self._clock()
        return waited
