import asyncio
import time
from typing import Awaitable, Callable, Optional

class Pacer:
    """Keeps successive outbound calls at least ``interval`` seconds apart.

    ``clock`` and ``sleep`` are injectable so tests can observe the spacing
    without real waiting.
    """

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self._last: Optional[float] = None

    async def wait(self) -> None:
        """Block until the next call may go out, then mark it as started"""
        if self._last is not None:
            remaining = self.interval - (self.clock() - self._last)
            if remaining > 0:
                await self.sleep(remaining)
        self._last = self.clock()
