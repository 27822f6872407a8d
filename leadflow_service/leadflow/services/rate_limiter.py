from __future__ import annotations

import asyncio
import time


class AsyncRateLimiter:
    def __init__(self, rate_per_second: float, min_rate: float = 1.0) -> None:
        self.base_rate = max(rate_per_second, min_rate)
        self.rate_per_second = self.base_rate
        self.min_rate = min_rate
        self._lock = asyncio.Lock()
        self._last_called = 0.0

    async def wait(self) -> None:
        async with self._lock:
            now = time.monotonic()
            min_interval = 1 / self.rate_per_second
            delta = now - self._last_called
            if delta < min_interval:
                await asyncio.sleep(min_interval - delta)
            self._last_called = time.monotonic()

    def slow_down(self) -> None:
        self.rate_per_second = max(self.rate_per_second / 2, self.min_rate)

    def recover(self) -> None:
        self.rate_per_second = min(self.rate_per_second * 2, self.base_rate)


class ChunkPacer:
    """Chunk size and inter-chunk delay that react to provider rate limiting.

    A throttled chunk halves the size and doubles the delay; ``recovery_chunks``
    clean chunks in a row grow the size by one and halve the delay back toward
    their starting values.
    """

    def __init__(
        self,
        chunk_size: int,
        min_chunk_size: int,
        max_chunk_size: int,
        delay: float,
        max_delay: float,
        recovery_chunks: int = 3,
    ) -> None:
        self.chunk_size = chunk_size
        self.min_chunk_size = min_chunk_size
        self.max_chunk_size = max_chunk_size
        self.base_delay = delay
        self.delay = delay
        self.max_delay = max_delay
        self.recovery_chunks = recovery_chunks
        self._clean_streak = 0

    def record(self, throttled: bool) -> None:
        if throttled:
            self._clean_streak = 0
            self.chunk_size = max(self.min_chunk_size, self.chunk_size // 2)
            self.delay = min(self.max_delay, max(self.delay * 2, 0.1))
            return

        self._clean_streak += 1
        if self._clean_streak >= self.recovery_chunks:
            self._clean_streak = 0
            self.chunk_size = min(self.max_chunk_size, self.chunk_size + 1)
            self.delay = max(self.base_delay, self.delay / 2)
