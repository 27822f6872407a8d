from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

TokenFetcher = Callable[[httpx.AsyncClient], Awaitable[str]]


class TokenProvider:
    """Process-wide cache for the verifier's access token.

    Refreshes are single-flight: callers that find the token expired queue on
    the lock, and all but the first see the refreshed value on the re-check.
    """

    def __init__(
        self,
        fetcher: TokenFetcher,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetcher = fetcher
        self._ttl = ttl_seconds
        self._clock = clock
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    def _cached(self) -> str | None:
        if self._token and self._clock() < self._expires_at:
            return self._token
        return None

    async def get_token(self, client: httpx.AsyncClient) -> str:
        token = self._cached()
        if token:
            return token

        async with self._lock:
            token = self._cached()
            if token:
                return token
            token = await self._fetcher(client)
            self._token = token
            self._expires_at = self._clock() + self._ttl
            logger.info('Fetched verifier token, valid for %.0fs', self._ttl)
            return token

    def invalidate(self, token: str | None = None) -> None:
        """Drop the cached token; with ``token``, only if it is still the cached one."""
        if token is not None and token != self._token:
            return
        self._token = None
        self._expires_at = 0.0
