"""Per-provider concurrency limiting for sync passes."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional


class ProviderLimiter:
    """Caps how many sync passes may hit the same provider at once.

    One semaphore per provider tag, created lazily. Limits come from
    ``limits`` when the provider has an entry there, else ``default_limit``.
    """

    def __init__(self, default_limit: int = 2, limits: Optional[Dict[str, int]] = None):
        if default_limit < 1:
            raise ValueError("default_limit must be at least 1")
        self.default_limit = default_limit
        self.limits = dict(limits or {})
        self._semaphores: Dict[str, asyncio.Semaphore] = {}

    def limit_for(self, provider: str) -> int:
        return max(1, self.limits.get(provider, self.default_limit))

    def _semaphore(self, provider: str) -> asyncio.Semaphore:
        semaphore = self._semaphores.get(provider)
        if semaphore is None:
            semaphore = asyncio.Semaphore(self.limit_for(provider))
            self._semaphores[provider] = semaphore
        return semaphore

    @asynccontextmanager
    async def acquire(self, provider: str) -> AsyncIterator[None]:
        """Hold one of the provider's slots for the duration of the block."""
        async with self._semaphore(provider):
            yield
