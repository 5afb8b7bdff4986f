"""Webhook idempotency: remembers which event ids have already been admitted.

Both ledgers are bounded in time; the in-memory one is also bounded in size.
"""

import asyncio
import time
from collections import OrderedDict
from typing import Callable, Optional, Protocol

from app.core.config import settings
from app.services.redis_service import RedisService

KEY_PREFIX = "telephony:event:"


class EventLedger(Protocol):
    async def record_event_seen(self, event_id: str) -> bool:
        """Return True the first time ``event_id`` is recorded, False afterwards."""
        ...


class InMemoryEventLedger:
    """Process-local ledger with TTL eviction and an entry cap."""

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds or settings.telephony_idempotency_ttl_seconds
        self.max_entries = max_entries or settings.telephony_idempotency_max_entries
        self._clock = clock
        self._seen: OrderedDict[str, float] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._seen)

    async def record_event_seen(self, event_id: str) -> bool:
        async with self._lock:
            now = self._clock()
            self._evict(now)

            if event_id in self._seen:
                return False

            self._seen[event_id] = now + self.ttl_seconds
            while len(self._seen) > self.max_entries:
                self._seen.popitem(last=False)
            return True

    def _evict(self, now: float) -> None:
        # Entries are kept in insertion order, so expiries are monotonic
        while self._seen:
            event_id, expires_at = next(iter(self._seen.items()))
            if expires_at > now:
                break
            del self._seen[event_id]


class RedisEventLedger:
    """Shared ledger using ``SET NX EX`` so multiple workers agree."""

    def __init__(self, redis_service: RedisService, ttl_seconds: Optional[int] = None) -> None:
        self.redis = redis_service
        self.ttl_seconds = ttl_seconds or settings.telephony_idempotency_ttl_seconds

    async def record_event_seen(self, event_id: str) -> bool:
        return await self.redis.set_if_absent(f"{KEY_PREFIX}{event_id}", self.ttl_seconds)
