"""Aggregation of per-user traffic usage, flushed to storage periodically."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Protocol

log = logging.getLogger(__name__)


class UsageStore(Protocol):
    async def record_usage(self, user_id: int, nbytes: int) -> None: ...


class BillingAggregator:
    """Sums usage in memory and writes it to a store every ``flush_interval`` seconds."""

    def __init__(self, store: UsageStore, flush_interval: float = 60.0) -> None:
        self.store = store
        self.flush_interval = flush_interval
        self._usage: Counter[int] = Counter()
        self._lock = asyncio.Lock()

    async def record_usage(self, user_id: int, nbytes: int) -> None:
        async with self._lock:
            self._usage[user_id] += nbytes

    def pending(self) -> dict[int, int]:
        """A copy of the usage not yet flushed."""
        return dict(self._usage)

    def start(self) -> asyncio.Task:
        """Start the flush loop on the running event loop."""
        return asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            await self.flush()
            await asyncio.sleep(self.flush_interval)

    async def flush(self) -> None:
        """Write the accumulated usage to the store; failures are logged, not re-queued."""
        async with self._lock:
            if not self._usage:
                return
            usage, self._usage = self._usage, Counter()

        log.info("Flushing billing for %d users", len(usage))
        for user_id, nbytes in usage.items():
            try:
                await self.store.record_usage(user_id, nbytes)
            except Exception as exc:  # storage errors of any kind must not stop the loop
                log.error("Failed to record usage for user %s: %s", user_id, exc)