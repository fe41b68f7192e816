"""Watching a published crate for an emergency shutdown signal."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import aiohttp

log = logging.getLogger(__name__)

CRATES_API = "https://crates.io/api/v1/crates/"
USER_AGENT = "apfsds-emergency-monitor (contact@example.com)"


@dataclass
class EmergencyConfig:
    """Which crate to watch, how often, and the random delay before shutting down."""

    crate_name: str = "apfsds"
    trigger_version: str = "0.0.0-EMERGENCY"
    check_interval: float = 300.0
    trigger_delay_range: tuple[int, int] = (0, 3600)


async def fetch_crate_versions(crate_name: str, timeout: float = 10.0) -> list[str]:
    """Return the version numbers published for ``crate_name``."""
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    async with aiohttp.ClientSession(
        timeout=client_timeout, headers={"User-Agent": USER_AGENT}
    ) as session:
        async with session.get(CRATES_API + crate_name) as resp:
            resp.raise_for_status()
            data = await resp.json()
    return [version["num"] for version in data.get("versions", [])]


class EmergencyMonitor:
    """Polls for an emergency version and signals shutdown after a delay."""

    def __init__(
        self,
        config: EmergencyConfig | None = None,
        *,
        fetch_versions: Callable[[str], Awaitable[list[str]]] | None = None,
    ) -> None:
        self.config = config if config is not None else EmergencyConfig()
        self._fetch = fetch_versions or (lambda name: fetch_crate_versions(name, 10.0))
        self._triggered = False
        self._trigger_at = 0
        self._subscribers: list[asyncio.Event] = []

    def is_triggered(self) -> bool:
        return self._triggered

    def trigger_at(self) -> int:
        """Unix time in seconds at which shutdown happens; 0 if not triggered."""
        return self._trigger_at

    def trigger(self, delay_secs: int) -> None:
        """Enter emergency mode, shutting down ``delay_secs`` seconds from now."""
        self._trigger_at = int(time.time()) + delay_secs
        self._triggered = True
        log.warning("Emergency mode triggered! Shutdown in %d seconds", delay_secs)

    def subscribe(self) -> asyncio.Event:
        """An event that is set when the emergency shutdown executes."""
        event = asyncio.Event()
        self._subscribers.append(event)
        return event

    async def start(self) -> None:
        """Run the monitoring loop until the shutdown signal has been sent."""
        log.info(
            "Emergency monitor started, checking %s every %ss",
            self.config.crate_name,
            self.config.check_interval,
        )
        while True:
            await asyncio.sleep(self.config.check_interval)

            if self.is_triggered():
                if int(time.time()) >= self.trigger_at():
                    log.info("Emergency shutdown executing")
                    for event in self._subscribers:
                        event.set()
                    return
                continue

            try:
                versions = await self._fetch(self.config.crate_name)
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError, KeyError, TypeError) as exc:
                log.warning("Failed to check crates.io: %s", exc)
                continue

            for num in versions:
                if num.startswith(self.config.trigger_version):
                    log.warning(
                        "Emergency version detected: %s = %s", self.config.crate_name, num
                    )
                    low, high = self.config.trigger_delay_range
                    self.trigger(random.randint(low, high))
                    break