"""Generation of decoy traffic that looks like ordinary web activity."""

from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

log = logging.getLogger(__name__)

_JSON_TEMPLATES = (
    '{"status":"ok","timestamp":%TS%,"data":{"items":[]}}',
    '{"success":true,"message":"Operation completed","id":"%UUID%"}',
    '{"results":[],"page":1,"total":0,"cached":true}',
    '{"health":"healthy","uptime":%TS%,"version":"1.0.0"}',
    '{"ack":true,"seq":%SEQ%,"received":true}',
    '{"type":"ping","ts":%TS%}',
    '{"notifications":[],"unread":0}',
)

_SSE_EVENTS = (
    'event: heartbeat\ndata: {"ts":%TS%}\n\n',
    ": keepalive\n\n",
    "event: ping\ndata: ok\n\n",
    'event: status\ndata: {"connected":true}\n\n',
)


@dataclass
class NoiseConfig:
    """Settings for the noise generator; the interval range is in seconds."""

    enabled: bool = True
    noise_ratio: float = 0.15
    noise_interval: tuple[float, float] = (0.5, 5.0)
    fake_json_enabled: bool = True
    sse_keepalive: bool = True

    def random_noise_interval(self) -> float:
        low, high = self.noise_interval
        return random.uniform(low, high)


def _now_ms() -> str:
    return str(time.time_ns() // 1_000_000)


def generate_fake_json() -> bytes:
    """A plausible small JSON API response."""
    template = random.choice(_JSON_TEMPLATES)
    return (
        template.replace("%TS%", _now_ms())
        .replace("%UUID%", str(uuid.uuid4()))
        .replace("%SEQ%", str(random.randint(1, 99_999)))
        .encode()
    )


def generate_sse_event() -> bytes:
    """A server-sent-events keepalive message."""
    return random.choice(_SSE_EVENTS).replace("%TS%", _now_ms()).encode()


def generate_random_data() -> bytes:
    """Between 64 and 511 random bytes."""
    return random.randbytes(random.randrange(64, 512))


class NoiseGenerator:
    """Periodically emits decoy payloads to a sink."""

    def __init__(self, config: NoiseConfig | None = None) -> None:
        self.config = config if config is not None else NoiseConfig()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def _next_noise(self) -> bytes:
        if self.config.fake_json_enabled and random.random() < 0.7:
            return generate_fake_json()
        if self.config.sse_keepalive:
            return generate_sse_event()
        return generate_random_data()

    def start(self, sink: Callable[[bytes], object]) -> asyncio.Task:
        """Start emitting noise to ``sink`` on the running event loop.

        The generator stops when :meth:`stop` is called or when ``sink``
        returns ``False``.
        """
        self._running = True
        return asyncio.get_running_loop().create_task(self._run(sink))

    async def _run(self, sink: Callable[[bytes], object]) -> None:
        log.debug("Noise generator started")
        while self._running:
            await asyncio.sleep(self.config.random_noise_interval())
            if not self._running:
                break
            noise = self._next_noise()
            log.debug("Sending noise (%d bytes)", len(noise))
            if sink(noise) is False:
                log.debug("Noise sink closed, stopping generator")
                break
        log.debug("Noise generator stopped")

    def stop(self) -> None:
        self._running = False

    def should_inject(self) -> bool:
        """Decide at random, by the configured ratio, whether to inject noise."""
        return self.config.enabled and random.random() < self.config.noise_ratio