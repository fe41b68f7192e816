"""Daemon metrics and a Prometheus text-format endpoint."""

from __future__ import annotations

import asyncio
import bisect
import logging
import threading
from collections.abc import Sequence

from aiohttp import web

log = logging.getLogger(__name__)

DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
FRAME_SIZE_BUCKETS = (64.0, 256.0, 512.0, 1024.0, 4096.0, 8192.0, 16384.0)


def _fmt(value: float) -> str:
    if isinstance(value, int):
        return str(value)
    if value == float("inf"):
        return "+Inf"
    if value.is_integer():
        return str(int(value))
    return repr(value)


class Counter:
    """A monotonically increasing integer."""

    kind = "counter"

    def __init__(self, name: str, help: str) -> None:
        self.name = name
        self.help = help
        self.value = 0
        self._lock = threading.Lock()

    def inc(self) -> None:
        with self._lock:
            self.value += 1

    def _samples(self) -> list[str]:
        return [f"{self.name} {self.value}"]


class Gauge(Counter):
    """An integer that goes up and down."""

    kind = "gauge"

    def inc(self) -> None:
        with self._lock:
            self.value += 1

    def dec(self) -> None:
        with self._lock:
            self.value -= 1


class Histogram:
    """Counts observations into cumulative buckets."""

    kind = "histogram"

    def __init__(self, name: str, help: str, buckets: Sequence[float] = DEFAULT_BUCKETS) -> None:
        self.name = name
        self.help = help
        self.bounds = tuple(sorted(buckets))
        self._counts = [0] * len(self.bounds)
        self.sum = 0.0
        self.count = 0
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        with self._lock:
            index = bisect.bisect_left(self.bounds, value)
            if index < len(self._counts):
                self._counts[index] += 1
            self.sum += value
            self.count += 1

    @property
    def buckets(self) -> list[tuple[float, int]]:
        """Upper bounds with cumulative counts, ending with +Inf."""
        with self._lock:
            result = []
            total = 0
            for bound, n in zip(self.bounds, self._counts):
                total += n
                result.append((bound, total))
            result.append((float("inf"), self.count))
            return result

    def _samples(self) -> list[str]:
        lines = [f'{self.name}_bucket{{le="{_fmt(bound)}"}} {n}' for bound, n in self.buckets]
        lines.append(f"{self.name}_sum {_fmt(self.sum)}")
        lines.append(f"{self.name}_count {self.count}")
        return lines


class Metrics:
    """All metrics the daemon exports."""

    def __init__(self) -> None:
        self.frames_sent = Counter("apfsds_frames_sent_total", "Total number of frames sent")
        self.frames_received = Counter(
            "apfsds_frames_received_total", "Total number of frames received"
        )
        self.auth_successes = Counter(
            "apfsds_auth_successes_total", "Total successful authentications"
        )
        self.auth_failures = Counter("apfsds_auth_failures_total", "Total failed authentications")
        self.active_connections = Gauge("apfsds_active_connections", "Number of active connections")
        self.pool_connections = Gauge("apfsds_pool_connections", "Number of pooled connections")
        self.request_duration = Histogram(
            "apfsds_request_duration_seconds", "Request duration in seconds"
        )
        self.frame_size = Histogram(
            "apfsds_frame_size_bytes", "Frame size in bytes", FRAME_SIZE_BUCKETS
        )

    def _all(self) -> list[Counter | Histogram]:
        return [
            self.frames_sent,
            self.frames_received,
            self.auth_successes,
            self.auth_failures,
            self.active_connections,
            self.pool_connections,
            self.request_duration,
            self.frame_size,
        ]

    def render(self) -> str:
        """The metrics in Prometheus text exposition format, sorted by name."""
        lines: list[str] = []
        for metric in sorted(self._all(), key=lambda m: m.name):
            lines.append(f"# HELP {metric.name} {metric.help}")
            lines.append(f"# TYPE {metric.name} {metric.kind}")
            lines.extend(metric._samples())
        return "\n".join(lines) + "\n"


def _split_bind(bind: tuple[str, int] | str) -> tuple[str, int]:
    if isinstance(bind, str):
        host, _, port = bind.rpartition(":")
        return host.strip("[]") or "0.0.0.0", int(port)
    host, port = bind
    return host, int(port)


def start_server(metrics: Metrics, bind: tuple[str, int] | str, enabled: bool = True) -> asyncio.Task:
    """Serve ``metrics`` over HTTP on ``bind`` until the returned task is cancelled."""
    return asyncio.get_running_loop().create_task(_serve(metrics, bind, enabled))


async def _serve(metrics: Metrics, bind: tuple[str, int] | str, enabled: bool) -> None:
    if not enabled:
        log.info("Prometheus metrics disabled")
        return

    async def handle(_request: web.Request) -> web.Response:
        return web.Response(text=metrics.render(), content_type="text/plain")

    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", handle)
    runner = web.AppRunner(app)
    await runner.setup()
    host, port = _split_bind(bind)
    try:
        await web.TCPSite(runner, host, port).start()
    except OSError as exc:
        log.error("Failed to bind metrics server: %s", exc)
        await runner.cleanup()
        return

    log.info("Prometheus metrics server listening on %s:%d", host, port)
    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()