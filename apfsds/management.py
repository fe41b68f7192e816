"""HTTP administration API for users, exit nodes, cluster membership and statistics."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import asdict, dataclass
from typing import Any, Protocol

from aiohttp import web

from .connection_registry import ConnectionRegistry

log = logging.getLogger(__name__)

_U64_LIMIT = 1 << 64
_U64_TEXT = re.compile(r"\+?[0-9]+")

DASHBOARD_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>APFSDS Dashboard</title>
    <style>body{font-family:sans-serif;background:#1a1b1e;color:#fff;padding:20px}.card{background:#25262b;padding:20px;margin-bottom:20px;border-radius:8px}</style>
</head>
<body>
    <div class="card">
        <h1>APFSDS Dashboard</h1>
        <p>System is running.</p>
        <p><a href="/metrics">Prometheus Metrics</a></p>
    </div>
</body>
</html>"""


class RaftMembership(Protocol):
    async def change_membership(self, members: set[int]) -> Any: ...


def _as_u64(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < _U64_LIMIT:
        raise ValueError(f"{name}: expected an unsigned 64-bit integer")
    return value


def _as_str(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{name}: expected a string")
    return value


def _as_float(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name}: expected a number")
    return float(value)


def _as_object(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    return data


def _field(data: dict[str, Any], name: str) -> Any:
    if name not in data:
        raise ValueError(f"missing field `{name}`")
    return data[name]


@dataclass(frozen=True)
class CreateUserRequest:
    username: str
    quota_bytes: int | None = None

    @classmethod
    def from_dict(cls, data: Any) -> CreateUserRequest:
        data = _as_object(data)
        quota = data.get("quota_bytes")
        return cls(
            username=_as_str(_field(data, "username"), "username"),
            quota_bytes=None if quota is None else _as_u64(quota, "quota_bytes"),
        )


@dataclass(frozen=True)
class RegisterNodeRequest:
    name: str
    endpoint: str
    weight: float

    @classmethod
    def from_dict(cls, data: Any) -> RegisterNodeRequest:
        data = _as_object(data)
        return cls(
            name=_as_str(_field(data, "name"), "name"),
            endpoint=_as_str(_field(data, "endpoint"), "endpoint"),
            weight=_as_float(_field(data, "weight"), "weight"),
        )


@dataclass(frozen=True)
class SystemStats:
    active_connections: int
    total_rx_bytes: int = 0
    total_tx_bytes: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class _MembershipRequest:
    members: frozenset[int]

    @classmethod
    def from_dict(cls, data: Any) -> _MembershipRequest:
        data = _as_object(data)
        members = _field(data, "members")
        if not isinstance(members, list):
            raise ValueError("members: expected a list")
        return cls(frozenset(_as_u64(m, "members") for m in members))


async def _read_json(request: web.Request, parse: Callable[[Any], Any]) -> Any:
    if request.content_type != "application/json":
        raise web.HTTPUnsupportedMediaType(text="Expected request with `Content-Type: application/json`")
    try:
        data = await request.json()
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Failed to parse the request body as JSON: {exc}") from None
    try:
        return parse(data)
    except ValueError as exc:
        raise web.HTTPUnprocessableEntity(text=f"Failed to deserialize the JSON body: {exc}") from None


class _Api:
    def __init__(self, registry: ConnectionRegistry, raft_node: RaftMembership | None) -> None:
        self.registry = registry
        self.raft_node = raft_node

    async def dashboard(self, _request: web.Request) -> web.Response:
        return web.Response(text=DASHBOARD_HTML, content_type="text/html")

    async def create_user(self, request: web.Request) -> web.Response:
        payload = await _read_json(request, CreateUserRequest.from_dict)
        log.info("Create user request: %r", payload)
        log.warning("User creation stored in memory only (DB integration pending)")
        return web.json_response("User created", status=201)

    async def delete_user(self, request: web.Request) -> web.Response:
        raw = request.match_info["id"]
        user_id = int(raw) if _U64_TEXT.fullmatch(raw) else -1
        if not 0 <= user_id < _U64_LIMIT:
            raise web.HTTPBadRequest(text=f"Invalid URL: cannot parse `{raw}` as an unsigned integer")
        log.info("Delete user request: %d", user_id)
        log.warning("User deletion in memory only (DB integration pending)")
        return web.Response(status=204)

    async def register_node(self, request: web.Request) -> web.Response:
        payload = await _read_json(request, RegisterNodeRequest.from_dict)
        log.info("Register node request: %r", payload)
        log.warning("Node registration in memory only")
        return web.json_response("Node registered", status=201)

    async def stats(self, _request: web.Request) -> web.Response:
        stats = SystemStats(active_connections=self.registry.count())
        return web.json_response(stats.to_dict())

    async def change_membership(self, request: web.Request) -> web.Response:
        payload = await _read_json(request, _MembershipRequest.from_dict)
        if self.raft_node is None:
            return web.json_response({"status": "error", "message": "Raft node not initialized"})
        try:
            await self.raft_node.change_membership(set(payload.members))
        except Exception as exc:  # any consensus failure is reported to the caller
            return web.json_response({"status": "error", "message": str(exc)})
        return web.json_response({"status": "success", "message": "Membership change initiated"})


def create_app(
    registry: ConnectionRegistry, raft_node: RaftMembership | None = None
) -> web.Application:
    """Build the management application."""
    api = _Api(registry, raft_node)
    app = web.Application()
    app.router.add_get("/", api.dashboard)
    app.router.add_post("/admin/users", api.create_user)
    app.router.add_delete("/admin/users/{id}", api.delete_user)
    app.router.add_post("/admin/nodes", api.register_node)
    app.router.add_get("/admin/stats", api.stats)
    app.router.add_post("/admin/cluster/membership", api.change_membership)
    return app


def _split_bind(bind: tuple[str, int] | str) -> tuple[str, int]:
    if isinstance(bind, str):
        host, _, port = bind.rpartition(":")
        return host.strip("[]") or "0.0.0.0", int(port)
    host, port = bind
    return host, int(port)


async def start_server(
    bind: tuple[str, int] | str,
    registry: ConnectionRegistry,
    raft_node: RaftMembership | None = None,
) -> None:
    """Serve the management API on ``bind`` until cancelled."""
    runner = web.AppRunner(create_app(registry, raft_node))
    await runner.setup()
    host, port = _split_bind(bind)
    try:
        log.info("Management API listening on %s:%d", host, port)
        await web.TCPSite(runner, host, port).start()
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()