"""Local IPC endpoint through which external plugins connect."""

from __future__ import annotations

import asyncio
import logging
import os

log = logging.getLogger(__name__)


class PluginManager:
    """Listens on a Unix domain socket for plugin connections."""

    def __init__(self, socket_path: str | os.PathLike[str]) -> None:
        self.socket_path = os.fspath(socket_path)
        self.connections = 0
        self.serving = asyncio.Event()

    async def _handle_connection(
        self, _reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        log.info("Plugin connected")
        self.connections += 1
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass

    async def start(self) -> None:
        """Serve plugin connections until cancelled, replacing any stale socket file."""
        log.info("Starting Plugin Manager on %s", self.socket_path)
        start_unix_server = getattr(asyncio, "start_unix_server", None)
        if start_unix_server is None:
            raise OSError("Unix domain sockets are not available on this platform")

        if os.path.lexists(self.socket_path):
            try:
                os.remove(self.socket_path)
            except OSError:
                pass

        server = await start_unix_server(self._handle_connection, path=self.socket_path)
        async with server:
            self.serving.set()
            try:
                await server.serve_forever()
            finally:
                self.serving.clear()