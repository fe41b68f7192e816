import asyncio
import os
import stat

import pytest

from apfsds.plugin import PluginManager


async def _run(manager):
    task = asyncio.get_running_loop().create_task(manager.start())
    await asyncio.wait_for(manager.serving.wait(), timeout=5)
    return task


async def _stop(task):
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


def test_socket_path_is_kept(tmp_path):
    path = tmp_path / "p.sock"
    assert PluginManager(path).socket_path == str(path)


@pytest.mark.asyncio
async def test_connection_is_accepted_and_closed(tmp_path):
    path = str(tmp_path / "p.sock")
    manager = PluginManager(path)
    task = await _run(manager)
    try:
        reader, writer = await asyncio.open_unix_connection(path)
        data = await asyncio.wait_for(reader.read(), timeout=5)
        writer.close()
        assert data == b""
        assert manager.connections == 1
    finally:
        await _stop(task)
    assert not manager.serving.is_set()


@pytest.mark.asyncio
async def test_stale_file_is_replaced(tmp_path):
    path = tmp_path / "p.sock"
    path.write_text("stale")
    manager = PluginManager(path)
    task = await _run(manager)
    try:
        assert manager.serving.is_set() is True
        assert stat.S_ISSOCK(os.stat(path).st_mode)
        reader, writer = await asyncio.open_unix_connection(str(path))
        data = await asyncio.wait_for(reader.read(), timeout=5)
        writer.close()
        assert data == b""
        assert manager.connections == 1
    finally:
        await _stop(task)


@pytest.mark.asyncio
async def test_several_connections_are_counted(tmp_path):
    path = str(tmp_path / "p.sock")
    manager = PluginManager(path)
    task = await _run(manager)
    try:
        for _ in range(3):
            reader, writer = await asyncio.open_unix_connection(path)
            await asyncio.wait_for(reader.read(), timeout=5)
            writer.close()
        assert manager.connections == 3
    finally:
        await _stop(task)