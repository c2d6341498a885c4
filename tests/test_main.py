import socket

import pytest

from config.settings import DatabaseSettings, Settings
from exceptions import InitializationError
from main import PingMasterApplication


def free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def make_settings(tmp_path, port: int) -> Settings:
    return Settings(
        web_host="127.0.0.1",
        web_port=port,
        database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path}/app.db"),
    )


@pytest.mark.asyncio
async def test_startup_and_shutdown(tmp_path):
    app = PingMasterApplication(make_settings(tmp_path, free_port()))

    try:
        assert await app.startup() is True
        assert app.scheduler.is_running
        assert [c.name for c in app.channels] == ["push", "webhook", "email"]

        stats = app.get_stats()
        assert stats["scheduler"]["is_running"] is True
        assert stats["dispatcher"] is not None
    finally:
        await app.shutdown()

    assert not app.scheduler.is_running
    assert not app.db_manager.is_initialized


@pytest.mark.asyncio
async def test_busy_port_is_an_initialization_error(tmp_path):
    with socket.socket() as blocker:
        blocker.bind(("127.0.0.1", 0))
        blocker.listen()
        app = PingMasterApplication(make_settings(tmp_path, blocker.getsockname()[1]))

        try:
            with pytest.raises(InitializationError) as info:
                await app.startup()
        finally:
            await app.shutdown()

    assert info.value.details["component"] == "server"
