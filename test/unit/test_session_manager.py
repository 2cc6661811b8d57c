from __future__ import annotations

import asyncio

import pytest

from domain.errors import BrowserConnectionError
from domain.models import AcquireMode, ConnectionState
from domain.services import SessionManager
from test.mocks import FakeBrowserDriver, InMemoryLogger, SequentialIdGenerator


def _manager(driver: FakeBrowserDriver, endpoint: str | None = "http://127.0.0.1:9222") -> SessionManager:
    return SessionManager(
        driver=driver,
        id_generator=SequentialIdGenerator(),
        logger=InMemoryLogger(),
        endpoint=endpoint,
    )


def test_auto_attaches_to_running_browser() -> None:
    driver = FakeBrowserDriver()
    manager = _manager(driver)

    session = asyncio.run(manager.acquire(AcquireMode.AUTO))

    assert session.state is ConnectionState.ATTACHED
    assert session.endpoint == "http://127.0.0.1:9222"
    assert session.dom_version == 1
    assert driver.connected_via == "attach"
    assert driver.count_calls("launch") == 0


def test_auto_falls_back_to_launch_when_attach_fails() -> None:
    driver = FakeBrowserDriver()
    driver.connect_error = ConnectionRefusedError("nothing on 9222")
    manager = _manager(driver)

    session = asyncio.run(manager.acquire(AcquireMode.AUTO))

    assert session.state is ConnectionState.LAUNCHED
    assert session.endpoint is None
    assert driver.connected_via == "launch"


def test_attach_mode_never_launches() -> None:
    driver = FakeBrowserDriver()
    driver.connect_error = ConnectionRefusedError("nothing on 9222")
    manager = _manager(driver)

    with pytest.raises(BrowserConnectionError, match="attach"):
        asyncio.run(manager.acquire(AcquireMode.ATTACH))

    assert driver.count_calls("launch") == 0
    assert manager.session.state is ConnectionState.DISCONNECTED


def test_launch_mode_skips_attach() -> None:
    driver = FakeBrowserDriver()
    manager = _manager(driver)

    asyncio.run(manager.acquire(AcquireMode.LAUNCH))

    assert driver.count_calls("connect") == 0
    assert manager.session.state is ConnectionState.LAUNCHED


def test_no_route_raises_connection_error() -> None:
    driver = FakeBrowserDriver()
    driver.connect_error = ConnectionRefusedError("refused")
    driver.launch_error = RuntimeError("no chromium installed")
    manager = _manager(driver)

    with pytest.raises(BrowserConnectionError) as excinfo:
        asyncio.run(manager.acquire())

    assert isinstance(excinfo.value, ConnectionError)
    assert "no chromium installed" in str(excinfo.value)


def test_acquire_reuses_live_session() -> None:
    driver = FakeBrowserDriver()
    manager = _manager(driver)

    async def run() -> None:
        first = await manager.acquire()
        second = await manager.acquire()
        assert first is second

    asyncio.run(run())
    assert driver.count_calls("connect") == 1


def test_release_without_explicit_request_keeps_session_open() -> None:
    driver = FakeBrowserDriver()
    manager = _manager(driver)

    async def run() -> None:
        await manager.acquire()
        await manager.release()

    asyncio.run(run())
    assert manager.session.is_live
    assert not driver.closed


def test_explicit_release_closes_session() -> None:
    driver = FakeBrowserDriver()
    manager = _manager(driver)

    async def run() -> None:
        await manager.acquire()
        await manager.release(explicit=True)

    asyncio.run(run())
    assert manager.session.state is ConnectionState.CLOSED
    assert manager.session.close_requested
    assert driver.closed


def test_require_raises_without_live_session() -> None:
    manager = _manager(FakeBrowserDriver())
    with pytest.raises(BrowserConnectionError):
        manager.require()


def test_reacquire_after_close_starts_new_session() -> None:
    driver = FakeBrowserDriver()
    manager = _manager(driver)

    async def run() -> tuple[str, str]:
        first = (await manager.acquire()).session_id
        await manager.close()
        second = (await manager.acquire()).session_id
        return first, second

    first, second = asyncio.run(run())
    assert first != second
    assert manager.session.dom_version == 1


def test_reconnect_after_lost_connection_keeps_counting() -> None:
    driver = FakeBrowserDriver()
    manager = _manager(driver)

    async def run() -> None:
        await manager.acquire()
        manager.session.dom_version = 7
        manager.mark_lost()
        await manager.acquire()

    asyncio.run(run())
    assert manager.session.state is ConnectionState.ATTACHED
    assert manager.session.dom_version == 8
