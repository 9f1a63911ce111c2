from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest

from prereg.backend import LocalBackend
from prereg.core.bus import Bus
from prereg.core.config import ConfigManager
from prereg.lifecycle.registry import Registry
from prereg.util.log import Log, LogFormat, LogLevel


@pytest.fixture(scope="session", autouse=True)
def _context_vars() -> Iterator[None]:
    # Bound once per session; the anyio runner task copies the context when it starts.
    bus_token = Bus.provide(Bus())
    config_token = ConfigManager.provide(ConfigManager())
    try:
        yield
    finally:
        ConfigManager.restore(config_token)
        Bus.restore(bus_token)


@pytest.fixture(autouse=True)
def isolated_home(monkeypatch, tmp_path: Path) -> Iterator[Path]:  # type: ignore[no-untyped-def]
    home = tmp_path / "home"
    for var, sub in (
        ("XDG_DATA_HOME", "data"),
        ("XDG_CONFIG_HOME", "config"),
        ("XDG_STATE_HOME", "state"),
        ("XDG_CACHE_HOME", "cache"),
    ):
        monkeypatch.setenv(var, str(home / sub))
    monkeypatch.setenv("PREREG_TEST_HOME", str(home))
    for var in ("PREREG_CONFIG_CONTENT", "PREREG_SUPABASE_URL", "PREREG_SUPABASE_ANON_KEY", "PREREG_LANGUAGE"):
        monkeypatch.delenv(var, raising=False)
    yield home
    Log.configure(level=LogLevel.INFO, format=LogFormat.KV, console=False, file=False, dev=False)


@pytest.fixture(autouse=True)
def bus_context() -> Iterator[Bus]:
    bus = Bus.current()
    bus.clear()
    try:
        yield bus
    finally:
        bus.clear()


@pytest.fixture(autouse=True)
def config_context() -> Iterator[None]:
    ConfigManager.reset()
    try:
        yield
    finally:
        ConfigManager.reset()


@pytest.fixture
def registry() -> Iterator[Registry]:
    registry = Registry()
    token = Registry.provide(registry)
    try:
        yield registry
    finally:
        Registry.restore(token)


@pytest.fixture
async def backend() -> AsyncIterator[LocalBackend]:
    backend = LocalBackend(":memory:")
    try:
        yield backend
    finally:
        await backend.aclose()


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    # The package is built on a single asyncio event loop.
    return "asyncio"
