"""Shared fixtures for the pipeline tests."""

import asyncio
import socket
import threading
import time
from collections.abc import Generator
from contextlib import closing
from pathlib import Path

import pytest
from aiohttp import web

from gleaner.checkpoint import CheckpointStore
from gleaner.config import GleanerConfig
from gleaner.extractor import AppStoreExtractor
from tests.mock_server import create_app
from tests.utils import make_config


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Empty data directory for checkpoints and outputs."""
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def config(data_dir: Path) -> GleanerConfig:
    """Configuration with zero delays, rooted at ``data_dir``."""
    return make_config(data_dir)


@pytest.fixture
def store(data_dir: Path) -> CheckpointStore:
    return CheckpointStore(data_dir)


@pytest.fixture
def extractor() -> AppStoreExtractor:
    return AppStoreExtractor()


# =============================================================================
# aiohttp test server fixtures
# =============================================================================


def find_free_port() -> int:
    """Find a free port on localhost.

    Returns:
        An available port number.
    """
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(("", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


class AioHttpTestServer:
    """Wrapper to run aiohttp server in a background thread."""

    def __init__(self, app: web.Application, port: int) -> None:
        self.app = app
        self.port = port
        self.host = "127.0.0.1"
        self._loop: asyncio.AbstractEventLoop | None = None
        self._runner: web.AppRunner | None = None
        self._thread: threading.Thread | None = None
        self._started = threading.Event()

    @property
    def url(self) -> str:
        """Get the base URL of the server."""
        return f"http://{self.host}:{self.port}"

    def start(self) -> None:
        """Start the server in a background thread and wait until it listens."""
        self._thread = threading.Thread(target=self._run_server, daemon=True)
        self._thread.start()
        if not self._started.wait(timeout=5.0):
            raise RuntimeError("mock app store did not start")

    def _run_server(self) -> None:
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        async def start() -> None:
            self._runner = web.AppRunner(self.app)
            await self._runner.setup()
            site = web.TCPSite(self._runner, self.host, self.port)
            await site.start()

        self._loop.run_until_complete(start())
        self._started.set()
        self._loop.run_forever()

    def stop(self) -> None:
        """Stop the server and clean up resources."""
        if self._loop and self._runner:
            future = asyncio.run_coroutine_threadsafe(
                self._runner.cleanup(), self._loop
            )
            try:
                future.result(timeout=2.0)
            except Exception:
                pass  # Best effort cleanup

        if self._loop:
            self._loop.call_soon_threadsafe(self._loop.stop)

        if self._thread:
            self._thread.join(timeout=2.0)
        # Let the port drain before the next server binds.
        time.sleep(0.05)


@pytest.fixture
def app_store_server() -> Generator[AioHttpTestServer, None, None]:
    """A real HTTP server running the mock app store.

    Yields:
        AioHttpTestServer serving tests.mock_server.create_app().
    """
    server = AioHttpTestServer(create_app(), find_free_port())
    server.start()
    yield server
    server.stop()


@pytest.fixture
def server_url(app_store_server: AioHttpTestServer) -> str:
    return app_store_server.url
