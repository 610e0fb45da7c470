"""
Pytest configuration and fixtures for prewarm tests
"""

import asyncio
import errno
import os
import socket
import sys
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import urlsplit

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from prewarm.config import WarmupSettings  # noqa: E402
from prewarm.models import CanonicalTask, TaskKind, WarmupOptions  # noqa: E402
from prewarm.runner.transport import HttpTransport  # noqa: E402


# ============== Fakes ==============


class FakeTransport(HttpTransport):
    """Transport answering from a path -> (status or exception, delay seconds) table."""

    def __init__(self, routes: Optional[Dict[str, Tuple[Union[int, Exception], float]]] = None):
        self.routes = routes or {}
        self.requests: List[Tuple[str, str, Dict[str, Any]]] = []
        self.closed = False

    async def request(self, method: str, url: str, **overrides: Any) -> int:
        self.requests.append((method, url, overrides))
        status, delay = self.routes.get(urlsplit(url).path, (200, 0.0))
        if delay:
            await asyncio.sleep(delay)
        if isinstance(status, Exception):
            raise status
        return status

    async def aclose(self) -> None:
        self.closed = True


class FakeServer:
    """start_server/stop_server pair recording every call."""

    def __init__(self, busy_ports=(), start_error: Optional[Exception] = None,
                 stop_error: Optional[Exception] = None, always_busy: bool = False):
        self.busy_ports = set(busy_ports)
        self.start_error = start_error
        self.stop_error = stop_error
        self.always_busy = always_busy
        self.start_calls: List[int] = []
        self.stop_calls: List[Any] = []

    def start(self, port: int) -> Dict[str, int]:
        self.start_calls.append(port)
        if self.always_busy or port in self.busy_ports:
            raise OSError(errno.EADDRINUSE, "Address already in use")
        if self.start_error is not None:
            raise self.start_error
        return {"port": port}

    async def stop(self, listener: Any) -> None:
        self.stop_calls.append(listener)
        if self.stop_error is not None:
            raise self.stop_error


def make_task(index: int, execute, name: Optional[str] = None, timeout_ms: int = 0,
              kind: TaskKind = TaskKind.FUNCTION) -> CanonicalTask:
    """Build a canonical task around an async execute function."""
    return CanonicalTask(
        index=index,
        name=name or f"task-{index}",
        kind=kind,
        timeout_ms=timeout_ms,
        execute=execute,
    )


def sleeper(seconds: float, calls: Optional[List[int]] = None, error: Optional[Exception] = None):
    """Async execute function that sleeps, then returns or raises."""

    async def execute(context):
        if calls is not None:
            calls.append(context.bound_port)
        await asyncio.sleep(seconds)
        if error is not None:
            raise error

    return execute


def free_port() -> int:
    """Ask the OS for a currently unused port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


# ============== Fixtures ==============


@pytest.fixture
def fake_transport():
    """Transport where every path answers 200 immediately."""
    return FakeTransport()


@pytest.fixture
def fake_server():
    """Fake server that binds any port."""
    return FakeServer()


@pytest.fixture
def options():
    """Options with a fixed port and metrics off."""
    return WarmupOptions(timeout_ms=1000, port=20000, enable_metrics=False)


@pytest.fixture
def settings():
    """Settings isolated from the environment and .env files."""
    return WarmupSettings(
        _env_file=None,
        graceful_shutdown_timeout=0.5,
        enable_metrics=False,
    )


@pytest.fixture
def occupied_port():
    """A port held by a listening socket for the duration of the test."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    yield sock.getsockname()[1]
    sock.close()
