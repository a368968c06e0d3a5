"""Shared fixtures for proxypal tests.

Supervised processes are real children: `sys.executable -c <script>`, so
the tests exercise actual spawn, signal, and exit handling without the
proxy binaries installed.
"""

from __future__ import annotations

import socket
import sys
from collections.abc import Callable, Iterator
from typing import Any

import pytest

from proxypal.config import AppConfig
from proxypal.manager.models import ProcessKind
from proxypal.manager.supervisor import LaunchSpec

# Child scripts
SLEEP_FOREVER = "import time; time.sleep(60)"


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def free_port() -> Callable[[], int]:
    """Return a factory for currently unbound TCP ports on 127.0.0.1."""
    return _free_port


@pytest.fixture
def occupy_port() -> Iterator[Callable[[int], socket.socket]]:
    """Return a factory that binds and listens on a port until teardown."""
    sockets: list[socket.socket] = []

    def _occupy(port: int) -> socket.socket:
        s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        s.bind(("127.0.0.1", port))
        s.listen(1)
        sockets.append(s)
        return s

    yield _occupy
    for s in sockets:
        s.close()


@pytest.fixture
def python_spec() -> Callable[..., LaunchSpec]:
    """Return a factory for LaunchSpecs that run a Python one-liner."""

    def _make(port: int, script: str = SLEEP_FOREVER) -> LaunchSpec:
        return LaunchSpec(
            command=sys.executable,
            port=port,
            endpoint=f"http://localhost:{port}",
            args=("-c", script),
        )

    return _make


class FakeLauncher:
    """Stands in for ProcessLauncher: builds sleeping Python children.

    Ports come from the document, so configuration changes flow through
    exactly as they do with the real launcher.
    """

    def __init__(self, script: str = SLEEP_FOREVER) -> None:
        self.script = script
        self.built: list[tuple[ProcessKind, int]] = []

    def build(self, kind: ProcessKind, config: AppConfig) -> LaunchSpec:
        port = config.port if kind is ProcessKind.PRIMARY else config.copilot.port
        self.built.append((kind, port))
        return LaunchSpec(
            command=sys.executable,
            port=port,
            endpoint=f"http://localhost:{port}",
            args=("-c", self.script),
        )

    async def prepare(self, kind: ProcessKind, config: AppConfig) -> LaunchSpec:
        return self.build(kind, config)

    def management_headers(self) -> dict[str, str]:
        return {"Authorization": "Bearer test-management-key"}

    def auth_files_url(self, config: AppConfig) -> str:
        return f"http://127.0.0.1:{config.port}/v0/management/auth-files"


@pytest.fixture
def fake_launcher() -> FakeLauncher:
    """Launcher producing `python -c sleep` children."""
    return FakeLauncher()


class FakeFetch:
    """Records calls and replays canned JSON responses (or raises)."""

    def __init__(self) -> None:
        self.responses: dict[str, Any] = {}
        self.calls: list[tuple[str, dict[str, str] | None]] = []

    async def __call__(self, url: str, *, headers: Any = None, timeout: float = 10.0) -> Any:
        self.calls.append((url, dict(headers) if headers else None))
        for prefix, response in self.responses.items():
            if url.startswith(prefix):
                if isinstance(response, BaseException):
                    raise response
                return response
        raise ValueError(f"no canned response for {url}")


@pytest.fixture
def fake_fetch() -> FakeFetch:
    """Fetch-JSON stand-in; set `.responses[url_prefix]` to a value or exception."""
    return FakeFetch()
