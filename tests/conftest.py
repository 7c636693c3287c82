"""Pytest configuration and fixtures for fanhttp tests.

This file provides:
- PortReservation: Race-free port allocation for test servers
- MockServer: Subprocess management for the mock HTTP server
- FakeTransport: In-memory Transport that records what it was asked to send
- Fixtures: Shared test infrastructure (mock server, fake transport)
"""

from __future__ import annotations

import io
import socket
import subprocess
import sys
import threading
import time
from pathlib import Path
from typing import Any, Callable, Generator, Iterator

import pytest

from fanhttp.response import TransportError
from fanhttp.transport import TransportResponse

# Project root for subprocess cwd
PROJECT_ROOT = Path(__file__).parent.parent
MOCK_SERVER_MODULE = "tests.integration.mock_server"


class ClosableBytes(io.BytesIO):
    """BytesIO that counts close() calls and can be told to fail closing."""

    def __init__(self, data: bytes = b"", fail_close: bool = False) -> None:
        super().__init__(data)
        self.close_calls = 0
        self._fail_close = fail_close

    def close(self) -> None:
        self.close_calls += 1
        if self._fail_close:
            # Fail once only, so the finalizer's close() succeeds.
            self._fail_close = False
            raise OSError("close failed")
        super().close()


def make_transport_response(
    status_code: int = 200,
    body: bytes = b"",
    headers: list[tuple[str, str]] | None = None,
    reason_phrase: str = "OK",
) -> TransportResponse:
    """Create a TransportResponse for testing response construction."""
    return TransportResponse(
        status_code=status_code,
        stream=ClosableBytes(body),
        headers=headers or [],
        reason_phrase=reason_phrase,
    )


class FakeTransport:
    """Transport that answers from a callable instead of the network.

    The responder receives (method, url, headers, body bytes) and returns a
    TransportResponse or raises TransportError. Every call is recorded.
    """

    def __init__(
        self,
        responder: Callable[[str, str, dict[str, str], bytes | None], TransportResponse] | None = None,
    ) -> None:
        self.responder = responder or (lambda method, url, headers, body: make_transport_response())
        self.calls: list[dict[str, Any]] = []
        self.closed = False
        self._lock = threading.Lock()

    def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | Iterator[bytes] | None,
    ) -> TransportResponse:
        if body is not None and not isinstance(body, bytes):
            body = b"".join(body)
        with self._lock:
            self.calls.append({"method": method, "url": url, "headers": dict(headers), "body": body})
        return self.responder(method, url, headers, body)

    def close(self) -> None:
        self.closed = True


def failing_responder(message: str = "connection refused") -> Callable[..., TransportResponse]:
    def respond(method: str, url: str, headers: dict[str, str], body: bytes | None) -> TransportResponse:
        raise TransportError(f"{method} {url}: {message}")

    return respond


class PortReservation:
    """Holds a reserved port with socket kept open to prevent races.

    The socket stays bound until just before the server starts, so another
    process cannot grab the port in between.
    """

    def __init__(self) -> None:
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._socket.bind(("127.0.0.1", 0))  # Port 0 = OS assigns ephemeral port
        self._port = self._socket.getsockname()[1]
        self._released = False

    @property
    def port(self) -> int:
        return self._port

    def release(self) -> int:
        """Release the socket and return the port for server use.

        Safe to call multiple times - subsequent calls are no-ops.
        """
        if not self._released:
            self._socket.close()
            self._released = True
        return self._port

    def __enter__(self) -> PortReservation:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()


def wait_for_server_ready(host: str, port: int, timeout: float = 10.0) -> bool:
    """Block until server accepts TCP connections, or timeout expires."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1.0):
                return True
        except (ConnectionRefusedError, socket.timeout, OSError):
            time.sleep(0.1)
    return False


class MockServer:
    """Manages the mock server subprocess for integration tests.

    Runs tests/integration/mock_server.py (FastAPI under uvicorn).
    """

    def __init__(self, port: int | PortReservation) -> None:
        if isinstance(port, PortReservation):
            self._reservation: PortReservation | None = port
            self.port = port.port
        else:
            self._reservation = None
            self.port = port
        self.host = "127.0.0.1"
        self.base_url = f"http://{self.host}:{self.port}"
        self._process: subprocess.Popen | None = None

    def start(self) -> None:
        """Start the mock server subprocess.

        Raises:
            RuntimeError: If server fails to start within 10 seconds.
        """
        if self._reservation:
            self._reservation.release()

        self._process = subprocess.Popen(
            [
                sys.executable, "-m", MOCK_SERVER_MODULE,
                "--host", self.host,
                "--port", str(self.port),
            ],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=PROJECT_ROOT,
        )

        if not wait_for_server_ready(self.host, self.port):
            stderr = ""
            if self._process and self._process.stderr:
                stderr = self._process.stderr.read().decode(errors="replace")
            self.stop()
            raise RuntimeError(
                f"MockServer failed to start on port {self.port}. "
                f"stderr: {stderr or '(empty)'}"
            )

    def stop(self) -> None:
        """Stop the subprocess: SIGTERM, then SIGKILL after 5s."""
        if self._process:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    pass  # Unkillable, nothing more we can do
            self._process = None

    def __enter__(self) -> MockServer:
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()


# =============================================================================
# Pytest Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def mock_server() -> Generator[MockServer, None, None]:
    """Start the mock server once per test session."""
    with MockServer(PortReservation()) as server:
        yield server


@pytest.fixture
def fake_transport() -> FakeTransport:
    """FakeTransport answering 200 OK with an empty body by default."""
    return FakeTransport()


@pytest.fixture
def transport_response_factory() -> Callable[..., TransportResponse]:
    return make_transport_response


@pytest.fixture
def closable_bytes() -> type[ClosableBytes]:
    return ClosableBytes


@pytest.fixture
def failing_transport() -> FakeTransport:
    """FakeTransport whose every send raises TransportError."""
    return FakeTransport(failing_responder())


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Tag tests as integration or unit based on their directory.

        pytest -m integration  # only integration tests
        pytest -m unit         # only unit tests
    """
    for item in items:
        test_path = Path(item.fspath)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
