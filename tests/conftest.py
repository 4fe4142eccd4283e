"""Pytest configuration and fixtures for httpexchange tests.

This file provides:
- make_response: HttpResponse factory for model-level tests
- FakeTransport: Recording Transport for stage-order and release tests
- MockedHttpxTransport: HttpxTransport answered by an in-process handler
- PortReservation: Race-free port allocation for test servers
- MockServer: Subprocess management for the echo mock server
"""

from __future__ import annotations

import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Any, Callable, Generator, Iterable

import httpx
import pytest

from httpexchange.models import HttpResponse
from httpexchange.transport import (
    AddHeadersError,
    ConnectError,
    HttpxTransport,
    OpenRequestError,
    QueryHeadersError,
    QueryStatusError,
    ReadError,
    ReceiveError,
    SendError,
    SessionError,
    TransportHandle,
)

# Project root for fixture paths
PROJECT_ROOT = Path(__file__).parent.parent
MOCK_SERVER_MODULE = "tests.integration.mock_server"

PROXY_ENV_VARS = (
    "HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY",
    "http_proxy", "https_proxy", "all_proxy",
)


def make_response(
    status_code: int = 200,
    body: bytes = b"",
    headers: dict[str, str] | None = None,
    error: str = "",
) -> HttpResponse:
    """Create an HttpResponse for testing.

    Prefer this over constructing HttpResponse directly - it provides
    sensible defaults and documents which fields are typically varied in tests.
    """
    return HttpResponse(
        status_code=status_code,
        body=body,
        headers=headers or {},
        error=error,
    )


# =============================================================================
# Fake Transport
# =============================================================================


class FakeHandle(TransportHandle):
    """Handle that records its release in the owning FakeTransport's call log."""

    def __init__(self, kind: str, calls: list[str]) -> None:
        super().__init__()
        self.kind = kind
        self._calls = calls

    def _release(self) -> None:
        self._calls.append(f"close_{self.kind}")


class FakeTransport:
    """Transport that records every call and can fail a chosen stage.

    Usage:
        transport = FakeTransport(body_chunks=[b"ok"], fail_at="send")
        response = execute_exchange(transport, "GET", "http://example.com/")
        assert transport.calls == ["open_session", "connect", ...]
    """

    _STAGE_ERRORS = {
        "open_session": SessionError,
        "connect": ConnectError,
        "open_request": OpenRequestError,
        "add_headers": AddHeadersError,
        "send": SendError,
        "receive": ReceiveError,
        "query_status": QueryStatusError,
        "query_raw_headers": QueryHeadersError,
        "read_chunk": ReadError,
    }

    def __init__(
        self,
        status: int = 200,
        raw_headers: str = "HTTP/1.1 200 OK\r\n\r\n",
        body_chunks: Iterable[bytes] = (),
        fail_at: str | None = None,
        fail_message: str = "simulated failure",
        fail_after_chunks: int = 0,
    ) -> None:
        """Initialize the fake.

        Args:
            status: Status code returned by query_status.
            raw_headers: Block returned by query_raw_headers.
            body_chunks: Chunks returned by read_chunk before the empty read.
            fail_at: Stage name that raises its TransportError subclass.
            fail_message: Message carried by the raised error.
            fail_after_chunks: For fail_at="read_chunk", chunks served first.
        """
        self.status = status
        self.raw_headers = raw_headers
        self.body_chunks = list(body_chunks)
        self.fail_at = fail_at
        self.fail_message = fail_message
        self.fail_after_chunks = fail_after_chunks

        self.calls: list[str] = []
        self.handles: list[FakeHandle] = []
        self.user_agent: str | None = None
        self.connected_to: tuple[str, int] | None = None
        self.request_line: tuple[str, str, bool] | None = None
        self.header_blocks: list[str] = []
        self.sent_body: bytes | None = None
        self.read_sizes: list[int] = []

    def _enter_stage(self, stage: str) -> None:
        self.calls.append(stage)
        if self.fail_at == stage:
            raise self._STAGE_ERRORS[stage](self.fail_message)

    def _handle(self, kind: str) -> FakeHandle:
        handle = FakeHandle(kind, self.calls)
        self.handles.append(handle)
        return handle

    def open_session(self, user_agent: str) -> FakeHandle:
        self._enter_stage("open_session")
        self.user_agent = user_agent
        return self._handle("session")

    def connect(self, session: TransportHandle, host: str, port: int) -> FakeHandle:
        self._enter_stage("connect")
        self.connected_to = (host, port)
        return self._handle("connection")

    def open_request(
        self,
        connection: TransportHandle,
        method: str,
        path: str,
        secure: bool,
    ) -> FakeHandle:
        self._enter_stage("open_request")
        self.request_line = (method, path, secure)
        return self._handle("request")

    def add_headers(self, request: TransportHandle, header_block: str) -> None:
        self._enter_stage("add_headers")
        self.header_blocks.append(header_block)

    def send(self, request: TransportHandle, body: bytes) -> None:
        self._enter_stage("send")
        self.sent_body = body

    def receive(self, request: TransportHandle) -> None:
        self._enter_stage("receive")

    def query_status(self, request: TransportHandle) -> int:
        self._enter_stage("query_status")
        return self.status

    def query_raw_headers(self, request: TransportHandle) -> str:
        self._enter_stage("query_raw_headers")
        return self.raw_headers

    def read_chunk(self, request: TransportHandle, size: int) -> bytes:
        self.calls.append("read_chunk")
        self.read_sizes.append(size)
        served = len(self.read_sizes) - 1
        if self.fail_at == "read_chunk" and served >= self.fail_after_chunks:
            raise ReadError(self.fail_message)
        if served < len(self.body_chunks):
            return self.body_chunks[served]
        return b""


# =============================================================================
# Mocked httpx Transport
# =============================================================================


class MockedHttpxTransport(HttpxTransport):
    """HttpxTransport whose clients answer from a handler instead of the network."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._handler = handler

    def _build_client_kwargs(self, user_agent: str) -> dict[str, Any]:
        kwargs = super()._build_client_kwargs(user_agent)
        kwargs["transport"] = httpx.MockTransport(self._handle)
        return kwargs

    def _handle(self, request: httpx.Request) -> httpx.Response:
        return as_wire_response(self._handler(request))


def as_wire_response(response: httpx.Response) -> httpx.Response:
    """Give a prebuilt response an unread body stream, as a network reply has.

    httpx.Response(content=...) reads its body on construction, which would
    leave nothing for iter_raw().
    """
    if not response.is_stream_consumed:
        return response
    return httpx.Response(
        response.status_code,
        headers=response.headers,
        stream=httpx.ByteStream(response.content),
        extensions=response.extensions,
    )


class RecordingHandler:
    """Returns a fixed response and keeps every request it saw."""

    def __init__(self, response: httpx.Response | None = None) -> None:
        self.response = response or httpx.Response(200, content=b"ok")
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


# =============================================================================
# Mock Server
# =============================================================================


class PortReservation:
    """Holds a reserved port with socket kept open to prevent races.

    Usage:
        reservation = PortReservation()
        # port is held exclusively until release()
        server = MockServer(reservation)
        server.start()  # calls release() internally, then binds
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


def find_free_port() -> int:
    """Find an available port on localhost.

    Nothing listens on the returned port until something binds it, which
    makes it a convenient "unreachable" endpoint.
    """
    with PortReservation() as reservation:
        return reservation.port


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
    """Manages the echo mock server subprocess for integration tests.

    Runs tests/integration/mock_server.py as a subprocess.
    """

    def __init__(self, port: int | PortReservation) -> None:
        if isinstance(port, PortReservation):
            self._reservation = port
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
        """Stop the mock server subprocess.

        Uses SIGTERM first, then SIGKILL after 5s if process doesn't exit.
        Safe to call multiple times or if server was never started.
        """
        if self._process:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    pass  # Process is unkillable, nothing more we can do
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
    """Start the echo mock server once per test session."""
    with MockServer(PortReservation()) as server:
        yield server


@pytest.fixture
def no_proxy_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear proxy variables so local requests are not routed through a proxy."""
    for name in PROXY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Automatically apply markers based on test location.

    Enables running subsets via:
        pytest -m integration  # only integration tests
        pytest -m unit         # only unit tests
    """
    for item in items:
        test_path = Path(item.fspath)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
