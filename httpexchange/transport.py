"""Transport - The HTTP stack one exchange drives, stage by stage.

A Transport exposes the primitive operations an exchange is built from:
open a session, connect, open a request, add headers, send, receive,
query the status code, query the raw header block and read body chunks.
Every resource it hands out is a TransportHandle, a context manager that
is released exactly once.

HttpxTransport is the production implementation on top of httpx.
"""

from __future__ import annotations

import logging
import ssl
from typing import Any, Iterator, Protocol, runtime_checkable

import httpx

from httpexchange.header_codec import format_raw_header_block

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Base class for transport errors."""


class SessionError(TransportError):
    """Raised when a transport session cannot be opened."""


class ConnectError(TransportError):
    """Raised when a connection cannot be bound to (host, port)."""


class OpenRequestError(TransportError):
    """Raised when a request resource cannot be created."""


class AddHeadersError(TransportError):
    """Raised when request headers cannot be attached."""


class SendError(TransportError):
    """Raised when the request cannot be transmitted."""


class ReceiveError(TransportError):
    """Raised when response headers never arrive."""


class QueryStatusError(TransportError):
    """Raised when the status code cannot be read from the response."""


class QueryHeadersError(TransportError):
    """Raised when the raw header block cannot be read from the response."""


class ReadError(TransportError):
    """Raised when a body chunk read fails mid-transfer."""


class TransportHandle:
    """One transport resource owned by a single exchange.

    Usage:
        with transport.open_session(user_agent) as session:
            ...

    close() is idempotent so the resource is released exactly once no
    matter how the enclosing block exits.
    """

    kind = "transport"

    def __init__(self) -> None:
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._release()
        finally:
            logger.debug("Closed %s handle", self.kind)

    def _release(self) -> None:
        """Free the underlying resource. Subclasses override."""

    def __enter__(self) -> TransportHandle:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


@runtime_checkable
class Transport(Protocol):
    """Primitive HTTP stack operations, in the order an exchange uses them."""

    def open_session(self, user_agent: str) -> TransportHandle: ...

    def connect(self, session: TransportHandle, host: str, port: int) -> TransportHandle: ...

    def open_request(
        self,
        connection: TransportHandle,
        method: str,
        path: str,
        secure: bool,
    ) -> TransportHandle: ...

    def add_headers(self, request: TransportHandle, header_block: str) -> None: ...

    def send(self, request: TransportHandle, body: bytes) -> None: ...

    def receive(self, request: TransportHandle) -> None: ...

    def query_status(self, request: TransportHandle) -> int: ...

    def query_raw_headers(self, request: TransportHandle) -> str: ...

    def read_chunk(self, request: TransportHandle, size: int) -> bytes: ...


# =============================================================================
# httpx implementation
# =============================================================================


class HttpxSession(TransportHandle):
    """An httpx.Client carrying the client identifier and proxy defaults."""

    kind = "session"

    def __init__(self, client: httpx.Client, user_agent: str) -> None:
        super().__init__()
        self.client = client
        self.user_agent = user_agent

    def _release(self) -> None:
        self.client.close()


class HttpxConnection(TransportHandle):
    """A (host, port) binding under a session.

    httpx opens the socket lazily when the first request is sent, so this
    handle holds no socket of its own.
    """

    kind = "connection"

    def __init__(self, session: HttpxSession, host: str, port: int) -> None:
        super().__init__()
        self.session = session
        self.host = host
        self.port = port


class HttpxRequest(TransportHandle):
    """One request on a connection, and later the response it produced."""

    kind = "request"

    def __init__(
        self,
        connection: HttpxConnection,
        method: str,
        path: str,
        secure: bool,
    ) -> None:
        super().__init__()
        self.connection = connection
        self.method = method
        self.path = path
        self.secure = secure
        self.headers: list[tuple[str, bytes]] = []
        self.response: httpx.Response | None = None
        self._received = False
        self._chunks: Iterator[bytes] | None = None

        scheme = "https" if secure else "http"
        # httpx.URL removes dot segments and percent-encodes characters that
        # are not valid in a path or query; the query stays in the target
        self.url = httpx.URL(f"{scheme}://{connection.host}:{connection.port}{path}")

    def _release(self) -> None:
        if self.response is not None:
            self.response.close()


class HttpxTransport:
    """Transport built on httpx.

    Usage:
        transport = HttpxTransport(timeout=10.0)
        with transport.open_session("HttpClient/1.0") as session:
            with transport.connect(session, "example.com", 443) as connection:
                ...
    """

    def __init__(
        self,
        timeout: float | None = 30.0,
        verify_ssl: bool = True,
        ca_bundle: str | None = None,
        cert: str | None = None,
        key: str | None = None,
        key_password: str | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            timeout: Deadline in seconds for each network operation
                     (connect, write, read, pool). None waits forever.
            verify_ssl: Verify server certificates for https.
            ca_bundle: Path to a CA bundle used instead of the system store.
            cert: Client certificate path for mTLS.
            key: Client private key path for mTLS.
            key_password: Password for the client private key.
        """
        self._timeout = timeout
        self._verify_ssl = verify_ssl
        self._ca_bundle = ca_bundle
        self._cert = cert
        self._key = key
        self._key_password = key_password

    def _build_client_kwargs(self, user_agent: str) -> dict[str, Any]:
        """Build kwargs for httpx.Client including TLS configuration."""
        kwargs: dict[str, Any] = {
            "headers": {"User-Agent": user_agent},
            "timeout": self._timeout,
            "trust_env": True,
            "follow_redirects": False,
        }

        if self._cert or self._ca_bundle or not self._verify_ssl:
            ssl_context = ssl.create_default_context()
            if self._ca_bundle:
                ssl_context.load_verify_locations(self._ca_bundle)
            elif not self._verify_ssl:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE
            if self._cert:
                ssl_context.load_cert_chain(
                    self._cert, keyfile=self._key, password=self._key_password
                )
            kwargs["verify"] = ssl_context

        return kwargs

    def open_session(self, user_agent: str) -> HttpxSession:
        try:
            client = httpx.Client(**self._build_client_kwargs(user_agent))
        except (OSError, ValueError, httpx.InvalidURL) as e:
            raise SessionError(str(e)) from e
        logger.debug("Opened session (user agent %r)", user_agent)
        return HttpxSession(client, user_agent)

    def connect(self, session: HttpxSession, host: str, port: int) -> HttpxConnection:
        if session.closed:
            raise ConnectError("session is closed")
        if not host:
            raise ConnectError("empty host")
        logger.debug("Bound connection to %s:%d", host, port)
        return HttpxConnection(session, host, port)

    def open_request(
        self,
        connection: HttpxConnection,
        method: str,
        path: str,
        secure: bool,
    ) -> HttpxRequest:
        if connection.closed:
            raise OpenRequestError("connection is closed")
        if not method or not method.isascii() or not method.isalpha():
            raise OpenRequestError(f"invalid method {method!r}")
        try:
            request = HttpxRequest(connection, method, path, secure)
        except httpx.InvalidURL as e:
            raise OpenRequestError(str(e)) from e
        logger.debug("Opened request %s %s (secure=%s)", method, path, secure)
        return request

    def add_headers(self, request: HttpxRequest, header_block: str) -> None:
        """Attach a "Name: Value\\r\\n" block to a request that has not been sent."""
        if request.response is not None:
            raise AddHeadersError("request already sent")
        pairs: list[tuple[str, bytes]] = []
        for line in header_block.split("\r\n"):
            if not line:
                continue
            name, sep, value = line.partition(":")
            name = name.strip()
            if not sep or not name:
                raise AddHeadersError(f"malformed header line {line!r}")
            if not name.isascii():
                raise AddHeadersError(f"non-ASCII header name {name!r}")
            pairs.append((name, value.strip().encode("utf-8")))
        request.headers.extend(pairs)

    def send(self, request: HttpxRequest, body: bytes) -> None:
        """Transmit the request line, headers and body.

        httpx reads the status line and response headers as part of send;
        the streamed body is left unread for read_chunk.
        """
        if request.response is not None:
            raise SendError("request already sent")
        client = request.connection.session.client
        try:
            http_request = client.build_request(
                request.method,
                request.url,
                headers=request.headers,
                content=body,
            )
            request.response = client.send(http_request, stream=True)
        except httpx.TimeoutException as e:
            raise SendError(f"timeout: {e}") from e
        except httpx.ConnectError as e:
            raise SendError(f"connection error: {e}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise SendError(str(e)) from e
        except UnicodeEncodeError as e:
            raise SendError(f"encoding error: {e}") from e

    def receive(self, request: HttpxRequest) -> None:
        if request.response is None:
            raise ReceiveError("request was not sent")
        request._received = True

    def query_status(self, request: HttpxRequest) -> int:
        response = self._received_response(request, QueryStatusError)
        status = response.status_code
        if not isinstance(status, int) or not 100 <= status <= 999:
            raise QueryStatusError(f"malformed status code {status!r}")
        return status

    def query_raw_headers(self, request: HttpxRequest) -> str:
        response = self._received_response(request, QueryHeadersError)
        encoding = response.headers.encoding
        try:
            pairs = [
                (name.decode(encoding), value.decode(encoding))
                for name, value in response.headers.raw
            ]
        except UnicodeDecodeError as e:
            raise QueryHeadersError(f"undecodable header block: {e}") from e
        status_line = f"{response.http_version} {response.status_code} {response.reason_phrase}".rstrip()
        return format_raw_header_block(status_line, pairs)

    def read_chunk(self, request: HttpxRequest, size: int) -> bytes:
        """Read up to size bytes of the body as sent on the wire.

        No Content-Encoding is undone, so the bytes agree with the reported
        Content-Encoding and Content-Length headers. Returns b"" at end of body.
        """
        response = self._received_response(request, ReadError)
        if request._chunks is None:
            request._chunks = response.iter_raw(chunk_size=size)
        try:
            return next(request._chunks, b"")
        except httpx.TimeoutException as e:
            raise ReadError(f"timeout: {e}") from e
        except (httpx.HTTPError, httpx.StreamError) as e:
            raise ReadError(str(e)) from e

    @staticmethod
    def _received_response(
        request: HttpxRequest,
        error_type: type[TransportError],
    ) -> httpx.Response:
        if request.response is None or not request._received:
            raise error_type("no response received")
        return request.response
