"""Exchange - Runs one request/response cycle over a Transport.

An exchange advances through ordered stages: URL resolution, session,
connection, request, header attachment, send, receive, status, headers and
body. The first failing stage aborts the rest and its diagnostic becomes
HttpResponse.error. Session, connection and request handles are opened in
nested ``with`` blocks, so each is released exactly once, innermost first,
on every exit path.

No exception escapes execute_exchange().
"""

from __future__ import annotations

import logging
import time
from typing import Mapping

from httpexchange.header_codec import parse_raw_headers, serialize_headers
from httpexchange.models import HttpResponse
from httpexchange.transport import (
    AddHeadersError,
    ConnectError,
    OpenRequestError,
    QueryHeadersError,
    QueryStatusError,
    ReadError,
    ReceiveError,
    SendError,
    SessionError,
    Transport,
    TransportError,
    TransportHandle,
)
from httpexchange.url_parser import InvalidURLError, parse_url

logger = logging.getLogger(__name__)

INVALID_URL_MESSAGE = "Invalid URL format."

DEFAULT_USER_AGENT = "HttpClient/1.0"
DEFAULT_CHUNK_SIZE = 4096

# Diagnostic prefix per failing stage
STAGE_MESSAGES: dict[type[TransportError], str] = {
    SessionError: "Session open failed",
    ConnectError: "Connect failed",
    OpenRequestError: "Open request failed",
    AddHeadersError: "Add request headers failed",
    SendError: "Send request failed",
    ReceiveError: "Receive response failed",
    QueryStatusError: "Query status code failed",
    QueryHeadersError: "Query response headers failed",
    ReadError: "Read response body failed",
}


def describe_transport_error(error: TransportError) -> str:
    """Render a stage diagnostic such as "Send request failed: timeout: ..."."""
    prefix = "Transport failed"
    for error_type, message in STAGE_MESSAGES.items():
        if isinstance(error, error_type):
            prefix = message
            break
    detail = str(error)
    return f"{prefix}: {detail}" if detail else f"{prefix}."


def execute_exchange(
    transport: Transport,
    method: str,
    url: str,
    body: bytes = b"",
    headers: Mapping[str, str] | None = None,
    *,
    user_agent: str = DEFAULT_USER_AGENT,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> HttpResponse:
    """Perform one request/response exchange.

    Args:
        transport: HTTP stack used for every stage.
        method: HTTP method, e.g. "GET".
        url: Absolute http/https URL.
        body: Request payload. Empty bytes send a zero-length payload.
        headers: Request headers, attached verbatim.
        user_agent: Client identifier handed to the transport session.
        chunk_size: Body read buffer size in bytes.

    Returns:
        HttpResponse. On failure error is set; status_code is 0 unless the
        status line had already been read.
    """
    response = HttpResponse()
    start_time = time.perf_counter()
    try:
        _run_stages(transport, response, method, url, body, headers or {}, user_agent, chunk_size)
    except InvalidURLError as e:
        logger.debug("Rejected URL %r: %s", url, e)
        response.error = INVALID_URL_MESSAGE
    except TransportError as e:
        response.error = describe_transport_error(e)
    except Exception as e:
        logger.exception("Unexpected failure during %s %s", method, url)
        response.error = str(e) or type(e).__name__
    response.elapsed_ms = (time.perf_counter() - start_time) * 1000

    if response.error:
        # Aborted exchanges never expose partial headers or body
        response.headers = {}
        response.body = b""
        logger.warning("%s %s aborted: %s", method, url, response.error)
    else:
        logger.debug(
            "%s %s -> %d (%d bytes, %.1f ms)",
            method, url, response.status_code, len(response.body), response.elapsed_ms,
        )
    return response


def _run_stages(
    transport: Transport,
    response: HttpResponse,
    method: str,
    url: str,
    body: bytes,
    headers: Mapping[str, str],
    user_agent: str,
    chunk_size: int,
) -> None:
    """Run every stage, filling response in place. Raises on the first failure."""
    parsed = parse_url(url)

    with transport.open_session(user_agent) as session:
        with transport.connect(session, parsed.host, parsed.port) as connection:
            with transport.open_request(
                connection, method, parsed.path, parsed.is_secure
            ) as request:
                header_block = serialize_headers(headers)
                if header_block:
                    transport.add_headers(request, header_block)

                transport.send(request, body)
                transport.receive(request)

                response.status_code = transport.query_status(request)
                raw_headers = transport.query_raw_headers(request)
                response.headers = parse_raw_headers(raw_headers)
                response.body = _read_body(transport, request, chunk_size)


def _read_body(transport: Transport, request: TransportHandle, chunk_size: int) -> bytes:
    """Read fixed-size chunks until a zero-length read."""
    chunks: list[bytes] = []
    while True:
        chunk = transport.read_chunk(request, chunk_size)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)
