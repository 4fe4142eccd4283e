"""HttpClient - Public entry points, one per HTTP method.

Usage:
    client = HttpClient("MyApp/2.0")
    response = client.get("https://example.com/health")
    if response.is_success():
        print(response.text)
    else:
        print(response.status_code, response.error)

No method raises; every failure is reported through HttpResponse.error.
"""

from __future__ import annotations

import json
from typing import Any, Mapping

from httpexchange.exchange import execute_exchange
from httpexchange.models import ClientConfig, HttpResponse
from httpexchange.transport import HttpxTransport, Transport

SUPPORTED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")

# Methods whose entry points always send an empty body
BODYLESS_METHODS = ("GET", "DELETE", "HEAD", "OPTIONS")

JSON_CONTENT_TYPE = "application/json"

Body = bytes | str


class HttpClient:
    """Synchronous HTTP/HTTPS client.

    Holds only immutable settings: every call opens and closes its own
    transport session, so one instance may be shared between threads.
    """

    def __init__(
        self,
        user_agent: str | None = None,
        *,
        config: ClientConfig | None = None,
        transport: Transport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            user_agent: Client identifier. Overrides config.user_agent.
            config: Client settings. Defaults to ClientConfig().
            transport: HTTP stack to drive. Defaults to an HttpxTransport
                       built from config.
        """
        self._config = config or ClientConfig()
        self._user_agent = user_agent or self._config.user_agent
        if transport is None:
            transport = HttpxTransport(
                timeout=self._config.timeout,
                verify_ssl=self._config.verify_ssl,
                ca_bundle=self._config.ca_bundle,
                cert=self._config.cert,
                key=self._config.key,
                key_password=self._config.key_password,
            )
        self._transport = transport

    @property
    def user_agent(self) -> str:
        return self._user_agent

    @property
    def config(self) -> ClientConfig:
        return self._config

    def get(self, url: str, headers: Mapping[str, str] | None = None) -> HttpResponse:
        return self.request("GET", url, b"", headers)

    def post(self, url: str, data: Body = b"", headers: Mapping[str, str] | None = None) -> HttpResponse:
        return self.request("POST", url, data, headers)

    def put(self, url: str, data: Body = b"", headers: Mapping[str, str] | None = None) -> HttpResponse:
        return self.request("PUT", url, data, headers)

    def patch(self, url: str, data: Body = b"", headers: Mapping[str, str] | None = None) -> HttpResponse:
        return self.request("PATCH", url, data, headers)

    def delete(self, url: str, headers: Mapping[str, str] | None = None) -> HttpResponse:
        return self.request("DELETE", url, b"", headers)

    def head(self, url: str, headers: Mapping[str, str] | None = None) -> HttpResponse:
        return self.request("HEAD", url, b"", headers)

    def options(self, url: str, headers: Mapping[str, str] | None = None) -> HttpResponse:
        return self.request("OPTIONS", url, b"", headers)

    def post_json(
        self,
        url: str,
        document: Any,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        """POST a JSON document.

        The document is serialized canonically (compact, keys sorted) and
        Content-Type is forced to application/json, replacing a caller value
        under that exact key.
        """
        try:
            data = json.dumps(
                document, separators=(",", ":"), sort_keys=True, ensure_ascii=False
            )
        except (TypeError, ValueError) as e:
            return HttpResponse(error=f"JSON serialization failed: {e}")

        headers_with_content_type = dict(headers or {})
        headers_with_content_type["Content-Type"] = JSON_CONTENT_TYPE
        return self.post(url, data, headers_with_content_type)

    def request(
        self,
        method: str,
        url: str,
        data: Body = b"",
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        """Perform one exchange with an arbitrary supported method.

        Args:
            method: One of SUPPORTED_METHODS (case-insensitive).
            url: Absolute http/https URL.
            data: Request body. str is encoded as UTF-8.
            headers: Request headers, merged over config.headers.

        Returns:
            HttpResponse; error is set on any failure.
        """
        method = method.upper() if isinstance(method, str) else ""
        if method not in SUPPORTED_METHODS:
            return HttpResponse(error=f"Unsupported HTTP method {method or '(empty)'!r}.")

        try:
            body = _encode_body(data)
        except TypeError as e:
            return HttpResponse(error=f"Invalid request body: {e}")

        merged_headers = dict(self._config.headers)
        merged_headers.update(headers or {})

        return execute_exchange(
            self._transport,
            method,
            url,
            body,
            merged_headers,
            user_agent=self._user_agent,
            chunk_size=self._config.chunk_size,
        )


def _encode_body(data: Any) -> bytes:
    if data is None:
        return b""
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    raise TypeError(f"body must be bytes or str, got {type(data).__name__}")
