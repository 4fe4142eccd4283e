"""URL Parser - Decomposes absolute http/https URLs.

Only the subset of RFC 3986 that one exchange needs is accepted:
scheme, host, optional port, optional path and optional query. Anything
else (credentials, relative references, other schemes) is rejected before
any network resource is created.
"""

from __future__ import annotations

import re

from httpexchange.models import ParsedUrl


class InvalidURLError(ValueError):
    """Raised when a URL does not match the supported grammar."""


DEFAULT_PORTS = {"http": 80, "https": 443}

# scheme :// host [: port] [path] [? query] [# fragment]
# Host excludes '/', ':', '?', '#', '@' and whitespace. IPv6 literals are
# not supported.
_URL_PATTERN = re.compile(
    r"(?P<scheme>[A-Za-z][A-Za-z0-9+.\-]*)://"
    r"(?P<host>[^/:?#@\s]+)"
    r"(?::(?P<port>[^/?#]*))?"
    r"(?P<path>/[^?#\s]*)?"
    r"(?P<query>\?[^#\s]*)?"
    r"(?:#\S*)?"
)


def parse_url(url: str) -> ParsedUrl:
    """Parse an absolute http/https URL.

    Args:
        url: URL string, e.g. "https://example.com:8443/items?page=2".

    Returns:
        ParsedUrl with the port defaulted by scheme and the query string
        appended verbatim to the path (path defaults to "/").

    Raises:
        InvalidURLError: If the URL is malformed or uses another scheme.
    """
    if not isinstance(url, str):
        raise InvalidURLError(f"URL must be a string, got {type(url).__name__}")

    # A trailing newline is not part of any URL
    match = _URL_PATTERN.fullmatch(url)
    if match is None:
        raise InvalidURLError(f"Malformed URL: {url!r}")

    scheme = match.group("scheme").lower()
    if scheme not in DEFAULT_PORTS:
        raise InvalidURLError(f"Unsupported scheme '{scheme}' in URL: {url!r}")

    port_text = match.group("port")
    if port_text is None:
        port = DEFAULT_PORTS[scheme]
    else:
        port = _parse_port(port_text, url)

    path = match.group("path") or "/"
    query = match.group("query")
    if query:
        path += query

    return ParsedUrl(scheme=scheme, host=match.group("host"), port=port, path=path)


def _parse_port(port_text: str, url: str) -> int:
    """Parse an explicit port. Only plain decimal digits in 1..65535 are valid."""
    # str.isdigit() accepts non-ASCII digits like '²'
    if not port_text or not port_text.isascii() or not port_text.isdigit():
        raise InvalidURLError(f"Malformed port '{port_text}' in URL: {url!r}")
    port = int(port_text)
    if not 0 < port <= 65535:
        raise InvalidURLError(f"Port {port} out of range in URL: {url!r}")
    return port
