"""Header Codec - Converts between header mappings and wire header blocks.

Header names are treated literally: no case folding or canonicalization
happens in either direction, and duplicate names resolve to the last value.
"""

from __future__ import annotations

from typing import Iterable, Mapping

CRLF = "\r\n"

# Characters trimmed from both ends of parsed keys and values
_TRIM_CHARS = " \t\r\n"


def serialize_headers(headers: Mapping[str, str]) -> str:
    """Render headers as a wire block of "Name: Value\\r\\n" lines.

    Lines follow the mapping's iteration order; callers must not rely on
    any particular on-wire ordering. An empty mapping yields "".
    """
    return "".join(f"{name}: {value}{CRLF}" for name, value in headers.items())


def parse_raw_headers(raw: str) -> dict[str, str]:
    """Parse a raw response header block into a mapping.

    The block is the status line, each header line and a terminating blank
    line. The status line is discarded, lines without ':' are skipped, and
    a repeated name keeps its last value.

    Args:
        raw: Raw header block as returned by the transport.

    Returns:
        Mapping of header name to value, both trimmed of whitespace, tab,
        CR and LF.
    """
    headers: dict[str, str] = {}
    lines = raw.split("\n")
    for line in lines[1:]:
        if not line.strip(_TRIM_CHARS):
            continue
        key, sep, value = line.partition(":")
        if not sep:
            continue
        headers[key.strip(_TRIM_CHARS)] = value.strip(_TRIM_CHARS)
    return headers


def format_raw_header_block(status_line: str, pairs: Iterable[tuple[str, str]]) -> str:
    """Build a raw header block from a status line and decoded header pairs.

    Every line, including the trailing blank line, ends with CRLF. Repeated
    names stay on separate lines, as they arrived on the wire.
    """
    lines = [status_line]
    lines.extend(f"{name}: {value}" for name, value in pairs)
    return CRLF.join(lines) + CRLF + CRLF
