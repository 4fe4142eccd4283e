"""CLI entry point for httpexchange.

Performs one request/response exchange and prints the result.

Usage:
    httpexchange GET https://example.com/
    httpexchange -i -H 'Accept: text/plain' GET https://example.com/
    httpexchange --json '{"name": "John Doe", "age": 30}' POST https://example.com/users
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from httpexchange.client import BODYLESS_METHODS, SUPPORTED_METHODS, HttpClient
from httpexchange.config_loader import ConfigError, load_client_config
from httpexchange.models import ClientConfig, HttpResponse


_NO_JSON = object()


def positive_float(value: str) -> float:
    """Parse and validate a positive float value.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive number.
    """
    try:
        result = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number '{value}'.")
    if result <= 0:
        raise argparse.ArgumentTypeError(f"Value must be positive, got {result}.")
    return result


def parse_method(value: str) -> str:
    """Parse an HTTP method name (case-insensitive)."""
    method = value.upper()
    if method not in SUPPORTED_METHODS:
        raise argparse.ArgumentTypeError(
            f"Unsupported method '{value}'. Choose from {', '.join(SUPPORTED_METHODS)}."
        )
    return method


def parse_header(value: str) -> tuple[str, str]:
    """Parse 'Name: Value' format.

    Returns:
        Tuple of (name, value).

    Raises:
        argparse.ArgumentTypeError: If format is invalid.
    """
    if ":" not in value:
        raise argparse.ArgumentTypeError(
            f"Invalid header '{value}'. Expected 'Name: Value' (e.g., 'Accept: text/plain')"
        )
    name, _, header_value = value.partition(":")
    name = name.strip()
    if not name:
        raise argparse.ArgumentTypeError(f"Invalid header '{value}'. Name cannot be empty.")
    return (name, header_value.strip())


def parse_json_document(value: str) -> Any:
    """Parse a JSON document argument."""
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"Invalid JSON: {e}")


@dataclass
class RequestArgs:
    """Parsed arguments for one exchange."""

    method: str
    url: str
    headers: dict[str, str]
    data: bytes
    json_document: Any
    config: Path | None
    user_agent: str | None
    timeout: float | None
    include_headers: bool
    verbose: bool

    @property
    def has_json(self) -> bool:
        return self.json_document is not _NO_JSON


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="httpexchange",
        description="Perform one synchronous HTTP/HTTPS request and print the response.",
    )
    parser.add_argument(
        "method",
        type=parse_method,
        metavar="METHOD",
        help=f"HTTP method ({', '.join(SUPPORTED_METHODS)})",
    )
    parser.add_argument("url", metavar="URL", help="Absolute http:// or https:// URL")
    parser.add_argument(
        "-H",
        "--header",
        type=parse_header,
        action="append",
        default=[],
        metavar="'NAME: VALUE'",
        dest="headers",
        help="Request header (can be repeated; later values win)",
    )

    body_group = parser.add_mutually_exclusive_group()
    body_group.add_argument("-d", "--data", help="Request body as text")
    body_group.add_argument(
        "--data-file",
        type=Path,
        help="Read the request body from a file",
    )
    body_group.add_argument(
        "--json",
        type=parse_json_document,
        default=_NO_JSON,
        dest="json_document",
        metavar="JSON",
        help="JSON document to POST (sets Content-Type: application/json)",
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to client config YAML",
    )
    parser.add_argument(
        "--user-agent",
        help="Client identifier (overrides config)",
    )
    parser.add_argument(
        "--timeout",
        type=positive_float,
        help="Per-stage network deadline in seconds (overrides config)",
    )
    parser.add_argument(
        "-i",
        "--include",
        action="store_true",
        dest="include_headers",
        help="Print status code and response headers before the body",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log each exchange stage to stderr",
    )
    return parser


def parse_args(args: list[str] | None = None) -> RequestArgs:
    """Parse command-line arguments and return typed args dataclass.

    Args:
        args: Command-line arguments to parse. If None, uses sys.argv[1:].

    Raises:
        SystemExit: If arguments are invalid (argparse behavior).
    """
    parser = build_parser()
    namespace = parser.parse_args(args)

    has_body = (
        namespace.data is not None
        or namespace.data_file is not None
        or namespace.json_document is not _NO_JSON
    )
    if has_body and namespace.method in BODYLESS_METHODS:
        parser.error(f"{namespace.method} requests cannot carry a body")
    if namespace.json_document is not _NO_JSON and namespace.method != "POST":
        parser.error("--json is only supported with POST")

    data = b""
    if namespace.data is not None:
        data = namespace.data.encode("utf-8")
    elif namespace.data_file is not None:
        try:
            data = namespace.data_file.read_bytes()
        except OSError as e:
            parser.error(f"Cannot read {namespace.data_file}: {e}")

    return RequestArgs(
        method=namespace.method,
        url=namespace.url,
        headers=dict(namespace.headers),
        data=data,
        json_document=namespace.json_document,
        config=namespace.config,
        user_agent=namespace.user_agent,
        timeout=namespace.timeout,
        include_headers=namespace.include_headers,
        verbose=namespace.verbose,
    )


def build_client(args: RequestArgs) -> HttpClient:
    """Create an HttpClient from the config file and command-line overrides.

    Raises:
        ConfigError: If the config file cannot be loaded.
    """
    config = load_client_config(args.config) if args.config else ClientConfig()
    if args.timeout is not None:
        config = config.model_copy(update={"timeout": args.timeout})
    return HttpClient(args.user_agent, config=config)


def send(client: HttpClient, args: RequestArgs) -> HttpResponse:
    """Dispatch to the entry point matching the parsed arguments."""
    if args.has_json:
        return client.post_json(args.url, args.json_document, args.headers)
    return client.request(args.method, args.url, args.data, args.headers)


def print_response(response: HttpResponse, include_headers: bool) -> None:
    """Print the response: optional status and headers, then the body."""
    if response.error:
        print(f"Error: {response.error}", file=sys.stderr)
        return

    if include_headers:
        print(f"HTTP {response.status_code}")
        for name, value in response.headers.items():
            print(f"{name}: {value}")
        print()

    if response.body:
        sys.stdout.write(response.text)
        if not response.text.endswith("\n"):
            sys.stdout.write("\n")
        sys.stdout.flush()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    try:
        args = parse_args(argv)

        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.WARNING,
            format="%(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )

        try:
            client = build_client(args)
        except ConfigError as e:
            print(f"Error loading config: {e}", file=sys.stderr)
            return 1

        response = send(client, args)
        print_response(response, args.include_headers)
        return 0 if response.is_success() else 1

    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
