"""Internal data models for httpexchange.

All models use Pydantic v2.
"""

from __future__ import annotations

import json
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# Core HTTP Models
# =============================================================================


class ParsedUrl(BaseModel):
    """An absolute URL decomposed into the parts one exchange needs.

    ``path`` already carries the query string, so the transport never
    re-splits path and query.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    scheme: str = Field(description="'http' or 'https'")
    host: str = Field(description="Authority without port")
    port: int = Field(description="Explicit port, or 80/443 by scheme")
    path: str = Field(default="/", description="Path plus verbatim query string")

    @property
    def is_secure(self) -> bool:
        return self.scheme == "https"


class HttpResponse(BaseModel):
    """Result of one request/response exchange.

    status_code stays 0 until the status line has been read, so 0 always
    means the server was never reached. error is non-empty whenever the
    exchange did not complete; callers must not inspect body in that case.
    Header keys are kept exactly as received.
    """

    model_config = ConfigDict(extra="forbid")

    status_code: int = Field(default=0, description="HTTP status code (0 = never reached)")
    body: bytes = Field(default=b"", description="Response payload")
    headers: dict[str, str] = Field(
        default_factory=dict, description="Response headers (case-sensitive keys, last wins)"
    )
    error: str = Field(default="", description="Diagnostic, empty on a completed exchange")
    elapsed_ms: float = Field(default=0.0, description="Exchange time in milliseconds")

    def is_success(self) -> bool:
        return 200 <= self.status_code < 300 and not self.error

    @property
    def text(self) -> str:
        """Body decoded with the charset from Content-Type, falling back to UTF-8."""
        encoding = _charset_from_headers(self.headers) or "utf-8"
        try:
            return self.body.decode(encoding, errors="replace")
        except LookupError:
            # Unknown charset name advertised by the server
            return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body)


def _charset_from_headers(headers: dict[str, str]) -> str | None:
    for name, value in headers.items():
        if name.lower() != "content-type":
            continue
        for param in value.split(";")[1:]:
            key, _, charset = param.strip().partition("=")
            if key.lower() == "charset" and charset:
                return charset.strip('"')
    return None


# =============================================================================
# Runtime Configuration Models
# =============================================================================


class ClientConfig(BaseModel):
    """Client configuration (supports ${ENV_VAR} substitution when loaded from YAML)."""

    model_config = ConfigDict(extra="forbid")

    user_agent: str = Field(default="HttpClient/1.0", description="Client identifier string")
    timeout: float | None = Field(
        default=30.0, description="Per-stage network deadline in seconds (None = wait forever)"
    )
    chunk_size: int = Field(default=4096, description="Body read buffer size in bytes")
    headers: dict[str, str] = Field(
        default_factory=dict, description="Headers sent with every request (caller wins)"
    )
    # TLS options (https only)
    verify_ssl: bool = Field(default=True, description="Verify server certificates")
    ca_bundle: str | None = Field(default=None, description="Path to CA bundle")
    cert: str | None = Field(default=None, description="Client certificate for mTLS")
    key: str | None = Field(default=None, description="Client private key for mTLS")
    key_password: str | None = Field(default=None, description="Password for the client key")

    @field_validator("timeout")
    @classmethod
    def check_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("timeout must be positive")
        return value

    @field_validator("chunk_size")
    @classmethod
    def check_chunk_size(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("chunk_size must be positive")
        return value

    @model_validator(mode="after")
    def check_client_cert(self) -> Self:
        if self.key is not None and self.cert is None:
            raise ValueError("key requires cert")
        if self.key_password is not None and self.key is None:
            raise ValueError("key_password requires key")
        return self
