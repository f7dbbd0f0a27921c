"""Network-related helpers."""

from __future__ import annotations

import errno
from typing import Optional
from urllib.parse import urlsplit

DISCONNECT_ERRNOS = {
    errno.EPIPE,
    errno.ECONNRESET,
    errno.ETIMEDOUT,
}
if hasattr(errno, "WSAECONNRESET"):
    DISCONNECT_ERRNOS.add(errno.WSAECONNRESET)  # pragma: no cover

ALLOWED_URL_SCHEMES = ("http", "https")


def is_client_disconnect(exc: BaseException) -> bool:
    if isinstance(exc, (BrokenPipeError, ConnectionResetError, TimeoutError)):
        return True
    return isinstance(exc, OSError) and exc.errno in DISCONNECT_ERRNOS


def is_http_url(value: str) -> bool:
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return parts.scheme.lower() in ALLOWED_URL_SCHEMES and bool(parts.hostname)


def request_base_url(
    configured: Optional[str],
    host_header: Optional[str],
    forwarded_proto: Optional[str] = None,
) -> str:
    """Base URL used to build download/view links for a response."""
    if configured:
        return configured.rstrip("/")
    scheme = "http"
    if forwarded_proto:
        candidate = forwarded_proto.split(",")[0].strip().lower()
        if candidate in ALLOWED_URL_SCHEMES:
            scheme = candidate
    host = (host_header or "localhost").strip()
    return f"{scheme}://{host}"
