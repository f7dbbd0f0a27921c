"""HTTP server entrypoints for PDF rendering."""

from __future__ import annotations

import atexit
import hmac
import json
import logging
import secrets
import shutil
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, Optional, Protocol, Tuple
from urllib.parse import unquote, urlsplit

from .config import Settings
from .errors import AuthError, PdfApiError, RenderTimeoutError, ValidationError
from .formatting import fmt_duration, fmt_timestamp
from .net import is_client_disconnect, request_base_url
from .options import RenderOptions, RenderSource
from .storage import ExpirySweeper, PdfFileStore, sanitize_filename

logger = logging.getLogger(__name__)

ErrorResponse = Tuple[int, Dict[str, Any]]
RENDER_PATHS = ("/generate-pdf", "/convert")
STATUS_PATHS = ("/", "/status", "/health", "/healthz")
DRAIN_LIMIT_BYTES = 1024 * 1024
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-API-Key",
}


class DependencyError(RuntimeError):
    """Raised when a required runtime dependency is missing."""


class Renderer(Protocol):
    def render_pdf(self, source: RenderSource, options: RenderOptions) -> bytes:
        ...


@dataclass(frozen=True)
class RenderJob:
    source: RenderSource
    options: RenderOptions
    filename: Optional[str] = None


def load_renderer(settings: Settings) -> Renderer:
    try:
        from .rendering import BrowserRenderer
    except ModuleNotFoundError as exc:
        if (exc.name or "").split(".")[0] == "playwright":
            raise DependencyError(
                "Missing dependency 'playwright'. Install project dependencies with "
                "'pip install -e .' and run 'playwright install chromium'."
            ) from exc
        raise
    return BrowserRenderer(settings)


def _error(status: int, message: str, code: str, details: Optional[str] = None) -> ErrorResponse:
    body: Dict[str, Any] = {"success": False, "error": message, "code": code}
    if details:
        body["details"] = details
    return status, body


def validate_render_payload(
    body: bytes,
    settings: Settings,
) -> Tuple[Optional[RenderJob], Optional[ErrorResponse]]:
    try:
        payload = json.loads(body.decode("utf-8"))
    except UnicodeDecodeError:
        return None, _error(400, "Body must be UTF-8 encoded JSON.", "invalid_encoding")
    except json.JSONDecodeError as exc:
        return None, _error(
            400,
            "Body is not valid JSON.",
            "invalid_json",
            f"{exc.msg} (line {exc.lineno}, column {exc.colno})",
        )

    if not isinstance(payload, dict):
        return None, _error(400, "JSON root must be an object.", "invalid_payload")

    url = payload.get("url")
    html = payload.get("html")
    if not url and not html:
        return None, _error(400, 'The "url" or "html" property is required.', "invalid_payload")
    if url and html:
        return None, _error(400, 'Provide either "url" or "html", not both.', "invalid_payload")
    if not isinstance(url or html, str):
        return None, _error(400, '"url" and "html" must be strings.', "invalid_payload")

    filename = payload.get("filename")
    if filename is not None:
        if not isinstance(filename, str) or sanitize_filename(filename) is None:
            return None, _error(400, "Invalid filename.", "invalid_filename")

    try:
        source = RenderSource(url=url or None, html=html or None)
        options = RenderOptions.from_payload(payload.get("options"), payload.get("landscape"), settings)
    except ValidationError as exc:
        return None, (exc.status, exc.to_dict())

    return RenderJob(source=source, options=options, filename=filename), None


class PdfRequestHandler(BaseHTTPRequestHandler):
    server: "PdfHTTPServer"

    def _send_common_headers(self) -> None:
        for name, value in SECURITY_HEADERS.items():
            self.send_header(name, value)

    def _write_response(
        self,
        status: int,
        content_type: str,
        body: bytes,
        headers: Optional[Dict[str, str]] = None,
    ) -> bool:
        try:
            self.send_response(status)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(body)))
            for name, value in (headers or {}).items():
                self.send_header(name, value)
            self._send_common_headers()
            self.end_headers()
            self.wfile.write(body)
            return True
        except Exception as exc:
            if is_client_disconnect(exc):
                return False
            raise

    def _send_json(self, status: int, payload: Dict[str, Any]) -> bool:
        body = json.dumps(payload).encode("utf-8")
        return self._write_response(status, "application/json", body)

    def _read_body(self) -> Optional[bytes]:
        header = self.headers.get("Content-Length")
        if header is None:
            self._send_json(*_error(411, "Content-Length header is required.", "missing_content_length"))
            return None

        try:
            content_length = int(header)
        except ValueError:
            self._send_json(*_error(400, "Content-Length must be an integer.", "invalid_content_length"))
            return None

        if content_length <= 0:
            self._send_json(*_error(400, "Request body cannot be empty.", "empty_body"))
            return None

        max_body_bytes = self.server.settings.max_body_bytes
        if content_length > max_body_bytes:
            self._discard_body()
            self._send_json(
                *_error(413, f"Body exceeds {max_body_bytes} bytes.", "payload_too_large")
            )
            return None

        try:
            return self.rfile.read(content_length)
        except Exception as exc:
            if is_client_disconnect(exc):
                return None
            raise

    def _discard_body(self) -> None:
        try:
            remaining = min(int(self.headers.get("Content-Length") or 0), DRAIN_LIMIT_BYTES)
        except ValueError:
            return
        try:
            while remaining > 0:
                chunk = self.rfile.read(min(remaining, 65536))
                if not chunk:
                    break
                remaining -= len(chunk)
        except Exception as exc:
            if is_client_disconnect(exc):
                return
            raise

    def _route(self) -> str:
        return urlsplit(self.path).path.rstrip("/") or "/"

    def _base_url(self) -> str:
        return request_base_url(
            self.server.settings.public_base_url,
            self.headers.get("Host"),
            self.headers.get("X-Forwarded-Proto"),
        )

    def _require_api_key(self) -> None:
        expected = self.server.settings.api_key
        if not expected:
            logger.error("API_KEY is not configured; rejecting protected request")
            raise PdfApiError("Server configuration error.")
        provided = self.headers.get("X-API-Key") or ""
        if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
            raise AuthError("Unauthorized: Invalid or missing API Key")

    def _dispatch(self, action: Callable[[], None]) -> None:
        try:
            action()
        except PdfApiError as exc:
            if exc.status >= 500:
                logger.error("%s %s failed: %s (%s)", self.command, self.path, exc.message, exc.details)
            elif isinstance(exc, RenderTimeoutError):
                logger.warning("%s %s timed out: %s", self.command, self.path, exc.details)
            self._send_json(exc.status, exc.to_dict())
        except Exception as exc:
            if is_client_disconnect(exc):
                return
            logger.exception("Unhandled error serving %s %s", self.command, self.path)
            self._send_json(*_error(500, "Internal server error.", "internal_error", str(exc)))

    def do_OPTIONS(self) -> None:
        self._write_response(204, "text/plain", b"")

    def do_POST(self) -> None:
        if self._route() not in RENDER_PATHS:
            self._discard_body()
            self._send_json(*_error(404, "Unsupported endpoint.", "not_found"))
            return
        self._dispatch(self._generate_pdf)

    def do_GET(self) -> None:
        route = self._route()
        if route in STATUS_PATHS:
            self._dispatch(self._status)
        elif route == "/files":
            self._dispatch(self._list_files)
        elif route.startswith("/download/"):
            name = unquote(route[len("/download/"):])
            self._dispatch(lambda: self._serve_pdf(name, "attachment"))
        elif route.startswith("/view/"):
            name = unquote(route[len("/view/"):])
            self._dispatch(lambda: self._serve_pdf(name, "inline"))
        else:
            self._send_json(*_error(404, "Unsupported endpoint.", "not_found"))

    def _generate_pdf(self) -> None:
        body = self._read_body()
        if body is None:
            return
        self._require_api_key()

        settings = self.server.settings
        job, error = validate_render_payload(body, settings)
        if job is None:
            self._send_json(*(error or _error(400, "Invalid request.", "invalid_request")))
            return

        request_id = secrets.token_hex(8)
        started = time.monotonic()
        logger.info("[%s] PDF generation requested for %s", request_id, job.source.describe())
        pdf = self.server.renderer.render_pdf(job.source, job.options)
        artifact = self.server.store.create(pdf, job.filename)
        logger.info(
            "[%s] PDF generated: %s in %.2fs",
            request_id,
            artifact.filename,
            time.monotonic() - started,
        )

        links = artifact.to_dict(self._base_url())
        self._send_json(
            200,
            {
                "success": True,
                "filename": artifact.filename,
                "downloadUrl": links["downloadUrl"],
                "viewUrl": links["viewUrl"],
                "expiresIn": fmt_duration(settings.file_ttl_seconds),
                "expiresAt": links["expiresAt"],
            },
        )

    def _serve_pdf(self, filename: str, disposition: str) -> None:
        handle, size = self.server.store.read(filename)
        with handle:
            try:
                self.send_response(200)
                self.send_header("Content-Type", "application/pdf")
                self.send_header("Content-Length", str(size))
                self.send_header("Content-Disposition", f'{disposition}; filename="{filename}"')
                self.send_header("Cache-Control", "private, no-store")
                self._send_common_headers()
                self.end_headers()
                shutil.copyfileobj(handle, self.wfile)
            except Exception as exc:
                if is_client_disconnect(exc):
                    return
                raise

    def _list_files(self) -> None:
        self._require_api_key()
        now = datetime.now(timezone.utc)
        base_url = self._base_url()
        artifacts = sorted(self.server.store.list(), key=lambda item: item.created_at, reverse=True)
        files = [artifact.to_dict(base_url, now) for artifact in artifacts]
        expired = sum(1 for item in files if item["status"] == "expired")
        self._send_json(
            200,
            {
                "success": True,
                "files": files,
                "totalFiles": len(files),
                "activeFiles": len(files) - expired,
                "expiredFiles": expired,
            },
        )

    def _status(self) -> None:
        from . import __version__

        settings = self.server.settings
        self._send_json(
            200,
            {
                "status": "running",
                "timestamp": fmt_timestamp(datetime.now(timezone.utc)),
                "name": "pdf-render-api",
                "version": __version__,
                "environment": settings.environment,
                "uptimeSeconds": int(time.monotonic() - self.server.started_at),
                "fileExpiration": fmt_duration(settings.file_ttl_seconds),
            },
        )

    def handle_one_request(self) -> None:
        try:
            super().handle_one_request()
        except Exception as exc:
            if is_client_disconnect(exc):
                return
            raise

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)


class PdfHTTPServer(ThreadingHTTPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(
        self,
        address: Tuple[str, int],
        settings: Settings,
        store: PdfFileStore,
        renderer: Renderer,
    ) -> None:
        self.settings = settings
        self.store = store
        self.renderer = renderer
        self.started_at = time.monotonic()
        self.request_queue_size = settings.listen_backlog
        super().__init__(address, PdfRequestHandler)


def create_server(
    settings: Settings,
    renderer: Optional[Renderer] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
) -> PdfHTTPServer:
    store = PdfFileStore(settings.output_dir, settings.file_ttl_seconds)
    store.ensure_directory()
    if renderer is None:
        renderer = load_renderer(settings)
    address = (host if host is not None else settings.host, port if port is not None else settings.port)
    return PdfHTTPServer(address, settings, store, renderer)


def run(settings: Optional[Settings] = None, host: Optional[str] = None, port: Optional[int] = None) -> None:
    settings = settings or Settings.from_env()
    server = create_server(settings, host=host, port=port)
    if not settings.api_key:
        logger.warning("API_KEY is not set; /generate-pdf and /files will answer 500")

    server.store.sweep()
    sweeper = ExpirySweeper(server.store, settings.cleanup_interval_seconds)
    sweeper.start()
    atexit.register(sweeper.stop, 1.0)

    bound_host, bound_port = server.server_address[:2]
    logger.info("PDF render API listening on http://%s:%s", bound_host, bound_port)
    logger.info("Files are kept for %s in %s", fmt_duration(settings.file_ttl_seconds), server.store.directory)
    try:
        server.serve_forever()
    finally:
        sweeper.stop(1.0)
        server.server_close()
