"""Error types surfaced by the PDF render API."""

from __future__ import annotations

from typing import Any, Dict, Optional


class PdfApiError(Exception):
    status = 500
    code = "internal_error"

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(PdfApiError):
    status = 400
    code = "invalid_request"


class InvalidNameError(ValidationError):
    code = "invalid_filename"


class AuthError(PdfApiError):
    status = 401
    code = "unauthorized"


class NotFoundError(PdfApiError):
    status = 404
    code = "not_found"


class RenderTimeoutError(PdfApiError):
    status = 408
    code = "render_timeout"


class RenderFailureError(PdfApiError):
    code = "render_failed"


class StorageError(PdfApiError):
    code = "storage_error"
