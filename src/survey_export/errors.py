"""
Error taxonomy for the export pipeline.

Every failure that leaves a component is one of the ExportError subclasses
below. Each carries the HTTP-style status and the wire error code used in
failure responses, plus whether the caller of that component may retry.

Unknown exceptions are mapped into the taxonomy by categorize_error(),
which inspects the message text the same way for every caller.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


__all__ = [
    "AuthenticationError",
    "BrowserLaunchError",
    "ExportError",
    "ExportTimeoutError",
    "NotificationError",
    "PDFGenerationError",
    "PayloadTooLargeError",
    "ServiceUnavailableError",
    "UploadError",
    "ValidationError",
    "categorize_error",
]


class ExportError(Exception):
    """Base class for all pipeline failures."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        context: Optional[Dict[str, Any]] = None,
        details: Optional[List[str]] = None,
        retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})
        self.details: List[str] = list(details or [])
        if retryable is not None:
            self.retryable = retryable
        if error_code is not None:
            self.error_code = error_code
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """Structured form for logging."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "status_code": self.status_code,
            "error_code": self.error_code,
            "retryable": self.retryable,
            "context": self.context,
            "details": self.details,
            "timestamp": self.timestamp,
        }


class ValidationError(ExportError):
    """Bad or missing input. Never retried."""
    status_code = 400
    error_code = "VALIDATION_ERROR"


class AuthenticationError(ExportError):
    """Login or session verification failure. Never retried."""
    status_code = 401
    error_code = "AUTHENTICATION_ERROR"


class ExportTimeoutError(ExportError):
    """A phase deadline was exceeded."""
    status_code = 408
    error_code = "TIMEOUT_ERROR"


class ServiceUnavailableError(ExportError):
    """An external collaborator could not be reached or failed transiently."""
    status_code = 503
    error_code = "SERVICE_UNAVAILABLE"
    retryable = True

    def __init__(self, service: str, message: str, **kwargs: Any) -> None:
        context = dict(kwargs.pop("context", None) or {})
        context.setdefault("service", service)
        super().__init__(f"Service '{service}' is unavailable: {message}", context=context, **kwargs)
        self.service = service


class PDFGenerationError(ExportError):
    """Browser or export failure not otherwise classified."""
    status_code = 500
    error_code = "PDF_GENERATION_ERROR"


class BrowserLaunchError(PDFGenerationError):
    """The browser binary could not start within the launch deadline."""


class UploadError(ExportError):
    """Artifact upload failure."""
    status_code = 500
    error_code = "UPLOAD_ERROR"


class PayloadTooLargeError(UploadError):
    """Artifact exceeds the storage size ceiling. Never retried."""
    status_code = 413
    error_code = "PAYLOAD_TOO_LARGE"


class NotificationError(ExportError):
    """Notification dispatch failure."""
    status_code = 500
    error_code = "NOTIFICATION_ERROR"

    def __init__(self, message: str, *, attempts: int = 0, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.attempts = attempts


# Message fragments checked in order; first match wins
_CATEGORY_KEYWORDS = [
    (("timeout", "timed out", "etimedout"), "timeout"),
    (("econnrefused", "enotfound", "connection refused", "connecterror", "network"), "network"),
    (("unauthorized", "authentication", "401"), "auth"),
    (("chrome", "chromium", "browser", "playwright", "target closed", "page crashed"), "browser"),
    (("enoent", "eacces", "no such file", "permission denied", "file"), "filesystem"),
    (("out of memory", "memoryerror", "heap"), "memory"),
]


def categorize_error(error: BaseException, context: Optional[Dict[str, Any]] = None) -> ExportError:
    """
    Map any exception onto the export error taxonomy.

    ExportError instances are returned unchanged. Everything else is
    classified from its type and message text.

    Args:
        error: Exception raised somewhere in the pipeline.
        context: Extra context to attach to the categorized error.

    Returns:
        An ExportError subclass instance.
    """
    if isinstance(error, ExportError):
        return error

    ctx = dict(context or {})
    message = str(error) or type(error).__name__
    ctx.setdefault("original_error", message)
    ctx.setdefault("original_type", type(error).__name__)

    if isinstance(error, TimeoutError):
        return ExportTimeoutError(message, context=ctx)
    if isinstance(error, ConnectionError):
        return ServiceUnavailableError("external", message, context=ctx)
    if isinstance(error, MemoryError):
        return ExportError(message, context=ctx, error_code="MEMORY_ERROR")

    lowered = f"{type(error).__name__} {message}".lower()
    category = None
    for keywords, name in _CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            category = name
            break

    if category == "timeout":
        return ExportTimeoutError(message, context=ctx)
    if category == "network":
        return ServiceUnavailableError("external", message, context=ctx)
    if category == "auth":
        return AuthenticationError(message, context=ctx)
    if category == "browser":
        ctx["browser_error"] = True
        return PDFGenerationError(message, context=ctx)
    if category == "filesystem" or isinstance(error, OSError):
        return ExportError(message, context=ctx, error_code="FILE_SYSTEM_ERROR")
    if category == "memory":
        return ExportError(message, context=ctx, error_code="MEMORY_ERROR")

    return ExportError(message, context=ctx)
