"""
Test suite for the export error taxonomy.

Run with: pytest tests/test_errors.py -v
"""
from __future__ import annotations

import pytest

from survey_export.errors import (
    AuthenticationError,
    BrowserLaunchError,
    ExportError,
    ExportTimeoutError,
    NotificationError,
    PayloadTooLargeError,
    PDFGenerationError,
    ServiceUnavailableError,
    UploadError,
    ValidationError,
    categorize_error,
)


class TestErrorKinds:

    @pytest.mark.parametrize("error,status,code", [
        (ValidationError("bad"), 400, "VALIDATION_ERROR"),
        (AuthenticationError("no"), 401, "AUTHENTICATION_ERROR"),
        (ExportTimeoutError("slow"), 408, "TIMEOUT_ERROR"),
        (ServiceUnavailableError("upload", "down"), 503, "SERVICE_UNAVAILABLE"),
        (PDFGenerationError("broken"), 500, "PDF_GENERATION_ERROR"),
        (BrowserLaunchError("no chrome"), 500, "PDF_GENERATION_ERROR"),
        (UploadError("rejected"), 500, "UPLOAD_ERROR"),
        (PayloadTooLargeError("huge"), 413, "PAYLOAD_TOO_LARGE"),
        (NotificationError("bounced"), 500, "NOTIFICATION_ERROR"),
        (ExportError("?"), 500, "INTERNAL_ERROR"),
    ])
    def test_status_and_code(self, error: ExportError, status: int, code: str):
        assert error.status_code == status
        assert error.error_code == code

    def test_only_service_unavailable_is_retryable_by_default(self):
        assert ServiceUnavailableError("email", "down").retryable is True
        assert AuthenticationError("no").retryable is False
        assert PayloadTooLargeError("huge").retryable is False

    def test_service_unavailable_message(self):
        error = ServiceUnavailableError("upload", "connection refused")

        assert error.message == "Service 'upload' is unavailable: connection refused"
        assert error.context["service"] == "upload"

    def test_notification_error_carries_attempts(self):
        assert NotificationError("failed", attempts=3).attempts == 3

    def test_to_dict(self):
        error = ValidationError("Invalid input parameters", details=["Missing required field: surveyId"])

        data = error.to_dict()

        assert data["name"] == "ValidationError"
        assert data["status_code"] == 400
        assert data["details"] == ["Missing required field: surveyId"]
        assert data["timestamp"]


class TestCategorizeError:

    def test_export_errors_pass_through(self):
        original = UploadError("rejected")

        assert categorize_error(original) is original

    def test_builtin_timeout(self):
        assert isinstance(categorize_error(TimeoutError("deadline")), ExportTimeoutError)

    def test_builtin_connection_error(self):
        assert isinstance(categorize_error(ConnectionResetError("reset")), ServiceUnavailableError)

    @pytest.mark.parametrize("message,expected", [
        ("Navigation timed out after 30000ms", ExportTimeoutError),
        ("connect ECONNREFUSED 127.0.0.1:4000", ServiceUnavailableError),
        ("401 Unauthorized", AuthenticationError),
        ("Target closed: browser has disconnected", PDFGenerationError),
    ])
    def test_message_heuristics(self, message: str, expected: type):
        assert type(categorize_error(RuntimeError(message))) is expected

    def test_filesystem_errors(self):
        error = categorize_error(RuntimeError("ENOENT: no such file or directory"))

        assert error.error_code == "FILE_SYSTEM_ERROR"

    def test_memory_errors(self):
        assert categorize_error(MemoryError()).error_code == "MEMORY_ERROR"

    def test_unknown_errors_are_internal(self):
        error = categorize_error(RuntimeError("something odd"), {"request_id": "req-1"})

        assert type(error) is ExportError
        assert error.error_code == "INTERNAL_ERROR"
        assert error.context["request_id"] == "req-1"
        assert error.context["original_type"] == "RuntimeError"
