from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field


__all__ = [
    "Artifact",
    "ExportResult",
    "NotificationResult",
    "UploadResult",
]


class Artifact(BaseModel):
    """
    The captured PDF.

    Produced once by the capture engine and consumed once by the upload
    client. The scratch file it was read from is already deleted.

    Attributes:
        content: Raw PDF bytes.
        suggested_filename: Name the browser gave the download.
    """
    content: bytes = Field(repr=False)
    suggested_filename: str

    @computed_field
    @property
    def size_bytes(self) -> int:
        return len(self.content)

    def __str__(self) -> str:
        return f"Artifact({self.suggested_filename}, {self.size_bytes} bytes)"


class UploadResult(BaseModel):
    """
    Where the artifact ended up.

    Attributes:
        public_url: Fully qualified URL admins can open.
        file_location: Location exactly as returned by the storage API.
        filename: Timestamped filename that was uploaded.
    """
    public_url: str
    file_location: str
    filename: str


class NotificationResult(BaseModel):
    """
    Outcome of a notification dispatch.

    Attributes:
        recipients_notified: Recipients included in the request.
        attempt_count: Attempts used, including the successful one.
        message_id: Message id reported by the notification API.
    """
    recipients_notified: List[str]
    attempt_count: int = Field(ge=1)
    message_id: Optional[str] = None


class ExportResult(BaseModel):
    """
    Complete result of one export invocation.

    Attributes:
        success: Whether every phase completed.
        request_id: Invocation id used in logs and responses.
        pdf_url: Public URL of the uploaded PDF (success only).
        message: Human readable summary.
        error_code: Wire error kind (failure only).
        status_code: HTTP-style status for the response.
        details: Extra detail lines (validation problems).
        start_time: When the invocation started.
        end_time: When the invocation finished.
        notification: Dispatch outcome (success only).
        artifact_size: Size of the captured PDF in bytes.
    """
    success: bool
    request_id: str
    pdf_url: Optional[str] = None
    message: str = ""
    error_code: Optional[str] = None
    status_code: int = 200
    details: List[str] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    notification: Optional[NotificationResult] = None
    artifact_size: Optional[int] = None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.end_time and self.start_time:
            return int((self.end_time - self.start_time).total_seconds() * 1000)
        return None

    def to_response(self) -> Dict[str, Any]:
        """Wire shape returned to the invoker."""
        if self.success:
            return {
                "success": True,
                "pdfUrl": self.pdf_url,
                "message": self.message,
                "requestId": self.request_id,
                "durationMs": self.duration_ms,
            }

        body: Dict[str, Any] = {
            "success": False,
            "error": self.error_code or "INTERNAL_ERROR",
            "message": self.message,
            "requestId": self.request_id,
        }
        if self.details:
            body["details"] = list(self.details)
        return body
