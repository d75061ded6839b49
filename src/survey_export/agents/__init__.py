"""
Agent modules for the survey export pipeline.

This package contains the three stages that run after login:
- ExportCaptureAgent: Triggers the export and recovers the PDF
- UploadAgent: Stores the PDF and resolves its public URL
- NotificationAgent: Emails admins a link to the PDF
"""
from .capture import ExportCaptureAgent
from .notifier import NotificationAgent
from .uploader import UploadAgent

__all__ = [
    "ExportCaptureAgent",
    "NotificationAgent",
    "UploadAgent",
]
