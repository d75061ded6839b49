"""
Survey Export - Browser-driven survey PDF export service.

A complete pipeline for exporting one participant's survey results:
1. Log a headless browser into the survey platform (LoginAuthenticator)
2. Trigger the async export and capture the PDF (ExportCaptureAgent)
3. Upload the PDF to storage (UploadAgent)
4. Email the admins a link (NotificationAgent)

Quick Start:
    >>> from survey_export import ExportPipeline
    >>>
    >>> pipeline = ExportPipeline(verbose=True)
    >>> result = await pipeline.run_payload({
    ...     "surveyId": "s1",
    ...     "participantId": "p1",
    ...     "adminEmails": ["admin@example.com"],
    ...     "env": "qa",
    ... })

CLI Usage:
    $ python -m survey_export run -s s1 -p p1 -a admin@example.com --env qa

Modules:
    - agents: Pipeline stages (Capture, Upload, Notification)
    - browser: Browser automation (Launcher, Locators, Observer, Authenticator)
    - models: Data models (ExportRequest, ExportProgressSnapshot, ExportResult)
    - handler: Serverless invocation entry point
    - web: HTTP surface
"""
__version__ = "0.1.0"
__author__ = "Survey Export Team"

from .main import ExportPipeline, run_cli

__all__ = [
    "ExportPipeline",
    "run_cli",
    "__version__",
]
