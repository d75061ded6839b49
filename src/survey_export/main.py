"""
Survey Export Main Module - Complete Export Pipeline.

This module provides the ExportPipeline class which orchestrates one
survey PDF export:
1. Browser: Launch a sandboxed Chromium
2. Login: Authenticate the browser with the service account
3. Export: Trigger the async export and capture the PDF
4. Upload: Store the PDF and resolve its public URL
5. Email: Notify the admin recipients

The browser is closed on every exit path. No partial success is ever
reported: a failed notification after a successful upload is a failure.

CLI Usage:
    $ survey-export run --survey-id s1 --participant-id p1 -a admin@example.com --env qa
    $ survey-export serve --port 8080
    $ survey-export check --probe --env staging

Example Python Usage:
    >>> from survey_export.main import ExportPipeline
    >>>
    >>> pipeline = ExportPipeline()
    >>> result = await pipeline.run_payload({
    ...     "surveyId": "s1",
    ...     "participantId": "p1",
    ...     "adminEmails": ["admin@example.com"],
    ...     "env": "qa",
    ... })
    >>> print(result.to_response())
"""
from __future__ import annotations

import asyncio
import json
import logging
import shutil
import sys
import tempfile
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterator, Optional

import click
import httpx

from . import __version__
from .agents.capture import ExportCaptureAgent
from .agents.notifier import NotificationAgent
from .agents.uploader import UploadAgent
from .browser.authenticator import LoginAuthenticator
from .browser.launcher import BrowserManager
from .browser.observer import ExportProgressObserver
from .config import ExportConfig, validate_runtime
from .errors import ExportError, NotificationError, categorize_error
from .models.export_request import EnvironmentName, ExportRequest, sanitize_filename
from .models.export_result import ExportResult
from .utils.log_setup import configure_logging, request_context


__all__ = ["ExportPipeline", "new_request_id", "run_cli"]

logger = logging.getLogger(__name__)


SUCCESS_MESSAGE = "PDF generated and emails sent successfully"


def new_request_id() -> str:
    """Invocation id used when the caller does not supply one."""
    return f"req_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


# =============================================================================
# PROGRESS INDICATORS
# =============================================================================

class ProgressIndicator:
    """Reports pipeline stages to the console, a callback and the log."""

    LABELS = {
        "browser": "[Browser]",
        "login": "[Login]",
        "export": "[Export]",
        "upload": "[Upload]",
        "email": "[Email]",
        "success": "[OK]",
        "error": "[ERROR]",
    }

    def __init__(self, verbose: bool = False, callback: Optional[Callable[[str, str], Any]] = None):
        self.verbose = verbose
        # The web surface swaps this per job to collect messages.
        self.callback = callback

    def update(self, stage: str, message: str) -> None:
        logger.info(message)
        if self.verbose:
            click.echo(f"{self.LABELS.get(stage, '[' + stage + ']')} {message}")
        if self.callback is not None:
            self.callback(stage, message)

    def success(self, message: str) -> None:
        self.update("success", message)

    def error(self, message: str) -> None:
        self.update("error", message)


# =============================================================================
# EXPORT PIPELINE CLASS
# =============================================================================

class ExportPipeline:
    """
    Main orchestrator for one survey PDF export.

    Phases run strictly in sequence inside one browser session. The
    access token obtained at login is reused for upload and email.

    Attributes:
        config: Export configuration shared by every component.
        progress: Progress reporter (console and/or callback).
    """

    def __init__(
        self,
        config: Optional[ExportConfig] = None,
        verbose: bool = False,
        progress_callback: Optional[Callable[[str, str], Any]] = None,
        browser_factory: Callable[[ExportConfig], Any] = BrowserManager,
        upload_transport: Optional[httpx.AsyncBaseTransport] = None,
        notify_transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Initialize ExportPipeline.

        Args:
            config: Export configuration. Defaults to ExportConfig.from_env().
            verbose: Show progress messages in console.
            progress_callback: Optional callback for progress updates.
            browser_factory: Builds the async context manager yielding a page.
            upload_transport: httpx transport for the storage API.
            notify_transport: httpx transport for the notification API.
            sleep: Async sleep used by every waiting component.
        """
        self.config = config or ExportConfig.from_env()
        self.progress = ProgressIndicator(verbose=verbose, callback=progress_callback)
        self.browser_factory = browser_factory
        self.upload_transport = upload_transport
        self.notify_transport = notify_transport
        self._sleep = sleep

        self.observer = ExportProgressObserver()

        logger.debug(f"ExportPipeline initialized: {self.config.to_log_dict()}")

    async def run_payload(
        self,
        payload: Dict[str, Any],
        request_id: Optional[str] = None,
    ) -> ExportResult:
        """
        Validate an invocation payload and run the export.

        Validation failures come back as a failed ExportResult (400),
        never as an exception.
        """
        request_id = request_id or new_request_id()
        start_time = datetime.now()

        with request_context(request_id):
            try:
                request = ExportRequest.from_payload(payload, self.config)
            except ExportError as e:
                logger.error(f"Input validation failed: {e.message} {e.details}")
                return self._failure(e, request_id, start_time)

        return await self.run(request, request_id=request_id, start_time=start_time)

    async def run(
        self,
        request: ExportRequest,
        request_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
    ) -> ExportResult:
        """
        Run the complete export pipeline.

        Args:
            request: Validated export request.
            request_id: Invocation id for logs and the response.
            start_time: When the invocation started (defaults to now).

        Returns:
            ExportResult; failures are reported here, not raised.
        """
        request_id = request_id or new_request_id()
        start_time = start_time or datetime.now()

        with request_context(request_id):
            logger.info(f"Processing PDF export request: {request.to_log_dict()}")
            try:
                with self._scratch_config(request_id) as run_config:
                    return await self._execute(request, request_id, start_time, run_config)
            except ExportError as e:
                logger.error(f"Export failed: {e.to_dict()}")
                self.progress.error(e.message)
                return self._failure(e, request_id, start_time)
            except Exception as e:
                logger.exception("Unexpected export failure")
                error = categorize_error(e, {"request_id": request_id})
                self.progress.error(error.message)
                return self._failure(error, request_id, start_time)

    @contextmanager
    def _scratch_config(self, request_id: str) -> Iterator[ExportConfig]:
        """
        Config copy whose download_dir is a directory private to this run.

        Concurrent runs share config.download_dir as a parent only, so one
        run never sees another run's PDF. The directory is removed on exit.
        """
        self.config.download_dir.mkdir(parents=True, exist_ok=True)
        scratch = Path(tempfile.mkdtemp(
            prefix=f"{sanitize_filename(request_id)}-", dir=self.config.download_dir
        ))
        logger.debug(f"Scratch directory: {scratch}")
        try:
            yield self.config.model_copy(update={"download_dir": scratch})
        finally:
            try:
                shutil.rmtree(scratch)
            except OSError as e:
                logger.warning(f"Failed to remove scratch directory {scratch}: {e}")

    async def _execute(
        self,
        request: ExportRequest,
        request_id: str,
        start_time: datetime,
        run_config: ExportConfig,
    ) -> ExportResult:
        urls = request.resolve_urls(self.config)
        frontend_url, backend_url = urls["frontend"], urls["backend"]

        # =================================================================
        # STEP 1: BROWSER
        # =================================================================
        self.progress.update("browser", "Launching browser...")
        async with self.browser_factory(run_config) as page:

            # =============================================================
            # STEP 2: LOGIN
            # =============================================================
            self.progress.update("login", f"Logging in as {request.credentials.email}...")
            authenticator = LoginAuthenticator(self.config, observer=self.observer, sleep=self._sleep)
            access_token = await authenticator.authenticate(
                page, backend_url, frontend_url, request.credentials
            )
            if self.config.attach_bearer_header:
                await page.set_extra_http_headers({"Authorization": f"Bearer {access_token}"})
            self.progress.success("Logged in")

            # =============================================================
            # STEP 3: EXPORT
            # =============================================================
            self.progress.update("export", "Generating PDF export...")
            capture_agent = ExportCaptureAgent(run_config, observer=self.observer, sleep=self._sleep)
            artifact = await capture_agent.capture(
                page, request.export_url(frontend_url, self.config.login_locale)
            )
            self.progress.success(f"PDF captured ({artifact.size_bytes} bytes)")

            # =============================================================
            # STEP 4: UPLOAD
            # =============================================================
            self.progress.update("upload", "Uploading PDF...")
            uploader = UploadAgent(
                backend_url,
                access_token,
                self.config,
                environment=request.environment_name,
                transport=self.upload_transport,
            )
            upload = await uploader.upload(artifact.content, request.suggested_filename)
            self.progress.success(f"PDF uploaded: {upload.public_url}")

            # =============================================================
            # STEP 5: EMAIL
            # =============================================================
            self.progress.update("email", f"Notifying {len(request.admin_recipients)} admin(s)...")
            notifier = NotificationAgent(
                backend_url,
                access_token,
                self.config,
                transport=self.notify_transport,
                sleep=self._sleep,
            )
            try:
                notification = await notifier.notify(
                    request.admin_recipients,
                    upload.public_url,
                    request.survey_id,
                    request.participant_id,
                )
            except ExportError as e:
                # The PDF exists; keep its URL for manual recovery
                logger.error(f"Notification failed after upload, PDF available at {upload.public_url}")
                if isinstance(e, NotificationError):
                    e.context.setdefault("pdf_url", upload.public_url)
                raise
            self.progress.success("Admins notified")

        result = ExportResult(
            success=True,
            request_id=request_id,
            pdf_url=upload.public_url,
            message=SUCCESS_MESSAGE,
            start_time=start_time,
            end_time=datetime.now(),
            notification=notification,
            artifact_size=artifact.size_bytes,
        )
        logger.info(f"Export completed in {result.duration_ms}ms: {result.pdf_url}")
        return result

    @staticmethod
    def _failure(error: ExportError, request_id: str, start_time: datetime) -> ExportResult:
        return ExportResult(
            success=False,
            request_id=request_id,
            message=error.message,
            error_code=error.error_code,
            status_code=error.status_code,
            details=error.details,
            start_time=start_time,
            end_time=datetime.now(),
        )


# =============================================================================
# CLI INTERFACE
# =============================================================================

@click.group()
@click.version_option(version=__version__, prog_name="survey-export")
def cli():
    """
    Survey Export - Browser-driven survey PDF export service.

    Logs into the survey platform, captures a participant's results PDF,
    uploads it and emails a link to the admins.
    """
    pass


@cli.command()
@click.option("-s", "--survey-id", required=True, help="Survey to export.")
@click.option("-p", "--participant-id", required=True, help="Participant whose results are exported.")
@click.option(
    "-a", "--admin-email",
    "admin_emails",
    multiple=True,
    required=True,
    help="Admin to notify (repeatable).",
)
@click.option(
    "--env",
    type=click.Choice([e.value for e in EnvironmentName], case_sensitive=False),
    default=None,
    help="Named environment (alternative to explicit URLs).",
)
@click.option("--frontend-url", default=None, help="Explicit frontend base URL.")
@click.option("--backend-url", default=None, help="Explicit backend API base URL.")
@click.option("--service-email", envvar="SERVICE_EMAIL", default=None, help="Service account email.")
@click.option(
    "--service-password",
    envvar="SERVICE_PASSWORD",
    default=None,
    help="Service account password.",
)
@click.option(
    "--headless/--no-headless",
    default=True,
    help="Run browser in headless mode (default: yes).",
)
@click.option("--timeout-ms", type=int, default=None, help="Export capture deadline in ms.")
@click.option(
    "--download-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Scratch directory for the PDF download.",
)
@click.option("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO).")
@click.option("--log-file", type=click.Path(dir_okay=False), default=None, help="Also log to this file.")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Show progress messages.")
def run(
    survey_id: str,
    participant_id: str,
    admin_emails: tuple,
    env: Optional[str],
    frontend_url: Optional[str],
    backend_url: Optional[str],
    service_email: Optional[str],
    service_password: Optional[str],
    headless: bool,
    timeout_ms: Optional[int],
    download_dir: Optional[str],
    log_level: Optional[str],
    log_file: Optional[str],
    verbose: bool,
):
    """
    Export one participant's survey results as PDF.

    Example:

        $ survey-export run -s s1 -p p1 -a admin@example.com --env qa

        $ survey-export run -s s1 -p p1 -a a@x.com --frontend-url http://localhost:3000 --backend-url http://localhost:4000 --no-headless
    """
    overrides: Dict[str, Any] = {"headless": headless}
    if timeout_ms is not None:
        overrides["capture_timeout_ms"] = timeout_ms
    if download_dir is not None:
        overrides["download_dir"] = download_dir
    if log_level is not None:
        overrides["log_level"] = log_level

    config = ExportConfig.from_env(**overrides)
    configure_logging(config.log_level, log_file)

    payload: Dict[str, Any] = {
        "surveyId": survey_id,
        "participantId": participant_id,
        "adminEmails": list(admin_emails),
    }
    if env:
        payload["environmentName"] = env
    if frontend_url:
        payload["frontendUrl"] = frontend_url
    if backend_url:
        payload["backendUrl"] = backend_url
    if service_email:
        payload["serviceEmail"] = service_email
    if service_password:
        payload["servicePassword"] = service_password

    click.echo()
    click.echo(click.style("=" * 50, fg="blue"))
    click.echo(click.style("  SURVEY EXPORT - PDF Export Pipeline", fg="blue", bold=True))
    click.echo(click.style("=" * 50, fg="blue"))
    click.echo()

    pipeline = ExportPipeline(config=config, verbose=verbose)

    try:
        result = asyncio.run(pipeline.run_payload(payload))
    except KeyboardInterrupt:
        click.echo()
        click.echo(click.style("Interrupted by user", fg="yellow"))
        sys.exit(130)

    click.echo()
    if result.success:
        click.echo(click.style("[SUCCESS] Export completed", fg="green", bold=True))
        click.echo(f"[PDF] {click.style(result.pdf_url or '', fg='yellow', bold=True)}")
    else:
        click.echo(click.style(f"[FAILED] {result.error_code}: {result.message}", fg="red", bold=True))
        for line in result.details:
            click.echo(f"  - {line}")
    click.echo()
    click.echo(json.dumps(result.to_response(), indent=2))

    sys.exit(0 if result.success else 1)


@cli.command()
@click.option("-p", "--port", type=int, default=5000, help="Port to run on (default: 5000).")
@click.option("--host", default="0.0.0.0", help="Interface to bind (default: 0.0.0.0).")
@click.option("--debug", is_flag=True, default=False, help="Enable debug mode.")
def serve(port: int, host: str, debug: bool):
    """
    Start the HTTP export service.

    Example:

        $ survey-export serve --port 8080
    """
    from .web.app import app

    config = ExportConfig.from_env()
    configure_logging(config.log_level)

    click.echo()
    click.echo(click.style("=" * 63, fg="cyan"))
    click.echo(click.style("           SURVEY EXPORT SERVICE", fg="cyan"))
    click.echo(click.style("=" * 63, fg="cyan"))
    click.echo(click.style(f"  Listening on http://{host}:{port}", fg="cyan"))
    click.echo(click.style("  Press Ctrl+C to stop", fg="cyan"))
    click.echo(click.style("=" * 63, fg="cyan"))
    click.echo()

    app.run(host=host, port=port, debug=debug, threaded=True)


@cli.command()
@click.option("--probe", is_flag=True, default=False, help="Also probe the storage and email endpoints.")
@click.option(
    "--env",
    type=click.Choice([e.value for e in EnvironmentName], case_sensitive=False),
    default=None,
    help="Environment whose backend is probed (default: staging).",
)
def check(probe: bool, env: Optional[str]):
    """Validate the runtime environment (scratch dir, timeouts, endpoints)."""
    config = ExportConfig.from_env()
    configure_logging(config.log_level)

    issues = validate_runtime(config)
    for issue in issues:
        click.echo(click.style(f"[WARN] {issue}", fg="yellow"))

    if probe:
        environment = EnvironmentName(env) if env else config.default_environment
        backend_url = config.urls_for(environment)["backend"]
        upload_ok, email_ok = asyncio.run(_probe_endpoints(backend_url, config))
        click.echo(f"[Upload] {backend_url}: {'reachable' if upload_ok else 'unreachable'}")
        click.echo(f"[Email] {backend_url}: {'reachable' if email_ok else 'unreachable'}")
        if not (upload_ok and email_ok):
            issues.append("endpoint probe failed")

    if issues:
        click.echo(click.style(f"[FAILED] {len(issues)} issue(s) found", fg="red", bold=True))
        sys.exit(1)
    click.echo(click.style("[OK] Runtime environment looks good", fg="green", bold=True))


async def _probe_endpoints(backend_url: str, config: ExportConfig):
    uploader = UploadAgent(backend_url, "", config)
    notifier = NotificationAgent(backend_url, "", config)
    return await uploader.verify_endpoint(), await notifier.verify_service()


@cli.command()
def version():
    """Show version information."""
    click.echo(f"Survey Export v{__version__}")
    click.echo("Browser-driven survey PDF export service")
    click.echo()
    click.echo("Stages:")
    click.echo("  - Login: UI login with session verification")
    click.echo("  - Export: Async export capture with stall retries")
    click.echo("  - Upload: Storage upload and public URL resolution")
    click.echo("  - Email: Admin notification with backoff")


def run_cli():
    """Entry point for CLI."""
    cli()


# =============================================================================
# MODULE ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    run_cli()
