"""
Export Capture Agent for recovering the generated PDF.

This module provides the ExportCaptureAgent class which handles:
- Triggering the asynchronous client-side export by opening its URL
- Watching the export progress modal on a fixed poll interval
- Re-triggering an export that stalls before reaching 100%
- Picking up the finished PDF from the scratch directory

The PDF is recovered from the filesystem rather than from a browser
download event. The scratch directory is snapshotted before navigation
so files left over from earlier runs are never mistaken for this one.

State flow:
    NAVIGATING -> MONITORING -> (RETRYING -> MONITORING)* -> FILE_DETECTED
    -> READING -> DONE, with TIMED_OUT and FAILED reachable from any state.

Example Usage:
    >>> agent = ExportCaptureAgent(config)
    >>> artifact = await agent.capture(page, request.export_url(frontend))
    >>> print(f"Captured {artifact.size_bytes} bytes")
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Set

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..browser.observer import ExportProgressObserver
from ..config import ExportConfig
from ..errors import AuthenticationError, ExportError, ExportTimeoutError, PDFGenerationError
from ..models.export_result import Artifact
from ..models.progress import CaptureState, ExportProgressSnapshot


if TYPE_CHECKING:
    from playwright.async_api import Page


__all__ = ["ExportCaptureAgent"]

logger = logging.getLogger(__name__)


# Probe failures and idle progress are logged once per this many ticks
LOG_EVERY_N_TICKS = 60


class ExportCaptureAgent:
    """
    Drives one export from trigger to PDF bytes.

    One awaitable loop runs the whole state machine. ``sleep`` is
    injected so tests can run the loop without wall-clock delays.

    The overall deadline is ``config.max_polls`` ticks and spans every
    retry; a retry resets only the per-attempt progress tracking.

    Attributes:
        config: Export configuration (timeouts, retries, scratch dir).
        observer: Reads progress snapshots from the page.
        state: Current CaptureState.
        ticks: Poll ticks taken so far across all attempts.
        attempt_ticks: Poll ticks taken in the current attempt.
        retries: Re-triggers performed so far.
        navigations: Times the export URL was opened.
    """

    def __init__(
        self,
        config: ExportConfig,
        observer: Optional[ExportProgressObserver] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.observer = observer or ExportProgressObserver()
        self._sleep = sleep

        self.state = CaptureState.NAVIGATING
        self.ticks = 0
        self.attempt_ticks = 0
        self.retries = 0
        self.navigations = 0
        self._probe_failures = 0

    async def capture(self, page: Page, export_url: str) -> Artifact:
        """
        Trigger the export and return the produced PDF.

        Args:
            page: Authenticated Playwright Page.
            export_url: URL that starts the asynchronous export.

        Returns:
            Artifact holding the PDF bytes. The scratch file is deleted.

        Raises:
            AuthenticationError: If the export URL redirects to login.
            ExportTimeoutError: If no PDF appears within the deadline.
            PDFGenerationError: For any other navigation or file failure.
        """
        self._reset()
        scratch_dir = self.config.download_dir

        try:
            scratch_dir.mkdir(parents=True, exist_ok=True)
            baseline = self._list_candidates(scratch_dir)
            logger.info(
                f"Starting export capture: {len(baseline)} existing file(s) in {scratch_dir}, "
                f"deadline {self.config.max_polls} ticks of {self.config.poll_interval_ms}ms"
            )

            await self._open_export(page, export_url)
            await self._sleep(self.config.initial_poll_delay_ms / 1000)

            return await self._monitor(page, export_url, scratch_dir, baseline)

        except ExportError:
            if not self.state.is_terminal:
                self.state = CaptureState.FAILED
            raise
        except PlaywrightTimeoutError as e:
            self.state = CaptureState.TIMED_OUT
            raise ExportTimeoutError(
                f"Export page navigation timed out: {e}",
                context={"url": export_url, "ticks": self.ticks},
            ) from e
        except Exception as e:
            self.state = CaptureState.FAILED
            raise PDFGenerationError(
                f"Export capture failed: {e}",
                context={"url": export_url, "ticks": self.ticks, "state": self.state.value},
            ) from e

    def _reset(self) -> None:
        self.state = CaptureState.NAVIGATING
        self.ticks = 0
        self.attempt_ticks = 0
        self.retries = 0
        self.navigations = 0
        self._probe_failures = 0

    async def _monitor(
        self,
        page: Page,
        export_url: str,
        scratch_dir: Path,
        baseline: Set[str],
    ) -> Artifact:
        self.state = CaptureState.MONITORING
        was_exporting = False
        last_percent: Optional[int] = None
        last_logged: Optional[int] = None

        while True:
            self.ticks += 1
            self.attempt_ticks += 1

            snapshot = await self._read_progress(page)
            if snapshot is not None:
                if snapshot.is_actively_exporting:
                    was_exporting = True
                    if snapshot.percent is not None:
                        last_percent = snapshot.percent
                    if snapshot.percent != last_logged:
                        last_logged = snapshot.percent
                        logger.info(
                            f"Export progress: {snapshot.percent if snapshot.percent is not None else '?'}%"
                            f"{f' ({snapshot.step_label})' if snapshot.step_label else ''}"
                        )

                elif was_exporting and (last_percent is None or last_percent < 100):
                    if self.retries < self.config.max_export_retries:
                        self.retries += 1
                        self.state = CaptureState.RETRYING
                        logger.warning(
                            f"Export stalled at {last_percent if last_percent is not None else 0}%, "
                            f"re-triggering (retry {self.retries}/{self.config.max_export_retries})"
                        )
                        await self._open_export(page, export_url)
                        self.attempt_ticks = 0
                        was_exporting = False
                        last_percent = None
                        last_logged = None
                        self.state = CaptureState.MONITORING
                    else:
                        logger.warning(
                            f"Export stalled at {last_percent if last_percent is not None else 0}%, "
                            f"retry budget exhausted; waiting for deadline"
                        )
                        was_exporting = False

            produced = self._find_new_file(scratch_dir, baseline)
            if produced is not None:
                return await self._collect(produced)

            if self.ticks >= self.config.max_polls:
                self.state = CaptureState.TIMED_OUT
                logger.error(
                    f"No PDF after {self.ticks} ticks and {self.retries} retr"
                    f"{'y' if self.retries == 1 else 'ies'}"
                )
                raise ExportTimeoutError(
                    "PDF download not detected within timeout period",
                    context={
                        "ticks": self.ticks,
                        "retries": self.retries,
                        "timeout_ms": self.config.capture_timeout_ms,
                    },
                )

            if self.ticks % LOG_EVERY_N_TICKS == 0:
                logger.info(f"Still waiting for PDF: tick {self.ticks}/{self.config.max_polls}")

            await self._sleep(self.config.poll_interval_ms / 1000)

    async def _open_export(self, page: Page, export_url: str) -> None:
        """Navigate to the export URL and make sure the session survived."""
        self.navigations += 1
        logger.info(f"Opening export page (navigation {self.navigations})")

        await page.goto(
            export_url,
            wait_until="networkidle",
            timeout=self.config.navigation_timeout_ms,
        )

        if self.observer.is_login_page(page):
            self.state = CaptureState.FAILED
            raise AuthenticationError(
                "Session did not survive navigation: export page redirected to login",
                context={"url": page.url},
            )

    async def _read_progress(self, page: Page) -> Optional[ExportProgressSnapshot]:
        """Read one snapshot; read failures are logged periodically and ignored."""
        try:
            return await self.observer.snapshot(page, self.ticks)
        except Exception as e:
            self._probe_failures += 1
            if self._probe_failures == 1 or self.ticks % LOG_EVERY_N_TICKS == 0:
                logger.debug(
                    f"Progress read failed at tick {self.ticks} "
                    f"({self._probe_failures} failure(s) so far): {e}"
                )
            return None

    def _list_candidates(self, scratch_dir: Path) -> Set[str]:
        extension = self.config.download_extension.lower()
        return {
            entry.name
            for entry in scratch_dir.iterdir()
            if entry.is_file() and entry.name.lower().endswith(extension)
        }

    def _find_new_file(self, scratch_dir: Path, baseline: Set[str]) -> Optional[Path]:
        fresh = [scratch_dir / name for name in self._list_candidates(scratch_dir) - baseline]
        if not fresh:
            return None
        newest = max(fresh, key=lambda p: p.stat().st_mtime)
        for extra in fresh:
            if extra != newest:
                logger.warning(f"Discarding extra scratch file {extra.name}, keeping {newest.name}")
                self._remove(extra)
        return newest

    async def _collect(self, path: Path) -> Artifact:
        """Wait for the file to settle, read it and delete it."""
        self.state = CaptureState.FILE_DETECTED
        logger.info(f"PDF detected: {path.name} after {self.ticks} tick(s)")

        await self._sleep(self.config.file_settle_delay_ms / 1000)

        self.state = CaptureState.READING
        try:
            content = path.read_bytes()
        finally:
            self._remove(path)

        self.state = CaptureState.DONE
        logger.info(f"PDF captured: {len(content)} bytes")
        return Artifact(content=content, suggested_filename=path.name)

    @staticmethod
    def _remove(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to delete scratch file {path}: {e}")
