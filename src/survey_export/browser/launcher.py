"""
Chromium lifecycle for one export invocation.

BrowserManager starts Playwright, launches Chromium with the sandbox
profile (config.BASELINE_CHROME_ARGS plus CHROME_ARGS extras), opens a
download-enabled context and hands back a page. Downloads triggered by
the platform are relayed into the scratch directory under their
suggested name, and the whole stack is torn down when the block exits.

Example Usage:
    >>> from survey_export.browser.launcher import BrowserManager
    >>> from survey_export.config import ExportConfig
    >>>
    >>> async with BrowserManager(ExportConfig.from_env()) as page:
    ...     await page.goto("https://qa.survey-platform.io/en-GB/auth/login")
"""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Set

from playwright.async_api import (
    Browser,
    BrowserContext,
    Download,
    Page,
    Playwright,
    async_playwright,
)

from ..config import ExportConfig
from ..errors import BrowserLaunchError
from ..models.export_request import sanitize_filename
from ..utils.log_setup import current_request_id


if TYPE_CHECKING:
    from types import TracebackType


__all__ = ["BrowserManager"]

logger = logging.getLogger(__name__)


EXPORT_VIEWPORT = {"width": 1440, "height": 900}
EXPORT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) HeadlessChrome/120.0.0.0 Safari/537.36 survey-export"
)
PARTIAL_SUFFIX = ".part"


def _free_name(directory: Path, name: str) -> Path:
    """First of name, name-1, name-2, ... with no file or partial file in directory."""
    candidate = directory / name
    stem, suffix = candidate.stem, candidate.suffix
    n = 0
    while candidate.exists() or candidate.with_name(f"{candidate.name}{PARTIAL_SUFFIX}").exists():
        n += 1
        candidate = directory / f"{stem}-{n}{suffix}"
    return candidate


class BrowserManager:
    """
    Async context manager owning one browser instance.

    Exactly one browser is launched per ``async with`` block and it is
    always closed on exit, whether the block succeeds, raises a business
    error or crashes. A failure half way through launching releases
    whatever was already created before raising BrowserLaunchError.

    Attributes:
        config: Export configuration (launch flags, timeouts, scratch dir).
        launch_count: Browsers launched by this manager.
        close_count: Browsers closed by this manager.
    """

    def __init__(self, config: Optional[ExportConfig] = None) -> None:
        self.config = config or ExportConfig.from_env()

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._relay_tasks: Set[asyncio.Task] = set()

        self.launch_count = 0
        self.close_count = 0

    async def __aenter__(self) -> Page:
        """
        Bring up Playwright, Chromium, a context and a page.

        Raises:
            BrowserLaunchError: Any step failed or Chromium did not start
                within browser_launch_timeout_ms.
        """
        started = time.monotonic()
        logger.info(
            f"Starting Chromium (headless={self.config.headless}, "
            f"{len(self.config.launch_args)} flags)"
        )

        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.config.headless,
                args=self.config.launch_args,
                executable_path=self.config.executable_path,
                timeout=self.config.browser_launch_timeout_ms,
            )
            self.launch_count += 1

            self._context = await self._browser.new_context(
                viewport=EXPORT_VIEWPORT,
                user_agent=EXPORT_USER_AGENT,
                locale="en-GB",
                accept_downloads=True,
                ignore_https_errors=True,
            )
            self._context.set_default_timeout(self.config.navigation_timeout_ms)

            self._page = await self._context.new_page()
            self._page.on("download", self._relay_download)
        except Exception as e:
            logger.error(f"Chromium did not come up: {e}")
            await self._shutdown()
            raise BrowserLaunchError(
                f"Browser launch failed: {e}",
                context={"launch_timeout_ms": self.config.browser_launch_timeout_ms},
            ) from e

        logger.info(f"Chromium ready after {time.monotonic() - started:.1f}s")
        return self._page

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> bool:
        if exc is not None:
            logger.error(f"Browser session aborted: {exc}")
            if self.config.screenshot_on_error and self._page is not None:
                await self._capture_failure(str(exc))

        await self._shutdown()
        return False

    async def _shutdown(self) -> None:
        """Release page, context, browser and driver in that order."""
        for task in list(self._relay_tasks):
            task.cancel()
        self._relay_tasks.clear()

        page, self._page = self._page, None
        context, self._context = self._context, None
        browser, self._browser = self._browser, None
        driver, self._playwright = self._playwright, None

        if page is not None:
            await self._close_quietly("page", page.close)
        if context is not None:
            await self._close_quietly("context", context.close)
        if browser is not None and await self._close_quietly("browser", browser.close):
            self.close_count += 1
        if driver is not None:
            await self._close_quietly("playwright driver", driver.stop)

        logger.debug(f"Browser torn down ({self.close_count}/{self.launch_count} closed)")

    @staticmethod
    async def _close_quietly(label: str, close: Callable[[], Awaitable[None]]) -> bool:
        try:
            await close()
            return True
        except Exception as e:
            logger.warning(f"Could not close {label}: {e}")
            return False

    def _relay_download(self, download: Download) -> None:
        """Schedule saving a browser download into the scratch directory."""
        task = asyncio.ensure_future(self._save_download(download))
        self._relay_tasks.add(task)
        task.add_done_callback(self._relay_tasks.discard)

    async def _save_download(self, download: Download) -> Optional[Path]:
        """
        Save a download under its suggested name.

        The file is written with a ``.part`` suffix and renamed once
        complete, so a poller matching on extension never sees it half
        written. A name already present in the directory gets a numeric
        suffix; existing files are never overwritten.
        """
        name = sanitize_filename(download.suggested_filename) or "export.pdf"
        target_dir = self.config.download_dir
        target_dir.mkdir(parents=True, exist_ok=True)
        target = _free_name(target_dir, name)
        partial = target.with_name(f"{target.name}{PARTIAL_SUFFIX}")

        try:
            await download.save_as(str(partial))
            partial.replace(target)
            logger.info(f"Download saved: {target}")
            return target
        except asyncio.CancelledError:
            partial.unlink(missing_ok=True)
            raise
        except Exception as e:
            logger.warning(f"Failed to save download {name}: {e}")
            partial.unlink(missing_ok=True)
            return None

    async def _capture_failure(self, reason: str) -> Optional[Path]:
        """Write a full-page PNG named after the request id; None if that fails too."""
        slug = sanitize_filename(reason[:40]).replace(" ", "_") or "error"
        target = (
            self.config.screenshot_dir
            / f"{current_request_id()}_{time.strftime('%Y%m%dT%H%M%S')}_{slug}.png"
        )

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            await self._page.screenshot(path=str(target), full_page=True)
        except Exception as e:
            logger.warning(f"Screenshot of failed session not saved: {e}")
            return None

        logger.info(f"Failure screenshot: {target}")
        return target

    @property
    def is_open(self) -> bool:
        """True while a launched browser is still connected."""
        return self._browser is not None and self._browser.is_connected()
