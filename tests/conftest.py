"""
Pytest configuration and fixtures for survey_export tests.

This module provides reusable test fixtures including:
- A scripted fake Playwright page (login form, login response,
  cookies, storage and the export progress probe)
- A fake BrowserManager that counts launches and closes
- A recording no-op sleep so poll loops run instantly
- A test ExportConfig pointing at a temporary scratch directory

Integration tests (real Chromium against tests/mock_server.py) are
skipped unless requested.
"""
from __future__ import annotations

import os
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest

from survey_export.browser.authenticator import SUBMIT_FORM_SCRIPT
from survey_export.browser.observer import (
    PROGRESS_PROBE,
    STORAGE_KEYS_PROBE,
    STORAGE_TOKEN_PROBE,
)
from survey_export.config import ExportConfig


QA_FRONTEND = "https://qa.app.survey-platform.io"
QA_BACKEND = "https://qa.api.survey-platform.io"

LOGIN_SELECTORS = {
    "input[type='email']",
    "input[type='password']",
    "button[type='submit']",
}

IDLE_PROBE = {"hasModal": False, "hasMarker": False, "pageText": ""}


def exporting_probe(percent: int, step: str = "Generating Export") -> Dict[str, Any]:
    """Probe result for the progress modal showing ``percent``."""
    return {
        "hasModal": True,
        "hasMarker": True,
        "progressText": f"{percent}%",
        "stepLabel": step,
        "pageText": None,
    }


# =============================================================================
# FAKE PLAYWRIGHT OBJECTS
# =============================================================================

class FakeResponse:
    """Stand-in for a Playwright Response to the login API."""

    def __init__(
        self,
        status: int = 200,
        body: Any = None,
        url: str = f"{QA_BACKEND}/users/login",
        method: str = "POST",
    ):
        self.status = status
        self._body = body if body is not None else {"data": {"token": "tok-123"}}
        self.url = url
        self.request = SimpleNamespace(method=method, url=url)

    async def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeLocator:
    """Locator whose presence is decided by the page's selector set."""

    def __init__(self, page: "FakePage", selector: str):
        self.page = page
        self.selector = selector

    @property
    def present(self) -> bool:
        return self.selector in self.page.present

    async def count(self) -> int:
        return 1 if self.present else 0

    def nth(self, index: int) -> "FakeLocator":
        return self

    @property
    def first(self) -> "FakeLocator":
        return self

    def filter(self, has_text=None) -> "FakeLocator":
        return self

    def locator(self, selector: str) -> "FakeLocator":
        return FakeLocator(self.page, selector)

    async def is_visible(self) -> bool:
        return self.present

    async def fill(self, value: str) -> None:
        self.page.filled[self.selector] = value

    async def click(self, **kwargs) -> None:
        if self.page.click_error is not None:
            raise self.page.click_error
        self.page._submitted("click")

    async def press(self, key: str) -> None:
        if self.page.press_error is not None:
            raise self.page.press_error
        self.page._submitted(f"press:{key}")


class FakeContext:
    def __init__(self, page: "FakePage"):
        self.page = page

    async def cookies(self) -> List[Dict[str, str]]:
        return [{"name": name, "value": "x"} for name in self.page.cookie_names]


class FakePage:
    """
    Scripted Playwright page.

    Args:
        selectors: CSS selectors that exist on the page.
        login_response: FakeResponse returned to the login wait, or an
            exception raised from it.
        cookie_names: Cookies visible through page.context.cookies().
        storage: local/session storage contents.
        probe: Callable(tick) -> dict answering the progress probe.
        redirect_to_login: Every non-login navigation lands on the login page.
        after_submit_url: URL the page moves to once the form is submitted.
    """

    def __init__(
        self,
        selectors=LOGIN_SELECTORS,
        login_response: Any = None,
        cookie_names: Optional[List[str]] = None,
        storage: Optional[Dict[str, str]] = None,
        probe: Optional[Callable[[int], Dict[str, Any]]] = None,
        redirect_to_login: bool = False,
        after_submit_url: Optional[str] = None,
        goto_error: Optional[BaseException] = None,
    ):
        self.present = set(selectors)
        self.login_response = login_response if login_response is not None else FakeResponse()
        self.cookie_names = ["session_token"] if cookie_names is None else cookie_names
        self.storage = storage or {}
        self.probe = probe or (lambda tick: dict(IDLE_PROBE))
        self.redirect_to_login = redirect_to_login
        self.after_submit_url = after_submit_url
        self.goto_error = goto_error

        self.url = "about:blank"
        self.scratch_dir: Optional[Path] = None
        self.context = FakeContext(self)
        self.goto_calls: List[str] = []
        self.filled: Dict[str, str] = {}
        self.submissions: List[str] = []
        self.listeners: Dict[str, list] = {}
        self.extra_headers: Optional[Dict[str, str]] = None
        self.probe_count = 0
        self.probe_error: Optional[BaseException] = None
        self.click_error: Optional[BaseException] = None
        self.press_error: Optional[BaseException] = None

    def _submitted(self, how: str) -> None:
        self.submissions.append(how)
        if self.after_submit_url:
            self.url = self.after_submit_url

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    async def goto(self, url: str, **kwargs) -> None:
        self.goto_calls.append(url)
        if self.goto_error is not None:
            raise self.goto_error
        if self.redirect_to_login and "/auth/login" not in url:
            self.url = f"{QA_FRONTEND}/en-GB/auth/login?redirect=export"
        else:
            self.url = url

    async def wait_for_event(self, event: str, predicate=None, timeout=None):
        if isinstance(self.login_response, BaseException):
            raise self.login_response
        if predicate is not None:
            assert predicate(self.login_response)
        return self.login_response

    async def evaluate(self, script: str, arg: Any = None):
        if script == PROGRESS_PROBE:
            self.probe_count += 1
            if self.probe_error is not None:
                raise self.probe_error
            return self.probe(self.probe_count)
        if script == STORAGE_KEYS_PROBE:
            return list(self.storage)
        if script == STORAGE_TOKEN_PROBE:
            for key in arg:
                if self.storage.get(key):
                    return self.storage[key]
            return None
        if script == SUBMIT_FORM_SCRIPT:
            has_form = "form" in self.present
            if has_form:
                self._submitted("event")
            return has_form
        return None

    def on(self, event: str, handler) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler) -> None:
        self.listeners[event].remove(handler)

    def active_listeners(self) -> int:
        return sum(len(handlers) for handlers in self.listeners.values())

    async def set_extra_http_headers(self, headers: Dict[str, str]) -> None:
        self.extra_headers = dict(headers)

    def export_navigations(self) -> int:
        return sum(1 for url in self.goto_calls if "download=pdf" in url)


class BrowserRecorder:
    """
    Builds fake BrowserManagers and counts their lifecycle.

    Like the real manager, the page's downloads land in the download_dir
    of the config it was built with, exposed as ``page.scratch_dir``.
    """

    def __init__(self, page: FakePage, launch_error: Optional[BaseException] = None):
        self.page = page
        self.launch_error = launch_error
        self.launches = 0
        self.closes = 0
        self.configs: List[ExportConfig] = []

    def __call__(self, config: ExportConfig) -> "FakeBrowserManager":
        self.configs.append(config)
        return FakeBrowserManager(self, config)


class FakeBrowserManager:
    def __init__(self, recorder: BrowserRecorder, config: ExportConfig):
        self.recorder = recorder
        self.config = config

    async def __aenter__(self) -> FakePage:
        if self.recorder.launch_error is not None:
            raise self.recorder.launch_error
        self.recorder.launches += 1
        self.recorder.page.scratch_dir = self.config.download_dir
        return self.recorder.page

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.recorder.closes += 1
        return False


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def sleeps() -> List[float]:
    """Seconds passed to the injected sleep, in call order."""
    return []


@pytest.fixture
def no_sleep(sleeps: List[float]):
    """Async sleep that returns immediately and records its argument."""
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)
    return _sleep


@pytest.fixture
def download_dir(tmp_path: Path) -> Path:
    path = tmp_path / "downloads"
    path.mkdir()
    return path


@pytest.fixture
def export_config(download_dir: Path) -> ExportConfig:
    """Fast config: 10 poll ticks, no settle or grace delays."""
    return ExportConfig(
        download_dir=download_dir,
        capture_timeout_ms=10000,
        poll_interval_ms=1000,
        initial_poll_delay_ms=0,
        file_settle_delay_ms=0,
        session_grace_period_ms=500,
        max_export_retries=2,
        service_email="service@survey-platform.io",
        service_password="s3cret",
    )


@pytest.fixture
def fake_page() -> FakePage:
    return FakePage()


# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (real browser + mock server)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly requested."""
    marker_option = config.getoption("-m", default="")

    run_integration = (
        "integration" in marker_option or
        os.environ.get("RUN_INTEGRATION_TESTS", "").lower() == "true"
    )

    skip_integration = pytest.mark.skip(
        reason="Integration tests skipped by default. Use -m integration or set RUN_INTEGRATION_TESTS=true"
    )

    for item in items:
        if "integration" in item.keywords and not run_integration:
            item.add_marker(skip_integration)
