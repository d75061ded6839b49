"""
UI-driven login for the export flow.

This module provides the LoginAuthenticator class which logs the browser
into the frontend with the service account and returns the access token
issued by the backend. The same browser session is then reused for the
export page, and the token for the upload and notification calls.

Flow:
1. Open <frontend>/<locale>/auth/login
2. Fill the email and password fields (located through LocatorChains)
3. Submit, falling back from click to Enter to a synthetic submit event
4. Read the token from the POST .../users/login response, or from
   browser storage when the response was missed but the app navigated on
5. Confirm the browser holds a session cookie or storage token

Example Usage:
    >>> auth = LoginAuthenticator(config)
    >>> token = await auth.authenticate(page, backend, frontend, credentials)
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import ExportConfig
from ..errors import AuthenticationError, ExportTimeoutError
from .locators import EMAIL_INPUT, PASSWORD_INPUT, SUBMIT_CONTROL, LocatorMatch
from .observer import ExportProgressObserver


if TYPE_CHECKING:
    from playwright.async_api import ConsoleMessage, Locator, Page, Request, Response

    from ..models.export_request import ServiceCredentials


__all__ = ["LoginAuthenticator", "extract_access_token"]

logger = logging.getLogger(__name__)


LOGIN_API_PATH = "/users/login"

SUBMIT_FORM_SCRIPT = """
() => {
    const form = document.querySelector('form');
    if (!form) return false;
    form.dispatchEvent(new Event('submit', { bubbles: true, cancelable: true }));
    return true;
}
"""


def extract_access_token(body: Any) -> Optional[str]:
    """
    Pull the access token out of a login response body.

    Checked in order: ``data.token``, ``accessToken``, ``token``,
    ``access_token``.
    """
    if not isinstance(body, dict):
        return None

    data = body.get("data")
    candidates = [
        data.get("token") if isinstance(data, dict) else None,
        body.get("accessToken"),
        body.get("token"),
        body.get("access_token"),
    ]
    for candidate in candidates:
        if isinstance(candidate, str) and candidate:
            return candidate
    return None


def _is_login_response(response: Response) -> bool:
    return LOGIN_API_PATH in response.url and response.request.method == "POST"


class LoginAuthenticator:
    """
    Logs the browser in through the real login form.

    Temporary page listeners (console, page errors, requests) are
    installed for the duration of one attempt and always removed.

    Attributes:
        config: Export configuration (locale, timeouts, grace period).
        observer: Reads session evidence and storage tokens.
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

        self.console_errors: List[str] = []
        self.page_errors: List[str] = []

    def login_url(self, frontend_url: str) -> str:
        return f"{frontend_url.rstrip('/')}/{self.config.login_locale}/auth/login"

    async def authenticate(
        self,
        page: Page,
        backend_url: str,
        frontend_url: str,
        credentials: ServiceCredentials,
    ) -> str:
        """
        Log in and return the access token.

        Args:
            page: Fresh Playwright Page from the BrowserManager.
            backend_url: Backend API base URL (logged for diagnostics).
            frontend_url: Frontend base URL hosting the login form.
            credentials: Service account.

        Returns:
            Access token issued by the backend.

        Raises:
            AuthenticationError: On any login or session verification failure.
            ExportTimeoutError: If the login page itself does not load.
        """
        url = self.login_url(frontend_url)
        logger.info(f"Authenticating as {credentials.email} via {url} (api: {backend_url})")

        self.console_errors = []
        self.page_errors = []

        try:
            await page.goto(url, wait_until="networkidle", timeout=self.config.navigation_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise ExportTimeoutError(
                f"Login page did not load: {e}", context={"url": url}
            ) from e

        email_match = await EMAIL_INPUT.resolve(page)
        password_match = await PASSWORD_INPUT.resolve(page)
        if email_match is None or password_match is None:
            missing = [
                name
                for name, match in (("email input", email_match), ("password input", password_match))
                if match is None
            ]
            raise AuthenticationError(
                "submit button not found",
                context={"url": page.url, "missing": missing},
            )

        page.on("console", self._on_console)
        page.on("pageerror", self._on_page_error)
        page.on("request", self._on_request)
        response_wait: Optional[asyncio.Future] = None

        try:
            await email_match.locator.fill(credentials.email)
            await password_match.locator.fill(credentials.secret)

            submit_match = await SUBMIT_CONTROL.resolve(page)
            if submit_match is None:
                raise AuthenticationError("submit button not found", context={"url": page.url})

            response_wait = asyncio.ensure_future(
                page.wait_for_event(
                    "response",
                    predicate=_is_login_response,
                    timeout=self.config.login_response_timeout_ms,
                )
            )

            await self._submit(page, submit_match, password_match.locator)
            token = await self._await_token(page, response_wait)
            await self._verify_session(page)

            logger.info("Authentication successful")
            return token

        finally:
            if response_wait is not None and not response_wait.done():
                response_wait.cancel()
            page.remove_listener("console", self._on_console)
            page.remove_listener("pageerror", self._on_page_error)
            page.remove_listener("request", self._on_request)

    async def _submit(self, page: Page, submit: LocatorMatch, password: Locator) -> str:
        """Submit the form; returns the method that worked."""
        try:
            await submit.locator.click()
            logger.debug(f"Login submitted by clicking {submit.strategy.description}")
            return "click"
        except Exception as e:
            logger.warning(f"Submit click failed, pressing Enter instead: {e}")

        try:
            await password.press("Enter")
            logger.debug("Login submitted with Enter")
            return "enter"
        except Exception as e:
            logger.warning(f"Enter on password field failed, dispatching submit event: {e}")

        submitted = await page.evaluate(SUBMIT_FORM_SCRIPT)
        if not submitted:
            raise AuthenticationError("submit button not found", context={"url": page.url})
        logger.debug("Login submitted with synthetic submit event")
        return "event"

    async def _await_token(self, page: Page, response_wait: asyncio.Future) -> str:
        try:
            response = await response_wait
        except (PlaywrightTimeoutError, asyncio.TimeoutError):
            return await self._token_after_missed_response(page)

        status = response.status
        if not 200 <= status < 300:
            raise AuthenticationError(
                f"Login failed with status {status}",
                context={"status": status, "console_errors": self.console_errors[-5:]},
            )

        try:
            body = await response.json()
        except Exception as e:
            logger.warning(f"Login response body is not JSON: {e}")
            body = None

        token = extract_access_token(body)
        if not token:
            raise AuthenticationError("missing access token", context={"status": status})
        return token

    async def _token_after_missed_response(self, page: Page) -> str:
        logger.warning(
            f"No login response within {self.config.login_response_timeout_ms}ms, "
            f"checking where the page went"
        )
        await self._sleep(self.config.session_grace_period_ms / 1000)

        if self.observer.is_login_page(page):
            raise AuthenticationError(
                "Login response not received and page is still on the login form",
                context={
                    "url": page.url,
                    "console_errors": self.console_errors[-5:],
                    "page_errors": self.page_errors[-5:],
                },
            )

        token = await self.observer.read_storage_token(page)
        if not token:
            raise AuthenticationError("missing access token", context={"url": page.url})
        logger.info("Recovered access token from browser storage")
        return token

    async def _verify_session(self, page: Page) -> None:
        evidence = await self.observer.collect_session_evidence(page)
        if evidence.is_established:
            return

        logger.debug("No session evidence yet, waiting once more")
        await self._sleep(self.config.session_grace_period_ms / 1000)

        evidence = await self.observer.collect_session_evidence(page)
        if not evidence.is_established:
            raise AuthenticationError(
                "session not established",
                context={"cookies": evidence.cookie_names, "storage_keys": evidence.storage_keys},
            )

    def _on_console(self, message: ConsoleMessage) -> None:
        if message.type == "error":
            self.console_errors.append(message.text)
            logger.debug(f"Browser console error: {message.text}")

    def _on_page_error(self, error: Any) -> None:
        self.page_errors.append(str(error))
        logger.debug(f"Page error during login: {error}")

    def _on_request(self, request: Request) -> None:
        if LOGIN_API_PATH in request.url:
            logger.debug(f"Login request sent: {request.method} {request.url}")
