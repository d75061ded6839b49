"""
Test suite for LoginAuthenticator.

This module tests:
- Token extraction from the login API response
- Submit fallbacks (click, Enter, synthetic submit event)
- Recovery from a missed login response through browser storage
- Session verification and listener cleanup

Run with: pytest tests/test_authenticator.py -v
"""
from __future__ import annotations

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from survey_export.browser.authenticator import LoginAuthenticator, extract_access_token
from survey_export.errors import AuthenticationError, ExportTimeoutError
from survey_export.models import ServiceCredentials
from tests.conftest import QA_BACKEND, QA_FRONTEND, FakePage, FakeResponse


CREDENTIALS = ServiceCredentials(email="service@survey-platform.io", secret="s3cret")


@pytest.fixture
def authenticator(export_config, no_sleep) -> LoginAuthenticator:
    return LoginAuthenticator(export_config, sleep=no_sleep)


async def login(authenticator: LoginAuthenticator, page: FakePage) -> str:
    return await authenticator.authenticate(page, QA_BACKEND, QA_FRONTEND, CREDENTIALS)


# =============================================================================
# TOKEN EXTRACTION
# =============================================================================

class TestExtractAccessToken:

    @pytest.mark.parametrize("body,expected", [
        ({"data": {"token": "a"}, "accessToken": "b"}, "a"),
        ({"accessToken": "b", "token": "c"}, "b"),
        ({"token": "c", "access_token": "d"}, "c"),
        ({"access_token": "d"}, "d"),
        ({"data": {"token": ""}, "token": "c"}, "c"),
        ({"data": "not-a-dict"}, None),
        ({}, None),
        (None, None),
        (["token"], None),
    ])
    def test_extract(self, body, expected):
        assert extract_access_token(body) == expected


# =============================================================================
# LOGIN FLOW
# =============================================================================

class TestAuthenticate:

    @pytest.mark.asyncio
    async def test_success(self, authenticator: LoginAuthenticator, sleeps):
        page = FakePage()

        token = await login(authenticator, page)

        assert token == "tok-123"
        assert page.goto_calls == [f"{QA_FRONTEND}/en-GB/auth/login"]
        assert page.filled == {
            "input[type='email']": "service@survey-platform.io",
            "input[type='password']": "s3cret",
        }
        assert page.submissions == ["click"]
        assert page.active_listeners() == 0
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_rejected_credentials(self, authenticator: LoginAuthenticator):
        page = FakePage(login_response=FakeResponse(status=401, body={"message": "bad"}))

        with pytest.raises(AuthenticationError) as exc_info:
            await login(authenticator, page)

        assert exc_info.value.message == "Login failed with status 401"
        assert exc_info.value.status_code == 401
        assert page.active_listeners() == 0

    @pytest.mark.asyncio
    async def test_missing_token(self, authenticator: LoginAuthenticator):
        page = FakePage(login_response=FakeResponse(body={"data": {"user": "svc"}}))

        with pytest.raises(AuthenticationError, match="missing access token"):
            await login(authenticator, page)

    @pytest.mark.asyncio
    async def test_non_json_body(self, authenticator: LoginAuthenticator):
        page = FakePage(login_response=FakeResponse(body=ValueError("not json")))

        with pytest.raises(AuthenticationError, match="missing access token"):
            await login(authenticator, page)

    @pytest.mark.asyncio
    async def test_login_form_not_found(self, authenticator: LoginAuthenticator):
        page = FakePage(selectors={"button[type='submit']"})

        with pytest.raises(AuthenticationError, match="submit button not found") as exc_info:
            await login(authenticator, page)

        assert exc_info.value.context["missing"] == ["email input", "password input"]
        assert page.filled == {}

    @pytest.mark.asyncio
    async def test_password_field_missing(self, authenticator: LoginAuthenticator):
        page = FakePage(selectors={"input[type='email']", "button[type='submit']"})

        with pytest.raises(AuthenticationError, match="submit button not found") as exc_info:
            await login(authenticator, page)

        assert exc_info.value.context["missing"] == ["password input"]

    @pytest.mark.asyncio
    async def test_submit_control_not_found(self, authenticator: LoginAuthenticator):
        page = FakePage(selectors={"input[type='email']", "input[type='password']"})

        with pytest.raises(AuthenticationError, match="submit button not found"):
            await login(authenticator, page)

        assert page.active_listeners() == 0

    @pytest.mark.asyncio
    async def test_click_failure_falls_back_to_enter(self, authenticator: LoginAuthenticator):
        page = FakePage()
        page.click_error = RuntimeError("element is not attached")

        assert await login(authenticator, page) == "tok-123"
        assert page.submissions == ["press:Enter"]

    @pytest.mark.asyncio
    async def test_falls_back_to_submit_event(self, authenticator: LoginAuthenticator):
        page = FakePage(selectors=set(FakePage().present) | {"form"})
        page.click_error = RuntimeError("intercepted")
        page.press_error = RuntimeError("detached")

        assert await login(authenticator, page) == "tok-123"
        assert page.submissions == ["event"]

    @pytest.mark.asyncio
    async def test_no_way_to_submit(self, authenticator: LoginAuthenticator):
        page = FakePage()
        page.click_error = RuntimeError("intercepted")
        page.press_error = RuntimeError("detached")

        with pytest.raises(AuthenticationError, match="submit button not found"):
            await login(authenticator, page)

    @pytest.mark.asyncio
    async def test_login_page_timeout(self, authenticator: LoginAuthenticator):
        page = FakePage(goto_error=PlaywrightTimeoutError("Timeout 60000ms exceeded"))

        with pytest.raises(ExportTimeoutError):
            await login(authenticator, page)


class TestMissedLoginResponse:

    @pytest.mark.asyncio
    async def test_recovers_token_from_storage(self, authenticator: LoginAuthenticator, sleeps):
        page = FakePage(
            login_response=PlaywrightTimeoutError("Timeout 30000ms exceeded"),
            after_submit_url=f"{QA_FRONTEND}/en-GB/dashboard",
            storage={"authToken": "tok-storage"},
        )

        assert await login(authenticator, page) == "tok-storage"
        assert sleeps == [0.5]

    @pytest.mark.asyncio
    async def test_still_on_login_form(self, authenticator: LoginAuthenticator):
        page = FakePage(login_response=PlaywrightTimeoutError("Timeout 30000ms exceeded"))

        with pytest.raises(AuthenticationError, match="still on the login form"):
            await login(authenticator, page)

        assert page.active_listeners() == 0

    @pytest.mark.asyncio
    async def test_navigated_without_token(self, authenticator: LoginAuthenticator):
        page = FakePage(
            login_response=PlaywrightTimeoutError("Timeout 30000ms exceeded"),
            after_submit_url=f"{QA_FRONTEND}/en-GB/dashboard",
        )

        with pytest.raises(AuthenticationError, match="missing access token"):
            await login(authenticator, page)


class TestSessionVerification:

    @pytest.mark.asyncio
    async def test_storage_token_is_enough(self, authenticator: LoginAuthenticator, sleeps):
        page = FakePage(cookie_names=[], storage={"authToken": "tok-123"})

        assert await login(authenticator, page) == "tok-123"
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_session_not_established(self, authenticator: LoginAuthenticator, sleeps):
        page = FakePage(cookie_names=["_ga"])

        with pytest.raises(AuthenticationError, match="session not established"):
            await login(authenticator, page)

        assert sleeps == [0.5]
