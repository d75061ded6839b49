"""
Test suite for UploadAgent.

The storage API is replaced by an httpx.MockTransport.

Run with: pytest tests/test_uploader.py -v
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List

import httpx
import pytest

from survey_export.agents.uploader import (
    UploadAgent,
    resolve_file_location,
    timestamp_prefix,
)
from survey_export.errors import (
    AuthenticationError,
    ExportTimeoutError,
    PayloadTooLargeError,
    ServiceUnavailableError,
    UploadError,
)
from survey_export.models import EnvironmentName
from tests.conftest import QA_BACKEND


FIXED_NOW = datetime(2024, 5, 1, 10, 20, 30, 123456, tzinfo=timezone.utc)
PDF = b"%PDF-1.7 fake export"


def make_agent(export_config, handler, environment=EnvironmentName.QA, **overrides) -> UploadAgent:
    config = export_config.model_copy(update=overrides) if overrides else export_config
    return UploadAgent(
        QA_BACKEND,
        "tok-123",
        config,
        environment=environment,
        transport=httpx.MockTransport(handler),
        now=lambda: FIXED_NOW,
    )


def json_handler(status: int = 200, body=None, seen: List[httpx.Request] = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=body if body is not None else {})
    return handler


# =============================================================================
# HELPERS
# =============================================================================

class TestHelpers:

    def test_timestamp_prefix(self):
        assert timestamp_prefix(FIXED_NOW) == "2024-05-01T10-20-30-123Z"

    @pytest.mark.parametrize("body,expected", [
        ({"fileLocation": "exports/a.pdf", "url": "https://x/b.pdf"}, "exports/a.pdf"),
        ({"data": {"fileLocation": "exports/c.pdf"}}, "exports/c.pdf"),
        ({"file": {"location": "exports/d.pdf"}}, "exports/d.pdf"),
        ({"url": "https://cdn.example.com/e.pdf"}, "https://cdn.example.com/e.pdf"),
        ({"fileLocation": ""}, None),
        ({"data": []}, None),
        ("exports/a.pdf", None),
    ])
    def test_resolve_file_location(self, body, expected):
        assert resolve_file_location(body) == expected


# =============================================================================
# UPLOAD
# =============================================================================

class TestUpload:

    @pytest.mark.asyncio
    async def test_success(self, export_config):
        seen: List[httpx.Request] = []
        agent = make_agent(
            export_config,
            json_handler(body={"data": {"fileLocation": "exports/file.pdf"}}, seen=seen),
        )

        result = await agent.upload(PDF, "survey_s1_participant_p1.pdf")

        assert result.public_url == "https://qa.assets.survey-platform.io/exports/file.pdf"
        assert result.file_location == "exports/file.pdf"
        assert result.filename == "2024-05-01T10-20-30-123Z_survey_s1_participant_p1.pdf"

        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == f"{QA_BACKEND}/media"
        assert request.headers["Authorization"] == "Bearer tok-123"
        assert request.headers["Content-Type"].startswith("multipart/form-data")
        body = request.content
        assert b'filename="2024-05-01T10-20-30-123Z_survey_s1_participant_p1.pdf"' in body
        assert b"application/pdf" in body
        assert b'name="folder"' in body
        assert PDF in body

    @pytest.mark.asyncio
    async def test_absolute_location_is_kept(self, export_config):
        agent = make_agent(export_config, json_handler(body={"url": "https://cdn.example.com/x.pdf"}))

        result = await agent.upload(PDF, "x.pdf")

        assert result.public_url == "https://cdn.example.com/x.pdf"

    @pytest.mark.asyncio
    async def test_default_environment_domain(self, export_config):
        agent = make_agent(export_config, json_handler(body={"fileLocation": "/exports/x.pdf"}),
                           environment=None)

        result = await agent.upload(PDF, "x.pdf")

        assert result.public_url == "https://staging.assets.survey-platform.io/exports/x.pdf"

    @pytest.mark.asyncio
    async def test_filename_is_sanitized(self, export_config):
        agent = make_agent(export_config, json_handler(body={"fileLocation": "exports/x.pdf"}))

        result = await agent.upload(PDF, 'bad:name?"s1".pdf')

        assert result.filename == "2024-05-01T10-20-30-123Z_badnames1.pdf"

    @pytest.mark.asyncio
    async def test_missing_location(self, export_config):
        agent = make_agent(export_config, json_handler(body={"ok": True}))

        with pytest.raises(UploadError, match="missing file location"):
            await agent.upload(PDF, "x.pdf")

    @pytest.mark.asyncio
    async def test_non_json_response(self, export_config):
        agent = make_agent(export_config, lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(UploadError):
            await agent.upload(PDF, "x.pdf")

    @pytest.mark.asyncio
    async def test_oversize_sends_nothing(self, export_config):
        seen: List[httpx.Request] = []
        agent = make_agent(export_config, json_handler(seen=seen), max_upload_size_mb=1)

        with pytest.raises(PayloadTooLargeError) as exc_info:
            await agent.upload(b"x" * (1024 * 1024 + 1), "big.pdf")

        assert exc_info.value.status_code == 413
        assert seen == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,error", [
        (401, AuthenticationError),
        (413, PayloadTooLargeError),
        (503, ServiceUnavailableError),
        (500, ServiceUnavailableError),
        (400, UploadError),
        (404, UploadError),
    ])
    async def test_status_mapping(self, export_config, status: int, error: type):
        agent = make_agent(export_config, json_handler(status=status, body={"message": "no"}))

        with pytest.raises(error):
            await agent.upload(PDF, "x.pdf")

    @pytest.mark.asyncio
    async def test_connection_refused(self, export_config):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        agent = make_agent(export_config, handler)

        with pytest.raises(ServiceUnavailableError) as exc_info:
            await agent.upload(PDF, "x.pdf")

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_timeout(self, export_config):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        agent = make_agent(export_config, handler)

        with pytest.raises(ExportTimeoutError):
            await agent.upload(PDF, "x.pdf")


class TestVerifyEndpoint:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,expected", [(200, True), (405, True), (502, False)])
    async def test_reachability(self, export_config, status: int, expected: bool):
        agent = make_agent(export_config, lambda request: httpx.Response(status))

        assert await agent.verify_endpoint() is expected

    @pytest.mark.asyncio
    async def test_unreachable(self, export_config):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert await make_agent(export_config, handler).verify_endpoint() is False
