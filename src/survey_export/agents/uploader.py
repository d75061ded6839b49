"""
Upload Agent for storing the captured PDF.

This module provides the UploadAgent class which handles:
- Sanitising and timestamping the file name
- Multipart upload to the backend media endpoint with bearer auth
- Resolving the stored location to a public URL
- Mapping HTTP failures onto the export error taxonomy

Example Usage:
    >>> agent = UploadAgent(backend_url, token, config, EnvironmentName.QA)
    >>> result = await agent.upload(artifact.content, artifact.suggested_filename)
    >>> print(result.public_url)
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import httpx

from ..config import ExportConfig
from ..errors import (
    AuthenticationError,
    ExportTimeoutError,
    PayloadTooLargeError,
    ServiceUnavailableError,
    UploadError,
)
from ..models.export_request import EnvironmentName, sanitize_filename
from ..models.export_result import UploadResult


__all__ = ["UploadAgent", "resolve_file_location", "timestamp_prefix"]

logger = logging.getLogger(__name__)


MEDIA_PATH = "/media"


def timestamp_prefix(now: datetime) -> str:
    """Sort-friendly UTC prefix, e.g. ``2024-05-01T10-20-30-123Z``."""
    now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"


def resolve_file_location(body: Any) -> Optional[str]:
    """
    Find the stored location in an upload response.

    Checked in order: ``fileLocation``, ``data.fileLocation``,
    ``file.location``, ``url``.
    """
    if not isinstance(body, dict):
        return None

    data = body.get("data")
    file_info = body.get("file")
    candidates = [
        body.get("fileLocation"),
        data.get("fileLocation") if isinstance(data, dict) else None,
        file_info.get("location") if isinstance(file_info, dict) else None,
        body.get("url"),
    ]
    for candidate in candidates:
        if isinstance(candidate, str) and candidate:
            return candidate
    return None


class UploadAgent:
    """
    Pushes an artifact to the storage API.

    Attributes:
        backend_url: Backend API base URL.
        config: Export configuration (timeout, size ceiling, folder).
        environment: Environment used to pick the public asset domain.
    """

    def __init__(
        self,
        backend_url: str,
        access_token: str,
        config: ExportConfig,
        environment: Optional[EnvironmentName] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.backend_url = backend_url.rstrip("/")
        self._access_token = access_token
        self.config = config
        self.environment = environment
        self._transport = transport
        self._now = now or (lambda: datetime.now(timezone.utc))

    @property
    def endpoint(self) -> str:
        return f"{self.backend_url}{MEDIA_PATH}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self.config.upload_timeout_ms / 1000,
        )

    def build_filename(self, suggested_name: str) -> str:
        safe_name = sanitize_filename(suggested_name) or "export.pdf"
        return f"{timestamp_prefix(self._now())}_{safe_name}"

    def public_url(self, file_location: str) -> str:
        """Absolute URL for a stored location."""
        if file_location.startswith(("http://", "https://")):
            return file_location
        domain = self.config.asset_domain_for(self.environment)
        return f"https://{domain}/{file_location.lstrip('/')}"

    async def upload(self, content: bytes, suggested_name: str) -> UploadResult:
        """
        Upload the PDF and return where it can be downloaded.

        Args:
            content: PDF bytes.
            suggested_name: Name to store the file under (before prefixing).

        Returns:
            UploadResult with the public URL.

        Raises:
            PayloadTooLargeError: Content above the size ceiling (no request sent).
            AuthenticationError: Backend rejected the token.
            ServiceUnavailableError: Connection failure or 5xx (retryable).
            ExportTimeoutError: Upload exceeded its deadline.
            UploadError: Any other rejection, or no location in the response.
        """
        if len(content) > self.config.max_upload_bytes:
            raise PayloadTooLargeError(
                f"PDF is {len(content)} bytes, limit is {self.config.max_upload_size_mb}MB",
                context={"size_bytes": len(content), "limit_bytes": self.config.max_upload_bytes},
            )

        filename = self.build_filename(suggested_name)
        logger.info(f"Uploading {filename} ({len(content)} bytes) to {self.endpoint}")

        try:
            async with self._client() as client:
                response = await client.post(
                    self.endpoint,
                    headers={"Authorization": f"Bearer {self._access_token}"},
                    files={"file": (filename, content, "application/pdf")},
                    data={"folder": self.config.upload_folder},
                )
        except httpx.TimeoutException as e:
            raise ExportTimeoutError(
                f"Upload timed out after {self.config.upload_timeout_ms}ms",
                context={"endpoint": self.endpoint},
            ) from e
        except httpx.ConnectError as e:
            raise ServiceUnavailableError(
                "upload", f"cannot connect to {self.endpoint}: {e}"
            ) from e
        except httpx.HTTPError as e:
            raise UploadError(f"Upload request failed: {e}", context={"endpoint": self.endpoint}) from e

        self._raise_for_status(response)

        try:
            body = response.json()
        except ValueError as e:
            raise UploadError("Upload response is not JSON", context={"status": response.status_code}) from e

        file_location = resolve_file_location(body)
        if not file_location:
            raise UploadError("missing file location", context={"response_keys": _keys(body)})

        result = UploadResult(
            public_url=self.public_url(file_location),
            file_location=file_location,
            filename=filename,
        )
        logger.info(f"Upload complete: {result.public_url}")
        return result

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return

        context: Dict[str, Any] = {"status": status, "endpoint": self.endpoint}
        if status == 401:
            raise AuthenticationError("Upload rejected: token not accepted", context=context)
        if status == 413:
            raise PayloadTooLargeError("Upload rejected: payload too large", context=context)
        if status >= 500:
            raise ServiceUnavailableError("upload", f"storage returned {status}", context=context)
        raise UploadError(f"Upload failed with status {status}", context=context)

    async def verify_endpoint(self) -> bool:
        """Probe the media endpoint; any HTTP answer below 500 counts as reachable."""
        try:
            async with self._client() as client:
                response = await client.head(
                    self.endpoint,
                    headers={"Authorization": f"Bearer {self._access_token}"},
                )
        except httpx.HTTPError as e:
            logger.warning(f"Upload endpoint unreachable: {e}")
            return False
        return response.status_code < 500


def _keys(body: Any) -> list:
    return sorted(body.keys()) if isinstance(body, dict) else []
