"""
Notification Agent for telling admins the export is ready.

This module provides the NotificationAgent class which sends one email
request covering every recipient to the backend notification endpoint.
Failed attempts are retried with exponential backoff (1s, 2s, 4s, ...)
except authentication failures, which are never retried.

Example Usage:
    >>> agent = NotificationAgent(backend_url, token, config)
    >>> result = await agent.notify(["admin@example.com"], pdf_url, "s1", "p1")
    >>> print(f"Notified after {result.attempt_count} attempt(s)")
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from ..config import ExportConfig
from ..errors import AuthenticationError, ExportError, NotificationError
from ..models.export_result import NotificationResult


__all__ = ["NotificationAgent"]

logger = logging.getLogger(__name__)


EMAIL_PATH = "/notifications/email"


class NotificationAgent:
    """
    Sends the "export ready" email through the backend.

    Attributes:
        backend_url: Backend API base URL.
        config: Export configuration (timeout, attempts, backoff, template).
    """

    def __init__(
        self,
        backend_url: str,
        access_token: str,
        config: ExportConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.backend_url = backend_url.rstrip("/")
        self._access_token = access_token
        self.config = config
        self._transport = transport
        self._sleep = sleep

    @property
    def endpoint(self) -> str:
        return f"{self.backend_url}{EMAIL_PATH}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self.config.email_timeout_ms / 1000,
        )

    def build_payload(
        self,
        recipients: List[str],
        artifact_url: str,
        survey_id: str,
        participant_id: str,
    ) -> Dict[str, Any]:
        return {
            "recipients": list(recipients),
            "subject": f"Survey Export Ready - Survey {survey_id}",
            "template": self.config.email_template,
            "data": {
                "surveyId": survey_id,
                "participantId": participant_id,
                "pdfUrl": artifact_url,
                "exportDate": datetime.now(timezone.utc).isoformat(),
                "downloadLink": artifact_url,
            },
        }

    async def notify(
        self,
        recipients: List[str],
        artifact_url: str,
        survey_id: str = "",
        participant_id: str = "",
    ) -> NotificationResult:
        """
        Email every recipient a link to the export.

        Args:
            recipients: Admin email addresses (sent in one request).
            artifact_url: Public URL of the uploaded PDF.
            survey_id: Survey referenced in the subject and template data.
            participant_id: Participant referenced in the template data.

        Returns:
            NotificationResult with the number of attempts used.

        Raises:
            AuthenticationError: Backend rejected the token (not retried).
            NotificationError: Every attempt failed; carries the attempt count.
        """
        payload = self.build_payload(recipients, artifact_url, survey_id, participant_id)
        max_attempts = self.config.email_max_attempts
        last_error: Optional[ExportError] = None

        logger.info(f"Notifying {len(recipients)} recipient(s) via {self.endpoint}")

        for attempt in range(1, max_attempts + 1):
            try:
                message_id = await self._send(payload)
            except AuthenticationError:
                logger.error("Notification rejected: token not accepted, not retrying")
                raise
            except ExportError as e:
                last_error = e
                logger.warning(f"Notification attempt {attempt}/{max_attempts} failed: {e.message}")
                if attempt < max_attempts:
                    delay_ms = self.config.email_backoff_base_ms * 2 ** (attempt - 1)
                    logger.debug(f"Retrying notification in {delay_ms}ms")
                    await self._sleep(delay_ms / 1000)
                continue

            logger.info(f"Notification sent on attempt {attempt}")
            return NotificationResult(
                recipients_notified=list(recipients),
                attempt_count=attempt,
                message_id=message_id,
            )

        raise NotificationError(
            f"Failed to send notification after {max_attempts} attempts: "
            f"{last_error.message if last_error else 'unknown error'}",
            attempts=max_attempts,
            context={"endpoint": self.endpoint, "recipients": len(recipients)},
        )

    async def _send(self, payload: Dict[str, Any]) -> Optional[str]:
        """One attempt. Returns the message id when the API reports one."""
        try:
            async with self._client() as client:
                response = await client.post(
                    self.endpoint,
                    headers={"Authorization": f"Bearer {self._access_token}"},
                    json=payload,
                )
        except httpx.TimeoutException as e:
            raise NotificationError(
                f"Notification timed out after {self.config.email_timeout_ms}ms",
                retryable=True,
            ) from e
        except httpx.HTTPError as e:
            raise NotificationError(f"Notification request failed: {e}", retryable=True) from e

        status = response.status_code
        if status == 401:
            raise AuthenticationError("Notification rejected: token not accepted", context={"status": status})
        if status == 429:
            raise NotificationError("Notification rate limited", retryable=True, context={"status": status})
        if not 200 <= status < 300:
            raise NotificationError(
                f"Notification failed with status {status}",
                retryable=status >= 500,
                context={"status": status},
            )

        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            message_id = body.get("messageId") or body.get("id")
            return str(message_id) if message_id else None
        return None

    async def verify_service(self) -> bool:
        """Probe the notification endpoint; any answer below 500 counts as reachable."""
        try:
            async with self._client() as client:
                response = await client.head(
                    self.endpoint,
                    headers={"Authorization": f"Bearer {self._access_token}"},
                )
        except httpx.HTTPError as e:
            logger.warning(f"Notification endpoint unreachable: {e}")
            return False
        return response.status_code < 500
