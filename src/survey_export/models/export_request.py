from __future__ import annotations

import re
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from urllib.parse import quote, urlparse

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from ..errors import ValidationError


if TYPE_CHECKING:
    from ..config import ExportConfig


__all__ = [
    "EnvironmentName",
    "ExportRequest",
    "ServiceCredentials",
    "is_allowed_domain",
    "sanitize_filename",
]


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Characters that are unsafe in file names and URLs
UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


class EnvironmentName(str, Enum):
    """Deployment environments with known frontend/backend URLs."""
    LOCAL = "local"
    DEV = "dev"
    QA = "qa"
    STAGING = "staging"
    PROD = "prod"


class ServiceCredentials(BaseModel):
    """Service account used to log into the frontend."""
    email: str = Field(min_length=1)
    secret: str = Field(min_length=1, repr=False)

    model_config = ConfigDict(frozen=True)


def sanitize_filename(name: str) -> str:
    """Strip characters that are hostile to paths and URLs."""
    return UNSAFE_FILENAME_CHARS.sub("", name)


def is_allowed_domain(url: str, allowed_domains: List[str]) -> bool:
    """
    Check a URL's host against an allow-list.

    Entries are exact hosts or wildcard suffixes (``*.example.com``).
    An empty allow-list allows everything.
    """
    if not allowed_domains:
        return True

    hostname = (urlparse(url).hostname or "").lower()
    if not hostname:
        return False

    for domain in allowed_domains:
        domain = domain.lower()
        if domain.startswith("*."):
            base = domain[2:]
            if hostname == base or hostname.endswith("." + base):
                return True
        elif hostname == domain:
            return True
    return False


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class ExportRequest(BaseModel):
    """
    One accepted export invocation.

    Immutable once built. Either ``environment_name`` or both explicit URLs
    must be present; when both are given the explicit URLs win.

    Attributes:
        survey_id: Survey whose results are exported.
        participant_id: Participant whose response is exported.
        admin_recipients: Ordered, de-duplicated notification recipients.
        environment_name: Named deployment environment.
        frontend_url: Explicit frontend base URL.
        backend_url: Explicit backend API base URL.
        credentials: Service account used for the browser login.
    """
    survey_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("surveyId", "survey_id"),
    )
    participant_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("participantId", "participant_id"),
    )
    admin_recipients: List[str] = Field(
        min_length=1,
        validation_alias=AliasChoices("adminEmails", "adminRecipients", "admin_recipients"),
    )
    environment_name: Optional[EnvironmentName] = Field(
        default=None,
        validation_alias=AliasChoices("environmentName", "env", "environment_name"),
    )
    frontend_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("frontendUrl", "frontend_url"),
    )
    backend_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("backendUrl", "backend_url"),
    )
    credentials: ServiceCredentials

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    @field_validator("survey_id", "participant_id", mode="before")
    @classmethod
    def require_string_id(cls, v: Any) -> Any:
        if not isinstance(v, str):
            raise ValueError("must be a string")
        return v.strip()

    @field_validator("admin_recipients", mode="before")
    @classmethod
    def normalize_recipients(cls, v: Any) -> Any:
        if not isinstance(v, (list, tuple, set)):
            raise ValueError("must be an array of email addresses")
        seen: List[str] = []
        for email in v:
            if not isinstance(email, str) or not EMAIL_PATTERN.match(email.strip()):
                raise ValueError(f"Invalid email format: {email}")
            email = email.strip()
            if email.lower() not in (s.lower() for s in seen):
                seen.append(email)
        return seen

    @field_validator("frontend_url", "backend_url")
    @classmethod
    def require_http_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not _is_http_url(v):
            raise ValueError("must be a valid URL")
        return v.rstrip("/")

    @model_validator(mode="after")
    def require_target(self) -> "ExportRequest":
        if self.environment_name is None and not (self.frontend_url and self.backend_url):
            raise ValueError(
                "either environmentName or both frontendUrl and backendUrl are required"
            )
        return self

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        config: Optional["ExportConfig"] = None,
    ) -> "ExportRequest":
        """
        Build a request from an inbound invocation payload.

        Service credentials fall back to the configured service account
        when absent from the payload.

        Args:
            payload: Decoded invocation body (camelCase wire names).
            config: Configuration supplying credential and URL fallbacks.

        Returns:
            Validated ExportRequest.

        Raises:
            ValidationError: With one detail line per problem found.
        """
        if not isinstance(payload, dict):
            raise ValidationError("Invalid input parameters", details=["payload must be an object"])

        data = dict(payload)
        email = data.pop("serviceEmail", None) or (config.service_email if config else None)
        secret = data.pop("servicePassword", None) or (
            config.service_password if config else None
        )

        details: List[str] = []
        if not email:
            details.append("Missing required field: serviceEmail")
        elif not isinstance(email, str):
            details.append("serviceEmail must be a string")
        if not secret:
            details.append("Missing required field: servicePassword")
        elif not isinstance(secret, str):
            details.append("servicePassword must be a string")

        if "credentials" not in data and not details:
            data["credentials"] = {"email": email, "secret": secret}

        try:
            request = cls.model_validate(data)
        except PydanticValidationError as e:
            details.extend(_format_pydantic_errors(e))
            raise ValidationError("Invalid input parameters", details=details) from e

        if details:
            raise ValidationError("Invalid input parameters", details=details)

        if config is not None and config.allowed_domains:
            for url in (request.frontend_url, request.backend_url):
                if url and not is_allowed_domain(url, config.allowed_domains):
                    details.append(f"URL host is not allowed: {url}")
            if details:
                raise ValidationError("Invalid input parameters", details=details)

        return request

    def resolve_urls(self, config: "ExportConfig") -> Dict[str, str]:
        """Frontend and backend base URLs for this request."""
        if self.frontend_url and self.backend_url:
            return {"frontend": self.frontend_url, "backend": self.backend_url}
        if self.environment_name is None:
            raise ValidationError(
                "Invalid input parameters",
                details=["either environmentName or both frontendUrl and backendUrl are required"],
            )
        urls = config.urls_for(self.environment_name)
        return {"frontend": urls["frontend"].rstrip("/"), "backend": urls["backend"].rstrip("/")}

    def export_url(self, frontend_url: str, locale: str = "en-GB") -> str:
        """URL that triggers the asynchronous client-side PDF export."""
        return (
            f"{frontend_url.rstrip('/')}/{locale}/surveys/{quote(self.survey_id, safe='')}"
            f"/results/by-user?download=pdf"
            f"&participantIds={quote(self.participant_id, safe='')}&asyncExport=true"
        )

    @property
    def suggested_filename(self) -> str:
        return f"survey_{self.survey_id}_participant_{self.participant_id}.pdf"

    def to_log_dict(self) -> Dict[str, Any]:
        """Request summary safe to log (no secret)."""
        return {
            "survey_id": self.survey_id,
            "participant_id": self.participant_id,
            "admin_recipient_count": len(self.admin_recipients),
            "environment": self.environment_name.value if self.environment_name else None,
            "frontend_url": self.frontend_url,
            "backend_url": self.backend_url,
            "service_email": self.credentials.email,
        }


def _format_pydantic_errors(error: PydanticValidationError) -> List[str]:
    lines = []
    for item in error.errors():
        loc = ".".join(str(part) for part in item.get("loc", ())) or "payload"
        msg = item.get("msg", "invalid value")
        if item.get("type") == "missing":
            lines.append(f"Missing required field: {loc}")
        else:
            lines.append(f"{loc}: {msg}")
    return lines
