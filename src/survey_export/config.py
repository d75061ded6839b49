"""
Runtime configuration for the survey export pipeline.

Every component receives an ExportConfig at construction instead of reading
process state ad hoc. ExportConfig.from_env() resolves each option from an
explicit override, then an environment variable, then the default.

Recognised environment variables:
- BROWSER_HEADLESS: Run Chromium headless (default: True)
- BROWSER_LAUNCH_TIMEOUT_MS: Browser startup deadline (default: 60000)
- CHROME_ARGS: Comma separated flags appended to the baseline flags
- CHROMIUM_EXECUTABLE_PATH: Custom Chromium binary (default: Playwright's)
- NAVIGATION_TIMEOUT_MS: Page navigation deadline (default: 60000)
- LOGIN_RESPONSE_TIMEOUT_MS: Wait for the login API response (default: 30000)
- TIMEOUT_MS: Overall export capture deadline (default: 450000)
- POLL_INTERVAL_MS: Capture poll interval (default: 1000)
- EXPORT_MAX_RETRIES: Re-triggers of a stalled export (default: 2)
- DOWNLOAD_PATH: Scratch directory for downloads (default: system temp dir)
- UPLOAD_TIMEOUT_MS / MAX_FILE_SIZE_MB: Upload deadline and size ceiling
- EMAIL_TIMEOUT_MS / MAX_RETRIES: Notification deadline and attempt count
- SERVICE_EMAIL / SERVICE_PASSWORD: Fallback service account credentials
- ALLOWED_DOMAINS: Comma separated hosts allowed for explicit URLs
- LOGIN_LOCALE: Locale segment of frontend routes (default: en-GB)
- SCREENSHOT_ON_ERROR: Save a screenshot when the browser session fails
- LOG_LEVEL: Logging level (default: INFO)

Example Usage:
    >>> from survey_export.config import ExportConfig
    >>>
    >>> config = ExportConfig.from_env(headless=True, capture_timeout_ms=120000)
    >>> config.max_polls
    120
"""
from __future__ import annotations

import os
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .models.export_request import EnvironmentName


__all__ = [
    "ASSET_DOMAINS",
    "BASELINE_CHROME_ARGS",
    "ENVIRONMENT_URLS",
    "ExportConfig",
    "validate_runtime",
]


# Fixed launch profile for a locked-down serverless sandbox
BASELINE_CHROME_ARGS: List[str] = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--single-process",
    "--no-zygote",
    "--disable-chrome-extensions",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-ipc-flooding-protection",
    "--disable-web-security",
    "--disable-features=TranslateUI,VizDisplayCompositor",
]

# (frontend, backend) per deployment environment
ENVIRONMENT_URLS: Dict[EnvironmentName, Dict[str, str]] = {
    EnvironmentName.LOCAL: {
        "frontend": "http://localhost:3000",
        "backend": "http://localhost:4000",
    },
    EnvironmentName.DEV: {
        "frontend": "https://dev.app.survey-platform.io",
        "backend": "https://dev.api.survey-platform.io",
    },
    EnvironmentName.QA: {
        "frontend": "https://qa.app.survey-platform.io",
        "backend": "https://qa.api.survey-platform.io",
    },
    EnvironmentName.STAGING: {
        "frontend": "https://staging.app.survey-platform.io",
        "backend": "https://staging.api.survey-platform.io",
    },
    EnvironmentName.PROD: {
        "frontend": "https://app.survey-platform.io",
        "backend": "https://api.survey-platform.io",
    },
}

# Public asset domains used to resolve storage-relative file locations
ASSET_DOMAINS: Dict[EnvironmentName, str] = {
    EnvironmentName.LOCAL: "dev.assets.survey-platform.io",
    EnvironmentName.DEV: "dev.assets.survey-platform.io",
    EnvironmentName.QA: "qa.assets.survey-platform.io",
    EnvironmentName.STAGING: "staging.assets.survey-platform.io",
    # Production assets are still served from the staging origin
    EnvironmentName.PROD: "staging.assets.survey-platform.io",
}


def _env_bool(value: Optional[bool], env_var: str, default: bool) -> bool:
    """Get boolean config from parameter, env var, or default."""
    if value is not None:
        return value
    env_value = os.environ.get(env_var, "").lower()
    if env_value in ("true", "1", "yes"):
        return True
    elif env_value in ("false", "0", "no"):
        return False
    return default


def _env_int(value: Optional[int], env_var: str, default: int) -> int:
    """Get integer config from parameter, env var, or default."""
    if value is not None:
        return value
    env_value = os.environ.get(env_var, "").strip()
    if env_value.isdigit():
        return int(env_value)
    return default


def _env_str(value: Optional[str], env_var: str, default: Optional[str]) -> Optional[str]:
    """Get string config from parameter, env var, or default."""
    if value is not None:
        return value
    return os.environ.get(env_var) or default


def _env_list(value: Optional[List[str]], env_var: str) -> List[str]:
    """Get a comma separated list from parameter or env var."""
    if value is not None:
        return list(value)
    raw = os.environ.get(env_var, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


class ExportConfig(BaseModel):
    """
    All recognised options for one export invocation.

    Timeouts are in milliseconds to match the environment variables.
    """
    # Browser
    headless: bool = True
    chrome_args: List[str] = Field(default_factory=list)
    executable_path: Optional[str] = None
    browser_launch_timeout_ms: int = Field(default=60000, gt=0)
    navigation_timeout_ms: int = Field(default=60000, gt=0)
    screenshot_on_error: bool = False
    screenshot_dir: Path = Path("screenshots")

    # Authentication
    login_locale: str = "en-GB"
    login_response_timeout_ms: int = Field(default=30000, gt=0)
    session_grace_period_ms: int = Field(default=3000, ge=0)
    attach_bearer_header: bool = True
    service_email: Optional[str] = None
    service_password: Optional[str] = Field(default=None, repr=False)

    # Capture
    capture_timeout_ms: int = Field(default=450000, gt=0)
    poll_interval_ms: int = Field(default=1000, gt=0)
    initial_poll_delay_ms: int = Field(default=2000, ge=0)
    file_settle_delay_ms: int = Field(default=2000, ge=0)
    max_export_retries: int = Field(default=2, ge=0)
    download_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))
    download_extension: str = ".pdf"

    # Upload
    upload_timeout_ms: int = Field(default=60000, gt=0)
    max_upload_size_mb: int = Field(default=50, gt=0)
    upload_folder: str = "exports"

    # Notification
    email_timeout_ms: int = Field(default=30000, gt=0)
    email_max_attempts: int = Field(default=3, ge=1)
    email_backoff_base_ms: int = Field(default=1000, ge=0)
    email_template: str = "survey_export_notification"

    # Inputs and environment tables
    allowed_domains: List[str] = Field(default_factory=list)
    environment_urls: Dict[EnvironmentName, Dict[str, str]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in ENVIRONMENT_URLS.items()}
    )
    asset_domains: Dict[EnvironmentName, str] = Field(
        default_factory=lambda: dict(ASSET_DOMAINS)
    )
    default_environment: EnvironmentName = EnvironmentName.STAGING

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, **overrides: Any) -> "ExportConfig":
        """Build a config from keyword overrides, environment variables and defaults."""
        get = overrides.pop
        values: Dict[str, Any] = {
            "headless": _env_bool(get("headless", None), "BROWSER_HEADLESS", True),
            "chrome_args": _env_list(get("chrome_args", None), "CHROME_ARGS"),
            "executable_path": _env_str(
                get("executable_path", None), "CHROMIUM_EXECUTABLE_PATH", None
            ),
            "browser_launch_timeout_ms": _env_int(
                get("browser_launch_timeout_ms", None), "BROWSER_LAUNCH_TIMEOUT_MS", 60000
            ),
            "navigation_timeout_ms": _env_int(
                get("navigation_timeout_ms", None), "NAVIGATION_TIMEOUT_MS", 60000
            ),
            "screenshot_on_error": _env_bool(
                get("screenshot_on_error", None), "SCREENSHOT_ON_ERROR", False
            ),
            "login_locale": _env_str(get("login_locale", None), "LOGIN_LOCALE", "en-GB"),
            "login_response_timeout_ms": _env_int(
                get("login_response_timeout_ms", None), "LOGIN_RESPONSE_TIMEOUT_MS", 30000
            ),
            "service_email": _env_str(get("service_email", None), "SERVICE_EMAIL", None),
            "service_password": _env_str(
                get("service_password", None), "SERVICE_PASSWORD", None
            ),
            "capture_timeout_ms": _env_int(get("capture_timeout_ms", None), "TIMEOUT_MS", 450000),
            "poll_interval_ms": _env_int(get("poll_interval_ms", None), "POLL_INTERVAL_MS", 1000),
            "max_export_retries": _env_int(
                get("max_export_retries", None), "EXPORT_MAX_RETRIES", 2
            ),
            "download_dir": Path(
                _env_str(get("download_dir", None), "DOWNLOAD_PATH", tempfile.gettempdir())
            ),
            "upload_timeout_ms": _env_int(
                get("upload_timeout_ms", None), "UPLOAD_TIMEOUT_MS", 60000
            ),
            "max_upload_size_mb": _env_int(
                get("max_upload_size_mb", None), "MAX_FILE_SIZE_MB", 50
            ),
            "email_timeout_ms": _env_int(get("email_timeout_ms", None), "EMAIL_TIMEOUT_MS", 30000),
            "email_max_attempts": _env_int(get("email_max_attempts", None), "MAX_RETRIES", 3),
            "allowed_domains": _env_list(get("allowed_domains", None), "ALLOWED_DOMAINS"),
            "log_level": (_env_str(get("log_level", None), "LOG_LEVEL", "INFO") or "INFO").upper(),
        }
        # Remaining overrides have no environment variable
        values.update(overrides)
        return cls(**values)

    @property
    def launch_args(self) -> List[str]:
        """Baseline flags followed by the configured extras."""
        return BASELINE_CHROME_ARGS + [a for a in self.chrome_args if a not in BASELINE_CHROME_ARGS]

    @property
    def max_polls(self) -> int:
        """Number of poll ticks that fit in the capture deadline."""
        return max(1, self.capture_timeout_ms // self.poll_interval_ms)

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    def urls_for(self, environment: EnvironmentName) -> Dict[str, str]:
        """Frontend and backend URLs for a named environment."""
        return self.environment_urls[environment]

    def asset_domain_for(self, environment: Optional[EnvironmentName]) -> str:
        """Public asset domain, falling back to the default environment's."""
        if environment is not None and environment in self.asset_domains:
            return self.asset_domains[environment]
        return self.asset_domains[self.default_environment]

    def to_log_dict(self) -> Dict[str, Any]:
        """Configuration summary safe to log (no credentials)."""
        return {
            "headless": self.headless,
            "chrome_args_count": len(self.chrome_args),
            "capture_timeout_ms": self.capture_timeout_ms,
            "poll_interval_ms": self.poll_interval_ms,
            "max_export_retries": self.max_export_retries,
            "download_dir": str(self.download_dir),
            "max_upload_size_mb": self.max_upload_size_mb,
            "email_max_attempts": self.email_max_attempts,
            "service_email": self.service_email,
            "log_level": self.log_level,
        }


def validate_runtime(config: ExportConfig) -> List[str]:
    """
    Check that the runtime can host an export.

    Args:
        config: Configuration to validate.

    Returns:
        List of human readable issues; empty when the runtime is usable.
    """
    issues: List[str] = []

    download_dir = config.download_dir
    if not download_dir.exists():
        try:
            download_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            issues.append(f"Download directory {download_dir} cannot be created: {e}")
    if download_dir.exists() and not download_dir.is_dir():
        issues.append(f"Download path {download_dir} is not a directory")
    elif download_dir.is_dir():
        probe = download_dir / f".write-test-{uuid.uuid4().hex[:8]}"
        try:
            probe.write_text("test")
            probe.unlink()
        except OSError as e:
            issues.append(f"Download directory {download_dir} is not writable: {e}")

    if config.poll_interval_ms >= config.capture_timeout_ms:
        issues.append("POLL_INTERVAL_MS must be smaller than TIMEOUT_MS")

    if not config.download_extension.startswith("."):
        issues.append("download_extension must start with '.'")

    lambda_memory = os.environ.get("AWS_LAMBDA_FUNCTION_MEMORY_SIZE", "")
    if lambda_memory.isdigit() and int(lambda_memory) < 2048:
        issues.append(
            f"Function memory {lambda_memory}MB is insufficient. Requires 2048MB+ for Chromium"
        )

    return issues
