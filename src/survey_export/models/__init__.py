# =============================================================================
# Request Models
# Used for: Validating an inbound export invocation
# =============================================================================
from .export_request import (
    EnvironmentName,  # Enum: LOCAL, DEV, QA, STAGING, PROD
    ExportRequest,  # Immutable, validated invocation
    ServiceCredentials,  # Service account email + secret
    is_allowed_domain,  # Host allow-list check
    sanitize_filename,  # Strip path-hostile characters
)

# =============================================================================
# Progress Models
# Used for: Observing the export job and the browser session
# =============================================================================
from .progress import (
    CaptureState,  # Enum: NAVIGATING, MONITORING, RETRYING, ...
    ExportProgressSnapshot,  # DOM-derived progress at one poll tick
    SessionEvidence,  # Cookies / storage keys proving a session
    parse_percent,  # "42%" -> 42
)

# =============================================================================
# Result Models
# Used for: Passing outputs between pipeline stages
# =============================================================================
from .export_result import (
    Artifact,  # Captured PDF bytes
    ExportResult,  # Outcome of a whole invocation
    NotificationResult,  # Recipients notified + attempts used
    UploadResult,  # Public URL of the stored PDF
)

# =============================================================================
# Public API
# =============================================================================
__all__ = [
    # Request
    "EnvironmentName",
    "ExportRequest",
    "ServiceCredentials",
    "is_allowed_domain",
    "sanitize_filename",

    # Progress
    "CaptureState",
    "ExportProgressSnapshot",
    "SessionEvidence",
    "parse_percent",

    # Results
    "Artifact",
    "ExportResult",
    "NotificationResult",
    "UploadResult",
]
