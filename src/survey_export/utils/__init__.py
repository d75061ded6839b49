from .log_setup import (
    configure_logging,
    current_request_id,
    request_context,
)

__all__ = [
    "configure_logging",
    "current_request_id",
    "request_context",
]
