from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


__all__ = [
    "CaptureState",
    "ExportProgressSnapshot",
    "SessionEvidence",
    "parse_percent",
]


# "42%" inside a progress label
PERCENT_PATTERN = re.compile(r"(\d{1,3})\s*%")

# Loose whole-document fallback, e.g. "42% complete"
DOCUMENT_PROGRESS_PATTERN = re.compile(
    r"(\d{1,3})\s*%\s*(complete|progress|capturing|generating|processing)",
    re.IGNORECASE,
)

# Cookie and storage key fragments that count as session evidence
AUTH_COOKIE_MARKERS = ("token", "auth", "session")
AUTH_STORAGE_MARKERS = ("token", "auth")


class CaptureState(str, Enum):
    """States of the export capture state machine."""
    NAVIGATING = "navigating"
    MONITORING = "monitoring"
    RETRYING = "retrying"
    FILE_DETECTED = "file_detected"
    READING = "reading"
    DONE = "done"
    TIMED_OUT = "timed_out"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CaptureState.DONE, CaptureState.TIMED_OUT, CaptureState.FAILED)


def parse_percent(text: Optional[str]) -> Optional[int]:
    """Extract a 0-100 percentage from label text."""
    if not text:
        return None
    match = PERCENT_PATTERN.search(text)
    if not match:
        return None
    value = int(match.group(1))
    return value if 0 <= value <= 100 else None


class ExportProgressSnapshot(BaseModel):
    """
    Best-effort view of the export job at one poll tick.

    Derived from the page DOM; never authoritative and never persisted.

    Attributes:
        percent: Parsed completion percentage, if visible.
        step_label: Human readable step heading ("Generating Export").
        progress_text: Raw progress label text.
        is_actively_exporting: Whether an export indicator is on screen.
        observed_at_poll_index: Tick number this snapshot was taken at.
        has_modal: Whether the primary modal container was present.
    """
    percent: Optional[int] = Field(default=None, ge=0, le=100)
    step_label: Optional[str] = None
    progress_text: Optional[str] = None
    is_actively_exporting: bool = False
    observed_at_poll_index: int = 0
    has_modal: bool = False

    @classmethod
    def from_probe(cls, probe: Dict[str, Any], poll_index: int) -> "ExportProgressSnapshot":
        """
        Interpret the raw DOM probe result.

        The primary indicator is the export modal validated by its nested
        marker. Without it, the document text is scanned for a loose
        "<n>% complete" style pattern.

        Args:
            probe: Dict returned by the in-page progress probe.
            poll_index: Current poll tick.
        """
        has_modal = bool(probe.get("hasModal"))
        has_marker = bool(probe.get("hasMarker"))
        progress_text = _clean(probe.get("progressText"))
        step_label = _clean(probe.get("stepLabel"))

        if has_modal and has_marker:
            return cls(
                percent=parse_percent(progress_text),
                step_label=step_label,
                progress_text=progress_text,
                is_actively_exporting=True,
                observed_at_poll_index=poll_index,
                has_modal=True,
            )

        page_text = probe.get("pageText") or ""
        match = DOCUMENT_PROGRESS_PATTERN.search(page_text)
        if match:
            value = int(match.group(1))
            return cls(
                percent=value if value <= 100 else None,
                progress_text=match.group(0),
                is_actively_exporting=True,
                observed_at_poll_index=poll_index,
                has_modal=has_modal,
            )

        return cls(observed_at_poll_index=poll_index, has_modal=has_modal)


class SessionEvidence(BaseModel):
    """
    Proof that the browser holds an authenticated session.

    Attributes:
        cookie_names: Names of cookies visible to the browser context.
        storage_keys: local/session storage keys mentioning token or auth.
    """
    cookie_names: List[str] = Field(default_factory=list)
    storage_keys: List[str] = Field(default_factory=list)

    @property
    def has_auth_cookie(self) -> bool:
        return any(
            marker in name.lower()
            for name in self.cookie_names
            for marker in AUTH_COOKIE_MARKERS
        )

    @property
    def has_storage_token(self) -> bool:
        return any(
            marker in key.lower()
            for key in self.storage_keys
            for marker in AUTH_STORAGE_MARKERS
        )

    @property
    def is_established(self) -> bool:
        return self.has_auth_cookie or self.has_storage_token


def _clean(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = " ".join(value.split())
    return value or None
