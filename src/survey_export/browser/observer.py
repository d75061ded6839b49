"""
Page observer for the export flow.

This module provides the ExportProgressObserver class which reads the
state the export flow needs from a live page:
- The export progress modal (percent, step heading, activity)
- Whether the browser was bounced back to the login page
- Cookies and storage keys proving an authenticated session

All DOM reads happen in one ``page.evaluate`` round trip per tick.

Example Usage:
    >>> from survey_export.browser.observer import ExportProgressObserver
    >>>
    >>> observer = ExportProgressObserver()
    >>> snapshot = await observer.snapshot(page, poll_index=3)
    >>> print(snapshot.percent, snapshot.step_label)
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from ..models.progress import ExportProgressSnapshot, SessionEvidence


if TYPE_CHECKING:
    from playwright.async_api import Page


__all__ = ["ExportProgressObserver", "LOGIN_PATH", "STORAGE_TOKEN_KEYS"]

logger = logging.getLogger(__name__)


LOGIN_PATH = "/auth/login"

# Full-screen overlay that hosts the export progress card
MODAL_SELECTORS = [
    "[data-export-modal]",
    ".fixed.inset-0.z-50.flex.items-center.justify-center.bg-black.bg-opacity-50",
]

# Card nested inside the overlay; its presence validates the modal
MARKER_SELECTORS = [
    ".mx-4.max-w-md.rounded-lg.bg-white.p-8.shadow-lg",
]

PROGRESS_TEXT_SELECTORS = [
    "[data-export-progress-text]",
    ".typography-label.mb-4.text-greyscale-500",
    ".typography-label",
]

STEP_LABEL_SELECTORS = [
    ".typography-heading-3.mb-4",
    "h3.typography-heading-3",
]

# Storage keys that may hold the access token after a UI login
STORAGE_TOKEN_KEYS = ["authToken", "access_token", "accessToken", "token"]


PROGRESS_PROBE = """
(sel) => {
    const pick = (root, list) => {
        for (const s of list) {
            const el = root.querySelector(s);
            if (el) return el;
        }
        return null;
    };
    const modal = pick(document, sel.modal);
    const marker = modal ? pick(modal, sel.marker) : null;
    const scope = marker || modal;
    const progress = scope ? pick(scope, sel.progress) : null;
    const step = scope ? pick(scope, sel.step) : null;
    let pageText = null;
    if (!marker && document.body) {
        pageText = (document.body.innerText || '').slice(0, sel.maxText);
    }
    return {
        hasModal: !!modal,
        hasMarker: !!marker,
        progressText: progress ? progress.textContent : null,
        stepLabel: step ? step.textContent : null,
        pageText: pageText,
        pageUrl: window.location.href,
    };
}
"""

STORAGE_KEYS_PROBE = """
() => {
    const keys = [];
    for (const store of [window.localStorage, window.sessionStorage]) {
        try {
            for (let i = 0; i < store.length; i++) keys.push(store.key(i));
        } catch (e) {}
    }
    return keys;
}
"""

STORAGE_TOKEN_PROBE = """
(keys) => {
    for (const store of [window.localStorage, window.sessionStorage]) {
        for (const key of keys) {
            try {
                const value = store.getItem(key);
                if (value) return value;
            } catch (e) {}
        }
    }
    return null;
}
"""


class ExportProgressObserver:
    """
    Reads export progress and session state from the page.

    The observer never decides anything; it only reports. The capture
    engine and the authenticator interpret what it returns.

    Attributes:
        modal_selectors: Candidate selectors for the progress overlay.
        marker_selectors: Selectors for the card nested in the overlay.
        progress_selectors: Selectors for the "<n>%" label.
        step_selectors: Selectors for the step heading.
        text_truncate_length: Max document text scanned by the fallback.
    """

    def __init__(
        self,
        modal_selectors: Optional[Sequence[str]] = None,
        marker_selectors: Optional[Sequence[str]] = None,
        progress_selectors: Optional[Sequence[str]] = None,
        step_selectors: Optional[Sequence[str]] = None,
        text_truncate_length: int = 5000,
    ) -> None:
        self.modal_selectors: List[str] = list(modal_selectors or MODAL_SELECTORS)
        self.marker_selectors: List[str] = list(marker_selectors or MARKER_SELECTORS)
        self.progress_selectors: List[str] = list(progress_selectors or PROGRESS_TEXT_SELECTORS)
        self.step_selectors: List[str] = list(step_selectors or STEP_LABEL_SELECTORS)
        self.text_truncate_length = text_truncate_length

    async def snapshot(self, page: Page, poll_index: int) -> ExportProgressSnapshot:
        """
        Take one progress snapshot.

        Args:
            page: Playwright Page showing the export URL.
            poll_index: Current poll tick, recorded on the snapshot.

        Returns:
            ExportProgressSnapshot for this tick.

        Raises:
            Any Playwright error from the evaluate call. Callers decide
            whether a failed read matters.
        """
        probe = await self.read_probe(page)
        return ExportProgressSnapshot.from_probe(probe, poll_index)

    async def read_probe(self, page: Page) -> Dict[str, Any]:
        """Run the in-page progress probe and return its raw result."""
        result = await page.evaluate(
            PROGRESS_PROBE,
            {
                "modal": self.modal_selectors,
                "marker": self.marker_selectors,
                "progress": self.progress_selectors,
                "step": self.step_selectors,
                "maxText": self.text_truncate_length,
            },
        )
        return result if isinstance(result, dict) else {}

    @staticmethod
    def is_login_page(page: Page) -> bool:
        """Whether the page currently shows the login route."""
        return LOGIN_PATH in (page.url or "")

    async def collect_session_evidence(self, page: Page) -> SessionEvidence:
        """
        Gather cookie names and storage keys from the browser.

        Cookies come from the browser context so HttpOnly cookies are
        included. Failures on either side yield an empty list for it.
        """
        cookie_names: List[str] = []
        try:
            cookies = await page.context.cookies()
            cookie_names = [c.get("name", "") for c in cookies if c.get("name")]
        except Exception as e:
            logger.debug(f"Failed to read cookies: {e}")

        storage_keys: List[str] = []
        try:
            keys = await page.evaluate(STORAGE_KEYS_PROBE)
            storage_keys = [k for k in (keys or []) if isinstance(k, str)]
        except Exception as e:
            logger.debug(f"Failed to read storage keys: {e}")

        evidence = SessionEvidence(cookie_names=cookie_names, storage_keys=storage_keys)
        logger.debug(
            f"Session evidence: cookies={len(cookie_names)}, storage_keys={len(storage_keys)}, "
            f"established={evidence.is_established}"
        )
        return evidence

    async def read_storage_token(self, page: Page) -> Optional[str]:
        """Return the first access token found in local or session storage."""
        try:
            value = await page.evaluate(STORAGE_TOKEN_PROBE, STORAGE_TOKEN_KEYS)
        except Exception as e:
            logger.debug(f"Failed to read storage token: {e}")
            return None
        return value if isinstance(value, str) and value else None
