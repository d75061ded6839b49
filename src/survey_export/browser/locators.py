"""
Locator strategies for the fixed login flow.

Each semantic target on the page (email field, password field, submit
control) is described by an ordered LocatorChain. The chain tries its
strategies in sequence; each strategy either yields a Playwright Locator
or falls through to the next one.

Strategies:
- AttributeLocator: a CSS/attribute selector
- TextLocator: an element whose visible text matches a pattern
- StructuralLocator: a child located relative to a structural parent

Example Usage:
    >>> chain = LocatorChain("submit", [
    ...     AttributeLocator("button[type='submit']"),
    ...     TextLocator("button", r"log\\s?in"),
    ... ])
    >>> match = await chain.resolve(page)
    >>> if match:
    ...     await match.locator.click()
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Pattern, Sequence, Union


if TYPE_CHECKING:
    from playwright.async_api import Locator, Page


__all__ = [
    "AttributeLocator",
    "EMAIL_INPUT",
    "LocatorChain",
    "LocatorMatch",
    "LocatorStrategy",
    "PASSWORD_INPUT",
    "StructuralLocator",
    "SUBMIT_CONTROL",
    "TextLocator",
]

logger = logging.getLogger(__name__)


class LocatorStrategy:
    """One way of finding an element. Subclasses implement ``find``."""

    description: str = "locator"

    async def find(self, page: Page) -> Optional[Locator]:
        raise NotImplementedError

    @staticmethod
    async def _first_visible(locator: Locator, require_visible: bool) -> Optional[Locator]:
        count = await locator.count()
        for i in range(count):
            candidate = locator.nth(i)
            if not require_visible or await candidate.is_visible():
                return candidate
        return None


@dataclass
class AttributeLocator(LocatorStrategy):
    """Match by CSS or attribute selector."""
    selector: str
    require_visible: bool = True

    @property
    def description(self) -> str:  # type: ignore[override]
        return f"selector {self.selector}"

    async def find(self, page: Page) -> Optional[Locator]:
        return await self._first_visible(page.locator(self.selector), self.require_visible)


@dataclass
class TextLocator(LocatorStrategy):
    """Match elements of ``tag`` whose text matches ``pattern`` (case-insensitive)."""
    tag: str
    pattern: Union[str, Pattern[str]]
    require_visible: bool = True

    @property
    def description(self) -> str:  # type: ignore[override]
        raw = self.pattern if isinstance(self.pattern, str) else self.pattern.pattern
        return f"{self.tag} with text /{raw}/"

    async def find(self, page: Page) -> Optional[Locator]:
        pattern = (
            self.pattern
            if not isinstance(self.pattern, str)
            else re.compile(self.pattern, re.IGNORECASE)
        )
        return await self._first_visible(
            page.locator(self.tag).filter(has_text=pattern),
            self.require_visible,
        )


@dataclass
class StructuralLocator(LocatorStrategy):
    """Match ``child`` inside the first element matching ``parent``."""
    parent: str
    child: str
    require_visible: bool = True

    @property
    def description(self) -> str:  # type: ignore[override]
        return f"{self.child} inside {self.parent}"

    async def find(self, page: Page) -> Optional[Locator]:
        parent = page.locator(self.parent)
        if await parent.count() == 0:
            return None
        return await self._first_visible(parent.first.locator(self.child), self.require_visible)


@dataclass
class LocatorMatch:
    """A resolved chain: which strategy matched and the element it found."""
    strategy: LocatorStrategy
    locator: Locator
    index: int


class LocatorChain:
    """
    Ordered fallback list of strategies for one semantic target.

    Attributes:
        name: Target name used in logs ("email input", "submit control").
        strategies: Strategies tried in order.
    """

    def __init__(self, name: str, strategies: Sequence[LocatorStrategy]) -> None:
        self.name = name
        self.strategies: List[LocatorStrategy] = list(strategies)

    async def resolve(self, page: Page) -> Optional[LocatorMatch]:
        """
        Try each strategy until one yields an element.

        Errors from an individual strategy (detached frames, bad selectors)
        count as "no match" for that strategy.

        Returns:
            LocatorMatch for the first strategy that matched, else None.
        """
        for index, strategy in enumerate(self.strategies):
            try:
                locator = await strategy.find(page)
            except Exception as e:
                logger.debug(f"{self.name}: {strategy.description} failed: {e}")
                continue
            if locator is not None:
                logger.debug(f"{self.name}: matched {strategy.description}")
                return LocatorMatch(strategy=strategy, locator=locator, index=index)

        logger.debug(f"{self.name}: no strategy matched")
        return None

    def __repr__(self) -> str:
        return f"LocatorChain({self.name!r}, {len(self.strategies)} strategies)"


# =============================================================================
# LOGIN PAGE TARGETS
# =============================================================================

EMAIL_INPUT = LocatorChain("email input", [
    AttributeLocator("input[type='email']"),
    AttributeLocator("input[name='email']"),
    AttributeLocator("input[autocomplete='username']"),
    StructuralLocator("form", "input[type='text']"),
])

PASSWORD_INPUT = LocatorChain("password input", [
    AttributeLocator("input[type='password']"),
    AttributeLocator("input[name='password']"),
])

SUBMIT_CONTROL = LocatorChain("submit control", [
    AttributeLocator("button[type='submit']"),
    AttributeLocator("input[type='submit']"),
    TextLocator("button", r"^\s*log\s?in\s*$"),
    TextLocator("button", r"log\s?in|sign\s?in"),
    TextLocator("[role='button']", r"log\s?in|sign\s?in"),
])
