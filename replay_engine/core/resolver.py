"""
Element resolution.

Turns an Identifier (or a raw identifier string) back into exactly one live
element by walking an ordered chain of strategies, re-polling the whole
chain until the operation's deadline expires.
"""
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from playwright.async_api import FrameLocator, Locator, Page

from .models import Identifier, SemanticSnapshot
from ..error_handling import Deadline, ElementNotFoundError
from ..utils.js_helpers import css_string

logger = logging.getLogger(__name__)

Scope = Union[Page, FrameLocator]
SnapshotProvider = Callable[[Page], Awaitable[SemanticSnapshot]]

IFRAME_CSS_PREFIX = "iframe "
IFRAME_XPATH_PREFIX = "//iframe"
TEXT_TAGS = ("button", "a")

_SELECTOR_CHARS = [".", "#", "[", "]", ">", "~", "+", ":", "/", "(", "="]


class StrategyType(Enum):
    """Types of element location strategies, in chain order."""
    SEMANTIC_INDEX = "semantic_index"
    CSS_SELECTOR = "css_selector"
    XPATH = "xpath"
    TEXT = "text"
    ARIA_LABEL = "aria_label"
    PLACEHOLDER = "placeholder"


@dataclass
class ResolutionStrategy:
    """A specific location strategy with its implementation."""
    name: str
    strategy_type: StrategyType
    implementation: Callable[[Page], Awaitable[Optional[Locator]]]


@dataclass
class Resolution:
    """The single live element a target resolved to, and how."""
    locator: Locator
    strategy: str
    strategy_type: StrategyType
    rounds: int = 1


def looks_like_selector(text: str) -> bool:
    """Check if text looks like a structural selector rather than visible text."""
    return any(char in text for char in _SELECTOR_CHARS)


def split_iframe_css(css: str) -> Tuple[bool, str]:
    if css.startswith(IFRAME_CSS_PREFIX):
        return True, css[len(IFRAME_CSS_PREFIX):].strip()
    return False, css


def split_iframe_xpath(xpath: str) -> Tuple[bool, str]:
    if xpath.startswith(IFRAME_XPATH_PREFIX) and len(xpath) > len(IFRAME_XPATH_PREFIX):
        return True, xpath[len(IFRAME_XPATH_PREFIX):]
    return False, xpath


class ElementResolver:
    """
    Resolves identifiers through an ordered fallback chain.

    Chain: semantic index, CSS, XPath, button/link text, aria-label substring,
    placeholder substring. The first strategy yielding exactly one element
    wins; the chain is re-polled every ``poll_interval`` seconds until the
    deadline expires.
    """

    def __init__(self, snapshot_provider: Optional[SnapshotProvider] = None, poll_interval: float = 0.1):
        self.snapshot_provider = snapshot_provider
        self.poll_interval = poll_interval
        self.attempts: Counter = Counter()
        self.successes: Counter = Counter()
        self.errors: Counter = Counter()

    async def resolve(self, page: Page, target: Union[str, Identifier], deadline: Deadline) -> Resolution:
        """
        Find exactly one live element for ``target``.

        Args:
            page: Active page
            target: Identifier or raw identifier string
            deadline: Budget shared with the calling operation

        Returns:
            Resolution with the matched locator

        Raises:
            ElementNotFoundError: if no strategy matched before the deadline
        """
        strategies = self.strategies_for(target)
        label = target.describe() if isinstance(target, Identifier) else target
        rounds = 0

        while True:
            rounds += 1
            for strategy in strategies:
                if deadline.expired:
                    break
                self.attempts[strategy.name] += 1
                try:
                    locator = await asyncio.wait_for(strategy.implementation(page), timeout=deadline.remaining())
                except asyncio.TimeoutError:
                    self.errors[strategy.name] += 1
                    logger.debug(f"Strategy '{strategy.name}' ran out of time for '{label}'")
                    break
                except Exception as e:
                    self.errors[strategy.name] += 1
                    logger.debug(f"Strategy '{strategy.name}' failed for '{label}': {e}")
                    continue

                if locator is not None:
                    self.successes[strategy.name] += 1
                    logger.debug(f"Resolved '{label}' with strategy: {strategy.name} (round {rounds})")
                    return Resolution(locator, strategy.name, strategy.strategy_type, rounds)

            if deadline.expired:
                break
            await asyncio.sleep(min(self.poll_interval, max(deadline.remaining(), 0.0)))
            if deadline.expired:
                break

        raise ElementNotFoundError(
            f"Element not found: {label} (timeout after {deadline.timeout}s, "
            f"tried {', '.join(s.name for s in strategies)})"
        )

    def strategies_for(self, target: Union[str, Identifier]) -> List[ResolutionStrategy]:
        """Ordered strategies for a target; raw text adds the text-based fallbacks."""
        raw: Optional[str] = None
        if isinstance(target, Identifier):
            identifier = target
        else:
            text = (target or "").strip()
            identifier = Identifier.parse(text)
            forced = text.startswith(("css:", "xpath:"))
            if not forced and identifier.semantic_index is None and not looks_like_selector(text):
                raw = text

        strategies: List[ResolutionStrategy] = []

        if identifier.semantic_index is not None:
            strategies.append(ResolutionStrategy(
                name=f"Semantic Index {identifier.semantic_index}",
                strategy_type=StrategyType.SEMANTIC_INDEX,
                implementation=lambda page: self._try_semantic_index(page, identifier),
            ))

        if identifier.css:
            css = identifier.css
            strategies.append(ResolutionStrategy(
                name="CSS Selector",
                strategy_type=StrategyType.CSS_SELECTOR,
                implementation=lambda page: self._try_css(page, css),
            ))

        if identifier.xpath:
            xpath = identifier.xpath
            strategies.append(ResolutionStrategy(
                name="XPath",
                strategy_type=StrategyType.XPATH,
                implementation=lambda page: self._try_xpath(page, xpath),
            ))

        if raw:
            for tag in TEXT_TAGS:
                strategies.append(ResolutionStrategy(
                    name=f"Text Match ({tag})",
                    strategy_type=StrategyType.TEXT,
                    implementation=lambda page, tag=tag: self._try_text(page, tag, raw),
                ))
            strategies.append(ResolutionStrategy(
                name="ARIA Label",
                strategy_type=StrategyType.ARIA_LABEL,
                implementation=lambda page: self._try_unique(page, f"[aria-label*={css_string(raw)}]"),
            ))
            strategies.append(ResolutionStrategy(
                name="Placeholder",
                strategy_type=StrategyType.PLACEHOLDER,
                implementation=lambda page: self._try_unique(page, f"[placeholder*={css_string(raw)}]"),
            ))

        return strategies

    # ─── strategies ───

    async def _try_semantic_index(self, page: Page, identifier: Identifier) -> Optional[Locator]:
        if self.snapshot_provider is None:
            return None
        snapshot = await self.snapshot_provider(page)
        element = snapshot.lookup(identifier.semantic_index)
        if element is None:
            logger.debug(f"{identifier.semantic_index} is not in the current snapshot")
            return None
        target = element.identifier
        if target.css:
            locator = await self._try_css(page, target.css)
            if locator is not None:
                return locator
        if target.xpath:
            return await self._try_xpath(page, target.xpath)
        return None

    async def _try_css(self, page: Page, css: str) -> Optional[Locator]:
        in_frame, inner = split_iframe_css(css)
        scope: Scope = page.frame_locator("iframe").first if in_frame else page
        return await self._unique(scope.locator(inner))

    async def _try_xpath(self, page: Page, xpath: str) -> Optional[Locator]:
        in_frame, inner = split_iframe_xpath(xpath)
        scope: Scope = page.frame_locator("iframe").first if in_frame else page
        locator = scope.locator(f"xpath={inner}")
        count = await locator.count()
        if count == 1:
            return locator.first
        if count > 1:
            visible = [i for i in range(count) if await locator.nth(i).is_visible()]
            if len(visible) == 1:
                logger.debug(f"XPath matched {count} elements, using the only visible one (#{visible[0] + 1})")
                return locator.nth(visible[0])
        return None

    async def _try_text(self, page: Page, tag: str, text: str) -> Optional[Locator]:
        return await self._unique(page.locator(tag, has_text=text))

    async def _try_unique(self, page: Page, css: str) -> Optional[Locator]:
        return await self._unique(page.locator(css))

    @staticmethod
    async def _unique(locator: Locator) -> Optional[Locator]:
        if await locator.count() == 1:
            return locator.first
        return None

    def get_statistics(self) -> Dict[str, Any]:
        """Per-strategy attempts, matches and errors since the resolver was created."""
        breakdown = {
            name: {
                "attempts": attempts,
                "matches": self.successes[name],
                "errors": self.errors[name],
                "match_rate": round(self.successes[name] / attempts, 3),
            }
            for name, attempts in self.attempts.most_common()
        }
        return {
            "resolutions": sum(self.successes.values()),
            "attempts": sum(self.attempts.values()),
            "strategies": breakdown,
        }
