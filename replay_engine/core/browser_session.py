"""
Browser lifecycle on top of Playwright.

The executor and player only depend on the ``BrowserProvider`` protocol;
``BrowserSession`` is the Playwright-backed implementation used for local
runs and the CLI.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from ..config import BrowserConfig
from ..error_handling import BrowserConnectionError, NoActivePageError

logger = logging.getLogger(__name__)

LAUNCH_ARGS = ["--disable-blink-features=AutomationControlled", "--disable-dev-shm-usage"]


@runtime_checkable
class BrowserProvider(Protocol):
    """What the replay side needs from whoever owns the browser."""

    @property
    def pages(self) -> List[Page]:
        ...

    def get_active_page(self) -> Optional[Page]:
        ...

    async def open_page(self, url: str) -> Page:
        ...

    async def switch_to_tab(self, index: int) -> Page:
        ...

    async def close_tab(self, index: int) -> Page:
        ...


class BrowserSession:
    """
    One Chromium instance with a single context.

    The active page is the tab the executor acts on. Tabs opened by the site
    itself (``target=_blank``, ``window.open``) become active as they appear,
    and closing the active tab falls back to the most recently opened one.
    """

    def __init__(self, config: Optional[BrowserConfig] = None):
        self.config = config or BrowserConfig()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    @property
    def started(self) -> bool:
        return self._context is not None

    @property
    def pages(self) -> List[Page]:
        if self._context is None:
            raise BrowserConnectionError("Browser session not started")
        return self._context.pages

    def _context_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "viewport": {"width": self.config.viewport_width, "height": self.config.viewport_height},
            "locale": self.config.locale,
        }
        if self.config.user_agent:
            options["user_agent"] = self.config.user_agent
        return options

    async def start(self) -> None:
        if self.started:
            logger.warning("Browser session already started")
            return

        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.config.headless,
                slow_mo=self.config.slow_mo,
                args=LAUNCH_ARGS,
            )
            context = await self._browser.new_context(**self._context_options())
            context.set_default_timeout(self.config.page_load_timeout * 1000)
            context.on("page", self._on_new_page)
            self._context = context
        except Exception as e:
            await self.close()
            raise BrowserConnectionError(f"Failed to start browser: {e}") from e

        mode = "headless" if self.config.headless else "headed"
        logger.info(f"✅ Chromium started ({mode}, {self.config.viewport_width}x{self.config.viewport_height})")

    def _on_new_page(self, page: Page) -> None:
        self._page = page
        logger.debug(f"Tab opened, {len(self.pages)} open")

    def get_active_page(self) -> Optional[Page]:
        if self._page is not None and self._page.is_closed():
            remaining = self._context.pages if self._context is not None else []
            self._page = remaining[-1] if remaining else None
        return self._page

    async def open_page(self, url: str) -> Page:
        """Open ``url`` in a new tab and make it active."""
        if self._context is None:
            raise BrowserConnectionError("Browser session not started")

        page = await self._context.new_page()
        self._page = page
        if url:
            await page.goto(url, wait_until="load")
        logger.info(f"✅ Opened new tab: {url or 'about:blank'}")
        return page

    async def switch_to_tab(self, index: int) -> Page:
        """Activate the tab at ``index`` (0-based, in opening order)."""
        pages = self.pages
        if not 0 <= index < len(pages):
            raise NoActivePageError(f"Tab index {index} out of range (0-{len(pages) - 1})")
        self._page = pages[index]
        await self._page.bring_to_front()
        logger.info(f"Switched to tab {index}: {self._page.url}")
        return self._page

    async def close_tab(self, index: int) -> Page:
        """Close the tab at ``index``; the latest remaining tab becomes active if it was."""
        pages = self.pages
        if not 0 <= index < len(pages):
            raise NoActivePageError(f"Tab index {index} out of range (0-{len(pages) - 1})")
        page = pages[index]
        await page.close()
        logger.info(f"Closed tab {index}: {page.url}")
        return page

    async def close(self) -> None:
        """Tear down context, browser and driver; errors are logged, not raised."""
        for name, closer in (
            ("context", self._context and self._context.close),
            ("browser", self._browser and self._browser.close),
            ("playwright", self._playwright and self._playwright.stop),
        ):
            if not closer:
                continue
            try:
                await closer()
            except Exception as e:
                logger.warning(f"Error closing {name}: {e}")

        self._context = None
        self._browser = None
        self._playwright = None
        self._page = None
        logger.debug("Browser session closed")

    async def __aenter__(self) -> "BrowserSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
