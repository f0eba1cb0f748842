"""
Browser fakes for executor, resolver and player tests.

FakePage answers ``locator()`` from a selector -> elements table so that
resolution and element operations can run without a browser.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

from replay_engine.core.page_scripts import DOM_CLICK_JS, ELEMENT_LOADED_JS, IS_FILE_INPUT_JS, TAG_NAME_JS


@dataclass
class FakeElement:
    """One element behind a FakeLocator; records every call made on it."""
    name: str
    visible: bool = True
    enabled: bool = True
    text: str = ""
    value: str = ""
    html: str = ""
    attributes: Dict[str, str] = field(default_factory=dict)
    is_file_input: bool = False
    tag: str = "input"
    loaded_at: Optional[float] = None
    enabled_at: Optional[float] = None
    click_error: Optional[Exception] = None
    calls: List[tuple] = field(default_factory=list)

    def loaded_now(self) -> bool:
        return self.loaded_at is None or time.monotonic() >= self.loaded_at

    def enabled_now(self) -> bool:
        if self.enabled_at is not None:
            return time.monotonic() >= self.enabled_at
        return self.enabled


class FakeLocator:
    def __init__(self, elements: List[FakeElement]):
        self.elements = elements

    @property
    def element(self) -> FakeElement:
        return self.elements[0]

    async def count(self) -> int:
        return len(self.elements)

    @property
    def first(self) -> "FakeLocator":
        return FakeLocator(self.elements[:1])

    def nth(self, index: int) -> "FakeLocator":
        return FakeLocator(self.elements[index:index + 1])

    async def all(self) -> List["FakeLocator"]:
        return [FakeLocator([element]) for element in self.elements]

    async def is_visible(self) -> bool:
        return bool(self.elements) and self.element.visible

    async def is_hidden(self) -> bool:
        return not await self.is_visible()

    async def is_enabled(self) -> bool:
        return self.element.enabled_now()

    async def scroll_into_view_if_needed(self, timeout: float = None) -> None:
        self.element.calls.append(("scroll_into_view",))

    async def click(self, button: str = "left", timeout: float = None) -> None:
        if self.element.click_error is not None:
            raise self.element.click_error
        self.element.calls.append(("click", button))

    async def focus(self, timeout: float = None) -> None:
        self.element.calls.append(("focus",))

    async def press(self, key: str, timeout: float = None) -> None:
        self.element.calls.append(("press", key))

    async def press_sequentially(self, text: str, delay: float = 0, timeout: float = None) -> None:
        self.element.calls.append(("press_sequentially", text, delay))

    async def select_option(self, label: str = None, value: str = None, timeout: float = None) -> List[str]:
        self.element.calls.append(("select_option", label))
        return [label]

    async def fill(self, value: str, timeout: float = None) -> None:
        self.element.calls.append(("fill", value))

    async def set_checked(self, checked: bool, timeout: float = None) -> None:
        self.element.calls.append(("set_checked", checked))

    async def drag_to(self, target: "FakeLocator", timeout: float = None) -> None:
        self.element.calls.append(("drag_to", target.element.name))

    async def hover(self, timeout: float = None) -> None:
        self.element.calls.append(("hover",))

    async def inner_text(self, timeout: float = None) -> str:
        return self.element.text

    async def input_value(self, timeout: float = None) -> str:
        return self.element.value

    async def get_attribute(self, name: str) -> Optional[str]:
        return self.element.attributes.get(name)

    async def set_input_files(self, files: List[str], timeout: float = None) -> None:
        self.element.calls.append(("set_input_files", list(files)))

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if script == IS_FILE_INPUT_JS:
            return self.element.is_file_input
        if script == TAG_NAME_JS:
            return self.element.tag
        if script == ELEMENT_LOADED_JS:
            return self.element.loaded_now()
        if script == DOM_CLICK_JS:
            self.element.calls.append(("dom_click",))
            return None
        if "outerHTML" in script:
            return self.element.html
        if "el.value" in script:
            return self.element.value
        return self.element.attributes.get(arg)


class FakeFrame:
    def __init__(self, table: Dict[str, List[FakeElement]]):
        self.table = table

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self.table.get(selector, []))


class FakePage:
    """
    Minimal async Page stand-in.

    ``elements`` maps the exact string passed to ``locator()`` to the
    elements it matches; text lookups are keyed as ``"tag|text=..."``.
    """

    def __init__(
        self,
        elements: Optional[Dict[str, List[FakeElement]]] = None,
        frame_elements: Optional[Dict[str, List[FakeElement]]] = None,
        url: str = "https://example.com/",
        title: str = "Example",
    ):
        self.elements = elements or {}
        self.frame_elements = frame_elements or {}
        self.url = url
        self._title = title
        self.locator_calls: List[str] = []

        self.keyboard = MagicMock()
        self.keyboard.press = AsyncMock()
        self.keyboard.insert_text = AsyncMock()
        self.evaluate = AsyncMock(return_value="complete")
        self.goto = AsyncMock()
        self.wait_for_load_state = AsyncMock()
        self.go_back = AsyncMock()
        self.go_forward = AsyncMock()
        self.reload = AsyncMock()
        self.content = AsyncMock(return_value="<html><body><p>Hello</p></body></html>")
        self.screenshot = AsyncMock(return_value=b"\x89PNG fake image")
        self.on = MagicMock()
        self.remove_listener = MagicMock()
        self.set_viewport_size = AsyncMock()
        self.close = AsyncMock()

    def locator(self, selector: str, has_text: Optional[str] = None) -> FakeLocator:
        key = selector if has_text is None else f"{selector}|text={has_text}"
        self.locator_calls.append(key)
        return FakeLocator(self.elements.get(key, []))

    def frame_locator(self, selector: str) -> MagicMock:
        frame_locator = MagicMock()
        frame_locator.first = FakeFrame(self.frame_elements)
        return frame_locator

    async def title(self) -> str:
        return self._title


class FakeBrowser:
    """BrowserProvider backed by FakePages."""

    def __init__(self, page: Optional[FakePage] = None):
        self.page = page
        self.pages: List[FakePage] = [page] if page is not None else []
        self.open_page = AsyncMock(side_effect=self._open_page)
        self.switch_to_tab = AsyncMock(side_effect=self._switch_to_tab)
        self.close_tab = AsyncMock(side_effect=self._close_tab)

    def get_active_page(self) -> Optional[FakePage]:
        return self.page

    async def _open_page(self, url: str) -> FakePage:
        self.page = FakePage(url=url)
        self.pages.append(self.page)
        return self.page

    async def _switch_to_tab(self, index: int) -> FakePage:
        self.page = self.pages[index]
        return self.page

    async def _close_tab(self, index: int) -> FakePage:
        page = self.pages.pop(index)
        if page is self.page:
            self.page = self.pages[-1] if self.pages else None
        return page
