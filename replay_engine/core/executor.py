"""
Replay executor.

Runs single operations against the browser's active page. Every public
operation returns an ``OperationResult``; failures are captured with their
``error_kind`` and the original exception, never raised past the operation.
"""
from __future__ import annotations

import asyncio
import base64
import logging
import time
import weakref
from collections import deque
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence, Type, Union

from playwright.async_api import ConsoleMessage, Dialog, Locator, Page, Request
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .browser_session import BrowserProvider
from .models import (
    BatchOperation,
    BatchResult,
    FormField,
    Identifier,
    OperationResult,
    SemanticSnapshot,
)
from .page_scripts import (
    DOM_CLICK_JS,
    ELEMENT_LOADED_JS,
    IS_FILE_INPUT_JS,
    PAGE_TEXT_JS,
    READY_STATE_JS,
    SCROLL_TO_BOTTOM_JS,
    SCROLL_TO_JS,
    TAG_NAME_JS,
)
from .resolver import ElementResolver, Resolution, split_iframe_css, split_iframe_xpath
from .snapshot import SemanticSnapshotBuilder
from ..config import ReplayConfig
from ..error_handling import (
    Deadline,
    ElementNotFoundError,
    ExecutionFailedError,
    NavigationError,
    NoActivePageError,
    NotFoundError,
    PageLoadError,
    PartialExtractionError,
    PreconditionFailedError,
    ReplayEngineError,
    ResolutionTimeoutError,
)
from ..utils.js_helpers import css_string, format_time_elapsed, wrap_js_function
from ..utils.logger_config import operation_context

logger = logging.getLogger(__name__)

Target = Union[str, Identifier]

LOAD_STATES = ("load", "domcontentloaded", "networkidle")
WAIT_STATES = ("visible", "hidden", "enabled", "loaded")
TAB_ACTIONS = ("list", "new", "switch", "close")
ACTIVITY_BUFFER = 500

# Tried in order for each fill_form field; {0} is the quoted field name.
FIELD_SELECTORS = (
    "input[name={0}]",
    "input[id={0}]",
    "textarea[name={0}]",
    "textarea[id={0}]",
    "select[name={0}]",
    "select[id={0}]",
    "input[placeholder={0}]",
    "input[aria-label={0}]",
)
SUBMIT_SELECTORS = ("button[type='submit']", "input[type='submit']", "button:not([type])", "button")

KEY_NAMES = {
    "enter": "Enter",
    "return": "Enter",
    "tab": "Tab",
    "escape": "Escape",
    "esc": "Escape",
    "backspace": "Backspace",
    "delete": "Delete",
    "arrowup": "ArrowUp",
    "up": "ArrowUp",
    "arrowdown": "ArrowDown",
    "down": "ArrowDown",
    "arrowleft": "ArrowLeft",
    "left": "ArrowLeft",
    "arrowright": "ArrowRight",
    "right": "ArrowRight",
    "home": "Home",
    "end": "End",
    "pageup": "PageUp",
    "pagedown": "PageDown",
    "space": "Space",
}

MODIFIER_NAMES = {
    "ctrl": "Control",
    "control": "Control",
    "shift": "Shift",
    "alt": "Alt",
    "option": "Alt",
    "meta": "Meta",
    "cmd": "Meta",
    "command": "Meta",
    "controlormeta": "ControlOrMeta",
}


def normalize_key(key: str, modifiers: Optional[Sequence[str]] = None) -> str:
    """
    Build a Playwright key chord from loose key names.

    Accepts "enter", "Esc", "ctrl+a" style combos and single characters.

    Raises:
        ValueError: for names that are neither known keys nor one character
    """
    parts = [part.strip() for part in key.split("+")] if len(key) > 1 else [key]
    if not parts[-1]:
        raise ValueError(f"Unknown key: {key}")
    names = list(modifiers or []) + parts[:-1]
    base = parts[-1]

    chord: List[str] = []
    for name in names:
        modifier = MODIFIER_NAMES.get(name.lower())
        if modifier is None:
            raise ValueError(f"Unknown modifier: {name}")
        if modifier not in chord:
            chord.append(modifier)

    if len(base) == 1:
        chord.append(base)
    elif base.lower() in KEY_NAMES:
        chord.append(KEY_NAMES[base.lower()])
    elif base in KEY_NAMES.values():
        chord.append(base)
    else:
        raise ValueError(f"Unknown key: {key}")
    return "+".join(chord)


class PageActivity:
    """Console messages and network requests seen on one page, newest last."""

    def __init__(self, limit: int = ACTIVITY_BUFFER):
        self.console: Deque[Dict[str, Any]] = deque(maxlen=limit)
        self.requests: Deque[Dict[str, Any]] = deque(maxlen=limit)

    def on_console(self, message: ConsoleMessage) -> None:
        self.console.append({
            "type": message.type,
            "text": message.text,
            "timestamp": datetime.now().isoformat(),
        })

    def on_request(self, request: Request) -> None:
        self.requests.append({
            "url": request.url,
            "method": request.method,
            "type": request.resource_type,
            "timestamp": datetime.now().isoformat(),
        })


def operation(name: str):
    """
    Decorator turning an executor coroutine into an OperationResult producer.

    Engine errors are kept as they are; anything else (Playwright errors,
    protocol errors) is reported as an execution failure with the original
    exception chained.
    """
    def decorator(func: Callable[..., Awaitable[OperationResult]]) -> Callable[..., Awaitable[OperationResult]]:
        @wraps(func)
        async def wrapper(self: "ReplayExecutor", *args, **kwargs) -> OperationResult:
            start = time.monotonic()
            with operation_context(name):
                try:
                    result = await func(self, *args, **kwargs)
                except ReplayEngineError as e:
                    logger.error(f"❌ {name} failed: {e}")
                    return OperationResult.failure(e, f"{name} failed: {e}")
                except Exception as e:
                    error = ExecutionFailedError(f"{name} failed: {e}")
                    error.__cause__ = e
                    logger.error(f"❌ {error}")
                    return OperationResult.failure(error)
                logger.debug(f"{name} finished in {format_time_elapsed(time.monotonic() - start)}")
                return result
        return wrapper
    return decorator


class ReplayExecutor:
    """
    Executes operations against the active page of a BrowserProvider.

    Each operation owns one Deadline covering resolution, precondition waits
    and the action itself. Targets are re-resolved on every call.
    """

    def __init__(
        self,
        browser: BrowserProvider,
        config: Optional[ReplayConfig] = None,
        screenshots_dir: Optional[Path] = None,
        snapshot_builder: Optional[SemanticSnapshotBuilder] = None,
    ):
        self.browser = browser
        self.config = config or ReplayConfig()
        self.screenshots_dir = Path(screenshots_dir or "screenshots")
        self.snapshot_builder = snapshot_builder or SemanticSnapshotBuilder()
        self.resolver = ElementResolver(
            snapshot_provider=self._fresh_snapshot,
            poll_interval=self.config.poll_interval,
        )
        self.last_snapshot: Optional[SemanticSnapshot] = None
        self._dialog_handler: Optional[Callable[[Dialog], Awaitable[None]]] = None
        self._activity: "weakref.WeakKeyDictionary[Page, PageActivity]" = weakref.WeakKeyDictionary()

    # ─── helpers ───

    def _require_page(self) -> Page:
        page = self.browser.get_active_page()
        if page is None:
            raise NoActivePageError("No active page")
        self._watch(page)
        return page

    def _watch(self, page: Page) -> PageActivity:
        """Start collecting console and network activity for ``page`` once."""
        activity = self._activity.get(page)
        if activity is None:
            activity = PageActivity()
            page.on("console", activity.on_console)
            page.on("request", activity.on_request)
            self._activity[page] = activity
        return activity

    async def _fresh_snapshot(self, page: Page) -> SemanticSnapshot:
        self.last_snapshot = await self.snapshot_builder.build(page)
        return self.last_snapshot

    async def _snapshot_text(self, page: Page, deadline: Optional[Deadline] = None) -> str:
        """Best-effort snapshot text, bounded by ``snapshot_timeout`` and what is left of ``deadline``."""
        budget = self.config.snapshot_timeout
        if deadline is not None:
            budget = min(budget, deadline.remaining())
        if budget <= 0:
            logger.debug("No time left for a semantic snapshot")
            return ""
        snapshot = await self.snapshot_builder.build_with_timeout(page, budget)
        if snapshot is None:
            return ""
        self.last_snapshot = snapshot
        return snapshot.to_text()

    async def _resolve(self, target: Target, deadline: Deadline) -> Resolution:
        return await self.resolver.resolve(self._require_page(), target, deadline)

    async def _wait_for_state(
        self,
        locator: Locator,
        state: str,
        deadline: Deadline,
        error: Type[ReplayEngineError] = PreconditionFailedError,
    ) -> None:
        """Poll ``locator`` until it reaches ``state`` or the deadline runs out."""
        checks = {
            "visible": locator.is_visible,
            "hidden": locator.is_hidden,
            "enabled": locator.is_enabled,
            "loaded": lambda: locator.evaluate(ELEMENT_LOADED_JS),
        }
        check = checks[state]
        while True:
            try:
                if await check():
                    return
            except Exception as e:
                logger.debug(f"State check '{state}' raised: {e}")
            if deadline.expired:
                raise error(
                    f"Element not {state} within {deadline.timeout}s "
                    f"(waited {format_time_elapsed(deadline.elapsed)})"
                )
            await asyncio.sleep(min(self.config.poll_interval, deadline.remaining()))

    @staticmethod
    def _ms(deadline: Deadline) -> float:
        # Playwright treats 0 as "no timeout"
        return max(1.0, deadline.remaining_ms())

    @staticmethod
    def _label(target: Target) -> str:
        return target.describe() if isinstance(target, Identifier) else str(target)

    # ─── navigation ───

    @operation("Navigate")
    async def navigate(self, url: str, wait_until: str = "load", timeout: Optional[float] = None) -> OperationResult:
        """
        Load ``url`` in the active page, or in a new tab when the active page
        does not answer a readyState check.

        A load-state wait that times out is logged and navigation still
        succeeds; the semantic snapshot is best effort under its own timeout.
        """
        deadline = Deadline(timeout or self.config.navigate_timeout, "navigate")
        page = self.browser.get_active_page()

        if page is not None and await self._is_responsive(page):
            try:
                await page.goto(url, wait_until="commit", timeout=self._ms(deadline))
            except PlaywrightTimeoutError as e:
                raise PageLoadError(f"Page load timeout for {url}") from e
            except Exception as e:
                raise NavigationError(f"Navigation failed for {url}: {e}") from e
        else:
            logger.info("Active page unavailable, opening a new tab")
            try:
                page = await self.browser.open_page(url)
            except Exception as e:
                raise NavigationError(f"Navigation failed for {url}: {e}") from e

        self._watch(page)
        if wait_until in LOAD_STATES:
            try:
                await page.wait_for_load_state(wait_until, timeout=self._ms(deadline))
            except Exception as e:
                logger.warning(f"Page did not reach '{wait_until}' for {url}: {e}")

        snapshot_text = await self._snapshot_text(page, deadline)
        title = await page.title()
        logger.info(f"✅ Navigated to {url} in {format_time_elapsed(deadline.elapsed)}")
        return OperationResult.ok(
            f"Successfully navigated to {url}",
            {"url": page.url, "title": title, "semantic_snapshot": snapshot_text},
        )

    async def _is_responsive(self, page: Page) -> bool:
        try:
            await asyncio.wait_for(page.evaluate(READY_STATE_JS), timeout=self.config.ready_state_timeout)
            return True
        except Exception as e:
            logger.debug(f"Active page failed readyState check: {e}")
            return False

    @operation("Go back")
    async def go_back(self, timeout: Optional[float] = None) -> OperationResult:
        page = self._require_page()
        deadline = Deadline(timeout or self.config.navigate_timeout, "go_back")
        await page.go_back(wait_until="load", timeout=self._ms(deadline))
        return OperationResult.ok("Navigated back", {"url": page.url})

    @operation("Go forward")
    async def go_forward(self, timeout: Optional[float] = None) -> OperationResult:
        page = self._require_page()
        deadline = Deadline(timeout or self.config.navigate_timeout, "go_forward")
        await page.go_forward(wait_until="load", timeout=self._ms(deadline))
        return OperationResult.ok("Navigated forward", {"url": page.url})

    @operation("Reload")
    async def reload(self, timeout: Optional[float] = None) -> OperationResult:
        page = self._require_page()
        deadline = Deadline(timeout or self.config.navigate_timeout, "reload")
        await page.reload(wait_until="load", timeout=self._ms(deadline))
        return OperationResult.ok("Page reloaded", {"url": page.url})

    # ─── element actions ───

    @operation("Click")
    async def click(
        self,
        identifier: Target,
        wait_visible: bool = True,
        wait_enabled: bool = True,
        timeout: Optional[float] = None,
        button: str = "left",
        click_count: int = 1,
    ) -> OperationResult:
        """
        Click an element once it is visible and enabled.

        Args:
            identifier: Identifier or identifier string
            wait_visible: Wait for visibility before clicking
            wait_enabled: Wait for the element to become enabled
            timeout: Budget in seconds for the whole operation
            button: "left", "right" or "middle"
            click_count: Number of clicks, paced by the inter-click delay
        """
        deadline = Deadline(timeout or self.config.action_timeout, "click")
        resolution = await self._resolve(identifier, deadline)
        element = resolution.locator

        if wait_visible:
            await self._wait_for_state(element, "visible", deadline)
        if wait_enabled:
            await self._wait_for_state(element, "enabled", deadline)

        await element.scroll_into_view_if_needed(timeout=self._ms(deadline))
        await asyncio.sleep(self.config.click_settle_delay)

        for i in range(max(1, click_count)):
            if i:
                await asyncio.sleep(self.config.inter_click_delay)
            await element.click(button=button, timeout=self._ms(deadline))

        label = self._label(identifier)
        logger.info(f"✅ Clicked: {label} (via {resolution.strategy})")
        return OperationResult.ok(
            f"Successfully clicked element: {label}",
            {
                "identifier": label,
                "strategy": resolution.strategy,
                "semantic_snapshot": await self._snapshot_text(self._require_page(), deadline),
            },
        )

    @operation("DOM click")
    async def dom_click(self, identifier: Target, timeout: Optional[float] = None) -> OperationResult:
        """Dispatch ``element.click()`` in the page, skipping pointer checks."""
        deadline = Deadline(timeout or self.config.action_timeout, "dom_click")
        resolution = await self._resolve(identifier, deadline)
        await resolution.locator.evaluate(DOM_CLICK_JS)
        logger.info(f"✅ Clicked via DOM: {self._label(identifier)}")
        return OperationResult.ok(f"Successfully clicked element via DOM: {self._label(identifier)}")

    @operation("Type")
    async def type_text(
        self,
        identifier: Target,
        text: str,
        clear: bool = True,
        wait_visible: bool = True,
        timeout: Optional[float] = None,
        delay: float = 0,
    ) -> OperationResult:
        """
        Type into an input, textarea or contenteditable element.

        With ``delay`` (milliseconds) the text is typed key by key, otherwise
        it is inserted in one step.
        """
        deadline = Deadline(timeout or self.config.action_timeout, "type")
        resolution = await self._resolve(identifier, deadline)
        element = resolution.locator

        if wait_visible:
            await self._wait_for_state(element, "visible", deadline)

        await element.focus(timeout=self._ms(deadline))
        if clear:
            await element.press("ControlOrMeta+a", timeout=self._ms(deadline))
            await element.press("Backspace", timeout=self._ms(deadline))

        if delay > 0:
            await element.press_sequentially(text, delay=delay, timeout=self._ms(deadline))
        else:
            await self._require_page().keyboard.insert_text(text)

        label = self._label(identifier)
        logger.info(f"✅ Typed into: {label}")
        return OperationResult.ok(
            f"Successfully typed into element: {label}",
            {"text": text, "semantic_snapshot": await self._snapshot_text(self._require_page(), deadline)},
        )

    @operation("Select")
    async def select(self, identifier: Target, value: str, timeout: Optional[float] = None) -> OperationResult:
        """Pick a dropdown option by its visible text."""
        deadline = Deadline(timeout or self.config.action_timeout, "select")
        resolution = await self._resolve(identifier, deadline)
        await self._wait_for_state(resolution.locator, "visible", deadline)
        await resolution.locator.select_option(label=value, timeout=self._ms(deadline))
        logger.info(f"✅ Selected '{value}' in {self._label(identifier)}")
        return OperationResult.ok(f"Successfully selected value: {value}", {"value": value})

    @operation("Hover")
    async def hover(self, identifier: Target, timeout: Optional[float] = None) -> OperationResult:
        deadline = Deadline(timeout or self.config.action_timeout, "hover")
        resolution = await self._resolve(identifier, deadline)
        await self._wait_for_state(resolution.locator, "visible", deadline)
        await resolution.locator.hover(timeout=self._ms(deadline))
        return OperationResult.ok(f"Successfully hovered over element: {self._label(identifier)}")

    @operation("Get text")
    async def get_text(self, identifier: Target, timeout: Optional[float] = None) -> OperationResult:
        deadline = Deadline(timeout or self.config.action_timeout, "get_text")
        resolution = await self._resolve(identifier, deadline)
        text = await resolution.locator.inner_text(timeout=self._ms(deadline))
        return OperationResult.ok("Successfully retrieved text", {"text": text})

    @operation("Get value")
    async def get_value(self, identifier: Target, timeout: Optional[float] = None) -> OperationResult:
        deadline = Deadline(timeout or self.config.action_timeout, "get_value")
        resolution = await self._resolve(identifier, deadline)
        value = await resolution.locator.input_value(timeout=self._ms(deadline))
        return OperationResult.ok("Successfully retrieved value", {"value": value})

    @operation("Wait")
    async def wait_for(self, identifier: Target, state: str = "visible", timeout: Optional[float] = None) -> OperationResult:
        """
        Wait until an element is visible, hidden, enabled or merely present.

        An element that never shows up satisfies "hidden".
        """
        if state not in WAIT_STATES:
            raise ValueError(f"Unsupported wait state: {state}")
        deadline = Deadline(timeout or self.config.wait_for_timeout, "wait_for")
        label = self._label(identifier)

        try:
            resolution = await self._resolve(identifier, deadline)
        except ElementNotFoundError:
            if state == "hidden":
                return OperationResult.ok(f"Element is not present: {label}")
            raise

        await self._wait_for_state(resolution.locator, state, deadline, error=ResolutionTimeoutError)
        return OperationResult.ok(f"Successfully waited for element: {label}", {"state": state})

    @operation("Upload")
    async def upload_file(self, identifier: Target, paths: Sequence[str], timeout: Optional[float] = None) -> OperationResult:
        """Attach local files to an ``input[type=file]``."""
        deadline = Deadline(timeout or self.config.action_timeout, "upload_file")
        missing = [path for path in paths if not Path(path).exists()]
        if missing:
            raise NotFoundError(f"File not found: {', '.join(missing)}")

        resolution = await self._resolve(identifier, deadline)
        if not await resolution.locator.evaluate(IS_FILE_INPUT_JS):
            raise ExecutionFailedError(f"Element is not a file input: {self._label(identifier)}")

        await resolution.locator.set_input_files(list(paths), timeout=self._ms(deadline))
        logger.info(f"✅ Uploaded {len(paths)} file(s)")
        return OperationResult.ok(f"Successfully uploaded {len(paths)} file(s)", {"files": list(paths)})

    @operation("Press key")
    async def press_key(
        self,
        key: str,
        modifiers: Optional[Sequence[str]] = None,
        identifier: Optional[Target] = None,
        timeout: Optional[float] = None,
    ) -> OperationResult:
        """Press a key chord, focusing ``identifier`` first when given."""
        try:
            chord = normalize_key(key, modifiers)
        except ValueError as e:
            raise ExecutionFailedError(str(e)) from e

        page = self._require_page()
        if identifier:
            deadline = Deadline(timeout or self.config.action_timeout, "press_key")
            resolution = await self._resolve(identifier, deadline)
            await resolution.locator.focus(timeout=self._ms(deadline))

        await page.keyboard.press(chord)
        return OperationResult.ok(f"Successfully pressed key: {chord}", {"key": chord})

    @operation("Drag")
    async def drag(self, source: Target, target: Target, timeout: Optional[float] = None) -> OperationResult:
        """Drag ``source`` onto the center of ``target``; both resolve under one deadline."""
        deadline = Deadline(timeout or self.config.action_timeout, "drag")
        start = await self._resolve(source, deadline)
        end = await self._resolve(target, deadline)
        await self._wait_for_state(start.locator, "visible", deadline)
        await self._wait_for_state(end.locator, "visible", deadline)

        await start.locator.drag_to(end.locator, timeout=self._ms(deadline))
        logger.info(f"✅ Dragged {self._label(source)} onto {self._label(target)}")
        return OperationResult.ok(
            "Successfully dragged element",
            {"source": self._label(source), "target": self._label(target)},
        )

    @operation("Fill form")
    async def fill_form(
        self,
        fields: Sequence[Union[FormField, Dict[str, Any]]],
        submit: bool = False,
        timeout: Optional[float] = None,
    ) -> OperationResult:
        """
        Fill several fields in one call and optionally submit the form.

        Each field is looked up by name, id, placeholder, aria-label and then
        label text. A field that cannot be filled is reported in ``errors``
        and the rest are still attempted; the operation fails only when no
        field was filled.

        Args:
            fields: FormField models or plain dicts with name/value/type
            submit: Click the form's submit button afterwards
            timeout: Budget in seconds shared by every field and the submit
        """
        if not fields:
            raise ExecutionFailedError("No fields provided")
        deadline = Deadline(timeout or self.config.action_timeout, "fill_form")
        page = self._require_page()
        form = [field if isinstance(field, FormField) else FormField.model_validate(field) for field in fields]
        logger.info(f"Filling form with {len(form)} fields")

        filled = 0
        errors: List[str] = []
        for field in form:
            try:
                deadline.check()
                await self._fill_field(page, field, deadline)
            except Exception as e:
                errors.append(f"Field '{field.name}': {e}")
                logger.warning(f"Failed to fill field '{field.name}': {e}")
            else:
                filled += 1

        submitted = False
        if submit:
            try:
                await self._submit_form(page, deadline)
                submitted = True
            except Exception as e:
                errors.append(f"Submit failed: {e}")
                logger.warning(f"Form submit failed: {e}")

        data = {"filled_count": filled, "total_fields": len(form), "errors": errors, "submitted": submitted}
        if not filled:
            raise ExecutionFailedError(f"Filled 0/{len(form)} fields: {'; '.join(errors)}")

        message = f"Successfully filled {filled}/{len(form)} fields"
        if submitted:
            message += " and submitted form"
        logger.info(f"✅ {message}")
        return OperationResult.ok(message, data)

    async def _find_field(self, page: Page, name: str) -> Locator:
        quoted = css_string(name)
        for template in FIELD_SELECTORS:
            locator = page.locator(template.format(quoted))
            if await locator.count():
                return locator.first

        labels = page.locator("label", has_text=name)
        if await labels.count():
            label = labels.first
            target = await label.get_attribute("for")
            inner = page.locator(f"[id={css_string(target)}]") if target else label.locator("input, textarea, select")
            if await inner.count():
                return inner.first
        raise ElementNotFoundError(f"No form field matches '{name}'")

    async def _fill_field(self, page: Page, field: FormField, deadline: Deadline) -> None:
        element = await self._find_field(page, field.name)
        tag = await element.evaluate(TAG_NAME_JS)
        value = "" if field.value is None else str(field.value)

        if tag == "select":
            # first option whose label or value matches
            await element.select_option(label=value, value=value, timeout=self._ms(deadline))
        elif tag == "input" and (field.type or await element.get_attribute("type")) in ("checkbox", "radio"):
            await element.set_checked(field.wants_checked(), timeout=self._ms(deadline))
        elif tag in ("input", "textarea"):
            await element.fill(value, timeout=self._ms(deadline))
        else:
            raise ExecutionFailedError(f"Unsupported form element: {tag}")

    async def _submit_form(self, page: Page, deadline: Deadline) -> None:
        for selector in SUBMIT_SELECTORS:
            buttons = page.locator(selector)
            if not await buttons.count():
                continue
            button = buttons.first
            if await button.is_visible() and await button.is_enabled():
                await button.click(timeout=self._ms(deadline))
                return
        raise ElementNotFoundError("No visible submit button found")

    # ─── page-level operations ───

    @operation("Scroll")
    async def scroll_to(self, x: int = 0, y: int = 0) -> OperationResult:
        await self._require_page().evaluate(SCROLL_TO_JS, [x, y])
        return OperationResult.ok(f"Scrolled to X:{x}, Y:{y}", {"x": x, "y": y})

    @operation("Scroll to bottom")
    async def scroll_to_bottom(self) -> OperationResult:
        await self._require_page().evaluate(SCROLL_TO_BOTTOM_JS)
        return OperationResult.ok("Scrolled to bottom")

    @operation("Evaluate")
    async def evaluate(self, script: str, arg: Any = None) -> OperationResult:
        """Run user script; bare statements are wrapped in an arrow function."""
        page = self._require_page()
        wrapped = wrap_js_function(script)
        if arg is None:
            result = await page.evaluate(wrapped)
        else:
            result = await page.evaluate(wrapped, arg)
        return OperationResult.ok("Successfully executed script", {"result": result})

    @operation("Screenshot")
    async def screenshot(
        self,
        full_page: bool = False,
        image_format: str = "png",
        quality: int = 80,
        clip: Optional[Dict[str, float]] = None,
    ) -> OperationResult:
        """
        Capture the viewport, the full page or a clip region.

        The image is saved under the screenshots directory; a failed save is
        logged and the capture still succeeds without a ``path``.
        """
        page = self._require_page()
        fmt = "jpeg" if image_format in ("jpeg", "jpg") else "png"
        options: Dict[str, Any] = {"type": fmt, "full_page": full_page}
        if fmt == "jpeg":
            options["quality"] = quality
        if clip:
            options["clip"] = clip
        data = await page.screenshot(**options)

        path = self._save_screenshot(data, fmt)
        result: Dict[str, Any] = {"base64": base64.b64encode(data).decode("ascii"), "format": fmt, "size": len(data)}
        message = f"Successfully captured screenshot ({len(data)} bytes)"
        if path:
            result["path"] = str(path)
            message += f" and saved to: {path}"
        return OperationResult.ok(message, result)

    def _save_screenshot(self, data: bytes, fmt: str) -> Optional[Path]:
        try:
            self.screenshots_dir.mkdir(parents=True, exist_ok=True)
            filename = f"screenshot_{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}.{fmt}"
            path = self.screenshots_dir / filename
            path.write_bytes(data)
        except OSError as e:
            logger.warning(f"Failed to save screenshot to file: {e}")
            return None
        logger.info(f"📸 Screenshot saved: {path}")
        return path

    @operation("Handle dialog")
    async def handle_dialog(self, accept: bool = True, prompt_text: str = "") -> OperationResult:
        """Answer every subsequent alert/confirm/prompt on the active page."""
        page = self._require_page()

        async def handler(dialog: Dialog) -> None:
            logger.info(f"Dialog ({dialog.type}): {dialog.message}")
            if accept:
                await dialog.accept(prompt_text)
            else:
                await dialog.dismiss()

        if self._dialog_handler is not None:
            page.remove_listener("dialog", self._dialog_handler)
        self._dialog_handler = handler
        page.on("dialog", handler)
        return OperationResult.ok("Dialog handler configured", {"accept": accept})

    @operation("Extract")
    async def extract(
        self,
        selector: Target,
        extract_type: str = "text",
        attr: Optional[str] = None,
        multiple: bool = False,
        fields: Optional[List[str]] = None,
        timeout: Optional[float] = None,
    ) -> OperationResult:
        """
        Pull text, html, an attribute, a property or a field dict.

        In ``multiple`` mode every match of ``selector`` is extracted; an
        element that fails is skipped and reported in ``skipped``.
        """
        page = self._require_page()
        deadline = Deadline(timeout or self.config.action_timeout, "extract")

        if not multiple:
            resolution = await self._resolve(selector, deadline)
            data = await self._extract_element_data(resolution.locator, extract_type, attr, fields)
            return OperationResult.ok("Successfully extracted data", {"result": data, "count": 1, "skipped": []})

        results: List[Dict[str, Any]] = []
        skipped: List[Dict[str, Any]] = []
        matches = await self._match_all(page, selector, deadline)
        elements = await matches.all()
        for index, element in enumerate(elements):
            try:
                results.append(await self._extract_element_data(element, extract_type, attr, fields))
            except Exception as e:
                warning = PartialExtractionError(f"Element {index} skipped: {e}", index=index)
                logger.warning(str(warning))
                skipped.append({"index": index, "error": str(warning), "error_kind": warning.error_kind})

        return OperationResult.ok(
            f"Successfully extracted {len(results)} of {len(elements)} elements",
            {"result": results, "count": len(results), "skipped": skipped},
        )

    async def _match_all(self, page: Page, selector: Target, deadline: Deadline) -> Locator:
        """
        Locator over every match of ``selector``.

        A semantic index names a single snapshot entry, so it is looked up in
        a fresh snapshot and its recorded selector is used instead.
        """
        identifier = selector if isinstance(selector, Identifier) else Identifier.parse(str(selector))
        if identifier.semantic_index is not None and not (identifier.css or identifier.xpath):
            try:
                snapshot = await asyncio.wait_for(self._fresh_snapshot(page), timeout=deadline.remaining())
            except asyncio.TimeoutError as e:
                raise ResolutionTimeoutError(f"Semantic snapshot for {identifier.semantic_index} timed out") from e
            entry = snapshot.lookup(identifier.semantic_index)
            if entry is None:
                raise ElementNotFoundError(f"Element not found: {identifier.semantic_index} is not in the current snapshot")
            identifier = entry.identifier

        if identifier.css:
            in_frame, css = split_iframe_css(identifier.css)
            return (page.frame_locator("iframe").first if in_frame else page).locator(css)
        if not identifier.xpath:
            raise ElementNotFoundError(f"Element not found: no selector recorded for {self._label(selector)}")
        in_frame, xpath = split_iframe_xpath(identifier.xpath)
        return (page.frame_locator("iframe").first if in_frame else page).locator(f"xpath={xpath}")

    @staticmethod
    async def _extract_element_data(
        element: Locator,
        extract_type: str,
        attr: Optional[str],
        fields: Optional[List[str]],
    ) -> Dict[str, Any]:
        if fields:
            data: Dict[str, Any] = {}
            for field in fields:
                if field == "text":
                    data["text"] = await element.inner_text()
                elif field == "html":
                    data["html"] = await element.evaluate("(el) => el.outerHTML")
                elif field == "value":
                    data["value"] = await element.evaluate("(el) => el.value ?? ''")
                else:
                    value = await element.get_attribute(field)
                    if value is not None:
                        data[field] = value
            return data

        if extract_type == "html":
            return {"html": await element.evaluate("(el) => el.outerHTML")}
        if extract_type in ("attribute", "property"):
            if not attr:
                raise ExecutionFailedError(f"{extract_type} extraction needs an attribute name")
            if extract_type == "attribute":
                value = await element.get_attribute(attr)
                if value is None:
                    raise ExecutionFailedError(f"Attribute '{attr}' not present")
            else:
                value = await element.evaluate("(el, name) => el[name]", attr)
                value = "" if value is None else str(value)
            return {attr: value}
        return {"text": await element.inner_text()}

    @operation("Get page info")
    async def get_page_info(self) -> OperationResult:
        page = self._require_page()
        return OperationResult.ok("Successfully retrieved page info", {"url": page.url, "title": await page.title()})

    @operation("Get page text")
    async def get_page_text(self) -> OperationResult:
        text = await self._require_page().evaluate(PAGE_TEXT_JS)
        return OperationResult.ok("Successfully retrieved page text", {"text": text})

    @operation("Get page content")
    async def get_page_content(self) -> OperationResult:
        html = await self._require_page().content()
        return OperationResult.ok("Successfully retrieved page content", {"html": html})

    @operation("Semantic snapshot")
    async def get_semantic_snapshot(self) -> OperationResult:
        page = self._require_page()
        try:
            snapshot = await asyncio.wait_for(
                self._fresh_snapshot(page), timeout=self.config.snapshot_timeout
            )
        except asyncio.TimeoutError as e:
            raise ResolutionTimeoutError(
                f"Semantic snapshot exceeded timeout of {self.config.snapshot_timeout}s"
            ) from e
        return OperationResult.ok(
            "Successfully built semantic snapshot",
            {
                "semantic_snapshot": snapshot.to_text(),
                "input_count": len(snapshot.input_elements),
                "clickable_count": len(snapshot.clickable_elements),
                "snapshot": snapshot.model_dump(mode="json"),
            },
        )

    @operation("Console messages")
    async def get_console_messages(self, clear: bool = False) -> OperationResult:
        """Console output of the active page since the executor first touched it."""
        activity = self._watch(self._require_page())
        messages = list(activity.console)
        if clear:
            activity.console.clear()
        return OperationResult.ok(f"Retrieved {len(messages)} console messages", {"messages": messages})

    @operation("Network requests")
    async def get_network_requests(self, clear: bool = False) -> OperationResult:
        """Requests issued by the active page since the executor first touched it."""
        activity = self._watch(self._require_page())
        requests = list(activity.requests)
        if clear:
            activity.requests.clear()
        return OperationResult.ok(f"Retrieved {len(requests)} network requests", {"requests": requests})

    @operation("Resize")
    async def resize(self, width: int, height: int) -> OperationResult:
        if width <= 0 or height <= 0:
            raise ExecutionFailedError(f"Invalid viewport size: {width}x{height}")
        await self._require_page().set_viewport_size({"width": width, "height": height})
        return OperationResult.ok(f"Successfully resized window to {width}x{height}", {"width": width, "height": height})

    @operation("Close page")
    async def close_page(self) -> OperationResult:
        """Close the active tab; the browser picks the next active one."""
        page = self._require_page()
        url = page.url
        await page.close()
        remaining = self.browser.get_active_page()
        logger.info(f"Closed page: {url}")
        return OperationResult.ok(
            "Successfully closed page",
            {"url": url, "active_url": remaining.url if remaining is not None else None},
        )

    @operation("Tabs")
    async def tabs(self, action: str = "list", url: str = "", index: int = 0) -> OperationResult:
        """
        List, open, switch or close tabs.

        Indexes are 0-based in opening order. ``new`` requires ``url``;
        ``switch`` and ``close`` take ``index``.
        """
        if action not in TAB_ACTIONS:
            raise ExecutionFailedError(f"Unknown tabs action: {action}")

        if action == "list":
            active = self.browser.get_active_page()
            tabs: List[Dict[str, Any]] = []
            for i, page in enumerate(self.browser.pages):
                try:
                    title = await page.title()
                except Exception as e:
                    logger.warning(f"Failed to get tab info for index {i}: {e}")
                    continue
                tabs.append({"index": i, "title": title, "url": page.url, "active": page is active})
            return OperationResult.ok(f"Found {len(tabs)} tabs", {"tabs": tabs, "count": len(tabs)})

        if action == "new":
            if not url:
                raise ExecutionFailedError("URL is required for new tab action")
            page = await self.browser.open_page(url)
            self._watch(page)
            index = self.browser.pages.index(page)
            message = f"Successfully created new tab at index {index}"
        elif action == "switch":
            page = await self.browser.switch_to_tab(index)
            message = f"Successfully switched to tab {index}"
        else:
            page = await self.browser.close_tab(index)
            message = f"Successfully closed tab {index}"

        logger.info(f"✅ {message}: {page.url}")
        data: Dict[str, Any] = {"index": index, "url": page.url}
        if action != "close":
            data["title"] = await page.title()
        return OperationResult.ok(message, data)

    # ─── batches ───

    async def execute_batch(self, operations: List[BatchOperation]) -> BatchResult:
        """
        Run operations in order.

        An operation flagged ``stop_on_error`` ends the batch when it fails;
        other failures are counted and the batch continues.
        """
        result = BatchResult()
        for op in operations:
            outcome = await self._dispatch_batch_operation(op)
            result.operations.append(outcome)
            if outcome.success:
                result.success += 1
            else:
                result.failed += 1
                if op.stop_on_error:
                    logger.warning(f"Batch stopped at '{op.type}': {outcome.error}")
                    break

        result.end_time = datetime.now()
        result.duration = (result.end_time - result.start_time).total_seconds()
        return result

    async def _dispatch_batch_operation(self, op: BatchOperation) -> OperationResult:
        params = op.params
        if op.type == "navigate":
            return await self.navigate(params.get("url", ""))
        if op.type == "click":
            return await self.click(params.get("identifier", ""))
        if op.type == "type":
            return await self.type_text(params.get("identifier", ""), params.get("text", ""))
        if op.type == "select":
            return await self.select(params.get("identifier", ""), params.get("value", ""))
        if op.type == "wait":
            return await self.wait_for(params.get("identifier", ""), params.get("state", "visible"))
        if op.type == "hover":
            return await self.hover(params.get("identifier", ""))
        if op.type == "press_key":
            return await self.press_key(params.get("key", ""))
        if op.type == "evaluate":
            return await self.evaluate(params.get("script", ""))
        if op.type == "screenshot":
            return await self.screenshot(full_page=bool(params.get("full_page", False)))
        if op.type == "drag":
            return await self.drag(params.get("source", ""), params.get("target", ""))
        if op.type == "fill_form":
            return await self.fill_form(params.get("fields", []), submit=bool(params.get("submit", False)))
        if op.type == "tabs":
            return await self.tabs(params.get("action", "list"), params.get("url", ""), int(params.get("index", 0)))
        if op.type == "resize":
            return await self.resize(int(params.get("width", 0)), int(params.get("height", 0)))
        if op.type == "close_page":
            return await self.close_page()
        if op.type == "console_messages":
            return await self.get_console_messages(clear=bool(params.get("clear", False)))
        if op.type == "network_requests":
            return await self.get_network_requests(clear=bool(params.get("clear", False)))
        error = ExecutionFailedError(f"Unknown operation type: {op.type}")
        return OperationResult.failure(error)
