"""
Recording pipeline.

Page-side hooks forward raw DOM events through a Playwright binding; this
module turns them into a deduplicated, temporally coherent action timeline.

Two layers:
- ``RecordingPipeline`` owns the timeline rules (scroll coalescing, input
  deduplication, auto-wait insertion, enrichment) and works on built actions
- ``Recorder`` owns the page lifecycle and event translation (debounce,
  paste handling, keyboard filtering, file-input redirect, UI exclusion)
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from playwright.async_api import Page

from .dom import DomNode
from .models import (
    BaseAction,
    ClickAction,
    Identifier,
    InputAction,
    KeyboardAction,
    ScrollAction,
    SelectAction,
    SleepAction,
    UploadFileAction,
)
from .page_scripts import DESCRIBE_ELEMENT_JS, recorder_hook
from .selectors import SelectorModel
from .semantics import enrich_action
from .timeline_store import TimelineStore
from ..config import RecorderConfig
from ..error_handling import RecordingStateError

logger = logging.getLogger(__name__)

MAX_CLICK_TEXT_LENGTH = 50

# Page-side key name -> recorded key, and whether the identifier needs an editable target
RECORDED_KEYS = {
    "a": ("ctrl+a", True, "Select all"),
    "c": ("ctrl+c", True, "Copy"),
    "v": ("ctrl+v", True, "Paste"),
    "Backspace": ("backspace", True, "Backspace"),
    "Tab": ("tab", False, "Tab"),
    "Enter": ("enter", False, "Enter"),
}


def now_ms() -> int:
    return int(time.time() * 1000)


def same_target(a: BaseAction, b: BaseAction) -> bool:
    """Actions address the same element when either candidate matches."""
    return (a.selector is not None and a.selector == b.selector) or (
        a.xpath is not None and a.xpath == b.xpath
    )


class RecordingPipeline:
    """Applies the timeline rules and appends to the store."""

    def __init__(self, store: TimelineStore, session_id: str, config: Optional[RecorderConfig] = None):
        self.store = store
        self.session_id = session_id
        self.config = config or RecorderConfig()

    @property
    def actions(self) -> List[BaseAction]:
        return self.store.snapshot(self.session_id)

    def record(
        self,
        action: BaseAction,
        element: Optional[DomNode] = None,
        event_type: Optional[str] = None,
    ) -> Optional[BaseAction]:
        """
        Add one action to the timeline.

        Args:
            action: Base action built from the event
            element: Target element, used for semantic enrichment
            event_type: DOM event that produced the action

        Returns:
            The action as stored (updated or appended), or None when dropped
        """
        last = self.store.last(self.session_id)

        if last is not None:
            if action.timestamp < last.timestamp:
                action = action.model_copy(update={"timestamp": last.timestamp})

            if action.type == "scroll" and last.type == "scroll":
                updated = last.model_copy(update={
                    "scroll_x": action.scroll_x,
                    "scroll_y": action.scroll_y,
                    "timestamp": action.timestamp,
                    "description": action.description,
                })
                self.store.replace_last(self.session_id, updated)
                logger.debug(f"Updated last scroll position: X={action.scroll_x}, Y={action.scroll_y}")
                return updated

            if action.type == "input" and last.type == "input" and same_target(action, last):
                gap = action.timestamp - last.timestamp
                if gap < self.config.dedup_window_ms:
                    if action.value == last.value:
                        logger.debug("Skipped duplicate input action")
                        return None
                    updated = last.model_copy(update={"value": action.value, "timestamp": action.timestamp})
                    self.store.replace_last(self.session_id, updated)
                    logger.debug("Updated last input action value")
                    return updated

            gap = action.timestamp - last.timestamp
            if gap > self.config.auto_wait_threshold_ms and last.type != "sleep":
                self.store.append(self.session_id, self.auto_wait(last, gap))

        if element is not None and event_type:
            action = enrich_action(action, element, event_type)

        self.store.append(self.session_id, action)
        logger.debug(f"Recorded action #{self.store.length(self.session_id)}: {action.type} on {action.tag_name}")
        return action

    def auto_wait(self, last: BaseAction, gap: int) -> SleepAction:
        duration = min(int(round(gap / 3)), self.config.auto_wait_cap_ms)
        logger.debug(f"Auto-inserted sleep action: {duration}ms")
        return SleepAction(
            timestamp=last.timestamp + 1,
            duration=duration,
            description=f"Auto wait {duration / 1000:.1f}s",
        )


class Recorder:
    """
    Records one browser page into a timeline.

    Usage:
        recorder = Recorder(store)
        await recorder.start(page, "https://example.com")
        ...
        actions = await recorder.stop()
    """

    def __init__(
        self,
        store: Optional[TimelineStore] = None,
        config: Optional[RecorderConfig] = None,
        selector_model: Optional[SelectorModel] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store or TimelineStore()
        self.config = config or RecorderConfig()
        self.selector_model = selector_model or SelectorModel()
        self.clock = clock

        self.session_id: Optional[str] = None
        self.pipeline: Optional[RecordingPipeline] = None
        self.page: Optional[Page] = None
        self.start_url: str = ""
        self.start_time: Optional[datetime] = None

        self._recording = False
        self._bound_pages: set = set()
        self._input_timers: Dict[str, asyncio.TimerHandle] = {}
        self._pending_inputs: Dict[str, tuple] = {}
        self._scroll_timer: Optional[asyncio.TimerHandle] = None
        self._pending_scroll: Optional[tuple] = None
        self._last_scroll: tuple = (0, 0)

    @property
    def is_recording(self) -> bool:
        return self._recording

    def begin(self, session_id: Optional[str] = None) -> str:
        """Enter the recording state without a page; ``start`` calls this."""
        if self._recording:
            raise RecordingStateError("Recording is already in progress")
        self.session_id = session_id or uuid.uuid4().hex
        self.pipeline = RecordingPipeline(self.store, self.session_id, self.config)
        self.store.clear(self.session_id)
        self.start_time = datetime.now()
        self._last_scroll = (0, 0)
        self._recording = True
        return self.session_id

    async def start(self, page: Page, url: str = "", session_id: Optional[str] = None) -> str:
        """
        Inject the recording hook into ``page`` and start capturing.

        The hook is registered as an init script, so it is re-injected on
        every navigation of the page.
        """
        self.begin(session_id)
        self.page = page
        self.start_url = url or page.url

        try:
            if id(page) not in self._bound_pages:
                await page.expose_binding(self.config.binding_name, self._on_binding)
                self._bound_pages.add(id(page))
            hook = recorder_hook(self.config.binding_name, self.config.ui_prefix)
            await page.add_init_script(DESCRIBE_ELEMENT_JS)
            await page.add_init_script(hook)
            if url:
                await page.goto(url, wait_until="load")
            else:
                await page.evaluate(DESCRIBE_ELEMENT_JS)
                await page.evaluate(hook)
        except Exception:
            self._recording = False
            raise

        logger.info(f"✅ Recording started (session {self.session_id}) on {self.start_url}")
        return self.session_id

    async def stop(self) -> List[BaseAction]:
        """Flush pending debounced events and return the timeline."""
        if not self._recording:
            raise RecordingStateError("Recording is not in progress")

        self.flush()
        self._recording = False
        actions = self.pipeline.actions
        logger.info(f"✅ Recording stopped: {len(actions)} actions (session {self.session_id})")
        return actions

    def flush(self) -> None:
        for key in list(self._input_timers):
            self._cancel_input_timer(key)
            self._commit_input(key)
        if self._scroll_timer is not None:
            self._scroll_timer.cancel()
            self._scroll_timer = None
            self._commit_scroll()

    def get_recording_info(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {"is_recording": self._recording}
        if self._recording and self.start_time is not None:
            info["session_id"] = self.session_id
            info["start_url"] = self.start_url
            info["start_time"] = self.start_time.isoformat()
            info["duration"] = (datetime.now() - self.start_time).total_seconds()
            info["action_count"] = self.store.length(self.session_id)
        return info

    # ─── event handling ───

    async def _on_binding(self, source: Any, payload: Any) -> None:
        self.handle_event(payload)

    def handle_event(self, payload: Dict[str, Any]) -> None:
        """Translate one page event; failures are logged and never raised."""
        if not self._recording or not isinstance(payload, dict):
            return
        event = payload.get("event", "")
        try:
            element = DomNode.from_descriptor(payload["element"]) if payload.get("element") else None
            if element is not None and self.is_own_ui(element):
                return

            handler = getattr(self, f"_on_{event}", None)
            if handler is None:
                logger.debug(f"Ignoring unsupported recorder event: {event}")
                return
            handler(payload, element)
        except Exception as e:
            logger.warning(f"Failed to record {event} event: {e}")

    def is_own_ui(self, element: DomNode) -> bool:
        prefix = self.config.ui_prefix
        for node in [element, *element.ancestors()]:
            if node.id.startswith(prefix):
                return True
            if any(token.startswith(prefix) for token in node.classes):
                return True
        return False

    def _identify(self, element: DomNode) -> Identifier:
        return self.selector_model.identify(element)

    def _base_fields(self, element: DomNode, timestamp: int) -> Dict[str, Any]:
        identifier = self._identify(element)
        return {
            "timestamp": timestamp,
            "selector": identifier.css,
            "xpath": identifier.xpath,
            "tag_name": element.tag,
        }

    def _on_click(self, payload: Dict[str, Any], element: Optional[DomNode]) -> None:
        if element is None:
            return
        if payload.get("file_input"):
            logger.debug("Click opens a file chooser; waiting for file selection")
            return
        action = ClickAction(
            **self._base_fields(element, payload.get("timestamp") or self.clock()),
            text=element.text[:MAX_CLICK_TEXT_LENGTH],
            x=int(payload.get("x") or 0),
            y=int(payload.get("y") or 0),
        )
        self.pipeline.record(action, element, "click")

    def _on_input(self, payload: Dict[str, Any], element: Optional[DomNode]) -> None:
        if element is None or element.input_type == "file":
            return
        action = self._input_action(element, payload.get("timestamp") or self.clock())
        key = action.selector or action.xpath
        if self._follows_paste(action):
            logger.debug("Skipping input event after ctrl+v on same element")
            return

        self._cancel_input_timer(key)
        self._pending_inputs[key] = (action, element)
        loop = asyncio.get_running_loop()
        self._input_timers[key] = loop.call_later(
            self.config.input_debounce_ms / 1000, self._commit_input, key
        )

    def _on_blur(self, payload: Dict[str, Any], element: Optional[DomNode]) -> None:
        if element is None or element.input_type == "file":
            return
        action = self._input_action(element, payload.get("timestamp") or self.clock())
        key = action.selector or action.xpath
        self._cancel_input_timer(key)
        self._pending_inputs.pop(key, None)

        if self._follows_paste(action):
            logger.debug("Skipping blur input event after ctrl+v on same element")
            return
        if action.value.strip():
            self.pipeline.record(action, element, "blur")

    def _on_change(self, payload: Dict[str, Any], element: Optional[DomNode]) -> None:
        if element is None:
            return
        timestamp = payload.get("timestamp") or self.clock()
        if element.tag == "select":
            action = SelectAction(
                **self._base_fields(element, timestamp),
                value=element.current_value,
                text=payload.get("selected_text", ""),
            )
            self.pipeline.record(action, element, "change")
        elif element.tag == "input" and element.input_type in ("checkbox", "radio"):
            action = InputAction(
                **self._base_fields(element, timestamp),
                value="checked" if payload.get("checked") else "unchecked",
            )
            self.pipeline.record(action, element, "change")

    def _on_keydown(self, payload: Dict[str, Any], element: Optional[DomNode]) -> None:
        key = payload.get("key", "")
        modified = bool(payload.get("ctrl") or payload.get("meta"))
        if key in ("a", "c", "v") and not modified:
            return
        if key not in RECORDED_KEYS:
            return

        recorded, needs_editable, description = RECORDED_KEYS[key]
        fields: Dict[str, Any] = {
            "timestamp": payload.get("timestamp") or self.clock(),
            "tag_name": element.tag if element is not None else "",
        }
        if element is not None and (not needs_editable or self._is_editable(element)):
            fields = self._base_fields(element, fields["timestamp"])

        action = KeyboardAction(**fields, key=recorded, description=description)
        self.pipeline.record(action, element, "keydown")
        logger.debug(f"Recorded keyboard action: {recorded}")

    def _on_scroll(self, payload: Dict[str, Any], element: Optional[DomNode]) -> None:
        self._pending_scroll = (
            int(payload.get("scroll_x") or 0),
            int(payload.get("scroll_y") or 0),
        )
        if self._scroll_timer is not None:
            self._scroll_timer.cancel()
        loop = asyncio.get_running_loop()
        self._scroll_timer = loop.call_later(self.config.scroll_debounce_ms / 1000, self._commit_scroll)

    def _on_file_selected(self, payload: Dict[str, Any], element: Optional[DomNode]) -> None:
        if element is None:
            return
        file_names = list(payload.get("file_names") or [])
        if not file_names:
            return
        action = UploadFileAction(
            **self._base_fields(element, payload.get("timestamp") or self.clock()),
            file_names=file_names,
            multiple=bool(payload.get("multiple")),
            accept=payload.get("accept") or "",
            description=f"Selected {len(file_names)} file(s): {', '.join(file_names)}",
        )
        self.pipeline.record(action, element, "change")

    # ─── debounce plumbing ───

    def _input_action(self, element: DomNode, timestamp: int) -> InputAction:
        fields = self._base_fields(element, timestamp)
        if element.is_content_editable:
            fields["tag_name"] = "contenteditable"
            value = element.value if element.value is not None else element.text
        else:
            value = element.current_value
        return InputAction(**fields, value=value or "")

    def _follows_paste(self, action: BaseAction) -> bool:
        last = self.store.last(self.session_id)
        return (
            last is not None
            and last.type == "keyboard"
            and last.key == "ctrl+v"
            and same_target(action, last)
        )

    def _cancel_input_timer(self, key: str) -> None:
        handle = self._input_timers.pop(key, None)
        if handle is not None:
            handle.cancel()

    def _commit_input(self, key: str) -> None:
        self._input_timers.pop(key, None)
        pending = self._pending_inputs.pop(key, None)
        if pending is None or not self._recording:
            return
        action, element = pending
        action = action.model_copy(update={"timestamp": max(action.timestamp, self.clock())})
        try:
            self.pipeline.record(action, element, "input")
        except Exception as e:
            logger.warning(f"Failed to commit input: {e}")

    def _commit_scroll(self) -> None:
        self._scroll_timer = None
        position, self._pending_scroll = self._pending_scroll, None
        if position is None or not self._recording or position == self._last_scroll:
            return
        self._last_scroll = position
        x, y = position
        action = ScrollAction(
            timestamp=self.clock(),
            scroll_x=x,
            scroll_y=y,
            description=f"Scroll to X:{x}, Y:{y}",
        )
        try:
            self.pipeline.record(action)
        except Exception as e:
            logger.warning(f"Failed to commit scroll: {e}")

    @staticmethod
    def _is_editable(element: DomNode) -> bool:
        return element.tag in ("input", "textarea") or element.is_content_editable
