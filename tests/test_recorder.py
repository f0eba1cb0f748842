"""
Tests for the recording pipeline and recorder.

Validates:
- Scroll coalescing, input deduplication and auto-wait insertion
- Semantic enrichment of recorded actions
- Event translation (click, input debounce, blur, change, keyboard, files)
- Paste handling and recorder-UI exclusion
- Recorder lifecycle and state errors
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from replay_engine.config import RecorderConfig
from replay_engine.core.dom import DomNode
from replay_engine.core.models import (
    ClickAction,
    InputAction,
    KeyboardAction,
    ScrollAction,
    SelectAction,
    SleepAction,
    UploadFileAction,
)
from replay_engine.core.recorder import Recorder, RecordingPipeline
from replay_engine.core.timeline_store import TimelineStore
from replay_engine.error_handling import RecordingStateError


def _descriptor(
    tag: str,
    text: str = "",
    value: Optional[str] = None,
    ancestors: Optional[List[Dict[str, Any]]] = None,
    **attributes: str,
) -> Dict[str, Any]:
    return {
        "tag": tag,
        "attributes": {name.replace("_", "-"): v for name, v in attributes.items()},
        "text": text,
        "value": value,
        "visible": True,
        "enabled": True,
        "ancestors": ancestors or [],
    }


def _pipeline(config: Optional[RecorderConfig] = None) -> RecordingPipeline:
    store = TimelineStore()
    store.clear("s1")
    return RecordingPipeline(store, "s1", config or RecorderConfig())


def _recorder(config: RecorderConfig) -> Recorder:
    recorder = Recorder(TimelineStore(), config, clock=lambda: 1000)
    recorder.begin("session-1")
    return recorder


# ─── Pipeline Tests ──────────────────────────────────────────────────


class TestRecordingPipeline:
    """Timeline rules applied to built actions."""

    def test_consecutive_scrolls_coalesce(self):
        pipeline = _pipeline()
        pipeline.record(ScrollAction(timestamp=1000, scroll_y=100))
        pipeline.record(ScrollAction(timestamp=1200, scroll_y=300))
        actions = pipeline.actions
        assert len(actions) == 1
        assert actions[0].scroll_y == 300
        assert actions[0].timestamp == 1200

    def test_input_on_same_element_updates_value(self):
        pipeline = _pipeline()
        pipeline.record(InputAction(timestamp=1000, selector="#q", value="a"))
        pipeline.record(InputAction(timestamp=1500, selector="#q", value="ab"))
        actions = pipeline.actions
        assert len(actions) == 1
        assert actions[0].value == "ab"
        assert actions[0].timestamp == 1500

    def test_duplicate_input_is_dropped(self):
        pipeline = _pipeline()
        pipeline.record(InputAction(timestamp=1000, selector="#q", value="a"))
        assert pipeline.record(InputAction(timestamp=1100, xpath="//x", selector="#q", value="a")) is None
        assert len(pipeline.actions) == 1

    def test_input_outside_window_is_a_new_step(self):
        """Inputs 2s apart are separate steps, with an auto wait between them."""
        pipeline = _pipeline()
        pipeline.record(InputAction(timestamp=1000, selector="#q", value="a"))
        pipeline.record(InputAction(timestamp=3500, selector="#q", value="b"))
        actions = pipeline.actions
        assert [a.type for a in actions] == ["input", "sleep", "input"]
        assert actions[1].duration == 833

    def test_auto_wait_is_a_third_of_the_gap(self):
        pipeline = _pipeline()
        pipeline.record(ClickAction(timestamp=1000, selector="#a"))
        pipeline.record(ClickAction(timestamp=4000, selector="#b"))
        actions = pipeline.actions
        assert isinstance(actions[1], SleepAction)
        assert actions[1].duration == 1000
        assert actions[1].timestamp == 1001

    def test_auto_wait_is_capped(self):
        pipeline = _pipeline()
        pipeline.record(ClickAction(timestamp=0, selector="#a"))
        pipeline.record(ClickAction(timestamp=60000, selector="#b"))
        assert pipeline.actions[1].duration == 5000

    def test_no_wait_for_short_gaps_or_after_sleep(self):
        pipeline = _pipeline()
        pipeline.record(ClickAction(timestamp=1000, selector="#a"))
        pipeline.record(ClickAction(timestamp=1900, selector="#b"))
        pipeline.record(SleepAction(timestamp=2000, duration=100))
        pipeline.record(ClickAction(timestamp=9000, selector="#c"))
        assert [a.type for a in pipeline.actions] == ["click", "click", "sleep", "click"]

    def test_timestamps_never_go_backwards(self):
        pipeline = _pipeline()
        pipeline.record(ClickAction(timestamp=2000, selector="#a"))
        pipeline.record(ClickAction(timestamp=1500, selector="#b"))
        assert pipeline.actions[1].timestamp == 2000

    def test_enrichment_with_element(self):
        pipeline = _pipeline()
        element = DomNode.from_descriptor(_descriptor("button", text="Sign in", id="go"))
        stored = pipeline.record(ClickAction(timestamp=1000, selector="#go"), element, "click")
        assert stored.intent.verb == "click"
        assert stored.intent.object == "Sign in"
        assert stored.accessibility.role == "button"
        assert stored.evidence.confidence == 0.95


# ─── Event Translation Tests ─────────────────────────────────────────


class TestRecorderEvents:
    """Raw page events become timeline actions."""

    @pytest.mark.asyncio
    async def test_click(self, recorder_config):
        recorder = _recorder(recorder_config)
        recorder.handle_event({
            "event": "click",
            "element": _descriptor("button", text="Go", id="go"),
            "timestamp": 1000,
            "x": 12,
            "y": 34,
        })
        actions = await recorder.stop()
        assert len(actions) == 1
        click = actions[0]
        assert isinstance(click, ClickAction)
        assert click.selector == "#go"
        assert click.xpath == '//*[@id="go"]'
        assert (click.x, click.y, click.text) == (12, 34, "Go")

    @pytest.mark.asyncio
    async def test_input_is_debounced(self, recorder_config):
        recorder = _recorder(recorder_config)
        for value in ("a", "al", "ali"):
            recorder.handle_event({
                "event": "input",
                "element": _descriptor("input", value=value, name="q"),
                "timestamp": 1000,
            })
        await asyncio.sleep(0.1)
        actions = await recorder.stop()
        assert len(actions) == 1
        assert isinstance(actions[0], InputAction)
        assert actions[0].value == "ali"
        assert actions[0].selector == 'input[name="q"]'

    @pytest.mark.asyncio
    async def test_stop_flushes_pending_input(self):
        recorder = _recorder(RecorderConfig(input_debounce_ms=10000))
        recorder.handle_event({
            "event": "input",
            "element": _descriptor("input", value="hello", name="q"),
            "timestamp": 1000,
        })
        actions = await recorder.stop()
        assert [a.value for a in actions] == ["hello"]

    @pytest.mark.asyncio
    async def test_blur_records_immediately(self, recorder_config):
        recorder = _recorder(recorder_config)
        element = _descriptor("input", value="bob", name="user")
        recorder.handle_event({"event": "input", "element": element, "timestamp": 1000})
        recorder.handle_event({"event": "blur", "element": element, "timestamp": 1000})
        await asyncio.sleep(0.1)
        actions = await recorder.stop()
        assert len(actions) == 1
        assert actions[0].value == "bob"

    @pytest.mark.asyncio
    async def test_blur_with_empty_value_is_ignored(self, recorder_config):
        recorder = _recorder(recorder_config)
        recorder.handle_event({"event": "blur", "element": _descriptor("input", value="  ", name="user")})
        assert await recorder.stop() == []

    @pytest.mark.asyncio
    async def test_contenteditable_input(self, recorder_config):
        recorder = _recorder(recorder_config)
        recorder.handle_event({
            "event": "blur",
            "element": _descriptor("div", text="Draft body", id="editor", contenteditable="true"),
            "timestamp": 1000,
        })
        actions = await recorder.stop()
        assert actions[0].tag_name == "contenteditable"
        assert actions[0].value == "Draft body"

    @pytest.mark.asyncio
    async def test_select_change(self, recorder_config):
        recorder = _recorder(recorder_config)
        recorder.handle_event({
            "event": "change",
            "element": _descriptor("select", value="fr", name="country"),
            "selected_text": "France",
            "timestamp": 1000,
        })
        actions = await recorder.stop()
        assert isinstance(actions[0], SelectAction)
        assert (actions[0].value, actions[0].text) == ("fr", "France")
        assert actions[0].intent.verb == "select"

    @pytest.mark.asyncio
    async def test_checkbox_change(self, recorder_config):
        recorder = _recorder(recorder_config)
        recorder.handle_event({
            "event": "change",
            "element": _descriptor("input", type="checkbox", name="terms"),
            "checked": True,
            "timestamp": 1000,
        })
        actions = await recorder.stop()
        assert actions[0].value == "checked"

    @pytest.mark.asyncio
    async def test_scroll_is_debounced(self, recorder_config):
        recorder = _recorder(recorder_config)
        recorder.handle_event({"event": "scroll", "scroll_x": 0, "scroll_y": 200})
        recorder.handle_event({"event": "scroll", "scroll_x": 0, "scroll_y": 450})
        await asyncio.sleep(0.1)
        actions = await recorder.stop()
        assert len(actions) == 1
        assert actions[0].scroll_y == 450

    @pytest.mark.asyncio
    async def test_scroll_back_to_origin_without_movement_is_ignored(self, recorder_config):
        recorder = _recorder(recorder_config)
        recorder.handle_event({"event": "scroll", "scroll_x": 0, "scroll_y": 0})
        await asyncio.sleep(0.1)
        assert await recorder.stop() == []


# ─── Keyboard Tests ──────────────────────────────────────────────────


class TestKeyboardEvents:
    """Only a fixed set of keys is recorded."""

    @pytest.mark.asyncio
    async def test_plain_letters_are_ignored(self, recorder_config):
        recorder = _recorder(recorder_config)
        recorder.handle_event({"event": "keydown", "key": "a", "element": _descriptor("input", name="q")})
        recorder.handle_event({"event": "keydown", "key": "x", "ctrl": True, "element": _descriptor("input", name="q")})
        assert await recorder.stop() == []

    @pytest.mark.asyncio
    async def test_enter_keeps_target(self, recorder_config):
        recorder = _recorder(recorder_config)
        recorder.handle_event({"event": "keydown", "key": "Enter", "element": _descriptor("button", id="go"), "timestamp": 1000})
        actions = await recorder.stop()
        assert isinstance(actions[0], KeyboardAction)
        assert actions[0].key == "enter"
        assert actions[0].selector == "#go"

    @pytest.mark.asyncio
    async def test_editing_keys_need_editable_target(self, recorder_config):
        recorder = _recorder(recorder_config)
        recorder.handle_event({"event": "keydown", "key": "Backspace", "element": _descriptor("div", id="panel"), "timestamp": 1000})
        actions = await recorder.stop()
        assert actions[0].key == "backspace"
        assert actions[0].selector is None
        assert actions[0].tag_name == "div"

    @pytest.mark.asyncio
    async def test_input_after_paste_is_skipped(self, recorder_config):
        """The value produced by ctrl+v is replayed by the paste itself."""
        recorder = _recorder(recorder_config)
        element = _descriptor("input", value="pasted", name="q")
        recorder.handle_event({"event": "keydown", "key": "v", "meta": True, "element": element, "timestamp": 1000})
        recorder.handle_event({"event": "input", "element": element, "timestamp": 1000})
        recorder.handle_event({"event": "blur", "element": element, "timestamp": 1000})
        await asyncio.sleep(0.1)
        actions = await recorder.stop()
        assert [a.type for a in actions] == ["keyboard"]
        assert actions[0].key == "ctrl+v"
        assert actions[0].selector == 'input[name="q"]'


# ─── File Input and UI Tests ─────────────────────────────────────────


class TestFileAndUiEvents:
    """File chooser redirect and recorder-UI exclusion."""

    @pytest.mark.asyncio
    async def test_file_input_click_becomes_upload(self, recorder_config):
        recorder = _recorder(recorder_config)
        element = _descriptor("input", type="file", id="upload", accept=".pdf")
        recorder.handle_event({"event": "click", "element": element, "file_input": True, "timestamp": 1000})
        recorder.handle_event({"event": "input", "element": element, "timestamp": 1000})
        recorder.handle_event({
            "event": "file_selected",
            "element": element,
            "file_names": ["report.pdf"],
            "multiple": False,
            "accept": ".pdf",
            "timestamp": 1000,
        })
        actions = await recorder.stop()
        assert len(actions) == 1
        upload = actions[0]
        assert isinstance(upload, UploadFileAction)
        assert upload.file_names == ["report.pdf"]
        assert upload.selector == "#upload"
        assert upload.file_paths == []

    @pytest.mark.asyncio
    async def test_own_ui_is_excluded(self, recorder_config):
        recorder = _recorder(recorder_config)
        recorder.handle_event({"event": "click", "element": _descriptor("button", id="__replay_stop")})
        recorder.handle_event({
            "event": "click",
            "element": _descriptor("span", text="Pause", ancestors=[{"tag": "div", "attributes": {"class": "__replay_toolbar"}}]),
        })
        assert await recorder.stop() == []

    @pytest.mark.asyncio
    async def test_malformed_event_is_logged_not_raised(self, recorder_config):
        recorder = _recorder(recorder_config)
        recorder.handle_event({"event": "click", "element": "not-a-descriptor"})
        recorder.handle_event("garbage")
        assert await recorder.stop() == []


# ─── Lifecycle Tests ─────────────────────────────────────────────────


class TestRecorderLifecycle:
    """start / stop state machine."""

    @pytest.mark.asyncio
    async def test_start_injects_hook_and_navigates(self, recorder_config):
        page = MagicMock()
        page.url = "about:blank"
        page.expose_binding = AsyncMock()
        page.add_init_script = AsyncMock()
        page.goto = AsyncMock()

        recorder = Recorder(TimelineStore(), recorder_config)
        session_id = await recorder.start(page, "https://example.com", session_id="abc")

        assert session_id == "abc"
        assert recorder.is_recording
        page.expose_binding.assert_awaited_once()
        assert page.expose_binding.call_args.args[0] == recorder_config.binding_name
        assert page.add_init_script.await_count == 2
        page.goto.assert_awaited_once_with("https://example.com", wait_until="load")

        info = recorder.get_recording_info()
        assert info["session_id"] == "abc"
        assert info["start_url"] == "https://example.com"
        assert info["action_count"] == 0

    @pytest.mark.asyncio
    async def test_failed_start_leaves_recorder_idle(self, recorder_config):
        page = MagicMock()
        page.expose_binding = AsyncMock(side_effect=RuntimeError("page closed"))
        recorder = Recorder(TimelineStore(), recorder_config)
        with pytest.raises(RuntimeError):
            await recorder.start(page, "https://example.com")
        assert not recorder.is_recording

    @pytest.mark.asyncio
    async def test_state_errors(self, recorder_config):
        recorder = Recorder(TimelineStore(), recorder_config)
        with pytest.raises(RecordingStateError):
            await recorder.stop()
        recorder.begin()
        with pytest.raises(RecordingStateError):
            recorder.begin()

    @pytest.mark.asyncio
    async def test_events_after_stop_are_ignored(self, recorder_config):
        recorder = _recorder(recorder_config)
        await recorder.stop()
        recorder.handle_event({"event": "click", "element": _descriptor("button", id="go")})
        assert recorder.store.length("session-1") == 0
        assert recorder.get_recording_info() == {"is_recording": False}
