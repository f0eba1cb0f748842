"""
Script playback.

``ScriptPlayer`` walks a Script's actions in order, evaluating conditions and
``${var}`` placeholders, and dispatches each one to the ReplayExecutor.
Extracted values accumulate in ``extracted_data`` and are returned in the
PlayResult.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, runtime_checkable

from .executor import ReplayExecutor
from .html_cleaner import clean_html
from .models import (
    AIControlAction,
    BaseAction,
    ClickAction,
    ExecuteJSAction,
    ExtractAction,
    Identifier,
    InputAction,
    KeyboardAction,
    NavigateAction,
    OpenTabAction,
    PlayResult,
    Script,
    ScreenshotAction,
    ScrollAction,
    SelectAction,
    SwitchTabAction,
    UploadFileAction,
    substitute_variables,
)
from ..config import ReplayConfig
from ..error_handling import (
    ElementNotFoundError,
    ExecutionFailedError,
    NotFoundError,
    PreconditionFailedError,
    RetryConfig,
    ScriptPlaybackError,
    with_async_retry,
)
from ..utils.js_helpers import format_time_elapsed, wrap_js_function
from ..utils.logger_config import operation_context

logger = logging.getLogger(__name__)

SUBSTITUTED_FIELDS = ("selector", "xpath", "value", "text", "url", "js_code", "key", "ai_control_prompt")

# Recorded shortcuts replayed with the platform's primary modifier
SHORTCUT_KEYS = {"ctrl+a": "a", "ctrl+c": "c", "ctrl+v": "v"}

EXTRACT_PREFIXES = {
    "extract_text": "text_data",
    "extract_html": "html_data",
    "extract_attribute": "attr_data",
}


@runtime_checkable
class AIControlHandler(Protocol):
    """Collaborator that carries out a natural-language step on cleaned HTML."""

    async def run(self, prompt: str, html: str, action: AIControlAction) -> Dict[str, Any]:
        ...


def substitute_action(action: BaseAction, variables: Dict[str, Any]) -> BaseAction:
    """Copy of ``action`` with ``${var}`` placeholders filled in."""
    update: Dict[str, Any] = {}
    for field in SUBSTITUTED_FIELDS:
        value = getattr(action, field, None)
        if isinstance(value, str) and "${" in value:
            update[field] = substitute_variables(value, variables)
    if isinstance(action, UploadFileAction) and action.file_paths:
        update["file_paths"] = [substitute_variables(path, variables) for path in action.file_paths]
    return action.model_copy(update=update) if update else action


class ScriptPlayer:
    """
    Replays scripts through a ReplayExecutor.

    Failures are counted and playback moves on, except that an execution
    failure stops the script unless ``continue_on_error`` is configured.
    """

    def __init__(
        self,
        executor: ReplayExecutor,
        config: Optional[ReplayConfig] = None,
        ai_handler: Optional[AIControlHandler] = None,
    ):
        self.executor = executor
        self.config = config or executor.config
        self.ai_handler = ai_handler
        self.extracted_data: Dict[str, Any] = {}
        self.success_count = 0
        self.failed_count = 0

        self._handlers: Dict[str, Callable[[Any], Awaitable[None]]] = {
            "click": self._play_click,
            "input": self._play_input,
            "select": self._play_select,
            "navigate": self._play_navigate,
            "wait": self._play_sleep,
            "sleep": self._play_sleep,
            "extract_text": self._play_extract,
            "extract_html": self._play_extract,
            "extract_attribute": self._play_extract,
            "execute_js": self._play_execute_js,
            "upload_file": self._play_upload_file,
            "scroll": self._play_scroll,
            "keyboard": self._play_keyboard,
            "open_tab": self._play_open_tab,
            "switch_tab": self._play_switch_tab,
            "screenshot": self._play_screenshot,
            "ai_control": self._play_ai_control,
        }

    def reset_stats(self) -> None:
        self.extracted_data = {}
        self.success_count = 0
        self.failed_count = 0

    async def play(self, script: Script, variables: Optional[Dict[str, Any]] = None) -> PlayResult:
        """
        Play every action of ``script``.

        Args:
            script: Script to replay
            variables: Values for ``${name}`` placeholders, overriding the
                script's own defaults

        Returns:
            PlayResult with counts, collected errors and extracted data
        """
        self.reset_stats()
        values: Dict[str, Any] = {**script.variables, **(variables or {})}
        total = len(script.actions)
        errors: List[str] = []
        stopped_at: Optional[int] = None

        logger.info(f"Start playing script: {script.name or script.id} ({total} steps)")
        started = asyncio.get_running_loop().time()

        if script.url:
            url = substitute_variables(script.url, values)
            result = await self.executor.navigate(url)
            if not result.success:
                return PlayResult(
                    success=False,
                    message=f"Navigation to start URL failed: {result.error}",
                    errors=[result.error or result.message],
                )
            await asyncio.sleep(self.config.script_settle_delay)

        for i, action in enumerate(script.actions):
            scope = {**values, **self.extracted_data}
            if action.condition is not None and not action.condition.evaluate(scope):
                logger.info(f"[{i + 1}/{total}] Skipped {action.type}: condition not met")
                continue

            logger.info(f"[{i + 1}/{total}] Execute action: {action.type}")
            try:
                with operation_context(f"step {i + 1}"):
                    await self.execute_action(substitute_action(action, scope))
            except Exception as e:
                self.failed_count += 1
                errors.append(f"[{i + 1}] {action.type}: {e}")
                if isinstance(e, ExecutionFailedError) and not self.config.continue_on_error:
                    stopped_at = i
                    logger.error(f"❌ Playback stopped at step {i + 1}: {e}")
                    break
                logger.warning(f"Action execution failed (continuing with subsequent steps): {e}")
            else:
                self.success_count += 1

            if i < total - 1:
                await asyncio.sleep(self.config.inter_action_delay)

        elapsed = asyncio.get_running_loop().time() - started
        all_failed = self.failed_count > 0 and self.success_count == 0
        success = stopped_at is None and not all_failed

        if stopped_at is not None:
            message = f"Playback stopped at step {stopped_at + 1}"
        elif all_failed:
            message = "All operations failed"
        else:
            message = (
                f"Script playback completed - Success: {self.success_count}, "
                f"Failed: {self.failed_count}, Total: {total}"
            )
        log = logger.info if success else logger.error
        log(f"{'✅' if success else '❌'} {message} in {format_time_elapsed(elapsed)}")
        if self.extracted_data:
            logger.info(f"Extracted {len(self.extracted_data)} data items")

        return PlayResult(
            success=success,
            message=message,
            extracted_data=dict(self.extracted_data),
            errors=errors,
            success_count=self.success_count,
            failed_count=self.failed_count,
            stopped_at=stopped_at,
        )

    async def execute_action(self, action: BaseAction) -> None:
        """Run one action; raises the executor's error on failure."""
        handler = self._handlers.get(action.type)
        if handler is None:
            logger.warning(f"Unsupported action type, skipping: {action.type}")
            return
        await handler(action)

    @staticmethod
    def _require_identifier(action: BaseAction) -> Identifier:
        identifier = action.identifier
        if identifier is None:
            raise ElementNotFoundError(f"{action.type} action has no selector or xpath")
        return identifier

    # ─── element actions ───

    async def _play_click(self, action: ClickAction) -> None:
        identifier = self._require_identifier(action)
        retry = RetryConfig(max_attempts=self.config.click_retry_attempts, base_delay=1.0, max_delay=4.0)

        @with_async_retry(retry, exceptions=(NotFoundError, PreconditionFailedError, ExecutionFailedError), logger=logger)
        async def pointer_click() -> None:
            (await self.executor.click(identifier)).raise_for_error()

        try:
            await pointer_click()
        except (PreconditionFailedError, ExecutionFailedError) as e:
            logger.warning(f"Pointer click failed, trying DOM click: {e}")
            result = await self.executor.dom_click(identifier)
            if not result.success:
                raise e

    async def _play_input(self, action: InputAction) -> None:
        identifier = self._require_identifier(action)
        (await self.executor.type_text(identifier, action.value, clear=True)).raise_for_error()

    async def _play_select(self, action: SelectAction) -> None:
        identifier = self._require_identifier(action)
        (await self.executor.select(identifier, action.text or action.value)).raise_for_error()

    async def _play_upload_file(self, action: UploadFileAction) -> None:
        identifier = self._require_identifier(action)
        if not action.file_paths:
            raise ScriptPlaybackError("No file paths specified for upload")
        (await self.executor.upload_file(identifier, action.file_paths)).raise_for_error()

    async def _play_keyboard(self, action: KeyboardAction) -> None:
        if not action.key:
            raise ScriptPlaybackError("Keyboard action missing key")

        key, modifiers = action.key, None
        if action.key.lower() in SHORTCUT_KEYS:
            key, modifiers = SHORTCUT_KEYS[action.key.lower()], ["ControlOrMeta"]

        identifier = action.identifier
        result = await self.executor.press_key(key, modifiers, identifier=identifier)
        if not result.success and identifier is not None and isinstance(result.exception, NotFoundError):
            logger.warning(f"Keyboard target not found, pressing on page: {result.error}")
            result = await self.executor.press_key(key, modifiers)
        result.raise_for_error()

    # ─── page actions ───

    async def _play_navigate(self, action: NavigateAction) -> None:
        (await self.executor.navigate(action.url)).raise_for_error()

    async def _play_sleep(self, action: BaseAction) -> None:
        duration = getattr(action, "duration", 0)
        logger.debug(f"Sleeping {duration}ms")
        await asyncio.sleep(duration / 1000)

    async def _play_scroll(self, action: ScrollAction) -> None:
        (await self.executor.scroll_to(action.scroll_x, action.scroll_y)).raise_for_error()

    async def _play_screenshot(self, action: ScreenshotAction) -> None:
        clip = None
        if action.screenshot_mode == "region":
            if action.screenshot_width is None or action.screenshot_height is None:
                raise ScriptPlaybackError("Region screenshot needs width and height")
            clip = {
                "x": action.x or 0,
                "y": action.y or 0,
                "width": action.screenshot_width,
                "height": action.screenshot_height,
            }
        result = await self.executor.screenshot(full_page=action.screenshot_mode == "fullpage", clip=clip)
        result.raise_for_error()
        if action.variable_name:
            self.extracted_data[action.variable_name] = result.data.get("path") or result.data.get("base64")

    async def _play_open_tab(self, action: OpenTabAction) -> None:
        if not action.url:
            raise ScriptPlaybackError("open_tab action requires URL")
        try:
            await self.executor.browser.open_page(action.url)
        except Exception as e:
            raise ExecutionFailedError(f"Failed to open tab: {e}") from e
        logger.info(f"✅ New tab opened: {action.url}")

    async def _play_switch_tab(self, action: SwitchTabAction) -> None:
        try:
            index = int(action.value)
        except ValueError as e:
            raise ScriptPlaybackError(f"Invalid tab index: {action.value!r}") from e
        await self.executor.browser.switch_to_tab(index)

    # ─── data actions ───

    async def _play_extract(self, action: ExtractAction) -> None:
        identifier = self._require_identifier(action)
        if action.type == "extract_html":
            result = await self.executor.extract(identifier, "html")
            key = "html"
        elif action.type == "extract_attribute":
            if not action.attribute_name:
                raise ScriptPlaybackError("extract_attribute action needs attribute_name")
            result = await self.executor.extract(identifier, "attribute", attr=action.attribute_name)
            key = action.attribute_name
        else:
            result = await self.executor.extract(identifier, "text")
            key = "text"
        result.raise_for_error()

        name = action.variable_name or f"{EXTRACT_PREFIXES[action.type]}_{len(self.extracted_data)}"
        self.extracted_data[name] = result.data["result"].get(key)
        logger.info(f"✅ Extracted {name}")

    async def _play_execute_js(self, action: ExecuteJSAction) -> None:
        if not action.js_code.strip():
            raise ScriptPlaybackError("JavaScript code to execute not specified")
        result = await self.executor.evaluate(action.js_code)
        result.raise_for_error()

        if "return" not in wrap_js_function(action.js_code):
            logger.debug("No return statement detected, skipping result storage")
            return
        name = action.variable_name or f"js_result_{len(self.extracted_data)}"
        self.extracted_data[name] = result.data.get("result")
        logger.info(f"✅ JavaScript result stored as {name}")

    async def _play_ai_control(self, action: AIControlAction) -> None:
        if self.ai_handler is None:
            logger.warning("No AI control handler configured, skipping ai_control step")
            return

        if action.ai_control_xpath:
            result = await self.executor.extract(Identifier(xpath=action.ai_control_xpath), "html")
            html = result.raise_for_error().data["result"]["html"]
        else:
            html = (await self.executor.get_page_content()).raise_for_error().data["html"]

        outcome = await self.ai_handler.run(action.ai_control_prompt, clean_html(html), action)
        if isinstance(outcome, dict) and outcome.get("success") is False:
            raise ExecutionFailedError(f"AI control failed: {outcome.get('error', 'unknown error')}")
