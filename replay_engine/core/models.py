"""
Data model shared by the recorder, the executor and the script player.

Actions are a pydantic discriminated union keyed by ``type``; each variant
serializes to the flat dict layout used by stored timelines.
"""
from __future__ import annotations

import json
import re
import uuid
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    TypeAdapter,
    model_validator,
)

from ..error_handling import ReplayEngineError, error_kind_of


# ─── Identifier ──────────────────────────────────────────────────────

_SEMANTIC_INDEX = re.compile(
    r"^\s*(?:(input|clickable)(?:\s+element)?\s*)?\[\s*(\d+)\s*\]\s*$",
    re.IGNORECASE,
)


class SemanticIndex(BaseModel):
    """Position-based address into a Semantic Snapshot."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["input", "clickable", "any"] = "any"
    position: int = Field(ge=1)

    @classmethod
    def parse(cls, text: str) -> Optional["SemanticIndex"]:
        """Parse "Input Element [2]", "clickable [3]" or "[1]"; None if not index syntax."""
        match = _SEMANTIC_INDEX.match(text or "")
        if not match:
            return None
        kind = (match.group(1) or "any").lower()
        return cls(kind=kind, position=int(match.group(2)))

    def __str__(self) -> str:
        if self.kind == "any":
            return f"[{self.position}]"
        return f"{self.kind.capitalize()} Element [{self.position}]"


class Identifier(BaseModel):
    """Ranked candidate locators for one element, most stable first."""
    model_config = ConfigDict(frozen=True)

    css: Optional[str] = None
    xpath: Optional[str] = None
    semantic_index: Optional[SemanticIndex] = None

    @model_validator(mode="after")
    def require_candidate(self) -> "Identifier":
        if not (self.css or self.xpath or self.semantic_index):
            raise ValueError("Identifier needs at least one non-empty candidate")
        return self

    @classmethod
    def parse(cls, text: str) -> "Identifier":
        """
        Build an Identifier from the string syntax accepted by the resolver.

        ``css:`` and ``xpath:`` prefixes force the candidate kind; otherwise a
        leading ``/`` or ``(`` means XPath and anything else is CSS.
        """
        text = (text or "").strip()
        index = SemanticIndex.parse(text)
        if index is not None:
            return cls(semantic_index=index)
        if text.startswith("xpath:"):
            return cls(xpath=text[len("xpath:"):].strip())
        if text.startswith("css:"):
            return cls(css=text[len("css:"):].strip())
        if text.startswith(("/", "(")):
            return cls(xpath=text)
        return cls(css=text)

    def describe(self) -> str:
        """Short human-readable form used in messages."""
        if self.semantic_index is not None:
            return str(self.semantic_index)
        return self.css or self.xpath or ""


# ─── Semantic enrichment ─────────────────────────────────────────────

class Intent(BaseModel):
    verb: str = ""
    object: str = ""


class AccessibilityInfo(BaseModel):
    role: str = ""
    name: str = ""
    value: str = ""


class ActionContext(BaseModel):
    nearby_text: List[str] = Field(default_factory=list)
    ancestor_tags: List[str] = Field(default_factory=list)
    form_hint: str = ""


class Evidence(BaseModel):
    backend_dom_node_id: int = 0
    ax_node_id: str = ""
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


# ─── Conditions ──────────────────────────────────────────────────────

def _as_number(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class Condition(BaseModel):
    """Guard evaluated against play-time variables before an action runs."""
    variable: str
    operator: Literal["=", "!=", ">", "<", ">=", "<=", "in", "not_in", "exists", "not_exists"] = "="
    value: str = ""
    enabled: bool = True

    def evaluate(self, variables: Dict[str, Any]) -> bool:
        if not self.enabled:
            return True

        present = self.variable in variables and variables[self.variable] not in (None, "")
        if self.operator == "exists":
            return present
        if self.operator == "not_exists":
            return not present

        actual = variables.get(self.variable)
        if self.operator in ("in", "not_in"):
            options = [item.strip() for item in self.value.split(",")]
            found = str(actual) in options if actual is not None else False
            return found if self.operator == "in" else not found

        left, right = _as_number(actual), _as_number(self.value)
        if left is None or right is None:
            left, right = ("" if actual is None else str(actual)), self.value

        if self.operator == "=":
            return left == right
        if self.operator == "!=":
            return left != right
        if self.operator == ">":
            return left > right
        if self.operator == "<":
            return left < right
        if self.operator == ">=":
            return left >= right
        return left <= right


# ─── Actions ─────────────────────────────────────────────────────────

class BaseAction(BaseModel):
    """Fields shared by every recorded or replayable step."""
    model_config = ConfigDict(extra="ignore")

    type: str
    timestamp: int = 0
    selector: Optional[str] = None
    xpath: Optional[str] = None
    description: Optional[str] = None
    tag_name: Optional[str] = None
    remark: Optional[str] = None
    condition: Optional[Condition] = None

    intent: Optional[Intent] = None
    accessibility: Optional[AccessibilityInfo] = None
    context: Optional[ActionContext] = None
    evidence: Optional[Evidence] = None

    @property
    def identifier(self) -> Optional[Identifier]:
        """The action's target, or None for page-level actions."""
        if not (self.selector or self.xpath):
            return None
        if self.selector and not self.xpath:
            return Identifier.parse(self.selector)
        return Identifier(css=self.selector or None, xpath=self.xpath or None)

    @property
    def is_enriched(self) -> bool:
        return self.intent is not None or self.evidence is not None

    def without_semantics(self) -> "BaseAction":
        return self.model_copy(
            update={"intent": None, "accessibility": None, "context": None, "evidence": None}
        )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ClickAction(BaseAction):
    type: Literal["click"] = "click"
    x: Optional[int] = None
    y: Optional[int] = None
    text: Optional[str] = None


class InputAction(BaseAction):
    type: Literal["input"] = "input"
    value: str = ""


class SelectAction(BaseAction):
    type: Literal["select"] = "select"
    value: str = ""
    text: Optional[str] = None


class NavigateAction(BaseAction):
    type: Literal["navigate"] = "navigate"
    url: str = ""


class ScrollAction(BaseAction):
    type: Literal["scroll"] = "scroll"
    scroll_x: int = 0
    scroll_y: int = 0


class SleepAction(BaseAction):
    type: Literal["sleep"] = "sleep"
    duration: int = Field(default=0, ge=0, description="Milliseconds")


class WaitAction(BaseAction):
    type: Literal["wait"] = "wait"
    duration: int = Field(default=0, ge=0, description="Milliseconds")


class UploadFileAction(BaseAction):
    type: Literal["upload_file"] = "upload_file"
    file_names: List[str] = Field(default_factory=list)
    file_paths: List[str] = Field(default_factory=list)
    multiple: bool = False
    accept: Optional[str] = None


class KeyboardAction(BaseAction):
    type: Literal["keyboard"] = "keyboard"
    key: str = ""


class ExtractAction(BaseAction):
    type: Literal["extract_text", "extract_html", "extract_attribute"] = "extract_text"
    extract_type: Optional[str] = None
    attribute_name: Optional[str] = None
    variable_name: Optional[str] = None
    extracted_data: Optional[Any] = None


class ExecuteJSAction(BaseAction):
    type: Literal["execute_js"] = "execute_js"
    js_code: str = ""
    variable_name: Optional[str] = None


class ScreenshotAction(BaseAction):
    type: Literal["screenshot"] = "screenshot"
    screenshot_mode: Literal["viewport", "fullpage", "region"] = "viewport"
    x: Optional[int] = None
    y: Optional[int] = None
    screenshot_width: Optional[int] = None
    screenshot_height: Optional[int] = None
    variable_name: Optional[str] = None


class CaptureXHRAction(BaseAction):
    type: Literal["capture_xhr"] = "capture_xhr"
    url: str = ""
    method: Optional[str] = None
    status: Optional[int] = None
    xhr_id: Optional[str] = None
    variable_name: Optional[str] = None


class AIControlAction(BaseAction):
    type: Literal["ai_control"] = "ai_control"
    ai_control_prompt: str = ""
    ai_control_xpath: Optional[str] = None
    ai_control_llm_config_id: Optional[str] = None


class OpenTabAction(BaseAction):
    type: Literal["open_tab"] = "open_tab"
    url: str = ""


class SwitchTabAction(BaseAction):
    type: Literal["switch_tab"] = "switch_tab"
    value: str = ""


Action = Annotated[
    Union[
        ClickAction,
        InputAction,
        SelectAction,
        NavigateAction,
        ScrollAction,
        SleepAction,
        WaitAction,
        UploadFileAction,
        KeyboardAction,
        ExtractAction,
        ExecuteJSAction,
        ScreenshotAction,
        CaptureXHRAction,
        AIControlAction,
        OpenTabAction,
        SwitchTabAction,
    ],
    Field(discriminator="type"),
]

_action_adapter: TypeAdapter = TypeAdapter(Action)
_timeline_adapter: TypeAdapter = TypeAdapter(List[Action])


def parse_action(data: Dict[str, Any]) -> BaseAction:
    return _action_adapter.validate_python(data)


def parse_timeline(data: List[Dict[str, Any]]) -> List[BaseAction]:
    """Parse the wire format into typed actions."""
    return _timeline_adapter.validate_python(data)


def dump_timeline(actions: List[BaseAction]) -> List[Dict[str, Any]]:
    """Serialize actions to the wire format, omitting unset fields."""
    return [action.to_wire() for action in actions]


def timeline_to_json(actions: List[BaseAction], indent: Optional[int] = 2) -> str:
    return json.dumps(dump_timeline(actions), indent=indent, ensure_ascii=False)


def timeline_from_json(text: str) -> List[BaseAction]:
    return parse_timeline(json.loads(text))


# ─── Scripts ─────────────────────────────────────────────────────────

_VARIABLE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_.-]*)\}")


def substitute_variables(text: Optional[str], variables: Dict[str, Any]) -> Optional[str]:
    """Replace ``${name}`` placeholders; unknown names are left as written."""
    if not text or "${" not in text:
        return text

    def replace(match: re.Match) -> str:
        name = match.group(1)
        if name in variables and variables[name] is not None:
            return str(variables[name])
        return match.group(0)

    return _VARIABLE.sub(replace, text)


class Script(BaseModel):
    """A named timeline with a start URL and play-time variables."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = ""
    description: str = ""
    url: str = ""
    actions: List[Action] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    tags: List[str] = Field(default_factory=list)
    group: Optional[str] = None
    duration: int = 0
    variables: Dict[str, str] = Field(default_factory=dict)


class PlayResult(BaseModel):
    success: bool
    message: str = ""
    extracted_data: Dict[str, Any] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)
    success_count: int = 0
    failed_count: int = 0
    stopped_at: Optional[int] = None


# ─── Operation results ───────────────────────────────────────────────

class OperationResult(BaseModel):
    """Outcome of one executor operation; the contract with every caller."""
    success: bool
    message: str = ""
    error: Optional[str] = None
    error_kind: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)

    _exception: Optional[BaseException] = PrivateAttr(default=None)

    @classmethod
    def ok(cls, message: str, data: Optional[Dict[str, Any]] = None) -> "OperationResult":
        return cls(success=True, message=message, data=data or {})

    @classmethod
    def failure(cls, error: BaseException, message: str = "", data: Optional[Dict[str, Any]] = None) -> "OperationResult":
        result = cls(
            success=False,
            message=message or str(error),
            error=str(error),
            error_kind=error_kind_of(error),
            data=data or {},
        )
        result._exception = error
        return result

    @property
    def exception(self) -> Optional[BaseException]:
        return self._exception

    def raise_for_error(self) -> "OperationResult":
        """Re-raise the captured failure; returns self when successful."""
        if self.success:
            return self
        if self._exception is not None:
            raise self._exception
        raise ReplayEngineError(self.error or self.message)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class FormField(BaseModel):
    """One field for ``fill_form``: matched by name, id, placeholder, aria-label or label text."""
    name: str
    value: Any = ""
    type: Optional[str] = None

    def wants_checked(self) -> bool:
        if isinstance(self.value, bool):
            return self.value
        return str(self.value).strip().lower() in ("true", "1", "yes", "on")


class BatchOperation(BaseModel):
    type: str
    params: Dict[str, Any] = Field(default_factory=dict)
    stop_on_error: bool = False


class BatchResult(BaseModel):
    operations: List[OperationResult] = Field(default_factory=list)
    success: int = 0
    failed: int = 0
    start_time: datetime = Field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    duration: float = 0.0


# ─── Semantic snapshot ───────────────────────────────────────────────

class SnapshotElement(BaseModel):
    kind: Literal["input", "clickable"]
    position: int
    identifier: Identifier
    tag: str = ""
    element_type: str = ""
    label: str = ""
    text: str = ""
    placeholder: str = ""
    value: str = ""


class SemanticSnapshot(BaseModel):
    """Indexed inventory of interactive elements for one page state."""
    url: str = ""
    input_elements: List[SnapshotElement] = Field(default_factory=list)
    clickable_elements: List[SnapshotElement] = Field(default_factory=list)
    captured_at: datetime = Field(default_factory=datetime.now)

    def lookup(self, index: SemanticIndex) -> Optional[SnapshotElement]:
        """
        Find the element at a 1-based position.

        Bare "[n]" tries inputs before clickables. That order is a heuristic
        kept for compatibility with existing scripts, not a disambiguation rule.
        """
        if index.kind in ("input", "any") and index.position <= len(self.input_elements):
            return self.input_elements[index.position - 1]
        if index.kind in ("clickable", "any") and index.position <= len(self.clickable_elements):
            return self.clickable_elements[index.position - 1]
        return None

    def to_text(self) -> str:
        lines: List[str] = []
        if self.clickable_elements:
            lines.append("Clickable Elements:")
            for element in self.clickable_elements:
                line = f"  Clickable Element [{element.position}]: {element.label}"
                if element.element_type:
                    line += f" (type: {element.element_type})"
                if element.text and element.text != element.label:
                    line += f" - {element.text}"
                lines.append(line)
            lines.append("")
        if self.input_elements:
            lines.append("Input Elements:")
            for element in self.input_elements:
                line = f"  Input Element [{element.position}]: {element.label}"
                if element.element_type and element.element_type != "text":
                    line += f" (type: {element.element_type})"
                if element.placeholder and element.placeholder != element.label:
                    line += f" [placeholder: {element.placeholder}]"
                if element.value:
                    line += f" [value: {element.value}]"
                lines.append(line)
        return "\n".join(lines).rstrip()
