"""
Semantic enrichment for recorded actions.

Captures intent, accessibility facts, surrounding context and a confidence
score at record time so that a later replay can re-find an element whose
literal selectors stopped matching.
"""
from __future__ import annotations

import logging
import re
from typing import List, Optional

from .dom import DomNode
from .models import (
    AccessibilityInfo,
    ActionContext,
    BaseAction,
    Evidence,
    Identifier,
    Intent,
)
from .selectors import SelectorModel, SelectorTier
from ..utils.js_helpers import truncate_text

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 50
MAX_NEARBY_TEXT_LENGTH = 30
MAX_NEARBY_TEXTS = 5
MAX_ANCESTOR_DEPTH = 10

_SELECTORS = SelectorModel()

_GENERATED_CLASS = re.compile(r"^(css|jss|sc)-[\w-]+$")

_INPUT_ROLES = {
    "text": "textbox",
    "email": "textbox",
    "password": "textbox",
    "tel": "textbox",
    "url": "textbox",
    "search": "searchbox",
    "checkbox": "checkbox",
    "radio": "radio",
    "submit": "button",
    "button": "button",
    "reset": "button",
    "image": "button",
    "file": "button",
}

_TAG_ROLES = {
    "button": "button",
    "a": "link",
    "textarea": "textbox",
    "select": "combobox",
    "img": "img",
    "nav": "navigation",
    "header": "banner",
    "footer": "contentinfo",
    "main": "main",
    "aside": "complementary",
    "form": "form",
    "h1": "heading",
    "h2": "heading",
    "h3": "heading",
    "h4": "heading",
    "h5": "heading",
    "h6": "heading",
    "ul": "list",
    "ol": "list",
    "li": "listitem",
}

_FORM_KEYWORDS = [
    (("login", "signin"), "login"),
    (("register", "signup"), "register"),
    (("search",), "search"),
    (("checkout", "payment"), "checkout"),
    (("contact",), "contact"),
]


def implicit_role(element: DomNode) -> str:
    if element.tag == "input":
        return _INPUT_ROLES.get(element.input_type, "textbox")
    return _TAG_ROLES.get(element.tag, "generic")


def get_role(element: DomNode) -> str:
    return element.get("role") or implicit_role(element)


def accessible_name(element: DomNode) -> str:
    """aria-label, aria-labelledby, <label>, own text, placeholder, title, alt, then value."""
    aria_label = element.get("aria-label").strip()
    if aria_label:
        return aria_label

    labelledby = element.resolved_labelledby_text()
    if labelledby:
        return labelledby

    label = element.resolved_label_text()
    if label:
        return label

    text = element.normalized_text
    if text:
        return truncate_text(text, MAX_NAME_LENGTH)

    for attribute in ("placeholder", "title", "alt"):
        value = element.get(attribute).strip()
        if value:
            return value

    if element.tag in ("button", "input"):
        return element.current_value.strip()
    return ""


def infer_verb(event_type: str, element: Optional[DomNode]) -> str:
    if event_type == "click":
        return "click"
    if event_type == "input":
        return "input"
    if event_type == "change":
        if element is not None and element.tag == "select":
            return "select"
        if element is not None and element.input_type == "checkbox":
            return "check"
        if element is not None and element.input_type == "radio":
            return "choose"
        return "change"
    if event_type == "submit":
        return "submit"
    if event_type in ("keydown", "keyup", "keypress"):
        return "type"
    return "interact"


def infer_object(element: Optional[DomNode]) -> str:
    if element is None:
        return "element"
    return accessible_name(element) or element.get("name") or element.id or element.tag


def nearby_text(element: DomNode) -> List[str]:
    """Unique short texts near the element; geometry is measured page-side."""
    unique: List[str] = []
    for text in element.nearby_text:
        text = truncate_text(text.strip(), MAX_NEARBY_TEXT_LENGTH)
        if text and text not in unique:
            unique.append(text)
        if len(unique) >= MAX_NEARBY_TEXTS:
            break
    return unique


def ancestor_tags(element: DomNode) -> List[str]:
    tags = []
    for node in element.ancestors():
        tags.append(node.tag)
        if node.tag == "body" or len(tags) >= MAX_ANCESTOR_DEPTH:
            break
    return tags


def form_hint(element: DomNode) -> str:
    """Classify the enclosing form as login, register, search, checkout, contact, auth or generic."""
    form = element.resolved_form_info()
    if form is None:
        return ""

    combined = f"{form.id} {form.name} {form.class_name}".lower()
    for keywords, hint in _FORM_KEYWORDS:
        if any(keyword in combined for keyword in keywords):
            return hint

    if form.has_password and form.has_email:
        return "login"
    if form.has_password:
        return "auth"
    return "generic"


def calculate_confidence(element: DomNode, identifier: Optional[Identifier]) -> float:
    """Confidence that the recorded identifier will re-resolve, by identifier tier."""
    css = identifier.css if identifier is not None and identifier.css else ""
    derived, tier = _SELECTORS.identify_with_tier(element)

    if tier is SelectorTier.ID and css == derived.css:
        return 0.95
    if element.get("name"):
        return 0.85
    if element.get("aria-label"):
        return 0.8
    if element.resolved_label_text():
        return 0.75
    if element.get("class").strip():
        if any(token and not _GENERATED_CLASS.match(token) for token in element.classes):
            return 0.7
        return 0.4
    if ":nth-child" in css or ":nth-of-type" in css:
        return 0.3
    return 0.5


def enrich_action(action: BaseAction, element: Optional[DomNode], event_type: str) -> BaseAction:
    """
    Attach intent, accessibility, context and evidence to an action.

    Enrichment is best effort: on any failure the action is returned as-is.
    """
    if element is None:
        return action
    try:
        return action.model_copy(update={
            "intent": Intent(verb=infer_verb(event_type, element), object=infer_object(element)),
            "accessibility": AccessibilityInfo(
                role=get_role(element),
                name=accessible_name(element),
                value=element.current_value,
            ),
            "context": ActionContext(
                nearby_text=nearby_text(element),
                ancestor_tags=ancestor_tags(element),
                form_hint=form_hint(element),
            ),
            "evidence": Evidence(confidence=calculate_confidence(element, action.identifier)),
        })
    except Exception as e:
        logger.warning(f"Failed to enrich {action.type} action with semantics: {e}")
        return action
