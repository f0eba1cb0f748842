"""
Lightweight DOM model for selector derivation and semantic analysis.

A DomNode tree comes from one of two places:
- ``DomNode.parse_html`` parses markup with BeautifulSoup (offline analysis, tests)
- ``DomNode.from_descriptor`` rebuilds an element and its ancestor chain from
  the JSON descriptor the page-side scripts send for a live element

Descriptor-built nodes carry precomputed facts (sibling positions, text match
counts, label text, nearby text) because their siblings are not transferred.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from bs4 import BeautifulSoup, Tag

from ..utils.js_helpers import normalize_text

DOCUMENT_TAG = "#document"


@dataclass
class FormInfo:
    """What the nearest enclosing form reveals about its purpose."""
    id: str = ""
    name: str = ""
    class_name: str = ""
    has_password: bool = False
    has_email: bool = False


@dataclass(eq=False)
class DomNode:
    tag: str
    attributes: Dict[str, str] = field(default_factory=dict)
    text: str = ""
    parent: Optional["DomNode"] = field(default=None, repr=False)
    children: List["DomNode"] = field(default_factory=list, repr=False)
    value: Optional[str] = None
    visible: bool = True
    enabled: Optional[bool] = None

    # Facts precomputed page-side for descriptor-built nodes
    position: Optional[Tuple[int, int]] = None
    text_match_count: Optional[int] = None
    label_text: Optional[str] = None
    labelledby_text: Optional[str] = None
    nearby_text: List[str] = field(default_factory=list)
    form_info: Optional[FormInfo] = None

    # ─── attribute access ───

    def get(self, name: str, default: str = "") -> str:
        value = self.attributes.get(name)
        return default if value is None else value

    def has(self, name: str) -> bool:
        return name in self.attributes

    @property
    def id(self) -> str:
        return self.get("id")

    @property
    def classes(self) -> List[str]:
        return self.get("class").split()

    @property
    def input_type(self) -> str:
        """Lower-cased ``type``; inputs default to text like the browser does."""
        value = self.get("type").lower()
        if not value and self.tag == "input":
            return "text"
        return value

    @property
    def is_document(self) -> bool:
        return self.tag == DOCUMENT_TAG

    @property
    def is_content_editable(self) -> bool:
        return self.has("contenteditable") and self.get("contenteditable").lower() in ("", "true")

    @property
    def is_enabled(self) -> bool:
        if self.enabled is not None:
            return self.enabled
        return not self.has("disabled")

    @property
    def normalized_text(self) -> str:
        return normalize_text(self.text)

    @property
    def current_value(self) -> str:
        if self.value is not None:
            return self.value
        if self.tag == "textarea":
            return self.text
        return self.get("value")

    # ─── tree navigation ───

    def ancestors(self) -> Iterator["DomNode"]:
        node = self.parent
        while node is not None and not node.is_document:
            yield node
            node = node.parent

    def root(self) -> "DomNode":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def iter_descendants(self) -> Iterator["DomNode"]:
        for child in self.children:
            yield child
            yield from child.iter_descendants()

    def find(self, predicate: Callable[["DomNode"], bool]) -> Optional["DomNode"]:
        for node in self.iter_descendants():
            if predicate(node):
                return node
        return None

    def find_all(self, predicate: Callable[["DomNode"], bool]) -> List["DomNode"]:
        return [node for node in self.iter_descendants() if predicate(node)]

    def find_by_id(self, element_id: str) -> Optional["DomNode"]:
        return self.find(lambda node: node.id == element_id)

    def closest(self, tag: str) -> Optional["DomNode"]:
        if self.tag == tag:
            return self
        for node in self.ancestors():
            if node.tag == tag:
                return node
        return None

    def contains(self, other: "DomNode") -> bool:
        return other is self or any(node is self for node in other.ancestors())

    def sibling_position(self) -> Tuple[int, int]:
        """1-based index among same-tag siblings and the size of that group."""
        if self.position is not None:
            return self.position
        if self.parent is None:
            return 1, 1
        same_tag = [child for child in self.parent.children if child.tag == self.tag]
        for i, child in enumerate(same_tag, 1):
            if child is self:
                return i, len(same_tag)
        return 1, max(1, len(same_tag))

    def count_text_matches(self, tag: str, fragment: str) -> int:
        """How many ``tag`` elements contain ``fragment`` in their normalized text."""
        if self.text_match_count is not None:
            return self.text_match_count
        return sum(
            1 for node in self.root().iter_descendants()
            if node.tag == tag and fragment in node.normalized_text
        )

    # ─── labelling ───

    def resolved_label_text(self) -> str:
        """Text of the <label> associated with this element, if any."""
        if self.label_text is not None:
            return self.label_text
        if self.id:
            label = self.root().find(lambda node: node.tag == "label" and node.get("for") == self.id)
            if label is not None:
                return label.normalized_text
        label = self.closest("label")
        if label is not None and label is not self:
            return label.normalized_text
        return ""

    def resolved_labelledby_text(self) -> str:
        if self.labelledby_text is not None:
            return self.labelledby_text
        labelledby = self.get("aria-labelledby")
        if not labelledby:
            return ""
        target = self.root().find_by_id(labelledby)
        return target.normalized_text if target is not None else ""

    def resolved_form_info(self) -> Optional[FormInfo]:
        if self.form_info is not None:
            return self.form_info
        form = self.closest("form")
        if form is None:
            return None
        inputs = form.find_all(lambda node: node.tag == "input")
        return FormInfo(
            id=form.id,
            name=form.get("name"),
            class_name=form.get("class"),
            has_password=any(node.input_type == "password" for node in inputs),
            has_email=any(node.input_type == "email" for node in inputs),
        )

    def is_displayed(self) -> bool:
        """Visibility as far as static markup and page-side facts allow."""
        for node in [self, *self.ancestors()]:
            if not node.visible or node.has("hidden"):
                return False
            style = node.get("style").replace(" ", "").lower()
            if "display:none" in style or "visibility:hidden" in style:
                return False
        return not (self.tag == "input" and self.input_type == "hidden")

    # ─── construction ───

    @classmethod
    def parse_html(cls, html: str) -> "DomNode":
        """Parse markup into a document node whose children are the top elements."""
        soup = BeautifulSoup(html, "html.parser")
        document = cls(tag=DOCUMENT_TAG)
        for child in soup.children:
            if isinstance(child, Tag):
                document.children.append(cls._from_tag(child, document))
        return document

    @classmethod
    def _from_tag(cls, tag: Tag, parent: "DomNode") -> "DomNode":
        attributes = {
            name: " ".join(value) if isinstance(value, list) else str(value)
            for name, value in tag.attrs.items()
        }
        node = cls(tag=tag.name.lower(), attributes=attributes, text=tag.get_text(), parent=parent)
        for child in tag.children:
            if isinstance(child, Tag):
                node.children.append(cls._from_tag(child, node))
        if node.tag == "select":
            selected = node.find(lambda option: option.tag == "option" and option.has("selected"))
            if selected is None:
                selected = node.find(lambda option: option.tag == "option")
            if selected is not None:
                node.value = selected.get("value") or selected.normalized_text
        return node

    @classmethod
    def from_descriptor(cls, payload: Dict[str, Any]) -> "DomNode":
        """
        Rebuild a live element from its page-side descriptor.

        Expected keys: tag, attributes, text, value, visible, enabled, index,
        count, ancestors (nearest first, each with tag/attributes/index/count),
        text_match_count, label_text, labelledby_text, nearby_text, form.
        """
        parent: Optional[DomNode] = None
        for entry in reversed(payload.get("ancestors") or []):
            node = cls(
                tag=str(entry.get("tag", "")).lower(),
                attributes=dict(entry.get("attributes") or {}),
                parent=parent,
                position=(int(entry.get("index", 1)), int(entry.get("count", 1))),
            )
            if parent is not None:
                parent.children.append(node)
            parent = node

        form = payload.get("form")
        element = cls(
            tag=str(payload.get("tag", "")).lower(),
            attributes=dict(payload.get("attributes") or {}),
            text=payload.get("text") or "",
            parent=parent,
            value=payload.get("value"),
            visible=bool(payload.get("visible", True)),
            enabled=payload.get("enabled"),
            position=(int(payload.get("index", 1)), int(payload.get("count", 1))),
            text_match_count=payload.get("text_match_count"),
            label_text=payload.get("label_text"),
            labelledby_text=payload.get("labelledby_text"),
            nearby_text=list(payload.get("nearby_text") or []),
            form_info=FormInfo(
                id=form.get("id", ""),
                name=form.get("name", ""),
                class_name=form.get("class_name", ""),
                has_password=bool(form.get("has_password")),
                has_email=bool(form.get("has_email")),
            ) if form else None,
        )
        if parent is not None:
            parent.children.append(element)
        return element
