"""
Semantic Snapshot construction.

Indexes the visible, enabled interactive elements of a page into two ordered
lists (inputs and clickables) so that elements can be addressed by position,
e.g. "Input Element [2]", independently of any selector.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional

from playwright.async_api import Page

from .dom import DomNode
from .models import SemanticSnapshot, SnapshotElement
from .page_scripts import DESCRIBE_ELEMENT_JS, SNAPSHOT_CANDIDATES, SNAPSHOT_COLLECTOR_JS
from .selectors import SelectorModel
from ..utils.js_helpers import truncate_text

logger = logging.getLogger(__name__)

MAX_LABEL_LENGTH = 50

INPUT_TYPES = {"text", "email", "password", "search", "tel", "url", "number", "checkbox", "radio"}
BUTTON_INPUT_TYPES = {"submit", "button", "reset", "image"}
CLICKABLE_ROLES = {"button", "link", "menuitem", "tab", "checkbox", "radio"}


def is_candidate(node: DomNode) -> bool:
    """Mirror of the page-side candidate selector list for parsed documents."""
    tag = node.tag
    if tag == "input":
        return node.input_type != "hidden"
    if tag in ("textarea", "select", "button"):
        return True
    if tag == "a":
        return node.has("href")
    if node.get("role") in CLICKABLE_ROLES or node.has("onclick"):
        return True
    return node.get("contenteditable").lower() == "true"


def classify(node: DomNode) -> Optional[str]:
    """Return "input", "clickable" or None for elements that are not indexed."""
    tag = node.tag
    if tag == "input":
        if node.input_type in INPUT_TYPES:
            return "input"
        if node.input_type in BUTTON_INPUT_TYPES:
            return "clickable"
        return None
    if tag in ("textarea", "select") or node.is_content_editable:
        return "input"
    if tag == "button" or (tag == "a" and node.has("href")):
        return "clickable"
    if node.get("role") in CLICKABLE_ROLES or node.has("onclick"):
        return "clickable"
    return None


def element_label(node: DomNode) -> str:
    for attribute in ("aria-label", "title", "name"):
        value = node.get(attribute).strip()
        if value:
            return value
    return truncate_text(node.normalized_text, MAX_LABEL_LENGTH)


class SemanticSnapshotBuilder:
    """
    Builds a SemanticSnapshot from a live page or a parsed document.

    Each indexed element is paired with the Identifier the selector model
    derives for it, so a lookup by position resolves to ordinary selectors.
    """

    def __init__(self, selector_model: Optional[SelectorModel] = None):
        self.selector_model = selector_model or SelectorModel()

    def build_from_nodes(self, nodes: Iterable[DomNode], url: str = "") -> SemanticSnapshot:
        snapshot = SemanticSnapshot(url=url)
        for node in nodes:
            kind = classify(node)
            if kind is None or not node.is_displayed() or not node.is_enabled:
                continue
            target = snapshot.input_elements if kind == "input" else snapshot.clickable_elements
            target.append(self._entry(node, kind, len(target) + 1))
        return snapshot

    def build_from_dom(self, document: DomNode, url: str = "") -> SemanticSnapshot:
        """Snapshot of a parsed document, in document order."""
        return self.build_from_nodes(document.find_all(is_candidate), url=url)

    async def build(self, page: Page) -> SemanticSnapshot:
        """Snapshot of a live page through the page-side collector."""
        await page.evaluate(DESCRIBE_ELEMENT_JS)
        descriptors = await page.evaluate(SNAPSHOT_COLLECTOR_JS, SNAPSHOT_CANDIDATES)
        nodes = [DomNode.from_descriptor(descriptor) for descriptor in descriptors or []]
        snapshot = self.build_from_nodes(nodes, url=page.url)
        logger.debug(
            f"Semantic snapshot: {len(snapshot.input_elements)} inputs, "
            f"{len(snapshot.clickable_elements)} clickables"
        )
        return snapshot

    async def build_with_timeout(self, page: Page, timeout: float) -> Optional[SemanticSnapshot]:
        """Best-effort build; None when it fails or exceeds ``timeout`` seconds."""
        try:
            return await asyncio.wait_for(self.build(page), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Semantic snapshot abandoned after {timeout:.1f}s")
        except Exception as e:
            logger.warning(f"Semantic snapshot failed: {e}")
        return None

    def _entry(self, node: DomNode, kind: str, position: int) -> SnapshotElement:
        text = node.normalized_text
        placeholder = node.get("placeholder")
        label = element_label(node)
        if not label:
            fallback = placeholder if kind == "input" else ""
            if fallback:
                label = fallback
            elif node.id:
                label = f"id:{node.id}"
            elif node.get("name"):
                label = f"name:{node.get('name')}"
            else:
                label = f"<{node.tag}>"

        return SnapshotElement(
            kind=kind,
            position=position,
            identifier=self.selector_model.identify(node),
            tag=node.tag,
            element_type=node.get("type") or node.tag,
            label=label,
            text=text,
            placeholder=placeholder,
            value=node.current_value if kind == "input" else "",
        )


def snapshot_html(html: str, url: str = "") -> SemanticSnapshot:
    """Convenience wrapper for offline analysis of saved markup."""
    return SemanticSnapshotBuilder().build_from_dom(DomNode.parse_html(html), url=url)
