"""
Selector derivation.

Turns a DOM element into a ranked Identifier. Strategies are tried from the
most stable (ids, names, test attributes) down to structural paths, and each
returns both a CSS and an XPath candidate where one exists.
"""
from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Optional, Tuple

from .dom import DomNode
from .models import Identifier
from ..utils.js_helpers import css_string, xpath_literal

logger = logging.getLogger(__name__)

STABLE_ATTRIBUTES = ["data-testid", "data-test", "data-qa", "data-cy", "aria-label", "role"]
TEXT_TAGS = ("button", "a", "span")
MAX_PLACEHOLDER_LENGTH = 50
MAX_TEXT_LENGTH = 30
TEXT_PREFIX_LENGTH = 20
MAX_STABLE_CLASSES = 2

_GENERATED_CLASS = re.compile(r"[A-Z]{2,}|[0-9]{4,}")

UNKNOWN_IDENTIFIER = Identifier(css="unknown", xpath="//*")
BODY_IDENTIFIER = Identifier(css="body", xpath="//body")


class SelectorTier(Enum):
    """Which strategy produced an identifier, most stable first."""
    ID = "id"
    NAME = "name"
    STABLE_ATTRIBUTE = "stable_attribute"
    PLACEHOLDER = "placeholder"
    TEXT = "text"
    TEXT_POSITIONAL = "text_positional"
    STRUCTURAL = "structural"


def is_stable_id(value: str) -> bool:
    """Ids starting with a digit are treated as generated."""
    return bool(value) and not value[0].isdigit()


def is_stable_class(token: str) -> bool:
    return 0 < len(token) < 20 and not _GENERATED_CLASS.search(token)


def full_xpath(element: DomNode) -> str:
    """
    Structural path from the element up to the root.

    A segment carries a 1-based index only when same-tag siblings exist, and
    the walk stops at the first ancestor with a stable id.
    """
    if is_stable_id(element.id):
        return f"//*[@id={xpath_literal(element.id)}]"

    path = ""
    node: Optional[DomNode] = element
    while node is not None and not node.is_document:
        index, count = node.sibling_position()
        segment = f"/{node.tag}" + (f"[{index}]" if count > 1 else "")
        path = segment + path

        parent = node.parent
        if parent is not None and not parent.is_document and is_stable_id(parent.id):
            return f"//*[@id={xpath_literal(parent.id)}]" + path
        node = parent
    return path


def fallback_css(element: DomNode) -> str:
    """Tag plus up to two stable classes and the type/contenteditable attributes."""
    css = element.tag
    stable = [token for token in element.classes if is_stable_class(token)][:MAX_STABLE_CLASSES]
    if stable:
        css += "." + ".".join(stable)
    if element.has("type"):
        css += f"[type={css_string(element.get('type'))}]"
    if element.get("contenteditable").lower() == "true":
        css += '[contenteditable="true"]'
    return css


class SelectorModel:
    """
    Derives Identifiers for DOM elements.

    ``identify`` never raises: a missing element yields the unknown
    identifier and an internal failure degrades to ``body``.
    """

    def identify(self, element: Optional[DomNode]) -> Identifier:
        return self.identify_with_tier(element)[0]

    def identify_with_tier(self, element: Optional[DomNode]) -> Tuple[Identifier, Optional[SelectorTier]]:
        if element is None or not element.tag or element.is_document:
            return UNKNOWN_IDENTIFIER, None
        try:
            return self._derive(element)
        except Exception as e:
            logger.warning(f"Selector derivation failed for <{element.tag}>: {e}")
            return BODY_IDENTIFIER, None

    def _derive(self, element: DomNode) -> Tuple[Identifier, SelectorTier]:
        tag = element.tag

        # Strategy 1: stable id
        if is_stable_id(element.id):
            return Identifier(
                css=f"#{element.id}" if _is_plain_id(element.id) else f"[id={css_string(element.id)}]",
                xpath=f"//*[@id={xpath_literal(element.id)}]",
            ), SelectorTier.ID

        # Strategy 2: name attribute
        name = element.get("name")
        if name:
            return self._attribute_identifier(tag, "name", name), SelectorTier.NAME

        # Strategy 3: testing / automation attributes
        for attribute in STABLE_ATTRIBUTES:
            value = element.get(attribute)
            if value:
                return self._attribute_identifier(tag, attribute, value), SelectorTier.STABLE_ATTRIBUTE

        # Strategy 4: short placeholder
        placeholder = element.get("placeholder")
        if placeholder and len(placeholder) < MAX_PLACEHOLDER_LENGTH:
            return self._attribute_identifier(tag, "placeholder", placeholder), SelectorTier.PLACEHOLDER

        # Strategy 5: unique text on interactive tags
        text = element.normalized_text
        if 0 < len(text) < MAX_TEXT_LENGTH and tag in TEXT_TAGS:
            prefix = text[:TEXT_PREFIX_LENGTH]
            text_xpath = f"//{tag}[contains(normalize-space(.), {xpath_literal(prefix)})]"
            matches = element.count_text_matches(tag, prefix)
            has_digits = any(ch.isdigit() for ch in text)
            if matches == 1 and not has_digits:
                return Identifier(xpath=text_xpath), SelectorTier.TEXT

            logger.debug(f"Text '{prefix}' matches {matches} <{tag}> elements, using structural path")
            css = tag
            index, count = element.sibling_position()
            if count > 1:
                css += f":nth-of-type({index})"
            return Identifier(css=css, xpath=full_xpath(element)), SelectorTier.TEXT_POSITIONAL

        # Strategies 6 and 7: structural path paired with class-based CSS
        return Identifier(css=fallback_css(element), xpath=full_xpath(element)), SelectorTier.STRUCTURAL

    @staticmethod
    def _attribute_identifier(tag: str, attribute: str, value: str) -> Identifier:
        return Identifier(
            css=f"{tag}[{attribute}={css_string(value)}]",
            xpath=f"//{tag}[@{attribute}={xpath_literal(value)}]",
        )


_PLAIN_ID = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")


def _is_plain_id(value: str) -> bool:
    """Ids usable as ``#id`` without CSS escaping."""
    return bool(_PLAIN_ID.match(value))
