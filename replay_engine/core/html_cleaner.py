"""
HTML reduction for the AI collaborator.

Strips framework, tracking and presentation noise from markup so a language
model sees structure and meaningful classes only.
"""
from __future__ import annotations

import re
from typing import Dict, List, Optional

from bs4 import BeautifulSoup, NavigableString, Tag

from ..utils.js_helpers import truncate_text

MAX_HTML_LENGTH = 30000
TRUNCATION_SUFFIX = "...[truncated]"

MAX_CLASSES = 3
MAX_CLASS_LENGTH = 30

LONG_TEXT_LENGTH = 20
SHORT_TEXT_LENGTH = 15

NOISE_ATTRIBUTES = {
    "style",
    "tabindex",
    "aria-hidden",
    "aria-label",
    "aria-describedby",
    "data-spm",
    "data-track",
    "data-analytics",
    "data-ga",
    "data-qa",
    "data-cy",
    "draggable",
    "contenteditable",
    "autocomplete",
    "spellcheck",
    "srcset",
    "sizes",
}

NOISE_PREFIXES = ("on", "data-react", "data-v-", "ng-", "_ngcontent-", "_nghost-", "data-test")

REMOVED_TAGS = ["script", "style", "noscript"]

_HEX_HASH = re.compile(r"^[a-f0-9]{8,}$", re.IGNORECASE)
_CSS_MODULE_HASH = re.compile(r"--[a-f0-9]{5,}$", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
_BETWEEN_TAGS = re.compile(r">\s+<")


def is_noise_attribute(name: str) -> bool:
    name = name.lower()
    return name in NOISE_ATTRIBUTES or name.startswith(NOISE_PREFIXES)


def keep_class(name: str) -> bool:
    """Short, human-written class names survive; generated hashes do not."""
    return (
        0 < len(name) < MAX_CLASS_LENGTH
        and not _HEX_HASH.match(name)
        and not _CSS_MODULE_HASH.search(name)
    )


def clean_html(html: str, max_length: int = MAX_HTML_LENGTH) -> str:
    """
    Reduce markup to what matters for locating and extracting data.

    Args:
        html: Page or fragment markup
        max_length: Length above which the result is cut

    Returns:
        Single-line cleaned HTML, suffixed with "...[truncated]" when cut
    """
    soup = BeautifulSoup(html, "html.parser")

    for tag in soup.find_all(REMOVED_TAGS):
        tag.decompose()

    for tag in soup.find_all(True):
        for name in list(tag.attrs):
            if is_noise_attribute(name):
                del tag.attrs[name]

        classes = tag.get("class")
        if classes is None:
            continue
        kept = [name for name in classes if keep_class(name)][:MAX_CLASSES]
        if kept:
            tag["class"] = kept
        else:
            del tag["class"]

    cleaned = _BETWEEN_TAGS.sub("><", _WHITESPACE.sub(" ", str(soup))).strip()
    return truncate_text(cleaned, max_length, TRUNCATION_SUFFIX)


def simplify_text(html: str) -> str:
    """Shorten long text nodes and alt/title/placeholder values to a 15-char stub."""
    soup = BeautifulSoup(html, "html.parser")

    for node in list(soup.find_all(string=True)):
        if type(node) is not NavigableString:
            continue
        text = node.strip()
        if len(text) > LONG_TEXT_LENGTH:
            node.replace_with(NavigableString(text[:SHORT_TEXT_LENGTH] + "..."))

    for tag in soup.find_all(True):
        for attribute in ("alt", "title", "placeholder"):
            value = tag.get(attribute)
            if isinstance(value, str) and len(value) > LONG_TEXT_LENGTH:
                tag[attribute] = value[:SHORT_TEXT_LENGTH] + "..."

    return str(soup)


def _group_key(tag: Tag) -> str:
    return f"{tag.name}|{' '.join(tag.get('class') or [])}"


def _find_list_items(container: Tag) -> Optional[List[Tag]]:
    children = [child for child in container.children if isinstance(child, Tag)]

    if len(children) >= 2:
        groups: Dict[str, List[Tag]] = {}
        for child in children:
            groups.setdefault(_group_key(child), []).append(child)

        largest = max(groups.values(), key=len)
        if len(largest) >= 2 and len(largest) >= len(children) * 0.5:
            return largest

    for child in children:
        items = _find_list_items(child)
        if items and len(items) >= 2:
            return items
    return None


def detect_list_items(html: str) -> List[str]:
    """
    Find the repeated item elements of a list-like fragment.

    The largest group of siblings sharing tag and class wins when it has at
    least two members and covers half of its siblings; otherwise children are
    searched depth-first.

    Returns:
        Outer HTML of each detected item, empty when no list is found
    """
    soup = BeautifulSoup(html, "html.parser")
    container = soup.body or soup
    items = _find_list_items(container)
    if items is None:
        return []
    return [str(item) for item in items]
