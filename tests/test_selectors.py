"""
Tests for selector derivation.

Validates:
- Strategy ranking from stable ids down to structural paths
- Generated-id and generated-class filtering
- Text strategy uniqueness and digit rules
- Structural XPath indexing and stable-ancestor anchoring
- Unknown / body fallbacks
"""

from __future__ import annotations

from unittest.mock import patch

from replay_engine.core.dom import DomNode
from replay_engine.core.selectors import (
    BODY_IDENTIFIER,
    UNKNOWN_IDENTIFIER,
    SelectorModel,
    SelectorTier,
    fallback_css,
    full_xpath,
    is_stable_class,
    is_stable_id,
)


def _first(html: str, tag: str, index: int = 0) -> DomNode:
    document = DomNode.parse_html(html)
    return document.find_all(lambda node: node.tag == tag)[index]


# ─── Ranking Tests ───────────────────────────────────────────────────


class TestStrategyRanking:
    """Each tier is used only when every more stable tier is unavailable."""

    def test_stable_id_wins(self):
        """An id yields both #id CSS and an @id XPath."""
        element = _first('<button id="submit-btn" name="go">Go</button>', "button")
        identifier, tier = SelectorModel().identify_with_tier(element)
        assert tier == SelectorTier.ID
        assert identifier.css == "#submit-btn"
        assert identifier.xpath == '//*[@id="submit-btn"]'

    def test_id_needing_escape_uses_attribute_form(self):
        """Ids that are not plain CSS identifiers are quoted."""
        element = _first('<div id="a.b">x</div>', "div")
        identifier = SelectorModel().identify(element)
        assert identifier.css == '[id="a.b"]'

    def test_numeric_id_falls_through_to_name(self):
        """Ids starting with a digit are treated as generated."""
        element = _first('<input id="1abc" name="email">', "input")
        identifier, tier = SelectorModel().identify_with_tier(element)
        assert tier == SelectorTier.NAME
        assert identifier.css == 'input[name="email"]'
        assert identifier.xpath == '//input[@name="email"]'

    def test_test_attribute(self):
        element = _first('<div data-testid="card" class="x">Card</div>', "div")
        identifier, tier = SelectorModel().identify_with_tier(element)
        assert tier == SelectorTier.STABLE_ATTRIBUTE
        assert identifier.css == 'div[data-testid="card"]'
        assert identifier.xpath == '//div[@data-testid="card"]'

    def test_short_placeholder(self):
        element = _first('<input placeholder="Search">', "input")
        identifier, tier = SelectorModel().identify_with_tier(element)
        assert tier == SelectorTier.PLACEHOLDER
        assert identifier.css == 'input[placeholder="Search"]'

    def test_long_placeholder_is_skipped(self):
        """Placeholders of 50 characters or more are not used."""
        element = _first(f'<input type="text" placeholder="{"p" * 50}">', "input")
        _, tier = SelectorModel().identify_with_tier(element)
        assert tier == SelectorTier.STRUCTURAL


# ─── Text Strategy Tests ─────────────────────────────────────────────


class TestTextStrategy:
    """Text-based identifiers for short labels on buttons, links and spans."""

    def test_unique_text_yields_xpath_only(self):
        html = "<div><button>Sign in</button><button>Cancel</button></div>"
        identifier, tier = SelectorModel().identify_with_tier(_first(html, "button"))
        assert tier == SelectorTier.TEXT
        assert identifier.css is None
        assert identifier.xpath == '//button[contains(normalize-space(.), "Sign in")]'

    def test_duplicate_text_uses_position(self):
        """Ambiguous text falls back to nth-of-type and the structural path."""
        html = "<div><button>Save</button><button>Save</button></div>"
        identifier, tier = SelectorModel().identify_with_tier(_first(html, "button", 1))
        assert tier == SelectorTier.TEXT_POSITIONAL
        assert identifier.css == "button:nth-of-type(2)"
        assert identifier.xpath == "/div/button[2]"

    def test_text_with_digits_is_not_trusted(self):
        html = '<div><a href="/p/2">Page 2</a></div>'
        identifier, tier = SelectorModel().identify_with_tier(_first(html, "a"))
        assert tier == SelectorTier.TEXT_POSITIONAL
        assert identifier.css == "a"
        assert identifier.xpath == "/div/a"

    def test_long_text_is_structural(self):
        html = f"<div><span>{'word ' * 10}</span></div>"
        _, tier = SelectorModel().identify_with_tier(_first(html, "span"))
        assert tier == SelectorTier.STRUCTURAL

    def test_text_on_other_tags_is_structural(self):
        """Only button, a and span qualify for the text strategy."""
        _, tier = SelectorModel().identify_with_tier(_first("<div><p>Hello</p></div>", "p"))
        assert tier == SelectorTier.STRUCTURAL


# ─── Structural Tests ────────────────────────────────────────────────


class TestStructural:
    """Structural XPath and class-based CSS."""

    def test_index_only_with_same_tag_siblings(self):
        html = '<form><label>Name</label><input type="text"><input type="text"></form>'
        first = _first(html, "input", 0)
        label = _first(html, "label")
        assert full_xpath(first) == "/form/input[1]"
        assert full_xpath(label) == "/form/label"

    def test_anchors_at_stable_ancestor_id(self):
        html = '<div id="main"><section><p><input type="checkbox"></p></section></div>'
        element = _first(html, "input")
        assert full_xpath(element) == '//*[@id="main"]/section/p/input'

    def test_fallback_css_keeps_two_stable_classes(self):
        element = _first('<input type="text" class="field wide third">', "input")
        assert fallback_css(element) == 'input.field.wide[type="text"]'

    def test_fallback_css_drops_generated_classes(self):
        element = _first('<div class="css-AB12 item12345" contenteditable="true">x</div>', "div")
        assert fallback_css(element) == 'div[contenteditable="true"]'

    def test_structural_identifier_pairs_css_and_xpath(self):
        html = '<form><input type="text"><input type="text"></form>'
        identifier, tier = SelectorModel().identify_with_tier(_first(html, "input", 1))
        assert tier == SelectorTier.STRUCTURAL
        assert identifier.css == 'input[type="text"]'
        assert identifier.xpath == "/form/input[2]"


# ─── Fallback Tests ──────────────────────────────────────────────────


class TestFallbacks:
    """identify never raises."""

    def test_missing_element(self):
        identifier, tier = SelectorModel().identify_with_tier(None)
        assert identifier == UNKNOWN_IDENTIFIER
        assert tier is None

    def test_document_node(self):
        assert SelectorModel().identify(DomNode.parse_html("<p>x</p>")) == UNKNOWN_IDENTIFIER

    def test_internal_failure_degrades_to_body(self):
        element = _first("<p>x</p>", "p")
        with patch.object(SelectorModel, "_derive", side_effect=RuntimeError("boom")):
            assert SelectorModel().identify(element) == BODY_IDENTIFIER

    def test_stability_predicates(self):
        assert is_stable_id("main")
        assert not is_stable_id("9main")
        assert not is_stable_id("")
        assert is_stable_class("btn-primary")
        assert not is_stable_class("sc-KXyZ")
        assert not is_stable_class("x" * 20)
