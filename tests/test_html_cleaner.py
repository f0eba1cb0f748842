"""
Tests for HTML reduction.

Validates:
- Removal of scripts, styles and noise attributes
- Class filtering of generated names
- Text simplification and truncation
- Repeated list item detection
"""

from __future__ import annotations

from replay_engine.core.html_cleaner import (
    TRUNCATION_SUFFIX,
    clean_html,
    detect_list_items,
    keep_class,
    simplify_text,
)


# ─── clean_html Tests ────────────────────────────────────────────────


class TestCleanHtml:
    """Noise removal."""

    def test_removes_code_and_noise_attributes(self):
        html = (
            '<div onclick="go()" data-reactid="4" data-testid="card" style="x" aria-label="Card" id="main">'
            "<script>track()</script><style>.a{}</style><noscript>JS off</noscript>"
            "<span>Price</span></div>"
        )
        assert clean_html(html) == '<div id="main"><span>Price</span></div>'

    def test_keeps_at_most_three_readable_classes(self):
        html = '<div class="a1b2c3d4e5 card card--4f3e2a title price extra">x</div>'
        assert clean_html(html) == '<div class="card title price">x</div>'

    def test_drops_class_attribute_when_nothing_survives(self):
        assert clean_html('<p class="deadbeefcafe">x</p>') == "<p>x</p>"

    def test_collapses_whitespace(self):
        html = "<ul>\n  <li>One   item</li>\n  <li>Two</li>\n</ul>"
        assert clean_html(html) == "<ul><li>One item</li><li>Two</li></ul>"

    def test_truncates(self):
        cleaned = clean_html("<p>" + "x" * 100 + "</p>", max_length=20)
        assert cleaned.endswith(TRUNCATION_SUFFIX)
        assert len(cleaned) == 20 + len(TRUNCATION_SUFFIX)

    def test_keep_class(self):
        assert keep_class("btn-primary")
        assert not keep_class("")
        assert not keep_class("x" * 30)
        assert not keep_class("0123abcd")
        assert not keep_class("header--a9f3c")


# ─── simplify_text Tests ─────────────────────────────────────────────


class TestSimplifyText:
    def test_long_text_and_attributes(self):
        html = '<p>This sentence is clearly too long</p><img alt="A picture of a mountain lake"><b>short</b>'
        assert simplify_text(html) == '<p>This sentence i...</p><img alt="A picture of a ..."/><b>short</b>'


# ─── detect_list_items Tests ─────────────────────────────────────────


class TestDetectListItems:
    """Repeated sibling groups."""

    def test_finds_nested_list(self):
        html = (
            '<div><h2>Results</h2><div class="list">'
            '<div class="item">A</div><div class="item">B</div><div class="item">C</div>'
            "</div></div>"
        )
        items = detect_list_items(html)
        assert items == ['<div class="item">A</div>', '<div class="item">B</div>', '<div class="item">C</div>']

    def test_majority_group_wins(self):
        html = "<ul><li>a</li><li>b</li><li>c</li><span>footer</span></ul>"
        assert len(detect_list_items(html)) == 3

    def test_no_list(self):
        assert detect_list_items("<div><p>only</p></div>") == []
