"""
Tests for element resolution.

Validates:
- Fallback chain order and first-unique-match determinism
- Semantic index resolution through a fresh snapshot
- XPath visibility disambiguation
- Text, aria-label and placeholder fallbacks for raw strings
- iframe-scoped selectors
- Deadline expiry
"""

from __future__ import annotations

import asyncio
import time
from unittest.mock import AsyncMock

import pytest

from replay_engine.core.models import Identifier
from replay_engine.core.resolver import (
    ElementResolver,
    StrategyType,
    looks_like_selector,
    split_iframe_css,
    split_iframe_xpath,
)
from replay_engine.core.snapshot import snapshot_html
from replay_engine.error_handling import Deadline, ElementNotFoundError

from tests.fakes import FakeElement, FakePage


# ─── Chain Tests ─────────────────────────────────────────────────────


class TestFallbackChain:
    """First strategy with exactly one match wins."""

    @pytest.mark.asyncio
    async def test_css_wins_without_trying_xpath(self):
        button = FakeElement("submit")
        page = FakePage({"#submit": [button], 'xpath=//*[@id="submit"]': [FakeElement("other")]})
        resolver = ElementResolver(poll_interval=0.01)

        resolution = await resolver.resolve(page, Identifier(css="#submit", xpath='//*[@id="submit"]'), Deadline(1.0))

        assert resolution.locator.element is button
        assert resolution.strategy_type == StrategyType.CSS_SELECTOR
        assert page.locator_calls == ["#submit"]

    @pytest.mark.asyncio
    async def test_ambiguous_css_falls_through_to_xpath(self):
        target = FakeElement("target")
        page = FakePage({
            ".item": [FakeElement("a"), FakeElement("b")],
            "xpath=/ul/li[2]": [target],
        })
        resolution = await ElementResolver().resolve(page, Identifier(css=".item", xpath="/ul/li[2]"), Deadline(1.0))
        assert resolution.locator.element is target
        assert resolution.strategy == "XPath"

    @pytest.mark.asyncio
    async def test_xpath_prefers_the_only_visible_match(self):
        visible = FakeElement("visible")
        page = FakePage({"xpath=//button": [FakeElement("hidden", visible=False), visible]})
        resolution = await ElementResolver().resolve(page, "//button", Deadline(1.0))
        assert resolution.locator.element is visible

    @pytest.mark.asyncio
    async def test_raw_text_uses_text_strategies(self):
        link = FakeElement("link")
        page = FakePage({"a|text=Sign in": [link]})
        resolution = await ElementResolver().resolve(page, "Sign in", Deadline(1.0))
        assert resolution.locator.element is link
        assert resolution.strategy == "Text Match (a)"

    @pytest.mark.asyncio
    async def test_raw_text_matches_aria_label_and_placeholder(self):
        field = FakeElement("field")
        page = FakePage({'[placeholder*="Search"]': [field]})
        resolution = await ElementResolver().resolve(page, "Search", Deadline(1.0))
        assert resolution.strategy_type == StrategyType.PLACEHOLDER

    def test_selector_strings_skip_text_strategies(self):
        strategies = ElementResolver().strategies_for("div.card > a")
        assert [s.strategy_type for s in strategies] == [StrategyType.CSS_SELECTOR]

    def test_forced_css_prefix_skips_text_strategies(self):
        strategies = ElementResolver().strategies_for("css:Submit")
        assert [s.strategy_type for s in strategies] == [StrategyType.CSS_SELECTOR]

    def test_statistics(self):
        resolver = ElementResolver()
        resolver.attempts.update(["CSS Selector", "CSS Selector", "XPath"])
        resolver.successes.update(["CSS Selector"])
        stats = resolver.get_statistics()
        assert stats["attempts"] == 3
        assert stats["resolutions"] == 1
        assert stats["strategies"]["CSS Selector"]["match_rate"] == 0.5
        assert stats["strategies"]["XPath"]["matches"] == 0


# ─── Semantic Index Tests ────────────────────────────────────────────


class TestSemanticIndexResolution:
    """Position-based targets resolve through the current snapshot."""

    @pytest.mark.asyncio
    async def test_second_of_three_anonymous_inputs(self):
        snapshot = snapshot_html('<form><input type="text"><input type="text"><input type="text"></form>')
        second = snapshot.input_elements[1]
        inputs = [FakeElement("first"), FakeElement("second"), FakeElement("third")]
        page = FakePage({
            second.identifier.css: inputs,
            f"xpath={second.identifier.xpath}": [inputs[1]],
        })
        provider = AsyncMock(return_value=snapshot)
        resolver = ElementResolver(snapshot_provider=provider)

        resolution = await resolver.resolve(page, "Input Element [2]", Deadline(1.0))

        assert resolution.locator.element.name == "second"
        assert resolution.strategy_type == StrategyType.SEMANTIC_INDEX
        provider.assert_awaited_with(page)

    @pytest.mark.asyncio
    async def test_index_beyond_snapshot_is_not_found(self):
        snapshot = snapshot_html('<input type="text">')
        resolver = ElementResolver(snapshot_provider=AsyncMock(return_value=snapshot), poll_interval=0.01)
        with pytest.raises(ElementNotFoundError):
            await resolver.resolve(FakePage(), "Input Element [3]", Deadline(0.05))


# ─── iframe Tests ────────────────────────────────────────────────────


class TestIframes:
    """Selectors prefixed with an iframe marker resolve inside the first frame."""

    def test_split_helpers(self):
        assert split_iframe_css("iframe #pay") == (True, "#pay")
        assert split_iframe_css("#pay") == (False, "#pay")
        assert split_iframe_xpath("//iframe//button") == (True, "//button")
        assert split_iframe_xpath("//iframe") == (False, "//iframe")

    @pytest.mark.asyncio
    async def test_css_inside_frame(self):
        pay = FakeElement("pay")
        page = FakePage(frame_elements={"#pay": [pay]})
        resolution = await ElementResolver().resolve(page, Identifier(css="iframe #pay"), Deadline(1.0))
        assert resolution.locator.element is pay

    def test_looks_like_selector(self):
        assert looks_like_selector("#id")
        assert looks_like_selector("a[href]")
        assert not looks_like_selector("Sign in")


# ─── Deadline Tests ──────────────────────────────────────────────────


class TestDeadline:
    """Resolution never outlives the operation's budget."""

    @pytest.mark.asyncio
    async def test_not_found_after_deadline(self):
        resolver = ElementResolver(poll_interval=0.01)
        start = time.monotonic()
        with pytest.raises(ElementNotFoundError, match="#missing"):
            await resolver.resolve(FakePage(), Identifier(css="#missing"), Deadline(0.1))
        elapsed = time.monotonic() - start
        assert 0.1 <= elapsed < 0.5

    @pytest.mark.asyncio
    async def test_element_appearing_later_is_found(self):
        page = FakePage()
        resolver = ElementResolver(poll_interval=0.01)

        asyncio.get_running_loop().call_later(0.05, page.elements.__setitem__, "#late", [FakeElement("late")])
        resolution = await resolver.resolve(page, "#late", Deadline(1.0))
        assert resolution.rounds > 1

    @pytest.mark.asyncio
    async def test_strategy_errors_do_not_stop_the_chain(self):
        page = FakePage({"xpath=//a": [FakeElement("a")]})
        original = page.locator

        def flaky(selector, has_text=None):
            if selector == "#bad":
                raise RuntimeError("Unexpected token")
            return original(selector, has_text)

        page.locator = flaky
        resolver = ElementResolver()
        resolution = await resolver.resolve(page, Identifier(css="#bad", xpath="//a"), Deadline(1.0))
        assert resolution.strategy == "XPath"
        assert resolver.errors["CSS Selector"] == 1

    @pytest.mark.asyncio
    async def test_slow_strategy_is_cut_off_at_deadline(self):
        async def slow_snapshot(page):
            await asyncio.sleep(2)

        resolver = ElementResolver(snapshot_provider=slow_snapshot, poll_interval=0.01)
        start = time.monotonic()
        with pytest.raises(ElementNotFoundError, match="Input Element"):
            await resolver.resolve(FakePage(), "Input Element [1]", Deadline(0.2))
        assert time.monotonic() - start < 0.5
        assert resolver.errors["Semantic Index Input Element [1]"] == 1
