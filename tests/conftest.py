"""Shared fixtures: scaled-down timings and a page-free snapshot builder."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from replay_engine.config import RecorderConfig, ReplayConfig


@pytest.fixture
def fast_config() -> ReplayConfig:
    """Replay timings scaled down so waits finish in milliseconds."""
    return ReplayConfig(
        navigate_timeout=2.0,
        action_timeout=0.5,
        wait_for_timeout=0.5,
        snapshot_timeout=0.5,
        ready_state_timeout=0.2,
        poll_interval=0.02,
        click_settle_delay=0,
        inter_click_delay=0,
        script_settle_delay=0,
        inter_action_delay=0,
        click_retry_attempts=1,
    )


@pytest.fixture
def recorder_config() -> RecorderConfig:
    return RecorderConfig(input_debounce_ms=20, scroll_debounce_ms=20)


@pytest.fixture
def snapshot_builder() -> MagicMock:
    """Snapshot builder that never touches the page."""
    builder = MagicMock()
    builder.build = AsyncMock()
    builder.build_with_timeout = AsyncMock(return_value=None)
    return builder
