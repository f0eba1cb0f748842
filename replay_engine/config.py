"""
Configuration management for the replay engine.
Handles browser, replay and recorder settings using Pydantic Settings.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class BrowserConfig(BaseSettings):
    """Chromium launch and context settings (BROWSER_*)."""
    headless: bool = Field(default=True, description="Run browser in headless mode")
    viewport_width: int = Field(default=1280, ge=100, description="Viewport width")
    viewport_height: int = Field(default=800, ge=100, description="Viewport height")
    page_load_timeout: int = Field(default=60, ge=1, description="Default page timeout in seconds")
    slow_mo: int = Field(default=0, ge=0, description="Delay added to every Playwright call in ms")
    user_agent: Optional[str] = Field(default=None, description="Custom user agent string")
    locale: str = Field(default="en-US", description="Browser context locale")
    screenshots_dir: Path = Field(default=Path("screenshots"), description="Directory for saved screenshots")

    model_config = SettingsConfigDict(
        env_prefix="BROWSER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


class ReplayConfig(BaseSettings):
    """Timeouts and pacing for the replay executor and script player (seconds)."""
    navigate_timeout: float = Field(default=60.0, gt=0, description="Navigation budget")
    action_timeout: float = Field(default=10.0, gt=0, description="Click/type/select budget")
    wait_for_timeout: float = Field(default=30.0, gt=0, description="wait_for budget")
    snapshot_timeout: float = Field(default=10.0, gt=0, description="Semantic snapshot budget after navigation")
    ready_state_timeout: float = Field(default=2.0, gt=0, description="Check deciding whether the active page is usable")
    poll_interval: float = Field(default=0.1, gt=0, description="Polling interval for waits and resolution")
    click_settle_delay: float = Field(default=0.3, ge=0, description="Pause after scrolling into view")
    inter_click_delay: float = Field(default=0.1, ge=0, description="Pause between repeated clicks")
    script_settle_delay: float = Field(default=2.0, ge=0, description="Pause after the script's start URL loads")
    inter_action_delay: float = Field(default=0.5, ge=0, description="Pause between played actions")
    click_retry_attempts: int = Field(default=3, ge=1, description="Attempts before falling back to a DOM click")
    continue_on_error: bool = Field(default=False, description="Keep playing after an execution failure")

    model_config = SettingsConfigDict(
        env_prefix="REPLAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @model_validator(mode="after")
    def snapshot_shorter_than_navigation(self) -> "ReplayConfig":
        """The snapshot must never dominate the navigation budget."""
        if self.snapshot_timeout >= self.navigate_timeout:
            raise ValueError("snapshot_timeout must be shorter than navigate_timeout")
        return self


class RecorderConfig(BaseSettings):
    """Recording pipeline rules (milliseconds unless noted)."""
    input_debounce_ms: int = Field(default=500, ge=0, description="Quiet period before an input is committed")
    scroll_debounce_ms: int = Field(default=500, ge=0, description="Quiet period before a scroll is committed")
    dedup_window_ms: int = Field(default=2000, ge=0, description="Window for collapsing repeated inputs")
    auto_wait_threshold_ms: int = Field(default=1000, ge=0, description="Gap above which a sleep is inserted")
    auto_wait_cap_ms: int = Field(default=5000, ge=0, description="Longest synthesized sleep")
    ui_prefix: str = Field(default="__replay_", description="Id/class prefix of the recorder's own UI")
    binding_name: str = Field(default="__replayRecord", description="Playwright binding receiving page events")
    timelines_dir: Path = Field(default=Path("timelines"), description="Directory for JSON timeline files")

    model_config = SettingsConfigDict(
        env_prefix="RECORDER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


class EngineConfig(BaseSettings):
    """Main configuration for the replay engine."""

    log_level: str = Field(
        default="INFO",
        description="Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )
    log_file: Optional[str] = Field(default=None, description="Optional log file path")

    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    replay: ReplayConfig = Field(default_factory=ReplayConfig)
    recorder: RecorderConfig = Field(default_factory=RecorderConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level '{v}', expected one of: {', '.join(LOG_LEVELS)}")
        return level


def load_config() -> EngineConfig:
    """
    Build EngineConfig from the environment and .env.

    Raises:
        ValueError: wrapping any validation failure
    """
    try:
        config = EngineConfig()
        if config.replay.continue_on_error:
            logger.warning("REPLAY_CONTINUE_ON_ERROR is set; playback will not stop on execution failures")
        return config
    except Exception as e:
        raise ValueError(f"Configuration loading failed: {e}") from e
