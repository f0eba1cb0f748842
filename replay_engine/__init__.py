"""
Replay Engine - record browser sessions and replay them reliably.

This package provides:
- A recorder that turns user interaction into a timeline of actions
- Stable, ranked selectors and semantic-index addressing
- A replay executor with deadline-bounded element resolution
- A script player with conditions, variables and data extraction

Example usage:
    from replay_engine import BrowserSession, ReplayExecutor, ScriptPlayer, Script

    async with BrowserSession() as session:
        executor = ReplayExecutor(session)
        result = await ScriptPlayer(executor).play(script)
"""

# Core components
from .core.browser_session import BrowserProvider, BrowserSession
from .core.executor import ReplayExecutor
from .core.player import AIControlHandler, ScriptPlayer
from .core.recorder import Recorder
from .core.resolver import ElementResolver
from .core.selectors import SelectorModel
from .core.snapshot import SemanticSnapshotBuilder, snapshot_html
from .core.timeline_store import InMemoryPersistence, JsonFilePersistence, TimelinePersistence, TimelineStore
from .core.html_cleaner import clean_html, detect_list_items, simplify_text

# Data model
from .core.models import (
    BaseAction,
    Condition,
    Identifier,
    OperationResult,
    PlayResult,
    Script,
    SemanticSnapshot,
    parse_timeline,
    dump_timeline,
    timeline_from_json,
    timeline_to_json,
)

# Configuration
from .config import (
    BrowserConfig,
    EngineConfig,
    RecorderConfig,
    ReplayConfig,
    load_config,
)

# Error handling
from .error_handling import (
    ReplayEngineError,
    NotFoundError,
    ElementNotFoundError,
    NoActivePageError,
    ResolutionTimeoutError,
    PreconditionFailedError,
    ExecutionFailedError,
    PartialExtractionError,
    BrowserConnectionError,
    NavigationError,
    PageLoadError,
    RecordingStateError,
    ScriptPlaybackError,
    Deadline,
    RetryConfig,
    with_async_retry,
)

__version__ = "0.1.0"

__all__ = [
    # Core classes
    "BrowserProvider",
    "BrowserSession",
    "ReplayExecutor",
    "AIControlHandler",
    "ScriptPlayer",
    "Recorder",
    "ElementResolver",
    "SelectorModel",
    "SemanticSnapshotBuilder",
    "snapshot_html",
    "InMemoryPersistence",
    "JsonFilePersistence",
    "TimelinePersistence",
    "TimelineStore",
    "clean_html",
    "detect_list_items",
    "simplify_text",

    # Data model
    "BaseAction",
    "Condition",
    "Identifier",
    "OperationResult",
    "PlayResult",
    "Script",
    "SemanticSnapshot",
    "parse_timeline",
    "dump_timeline",
    "timeline_from_json",
    "timeline_to_json",

    # Configuration
    "BrowserConfig",
    "EngineConfig",
    "RecorderConfig",
    "ReplayConfig",
    "load_config",

    # Exceptions
    "ReplayEngineError",
    "NotFoundError",
    "ElementNotFoundError",
    "NoActivePageError",
    "ResolutionTimeoutError",
    "PreconditionFailedError",
    "ExecutionFailedError",
    "PartialExtractionError",
    "BrowserConnectionError",
    "NavigationError",
    "PageLoadError",
    "RecordingStateError",
    "ScriptPlaybackError",

    # Utilities
    "Deadline",
    "RetryConfig",
    "with_async_retry",
]
