"""
Core components for recording and replaying browser sessions.

Provides the action model, selector derivation, semantic snapshots, the
recorder, element resolution, the replay executor and the script player.
"""

from .browser_session import BrowserProvider, BrowserSession
from .executor import ReplayExecutor
from .player import AIControlHandler, ScriptPlayer
from .recorder import Recorder, RecordingPipeline
from .resolver import ElementResolver, Resolution, StrategyType
from .selectors import SelectorModel
from .snapshot import SemanticSnapshotBuilder
from .timeline_store import InMemoryPersistence, JsonFilePersistence, TimelinePersistence, TimelineStore

__all__ = [
    "BrowserProvider",
    "BrowserSession",
    "ReplayExecutor",
    "AIControlHandler",
    "ScriptPlayer",
    "Recorder",
    "RecordingPipeline",
    "ElementResolver",
    "Resolution",
    "StrategyType",
    "SelectorModel",
    "SemanticSnapshotBuilder",
    "InMemoryPersistence",
    "JsonFilePersistence",
    "TimelinePersistence",
    "TimelineStore",
]
