"""
Timeline storage.

``TimelineStore`` keeps one ordered action buffer per recording session and
hands a full snapshot of the buffer to the persistence hook after every
mutation.
"""
from __future__ import annotations

import copy
import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

from .models import BaseAction, dump_timeline, parse_timeline

logger = logging.getLogger(__name__)


@runtime_checkable
class TimelinePersistence(Protocol):
    """Hook the store writes through; implementations own durability."""

    def save_timeline(self, session_id: str, actions: List[BaseAction]) -> None:
        ...

    def load_timeline(self, session_id: str) -> Optional[List[BaseAction]]:
        ...


class InMemoryPersistence:
    """Keeps saved snapshots in a dict; used by tests and short-lived runs."""

    def __init__(self):
        self.saved: Dict[str, List[BaseAction]] = {}
        self.save_count = 0

    def save_timeline(self, session_id: str, actions: List[BaseAction]) -> None:
        self.saved[session_id] = [action.model_copy(deep=True) for action in actions]
        self.save_count += 1

    def load_timeline(self, session_id: str) -> Optional[List[BaseAction]]:
        actions = self.saved.get(session_id)
        if actions is None:
            return None
        return [action.model_copy(deep=True) for action in actions]


_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9_.-]")


class JsonFilePersistence:
    """
    One JSON file per session under ``directory``.

    Files hold the wire format, so they can be loaded with
    ``timeline_from_json`` or by any other consumer of the format.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, session_id: str) -> Path:
        return self.directory / f"{_UNSAFE_FILENAME.sub('_', session_id)}.json"

    def save_timeline(self, session_id: str, actions: List[BaseAction]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(session_id)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(dump_timeline(actions), f, indent=2, ensure_ascii=False)
        tmp_path.replace(path)

    def load_timeline(self, session_id: str) -> Optional[List[BaseAction]]:
        path = self.path_for(session_id)
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return parse_timeline(json.load(f))


class TimelineStore:
    """In-memory ordered buffers of actions, keyed by session id."""

    def __init__(self, persistence: Optional[TimelinePersistence] = None):
        self.persistence = persistence
        self._timelines: Dict[str, List[BaseAction]] = {}

    def append(self, session_id: str, action: BaseAction) -> None:
        self._timelines.setdefault(session_id, []).append(action)
        self._persist(session_id)

    def replace_last(self, session_id: str, action: BaseAction) -> None:
        timeline = self._timelines.get(session_id)
        if not timeline:
            raise IndexError(f"Timeline '{session_id}' is empty")
        timeline[-1] = action
        self._persist(session_id)

    def last(self, session_id: str) -> Optional[BaseAction]:
        timeline = self._timelines.get(session_id)
        return timeline[-1] if timeline else None

    def snapshot(self, session_id: str) -> List[BaseAction]:
        """Deep copy of the session's actions; mutating it does not touch the store."""
        return copy.deepcopy(self._timelines.get(session_id, []))

    def clear(self, session_id: str) -> None:
        self._timelines[session_id] = []
        self._persist(session_id)

    def load(self, session_id: str) -> List[BaseAction]:
        """Replace the in-memory buffer with what persistence holds."""
        actions: List[BaseAction] = []
        if self.persistence is not None:
            actions = self.persistence.load_timeline(session_id) or []
        self._timelines[session_id] = list(actions)
        logger.info(f"Loaded {len(actions)} actions for session {session_id}")
        return self.snapshot(session_id)

    def length(self, session_id: str) -> int:
        return len(self._timelines.get(session_id, []))

    def _persist(self, session_id: str) -> None:
        if self.persistence is None:
            return
        try:
            self.persistence.save_timeline(session_id, self.snapshot(session_id))
        except Exception as e:
            logger.error(f"Failed to persist timeline {session_id}: {e}")
