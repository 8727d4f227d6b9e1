"""Bounded undo stack over confirmed-segment snapshots."""

import json
import logging

from ripplecut.models import HistorySnapshot

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 30


def _serialize(snapshot: HistorySnapshot) -> str:
    return json.dumps([[s.start, s.end] for s in snapshot.confirmed_segments])


class HistoryManager:
    """Undo stack capped at ``limit`` entries; the oldest entry is dropped first."""

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT):
        if limit < 1:
            raise ValueError("history limit must be at least 1")
        self.limit = limit
        self._stack: list[HistorySnapshot] = []

    def __len__(self) -> int:
        return len(self._stack)

    def __bool__(self) -> bool:
        return bool(self._stack)

    @property
    def top(self) -> HistorySnapshot | None:
        return self._stack[-1] if self._stack else None

    def push(self, snapshot: HistorySnapshot) -> bool:
        """Push ``snapshot`` unless it matches the current top. Returns True if pushed."""
        top = self.top
        if top is not None and _serialize(top) == _serialize(snapshot):
            return False
        self._stack.append(snapshot)
        if len(self._stack) > self.limit:
            del self._stack[: len(self._stack) - self.limit]
        logger.debug("[history] pushed snapshot (%d cuts), depth=%d",
                     len(snapshot.confirmed_segments), len(self._stack))
        return True

    def pop(self) -> HistorySnapshot | None:
        if not self._stack:
            return None
        return self._stack.pop()

    def clear(self) -> None:
        self._stack.clear()
