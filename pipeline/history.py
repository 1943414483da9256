"""
pipeline/history.py — Bounded, newest-first log of resolved answers.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Iterator, List

from answer.models import ResolvedAnswer
from core.constants import C


class HistoryStore:
    """
    Most-recent-first record of resolved answers, capped at *capacity*.

    Pushing onto a full store drops the oldest entry. Entries are immutable
    :class:`~answer.models.ResolvedAnswer` records and are never modified
    after insertion.

    Args:
        capacity: Maximum number of retained entries (default 10).
    """

    def __init__(self, capacity: int = C.HISTORY_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be ≥1, got {capacity}")
        self._capacity = capacity
        self._entries: Deque[ResolvedAnswer] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def push(self, entry: ResolvedAnswer) -> None:
        """Insert *entry* at the front, evicting the oldest when full."""
        with self._lock:
            # deque(maxlen) drops from the right on appendleft
            self._entries.appendleft(entry)

    def list(self) -> List[ResolvedAnswer]:
        """Return a snapshot of the entries, newest first."""
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[ResolvedAnswer]:
        return iter(self.list())
