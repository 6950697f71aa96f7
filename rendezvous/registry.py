"""Volatile mapping from participant ids to their live connections."""

from __future__ import annotations

import threading
from typing import Dict, Generic, Optional, Set, TypeVar

H = TypeVar("H")


class ConnectionRegistry(Generic[H]):
    """
    Authoritative id -> connection map shared by every connection handler.

    Each call takes the lock once, so readers observe the map either before or
    after a write and never in between.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, H] = {}
        self._lock = threading.Lock()

    def register(self, participant_id: str, handle: H) -> Optional[H]:
        """Bind *participant_id* to *handle*, returning the handle it displaced."""

        with self._lock:
            previous = self._entries.get(participant_id)
            self._entries[participant_id] = handle
        return previous

    def unregister(self, participant_id: str, handle: Optional[H] = None) -> bool:
        """
        Remove *participant_id*. Missing ids are a no-op.

        When *handle* is given the entry is only removed while it still points
        at that handle, so a displaced connection cannot evict its successor.
        """

        with self._lock:
            current = self._entries.get(participant_id)
            if current is None:
                return False
            if handle is not None and current is not handle:
                return False
            del self._entries[participant_id]
        return True

    def lookup(self, participant_id: str) -> Optional[H]:
        with self._lock:
            return self._entries.get(participant_id)

    def snapshot_ids(self) -> Set[str]:
        with self._lock:
            return set(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, participant_id: object) -> bool:
        with self._lock:
            return participant_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["ConnectionRegistry"]
