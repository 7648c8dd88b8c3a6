"""Session registry — lock-guarded table of live sessions by id."""

from __future__ import annotations

import threading
from typing import Generic, TypeVar

from ptyhost.errors import AlreadyExists

T = TypeVar("T")


class SessionRegistry(Generic[T]):
    """Concurrency-safe mapping from session id to its live resources.

    One lock guards the table and is held only for the dict operation
    itself, never across I/O or process spawning. Lookups of a missing
    id return ``None``; removing a missing id is a no-op.
    """

    def __init__(self) -> None:
        self._entries: dict[str, T] = {}
        self._lock = threading.Lock()

    def register(self, session_id: str, resource: T) -> None:
        """Insert an entry. Raises AlreadyExists if the id is taken."""
        with self._lock:
            if session_id in self._entries:
                raise AlreadyExists(session_id)
            self._entries[session_id] = resource

    def lookup(self, session_id: str) -> T | None:
        with self._lock:
            return self._entries.get(session_id)

    def remove(self, session_id: str) -> T | None:
        """Remove and return an entry, or None if it is already gone."""
        with self._lock:
            return self._entries.pop(session_id, None)

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def values(self) -> list[T]:
        with self._lock:
            return list(self._entries.values())

    def clear(self) -> list[T]:
        """Remove every entry and return what was removed."""
        with self._lock:
            removed = list(self._entries.values())
            self._entries.clear()
        return removed

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
