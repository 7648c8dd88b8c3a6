"""Exception types raised by the terminal host."""

from __future__ import annotations


class PtyHostError(Exception):
    """Base class for all ptyhost errors."""


class SpawnError(PtyHostError):
    """A session or process could not be started.

    Raised before anything is registered, so a failed spawn never leaves
    a registry entry or a background thread behind.
    """


class NotFound(PtyHostError, KeyError):
    """No live session or process is registered under the given id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"No live session with id {self.session_id!r}"


class AlreadyExists(PtyHostError):
    """A live session or process already uses the given id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session id {session_id!r} is already in use")
        self.session_id = session_id


class RuntimeIOError(PtyHostError):
    """An I/O operation failed on a session that is already running."""


class ResizeFailed(RuntimeIOError):
    """The terminal device rejected a size change."""


class ProcessExitError(PtyHostError):
    """The OS refused to report a child's wait status."""
