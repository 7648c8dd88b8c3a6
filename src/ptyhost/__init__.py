"""ptyhost — process and terminal execution core for desktop development tools.

Spawns interactive shells on pseudo-terminals and one-shot subprocesses,
streams their output to a UI host as events, and resizes or kills them
on request.
"""

from ptyhost.errors import (
    AlreadyExists,
    NotFound,
    ProcessExitError,
    PtyHostError,
    ResizeFailed,
    RuntimeIOError,
    SpawnError,
)
from ptyhost.host import TerminalHost

__version__ = "0.1.0"

__all__ = [
    "AlreadyExists",
    "NotFound",
    "ProcessExitError",
    "PtyHostError",
    "ResizeFailed",
    "RuntimeIOError",
    "SpawnError",
    "TerminalHost",
    "__version__",
]
