"""PTY session management — interactive shells on pseudo-terminals.

Every interactive shell runs in its own process group on a PTY, is
registered under a client-chosen id, and streams raw output chunks
through a single reader thread until it exits.
"""

from ptyhost.pty.buffer import RollingBuffer
from ptyhost.pty.manager import PTYManager
from ptyhost.pty.registry import SessionRegistry
from ptyhost.pty.session import PTYSession, PTYStatus

__all__ = [
    "PTYSession",
    "PTYStatus",
    "PTYManager",
    "RollingBuffer",
    "SessionRegistry",
]
