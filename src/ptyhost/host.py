"""Terminal host — the operations a UI calls, and the events it receives.

``TerminalHost`` is built once at startup. It owns the event wire, the
interactive session manager and the one-shot process runner, and tears
all of them down in ``close()``.
"""

from __future__ import annotations

import logging
import os
from typing import Any

from ptyhost.config import HostConfig
from ptyhost.env.detector import VirtualEnv, detect_environments
from ptyhost.errors import NotFound
from ptyhost.process.runner import CommandResult, ProcessRunner
from ptyhost.pty.manager import PTYManager
from ptyhost.session.wire import Wire

logger = logging.getLogger(__name__)


class TerminalHost:
    """Facade over interactive sessions and one-shot processes.

    Usage:
        with TerminalHost() as host:
            events = host.wire.subscribe()
            host.spawn_interactive("t1", rows=24, cols=80, cwd="/tmp")
            host.write_interactive("t1", "echo hi\\n")
            ...
            host.cancel("t1")
    """

    def __init__(self, config: HostConfig | None = None, wire: Wire | None = None) -> None:
        self.config = config or HostConfig()
        self.wire = wire or Wire()
        self.terminals = PTYManager(self.wire, self.config.terminal)
        self.processes = ProcessRunner(self.wire, self.config.process)
        self._closed = False

    # Interactive sessions

    def spawn_interactive(
        self, session_id: str, rows: int, cols: int, cwd: str | None = None
    ) -> None:
        self.terminals.spawn(session_id, rows, cols, cwd)

    def write_interactive(self, session_id: str, data: str | bytes) -> None:
        self.terminals.write(session_id, data)

    def resize_interactive(self, session_id: str, rows: int, cols: int) -> None:
        self.terminals.resize(session_id, rows, cols)

    # One-shot processes

    def run_streaming(
        self,
        process_id: str,
        command: str,
        args: list[str] | None = None,
        cwd: str | None = None,
    ) -> None:
        self.processes.run_async(process_id, command, args, cwd)

    def run_collecting(
        self, command: str, args: list[str] | None = None, cwd: str | None = None
    ) -> CommandResult:
        return self.processes.run_sync(command, args, cwd)

    # Shared

    def cancel(self, session_id: str) -> None:
        """Kill whatever is running under ``session_id``.

        An id may name both an interactive session and a streamed process;
        both are killed. Raises NotFound only if neither exists.
        """
        found = False
        try:
            self.terminals.kill(session_id)
            found = True
        except NotFound:
            pass
        try:
            self.processes.cancel(session_id)
            found = True
        except NotFound:
            pass
        if not found:
            raise NotFound(session_id)

    def scrollback(self, session_id: str, lines: int = 100) -> list[str]:
        """Recent raw output of a live session or process."""
        try:
            return self.terminals.scrollback(session_id, lines)
        except NotFound:
            return self.processes.scrollback(session_id, lines)

    def list_sessions(self) -> list[dict[str, Any]]:
        return self.terminals.list_sessions() + self.processes.list_processes()

    def detect_environments(self, project_path: str | os.PathLike[str]) -> list[VirtualEnv]:
        return detect_environments(project_path, run=self.processes.run_sync)

    # Lifecycle

    def close(self) -> None:
        """Kill all live sessions and processes, then close the wire."""
        if self._closed:
            return
        self._closed = True
        self.processes.cleanup()
        self.terminals.cleanup()
        self.wire.close()
        logger.info("Terminal host closed")

    def __enter__(self) -> TerminalHost:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
