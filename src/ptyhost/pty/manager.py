"""PTY Manager — owns every interactive session of the host."""

from __future__ import annotations

import logging
from typing import Any

from ptyhost.config import TerminalConfig
from ptyhost.errors import AlreadyExists, NotFound, SpawnError
from ptyhost.pty.buffer import RollingBuffer
from ptyhost.pty.fallback import PipeSession, fallback_shell
from ptyhost.pty.registry import SessionRegistry
from ptyhost.pty.session import HAS_PTY, PTYSession, PTYStatus, default_shell
from ptyhost.session.wire import Wire

logger = logging.getLogger(__name__)


class PTYManager:
    """Manages the lifecycle of interactive shell sessions.

    The manager ensures:
    - Sessions are registered under their client-chosen id before any
      output can arrive, and removed exactly once when the shell exits
    - Output and exit events for each session reach the wire in order
    - Spawn failures leave no registry entry and no thread behind
    - All sessions are killed on cleanup (no orphan processes)
    """

    def __init__(
        self,
        wire: Wire,
        config: TerminalConfig | None = None,
        use_pty: bool = HAS_PTY,
    ) -> None:
        self._wire = wire
        self._config = config or TerminalConfig()
        self._use_pty = use_pty
        self._registry: SessionRegistry[PTYSession] = SessionRegistry()

    @property
    def registry(self) -> SessionRegistry[PTYSession]:
        return self._registry

    def _shell_command(self) -> list[str]:
        if self._config.shell:
            return [self._config.shell, *self._config.shell_args]
        base = default_shell() if self._use_pty else fallback_shell()
        return [*base, *self._config.shell_args]

    def spawn(
        self, session_id: str, rows: int, cols: int, cwd: str | None = None
    ) -> PTYSession:
        """Spawn a shell on a new pseudo-terminal.

        Args:
            session_id: Client-chosen id, unique among live sessions.
            rows: Terminal height in character cells.
            cols: Terminal width in character cells.
            cwd: Working directory for the shell.

        Returns:
            The running session, already registered.

        Raises:
            AlreadyExists: A live session already uses ``session_id``.
            SpawnError: The terminal or shell could not be started.
        """
        if session_id in self._registry:
            raise AlreadyExists(session_id)
        if len(self._registry) >= self._config.max_sessions:
            raise SpawnError(
                f"Too many interactive sessions (max {self._config.max_sessions})"
            )

        session_cls = PTYSession if self._use_pty else PipeSession
        session = session_cls(
            id=session_id,
            rows=rows,
            cols=cols,
            cwd=cwd,
            command=self._shell_command(),
            env={"TERM": self._config.term, "COLORTERM": self._config.colorterm},
            read_chunk_size=self._config.read_chunk_size,
            buffer=RollingBuffer(max_lines=self._config.scrollback_lines),
        )
        session.open()

        try:
            self._registry.register(session_id, session)
        except AlreadyExists:
            # Lost a race with a concurrent spawn of the same id.
            session.kill()
            session.start_reader()
            raise

        session.start_reader(on_output=self._on_output, on_exit=self._on_exit)
        return session

    def _on_output(self, session: PTYSession, chunk: str) -> None:
        self._wire.send_output(session.id, chunk, stream="pty")

    def _on_exit(self, session: PTYSession, exit_code: int | None) -> None:
        # Only drop the entry if it is still this session's.
        if self._registry.lookup(session.id) is session:
            self._registry.remove(session.id)
        self._wire.send_exit(session.id, exit_code)

    def get(self, session_id: str) -> PTYSession | None:
        """Get a live session by ID."""
        return self._registry.lookup(session_id)

    def _require(self, session_id: str) -> PTYSession:
        session = self._registry.lookup(session_id)
        if session is None:
            raise NotFound(session_id)
        return session

    def write(self, session_id: str, data: str | bytes) -> None:
        """Write input to a session verbatim. No newline is appended."""
        self._require(session_id).write(data)

    def resize(self, session_id: str, rows: int, cols: int) -> None:
        """Resize a session's terminal. Raises NotFound or ResizeFailed."""
        self._require(session_id).resize(rows, cols)

    def kill(self, session_id: str) -> None:
        """Kill a session's process tree.

        The reader thread removes the entry and emits the exit event once
        it observes the shell's death.
        """
        session = self._require(session_id)
        logger.info("Killing PTY session %s", session_id)
        session.kill()

    def scrollback(self, session_id: str, lines: int = 100) -> list[str]:
        """Return the last ``lines`` raw output lines of a live session."""
        return self._require(session_id).buffer.read_tail_raw(lines)

    def list_sessions(self) -> list[dict[str, Any]]:
        """List all live sessions."""
        return [
            {
                "id": s.id,
                "kind": s.kind,
                "pid": s.pid,
                "rows": s.rows,
                "cols": s.cols,
                "cwd": s.cwd,
                "status": s.status.value,
                "lines": s.buffer.line_count,
            }
            for s in self._registry.values()
        ]

    def cleanup(self, timeout: float = 2.0) -> None:
        """Kill all sessions and wait briefly for their readers. Called on shutdown."""
        sessions = self._registry.values()
        for session in sessions:
            session.kill()
        for session in sessions:
            session.join(timeout)
            if session.status is not PTYStatus.EXITED:
                logger.warning("PTY session %s did not exit during cleanup", session.id)
        logger.info("All PTY sessions cleaned up")

    def __len__(self) -> int:
        return len(self._registry)
