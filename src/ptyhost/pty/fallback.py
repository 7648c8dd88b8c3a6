"""Piped shell session for platforms without pseudo-terminals.

Interactive programs see plain pipes here, so line editing, colors and
cursor control are unavailable. Output is delivered a line at a time.
"""

from __future__ import annotations

import logging
import subprocess
import sys
from dataclasses import dataclass

from ptyhost.errors import SpawnError
from ptyhost.pty.session import PTYSession, PTYStatus, validate_size
from ptyhost.text import chunk_decoder

logger = logging.getLogger(__name__)


def fallback_shell() -> list[str]:
    if sys.platform == "win32":
        return ["powershell", "-NoLogo", "-NoExit", "-Command", "-"]
    return ["/bin/sh", "-i"]


@dataclass
class PipeSession(PTYSession):
    """Line-buffered stand-in for a PTY session with the same interface."""

    def open(self) -> None:
        self._check_cwd()
        creationflags = 0
        if sys.platform == "win32":
            creationflags = subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.CREATE_NO_WINDOW
        try:
            self._proc = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                cwd=self.cwd,
                env=self._build_env(),
                bufsize=0,
                start_new_session=sys.platform != "win32",
                creationflags=creationflags,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise SpawnError(f"Failed to start {self.command[0]}: {e}") from e

        self._status = PTYStatus.RUNNING
        logger.info(
            "Pipe session %s started: pid=%d cmd=%s",
            self.id,
            self._proc.pid,
            " ".join(self.command),
        )

    def _read_loop(self) -> None:
        decoder = chunk_decoder()
        assert self._proc is not None and self._proc.stdout is not None
        for raw in iter(self._proc.stdout.readline, b""):
            self._emit(decoder.decode(raw))
        self._emit(decoder.decode(b"", final=True))

    def _close_master(self) -> None:
        with self._write_lock:
            if self._proc is not None and self._proc.stdin is not None:
                try:
                    self._proc.stdin.close()
                except OSError:
                    pass

    def _deliver(self, payload: bytes) -> None:
        # Runs on the writer thread; a blocked pipe only stalls that thread.
        with self._write_lock:
            stdin = self._proc.stdin if self._proc is not None else None
            if stdin is None or stdin.closed:
                logger.debug("Dropped input for closed pipe session %s", self.id)
                return
            stdin.write(payload)
            stdin.flush()

    def resize(self, rows: int, cols: int) -> None:
        # Pipes have no window size; remember it for list_sessions().
        validate_size(rows, cols)
        self.rows, self.cols = rows, cols
        logger.debug("Pipe session %s ignores resize to %dx%d", self.id, rows, cols)

    @property
    def kind(self) -> str:
        return "pipe"
