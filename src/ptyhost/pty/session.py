"""PTY session — an interactive shell on a pseudo-terminal."""

from __future__ import annotations

import enum
import logging
import os
import queue
import select
import shutil
import struct
import subprocess
import sys
import threading
from dataclasses import dataclass, field
from typing import Callable

from ptyhost.errors import ResizeFailed, SpawnError
from ptyhost.process.kill import terminate_session
from ptyhost.pty.buffer import RollingBuffer
from ptyhost.text import chunk_decoder

try:
    import fcntl
    import pty
    import termios

    HAS_PTY = True
except ImportError:  # Windows
    HAS_PTY = False

logger = logging.getLogger(__name__)

MAX_DIMENSION = 0xFFFF
# How often a blocked reader re-checks for a killed child.
_POLL_INTERVAL = 0.25


class PTYStatus(enum.Enum):
    """Lifecycle states for a session."""

    CREATED = "created"
    RUNNING = "running"
    KILLING = "killing"  # Kill requested, waiting for process to die
    EXITED = "exited"


OutputCallback = Callable[["PTYSession", str], None]
ExitCallback = Callable[["PTYSession", "int | None"], None]


def default_shell() -> list[str]:
    """Return the interactive shell command for this platform."""
    if sys.platform == "win32":
        return ["powershell"]
    shell = os.environ.get("SHELL")
    if shell and os.path.exists(shell):
        return [shell]
    return [shutil.which("bash") or "/bin/sh"]


def validate_size(rows: int, cols: int) -> None:
    if not (0 < rows <= MAX_DIMENSION and 0 < cols <= MAX_DIMENSION):
        raise ResizeFailed(f"Invalid terminal size {rows}x{cols}")


@dataclass
class PTYSession:
    """A managed pseudo-terminal session.

    Wraps an interactive shell with:
    - Process group isolation (start_new_session) for safe tree-killing
    - The PTY slave as the shell's controlling terminal
    - A single reader thread streaming raw output chunks
    - A writer thread delivering queued input, so callers never block
    - A rolling scrollback buffer
    - Exactly one exit callback per session

    Startup is split in two so the manager can register the session
    between spawning the child and starting the reader: ``open()``
    spawns (raising SpawnError with nothing left behind) and
    ``start_reader()`` begins streaming.
    """

    id: str
    rows: int = 24
    cols: int = 80
    cwd: str | None = None
    command: list[str] = field(default_factory=default_shell)
    env: dict[str, str] = field(default_factory=dict)
    read_chunk_size: int = 4096
    buffer: RollingBuffer = field(default_factory=RollingBuffer)

    # Internal state
    _master_fd: int = field(default=-1, init=False, repr=False)
    _proc: subprocess.Popen | None = field(default=None, init=False, repr=False)
    _reader: threading.Thread | None = field(default=None, init=False, repr=False)
    _writer: threading.Thread | None = field(default=None, init=False, repr=False)
    _input: queue.Queue[bytes | None] = field(
        default_factory=queue.Queue, init=False, repr=False
    )
    _write_lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False
    )
    _status: PTYStatus = field(default=PTYStatus.CREATED, init=False)
    _exit_code: int | None = field(default=None, init=False)
    _on_output: OutputCallback | None = field(default=None, init=False, repr=False)
    _on_exit: ExitCallback | None = field(default=None, init=False, repr=False)

    def _build_env(self) -> dict[str, str]:
        return {**os.environ, **self.env}

    def _check_cwd(self) -> None:
        if self.cwd is not None and not os.path.isdir(self.cwd):
            raise SpawnError(f"Working directory does not exist: {self.cwd}")

    def open(self) -> None:
        """Allocate the PTY and spawn the shell in its own session."""
        self._check_cwd()
        try:
            validate_size(self.rows, self.cols)
        except ResizeFailed as e:
            raise SpawnError(str(e)) from e

        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise SpawnError(f"Failed to allocate pseudo-terminal: {e}") from e

        try:
            _set_winsize(slave_fd, self.rows, self.cols)
            self._proc = subprocess.Popen(
                self.command,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=self.cwd,
                env=self._build_env(),
                start_new_session=True,  # Creates new process group
                preexec_fn=_acquire_controlling_tty,
            )
        except (OSError, subprocess.SubprocessError) as e:
            os.close(master_fd)
            raise SpawnError(f"Failed to start {self.command[0]}: {e}") from e
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        # Input is written from the writer thread without holding the fd.
        os.set_blocking(master_fd, False)
        self._master_fd = master_fd
        self._status = PTYStatus.RUNNING
        logger.info(
            "PTY session %s started: pid=%d size=%dx%d cmd=%s",
            self.id,
            self._proc.pid,
            self.rows,
            self.cols,
            " ".join(self.command),
        )

    def start_reader(
        self,
        on_output: OutputCallback | None = None,
        on_exit: ExitCallback | None = None,
    ) -> None:
        """Start the background reader and writer threads.

        ``on_output`` receives each decoded chunk in arrival order.
        ``on_exit`` is called exactly once, from the reader thread, after
        the child has been reaped.
        """
        self._on_output = on_output
        self._on_exit = on_exit
        self._reader = threading.Thread(
            target=self._run_reader, name=f"pty-reader-{self.id}", daemon=True
        )
        self._reader.start()
        self._writer = threading.Thread(
            target=self._run_writer, name=f"pty-writer-{self.id}", daemon=True
        )
        self._writer.start()

    def _run_reader(self) -> None:
        try:
            self._read_loop()
        except Exception:
            logger.exception("PTY reader %s crashed", self.id)
        finally:
            self._close_master()
            self._input.put(None)
            code = self._reap()
            self._status = PTYStatus.EXITED
            logger.info("PTY session %s exited (code=%s)", self.id, code)
            if self._on_exit:
                try:
                    self._on_exit(self, code)
                except Exception:
                    logger.exception("Error in exit callback for session %s", self.id)

    def _read_loop(self) -> None:
        """Read raw output from the PTY master until EOF."""
        decoder = chunk_decoder()
        fd = self._master_fd
        while True:
            ready, _, _ = select.select([fd], [], [], _POLL_INTERVAL)
            if not ready:
                # A grandchild may hold the slave open after a kill.
                if self._status == PTYStatus.KILLING and self._proc.poll() is not None:
                    break
                continue
            try:
                data = os.read(fd, self.read_chunk_size)
            except BlockingIOError:
                continue
            except OSError as e:
                # EIO once every slave fd is closed
                logger.debug("PTY reader %s ended: %s", self.id, e)
                break
            if not data:
                break
            self._emit(decoder.decode(data))
        self._emit(decoder.decode(b"", final=True))

    def _emit(self, text: str) -> None:
        if not text:
            return
        self.buffer.append_text(text)
        if self._on_output:
            self._on_output(self, text)

    def _close_master(self) -> None:
        with self._write_lock:
            if self._master_fd >= 0:
                try:
                    os.close(self._master_fd)
                except OSError:
                    pass
                self._master_fd = -1

    def _reap(self) -> int | None:
        if self._proc is None:
            return None
        self._exit_code = self._proc.wait()
        return self._exit_code

    def write(self, data: str | bytes) -> None:
        """Queue ``data`` verbatim for the terminal input.

        Returns immediately; the writer thread delivers queued input in
        order, even when the child is not reading. Errors are logged and
        dropped: writing to a shell that has just died is not the
        caller's problem.
        """
        if self._status is PTYStatus.EXITED:
            logger.debug("Write to closed session %s ignored", self.id)
            return
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        if payload:
            self._input.put(payload)

    def _run_writer(self) -> None:
        while True:
            payload = self._input.get()
            if payload is None:
                return
            try:
                self._deliver(payload)
            except OSError as e:
                logger.debug("Write to session %s failed: %s", self.id, e)

    def _deliver(self, payload: bytes) -> None:
        view = memoryview(payload)
        while view:
            fd = self._master_fd
            if fd < 0:
                logger.debug("Dropped %d input bytes for closed session %s", len(view), self.id)
                return
            try:
                select.select([], [fd], [], _POLL_INTERVAL)
            except (OSError, ValueError):
                # Closed by the reader; re-checked above.
                continue
            with self._write_lock:
                if self._master_fd < 0:
                    continue
                try:
                    written = os.write(self._master_fd, view)
                except BlockingIOError:
                    continue
            view = view[written:]

    def resize(self, rows: int, cols: int) -> None:
        """Report a new terminal size to the child."""
        validate_size(rows, cols)
        with self._write_lock:
            if self._master_fd < 0:
                raise ResizeFailed(f"PTY session {self.id} is closed")
            try:
                _set_winsize(self._master_fd, rows, cols)
            except OSError as e:
                raise ResizeFailed(f"Resize of session {self.id} failed: {e}") from e
        self.rows, self.cols = rows, cols
        logger.debug("PTY session %s resized to %dx%d", self.id, rows, cols)

    def kill(self) -> None:
        """Kill every process in the shell's session, background jobs included.

        The reader thread notices the child's death, reaps it and fires
        the exit callback; nothing else is torn down here.
        """
        if self._status not in (PTYStatus.RUNNING, PTYStatus.KILLING):
            return
        self._status = PTYStatus.KILLING
        # The shell leads its session, so its pid is the session id. Jobs
        # may outlive the shell and still hold the slave open.
        if self._proc is not None:
            terminate_session(self._proc.pid)

    def join(self, timeout: float | None = None) -> None:
        """Wait for the reader thread to finish."""
        if self._reader is not None:
            self._reader.join(timeout)

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def alive(self) -> bool:
        return self._status == PTYStatus.RUNNING

    @property
    def status(self) -> PTYStatus:
        return self._status

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    @property
    def kind(self) -> str:
        return "pty"


def _set_winsize(fd: int, rows: int, cols: int) -> None:
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid(); stdin is the slave.
    try:
        fcntl.ioctl(0, termios.TIOCSCTTY, 0)
    except OSError:
        pass
