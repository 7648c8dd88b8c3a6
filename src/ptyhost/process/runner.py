"""One-shot process runner — streaming and collecting command execution."""

from __future__ import annotations

import logging
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import IO, Any

from ptyhost.config import ProcessConfig
from ptyhost.errors import AlreadyExists, NotFound, ProcessExitError
from ptyhost.process.kill import terminate_process_tree
from ptyhost.pty.buffer import RollingBuffer
from ptyhost.pty.registry import SessionRegistry
from ptyhost.session.wire import Wire

logger = logging.getLogger(__name__)

# Seconds beyond the drain timeout that cleanup waits for exit watchers.
_REAP_GRACE = 2.0


@dataclass
class CommandResult:
    """Base result of a collecting-mode command."""

    output: str = ""
    is_error: bool = False


@dataclass
class CommandOk(CommandResult):
    """The command exited successfully; ``output`` is its stdout."""

    is_error: bool = False


@dataclass
class CommandError(CommandResult):
    """The command failed or could not start; ``output`` is its stderr."""

    is_error: bool = True


@dataclass
class TrackedProcess:
    """A streaming-mode child tracked for cancellation."""

    id: str
    pid: int
    command: list[str]
    cwd: str | None = None
    started_at: float = field(default_factory=time.time)
    buffer: RollingBuffer = field(default_factory=RollingBuffer)
    cancelled: bool = False
    exited: bool = False
    watcher: threading.Thread | None = field(default=None, repr=False)


def _popen_kwargs() -> dict[str, Any]:
    if sys.platform == "win32":
        return {
            "creationflags": subprocess.CREATE_NEW_PROCESS_GROUP
            | subprocess.CREATE_NO_WINDOW
        }
    return {"start_new_session": True}


class _StreamPump:
    """Reads one pipe line by line and forwards each line until closed.

    Once ``close()`` is called later lines are read and discarded, so a
    grandchild that keeps the pipe open cannot emit after the exit event.
    """

    def __init__(
        self,
        wire: Wire,
        tracked: TrackedProcess,
        pipe: IO[bytes],
        stream: str,
        encoding: str,
    ) -> None:
        self._wire = wire
        self._tracked = tracked
        self._pipe = pipe
        self._stream = stream
        self._encoding = encoding
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self.thread = threading.Thread(
            target=self._run, name=f"proc-{stream}-{tracked.id}", daemon=True
        )

    def start(self) -> None:
        self.thread.start()

    def close(self) -> None:
        with self._lock:
            self._closed.set()

    def _run(self) -> None:
        # Lines end at \n only; a bare \r (progress output) stays in the line.
        try:
            for raw in iter(self._pipe.readline, b""):
                line = raw.decode(self._encoding, errors="replace")
                line = line.removesuffix("\n").removesuffix("\r")
                with self._lock:
                    if self._closed.is_set():
                        continue
                    self._tracked.buffer.append(line)
                    self._wire.send_output(self._tracked.id, line, self._stream)
        except (OSError, ValueError) as e:
            logger.debug("%s reader for %s ended: %s", self._stream, self._tracked.id, e)
        finally:
            self._pipe.close()


class ProcessRunner:
    """Runs external commands as cancellable streams or blocking calls.

    Streaming mode tracks each child in its own registry (separate from
    interactive sessions: only cancellation is needed). Every streamed
    child gets two reader threads and one exit watcher; the watcher is
    the only place that removes the entry or emits the final event.
    """

    def __init__(self, wire: Wire, config: ProcessConfig | None = None) -> None:
        self._wire = wire
        self._config = config or ProcessConfig()
        self._registry: SessionRegistry[TrackedProcess] = SessionRegistry()

    @property
    def registry(self) -> SessionRegistry[TrackedProcess]:
        return self._registry

    # ------------------------------------------------------------------
    # Streaming mode
    # ------------------------------------------------------------------

    def run_async(
        self,
        process_id: str,
        command: str,
        args: list[str] | None = None,
        cwd: str | None = None,
    ) -> None:
        """Start ``command`` and stream its output as wire events.

        Spawn failures are reported as an error event for ``process_id``
        rather than raised. A live process already using the id raises
        AlreadyExists.
        """
        if process_id in self._registry:
            raise AlreadyExists(process_id)

        argv = [command, *(args or [])]
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
                **_popen_kwargs(),
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.info("Failed to start %s for %s: %s", command, process_id, e)
            self._wire.send_error(process_id, f"Failed to start {command}: {e}")
            return

        tracked = TrackedProcess(
            id=process_id,
            pid=proc.pid,
            command=argv,
            cwd=cwd,
            buffer=RollingBuffer(max_lines=self._config.scrollback_lines),
        )
        try:
            self._registry.register(process_id, tracked)
        except AlreadyExists:
            # Lost a race with a concurrent run of the same id.
            terminate_process_tree(proc.pid)
            proc.wait()
            proc.stdout.close()
            proc.stderr.close()
            raise

        logger.info(
            "Process %s started: pid=%d cmd=%s", process_id, proc.pid, " ".join(argv)
        )
        pumps = [
            _StreamPump(self._wire, tracked, proc.stdout, "stdout", self._config.encoding),
            _StreamPump(self._wire, tracked, proc.stderr, "stderr", self._config.encoding),
        ]
        for pump in pumps:
            pump.start()
        tracked.watcher = threading.Thread(
            target=self._watch,
            args=(tracked, proc, pumps),
            name=f"proc-exit-{process_id}",
            daemon=True,
        )
        tracked.watcher.start()

    def _watch(
        self, tracked: TrackedProcess, proc: subprocess.Popen, pumps: list[_StreamPump]
    ) -> None:
        """Exit watcher: wait, drain, deregister, then emit one final event."""
        code: int | None = None
        error: ProcessExitError | None = None
        try:
            code = _wait(proc)
        except ProcessExitError as e:
            error = e
        tracked.exited = True

        deadline = time.monotonic() + self._config.drain_timeout
        for pump in pumps:
            pump.thread.join(max(0.0, deadline - time.monotonic()))
        for pump in pumps:
            pump.close()

        if self._registry.lookup(tracked.id) is tracked:
            self._registry.remove(tracked.id)

        if error is not None:
            logger.warning("Process %s: %s", tracked.id, error)
            self._wire.send_error(tracked.id, str(error))
        else:
            logger.info("Process %s exited (code=%s)", tracked.id, code)
            self._wire.send_exit(tracked.id, code)

    def cancel(self, process_id: str) -> None:
        """Kill a tracked process and its whole process group.

        The exit watcher removes the entry and emits the exit event.
        """
        tracked = self._registry.lookup(process_id)
        if tracked is None:
            raise NotFound(process_id)
        tracked.cancelled = True
        logger.info("Cancelling process %s (pid=%d)", process_id, tracked.pid)
        # A reaped pid may already belong to someone else.
        if not tracked.exited:
            terminate_process_tree(tracked.pid)

    def get(self, process_id: str) -> TrackedProcess | None:
        return self._registry.lookup(process_id)

    def scrollback(self, process_id: str, lines: int = 100) -> list[str]:
        """Return the last ``lines`` output lines of a tracked process."""
        tracked = self._registry.lookup(process_id)
        if tracked is None:
            raise NotFound(process_id)
        return tracked.buffer.read_tail_raw(lines)

    def list_processes(self) -> list[dict[str, Any]]:
        return [
            {
                "id": t.id,
                "kind": "process",
                "pid": t.pid,
                "command": " ".join(t.command),
                "cwd": t.cwd,
                "started_at": t.started_at,
                "lines": t.buffer.line_count,
            }
            for t in self._registry.values()
        ]

    def cleanup(self, timeout: float | None = None) -> None:
        """Cancel every tracked process and wait for its final event.

        Called on shutdown, before the wire closes. Each exit watcher gets
        the drain timeout plus a grace period to deliver its event.
        """
        if timeout is None:
            timeout = self._config.drain_timeout + _REAP_GRACE
        tracked_all = self._registry.values()
        for tracked in tracked_all:
            tracked.cancelled = True
            if not tracked.exited:
                terminate_process_tree(tracked.pid)

        deadline = time.monotonic() + timeout
        for tracked in tracked_all:
            if tracked.watcher is None:
                continue
            tracked.watcher.join(max(0.0, deadline - time.monotonic()))
            if tracked.watcher.is_alive():
                logger.warning("Process %s did not finish during cleanup", tracked.id)
        logger.info("All tracked processes cancelled")

    # ------------------------------------------------------------------
    # Collecting mode
    # ------------------------------------------------------------------

    def run_sync(
        self, command: str, args: list[str] | None = None, cwd: str | None = None
    ) -> CommandResult:
        """Run ``command`` to completion and collect its output.

        Returns CommandOk with stdout if the exit status is success,
        otherwise CommandError with stderr. Never raises for a command
        that fails or cannot be started.
        """
        return run_sync(command, args, cwd, encoding=self._config.encoding)

    def __len__(self) -> int:
        return len(self._registry)


def run_sync(
    command: str,
    args: list[str] | None = None,
    cwd: str | None = None,
    encoding: str = "utf-8",
) -> CommandResult:
    """Module-level collecting runner; see ``ProcessRunner.run_sync``."""
    argv = [command, *(args or [])]
    kwargs: dict[str, Any] = {}
    if sys.platform == "win32":
        kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW
    try:
        result = subprocess.run(
            argv,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            cwd=cwd,
            **kwargs,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("Failed to run %s: %s", command, e)
        return CommandError(output=str(e))

    if result.returncode == 0:
        return CommandOk(output=result.stdout.decode(encoding, errors="replace"))
    return CommandError(output=result.stderr.decode(encoding, errors="replace"))


def _wait(proc: subprocess.Popen) -> int:
    try:
        return proc.wait()
    except OSError as e:
        raise ProcessExitError(f"Could not wait for pid {proc.pid}: {e}") from e
