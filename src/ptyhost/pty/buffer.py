"""Rolling scrollback buffer for session output."""

from __future__ import annotations

import re
import threading
import time
from collections import deque

from ptyhost.text import sanitize_binary_output, strip_ansi


class RollingBuffer:
    """Thread-safe rolling buffer of session output lines.

    Stores up to ``max_lines`` lines in two parallel tracks:

    * **cleaned** (``_lines``) — ANSI-stripped, binary-sanitized text
      used for searching and plain-text replay.
    * **raw** (``_raw_lines``) — original terminal output preserving
      ANSI escape sequences, suitable for replay into a terminal view.

    PTY output arrives in arbitrary chunks, so ``append_text`` keeps the
    unterminated tail of the last chunk pending until its newline shows
    up. Readers see the pending tail as the final line.

    ``wait_for_data()`` blocks until something new is appended, so
    consumers on other threads need not poll.
    """

    def __init__(self, max_lines: int = 5000) -> None:
        self._lines: deque[str] = deque(maxlen=max_lines)
        self._raw_lines: deque[str] = deque(maxlen=max_lines)
        self._pending: str = ""
        self._raw_pending: str = ""
        self._total_lines: int = 0  # Total lines ever completed
        self._version: int = 0  # Bumped on every append
        self._cond = threading.Condition()

    def append(self, line: str, raw_line: str | None = None) -> None:
        """Append one complete line.

        Args:
            line: Text of the line, without its terminator.
            raw_line: Original text with ANSI codes preserved.
                      Defaults to ``line`` if not provided.
        """
        raw = raw_line if raw_line is not None else line
        with self._cond:
            self._lines.append(_clean(line))
            self._raw_lines.append(raw)
            self._total_lines += 1
            self._version += 1
            self._cond.notify_all()

    def append_text(self, text: str) -> None:
        """Append a raw output chunk, splitting it into lines."""
        if not text:
            return
        with self._cond:
            pieces = (self._raw_pending + text).split("\n")
            self._raw_pending = pieces.pop()
            self._pending = _clean(self._raw_pending)
            for raw in pieces:
                raw = raw.removesuffix("\r")
                self._lines.append(_clean(raw))
                self._raw_lines.append(raw)
                self._total_lines += 1
            self._version += 1
            self._cond.notify_all()

    def wait_for_data(self, timeout: float | None = None) -> bool:
        """Block until new data is appended (or timeout).

        Returns True if data arrived, False on timeout.
        """
        with self._cond:
            seen = self._version
            return self._cond.wait_for(lambda: self._version != seen, timeout=timeout)

    def wait_for(self, pattern: str, timeout: float = 5.0) -> bool:
        """Block until a cleaned line matches ``pattern`` (or timeout)."""
        compiled = re.compile(pattern)
        deadline = time.monotonic() + timeout
        with self._cond:
            while True:
                if any(compiled.search(line) for line in self._snapshot()):
                    return True
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)

    def _snapshot(self, raw: bool = False) -> list[str]:
        # Caller holds the lock.
        lines = list(self._raw_lines if raw else self._lines)
        pending = self._raw_pending if raw else self._pending
        if pending:
            lines.append(pending)
        return lines

    def read(self, offset: int = 0, limit: int = 500) -> list[str]:
        """Read cleaned lines from the buffer.

        Args:
            offset: 0-based line offset within the current buffer.
            limit: Maximum number of lines to return.
        """
        with self._cond:
            lines = self._snapshot()
        start = min(offset, len(lines))
        end = min(start + limit, len(lines))
        return lines[start:end]

    def read_raw(self, offset: int = 0, limit: int = 500) -> list[str]:
        """Read raw lines (with ANSI codes preserved) from the buffer."""
        with self._cond:
            lines = self._snapshot(raw=True)
        start = min(offset, len(lines))
        end = min(start + limit, len(lines))
        return lines[start:end]

    def read_all(self) -> str:
        """Read all buffered cleaned content as a single string."""
        with self._cond:
            return "\n".join(self._snapshot())

    def read_tail(self, n: int = 100) -> list[str]:
        """Read the last N cleaned lines."""
        with self._cond:
            lines = self._snapshot()
        return lines[-n:] if len(lines) > n else lines

    def read_tail_raw(self, n: int = 100) -> list[str]:
        """Read the last N raw lines (ANSI preserved)."""
        with self._cond:
            lines = self._snapshot(raw=True)
        return lines[-n:] if len(lines) > n else lines

    def search(self, pattern: str, limit: int = 50) -> list[tuple[int, str]]:
        """Search for lines matching a regex pattern.

        Returns list of (line_number, line_text) tuples.
        """
        try:
            compiled = re.compile(pattern)
        except re.error:
            return []

        results = []
        with self._cond:
            lines = self._snapshot()
        for i, line in enumerate(lines):
            if compiled.search(line):
                results.append((i, line))
                if len(results) >= limit:
                    break
        return results

    @property
    def line_count(self) -> int:
        """Current number of lines in the buffer, pending tail included."""
        with self._cond:
            return len(self._lines) + (1 if self._raw_pending else 0)

    @property
    def total_lines(self) -> int:
        """Total number of completed lines ever added."""
        with self._cond:
            return self._total_lines

    def clear(self) -> None:
        """Clear the buffer."""
        with self._cond:
            self._lines.clear()
            self._raw_lines.clear()
            self._pending = ""
            self._raw_pending = ""
            self._total_lines = 0


def _clean(text: str) -> str:
    return sanitize_binary_output(strip_ansi(text)).replace("\r", "")
