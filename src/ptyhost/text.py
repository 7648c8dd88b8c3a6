"""Text helpers for terminal output."""

from __future__ import annotations

import codecs
import re

_ANSI_RE = re.compile(
    r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"  # OSC ... BEL / ST
    r"|\x1b\[[0-?]*[ -/]*[@-~]"  # CSI
    r"|\x1b[@-Z\\-_]"  # two-byte escapes
)


def strip_ansi(text: str) -> str:
    """Strip ANSI escape sequences from text."""
    return _ANSI_RE.sub("", text)


def sanitize_binary_output(text: str) -> str:
    """Remove binary garbage from output.

    Keeps printable chars, tabs, newlines, and carriage returns.
    Strips everything else (control chars, undefined code points, format chars).
    """
    cleaned = []
    for ch in text:
        cp = ord(ch)
        if ch in ("\t", "\n", "\r"):
            cleaned.append(ch)
        elif cp >= 32 and cp not in range(0x7F, 0xA0):
            if cp not in range(0xFFF9, 0xFFFC):
                cleaned.append(ch)
    return "".join(cleaned)


def chunk_decoder(encoding: str = "utf-8") -> codecs.IncrementalDecoder:
    """Return a permissive incremental decoder for raw terminal reads.

    Multibyte sequences split across two reads are held back until the
    rest arrives; invalid bytes decode to U+FFFD instead of raising.
    """
    return codecs.getincrementaldecoder(encoding)(errors="replace")
