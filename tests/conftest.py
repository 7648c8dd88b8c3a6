"""Shared fixtures: a host wired to a plain ``/bin/sh`` and event draining."""

from __future__ import annotations

import queue
import time
from collections.abc import Callable, Iterator

import psutil
import pytest

from ptyhost.config import HostConfig, ProcessConfig, TerminalConfig
from ptyhost.host import TerminalHost
from ptyhost.session.wire import WireEvent

EVENT_TIMEOUT = 10.0


@pytest.fixture
def config() -> HostConfig:
    return HostConfig(
        terminal=TerminalConfig(shell="/bin/sh"),
        process=ProcessConfig(drain_timeout=1.0),
    )


@pytest.fixture
def host(config: HostConfig) -> Iterator[TerminalHost]:
    h = TerminalHost(config)
    yield h
    h.close()


@pytest.fixture
def events(host: TerminalHost) -> queue.Queue[WireEvent | None]:
    return host.wire.subscribe()


def drain_events(
    q: queue.Queue[WireEvent | None],
    session_id: str,
    timeout: float = EVENT_TIMEOUT,
    until: Callable[[list[WireEvent]], bool] | None = None,
) -> list[WireEvent]:
    """Collect events for ``session_id`` until its terminal event.

    Stops early when ``until(collected)`` is true. Raises AssertionError
    if neither happens before ``timeout``.
    """
    collected: list[WireEvent] = []
    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise AssertionError(f"Timed out waiting for events of {session_id!r}")
        try:
            event = q.get(timeout=remaining)
        except queue.Empty:
            continue
        if event is None:
            return collected
        if event.session_id != session_id:
            continue
        collected.append(event)
        if event.is_terminal or (until is not None and until(collected)):
            return collected


def output_text(events: list[WireEvent]) -> str:
    return "".join(e.data["chunk"] for e in events if e.data.get("chunk") is not None)


def pid_alive(pid: int) -> bool:
    """True if ``pid`` exists and is not a zombie."""
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False


def wait_gone(pid: int, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while pid_alive(pid):
        if time.monotonic() > deadline:
            return False
        time.sleep(0.05)
    return True
