"""Wire protocol — decouples process workers from the UI host.

Background reader and exit-watcher threads put events on the wire; the
host subscribes and forwards them to its UI. Subscribers may be plain
thread-safe queues or asyncio queues bound to an event loop.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)


class EventType(enum.Enum):
    OUTPUT = "output"
    EXIT = "exit"
    ERROR = "error"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def session_id(self) -> str:
        return self.data.get("id", "")

    @property
    def is_terminal(self) -> bool:
        """True for the final event of a session (exit or error)."""
        return self.type in (EventType.EXIT, EventType.ERROR)


EventCallback = Callable[[WireEvent], None]


class Wire:
    """Thread-safe message bus: process workers -> host subscribers.

    Multi-producer, multi-consumer broadcast. Events from one producer
    thread reach each subscriber in the order they were sent.
    """

    def __init__(self) -> None:
        self._queues: list[queue.Queue[WireEvent | None]] = []
        self._async_queues: list[
            tuple[asyncio.AbstractEventLoop, asyncio.Queue[WireEvent | None]]
        ] = []
        self._callbacks: list[EventCallback] = []
        self._lock = threading.Lock()
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        with self._lock:
            if self._closed:
                return
            queues = list(self._queues)
            async_queues = list(self._async_queues)
            callbacks = list(self._callbacks)
        for q in queues:
            q.put_nowait(event)
        for loop, aq in async_queues:
            loop.call_soon_threadsafe(aq.put_nowait, event)
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception("Wire subscriber failed on %s event", event.type.value)

    def send_output(self, session_id: str, chunk: str, stream: str = "pty") -> None:
        self.send(
            WireEvent(
                type=EventType.OUTPUT,
                data={"id": session_id, "chunk": chunk, "stream": stream},
            )
        )

    def send_exit(self, session_id: str, code: int | None) -> None:
        self.send(WireEvent(type=EventType.EXIT, data={"id": session_id, "code": code}))

    def send_error(self, session_id: str, message: str) -> None:
        self.send(
            WireEvent(type=EventType.ERROR, data={"id": session_id, "message": message})
        )

    def subscribe(self) -> queue.Queue[WireEvent | None]:
        """Subscribe to events. Returns a thread-safe queue to read from."""
        q: queue.Queue[WireEvent | None] = queue.Queue()
        with self._lock:
            self._queues.append(q)
        return q

    def subscribe_async(
        self, loop: asyncio.AbstractEventLoop | None = None
    ) -> asyncio.Queue[WireEvent | None]:
        """Subscribe from asyncio code.

        Must be called from the asyncio thread (or pass an explicit loop).
        Events are handed to the loop with ``call_soon_threadsafe``.
        """
        loop = loop or asyncio.get_running_loop()
        aq: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        with self._lock:
            self._async_queues.append((loop, aq))
        return aq

    def add_callback(self, callback: EventCallback) -> None:
        """Invoke ``callback`` for every event, on the sending thread."""
        with self._lock:
            self._callbacks.append(callback)

    def unsubscribe(self, subscriber: Any) -> None:
        """Unsubscribe a queue, asyncio queue, or callback."""
        with self._lock:
            if subscriber in self._queues:
                self._queues.remove(subscriber)
            if subscriber in self._callbacks:
                self._callbacks.remove(subscriber)
            self._async_queues = [
                (loop, aq) for loop, aq in self._async_queues if aq is not subscriber
            ]

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            queues = list(self._queues)
            async_queues = list(self._async_queues)
        for q in queues:
            q.put_nowait(None)
        for loop, aq in async_queues:
            if not loop.is_closed():
                loop.call_soon_threadsafe(aq.put_nowait, None)
