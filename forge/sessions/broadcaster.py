"""Progress fan-out for live generation previews.

``ProgressBroadcaster`` is a single asyncio task that owns the set of
listeners.  Registration, removal and broadcasts are messages on one inbox
queue, so the listener set is never touched concurrently.  Generation runs
in worker threads and reports through ``broadcast_threadsafe``.

Each listener has a bounded buffer.  Delivery never waits: a listener whose
buffer is full is dropped and its stream ends after the events it already
holds.  Terminal events (``complete``, ``error``) also end the streams of
that generation's listeners.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Kinds of progress event."""
    FILE_ADDED = "file_added"
    FILE_UPDATED = "file_updated"
    ERROR = "error"
    COMPLETE = "complete"


TERMINAL_EVENTS = frozenset({EventKind.ERROR, EventKind.COMPLETE})


class ProgressEvent(BaseModel):
    """One progress update for a generation."""
    model_config = ConfigDict(frozen=True)

    generation_id: str
    kind: EventKind
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def terminal(self) -> bool:
        return self.kind in TERMINAL_EVENTS


_CLOSED = object()


# ---------------------------------------------------------------------------
# Listener
# ---------------------------------------------------------------------------

class Listener:
    """Async iterator over the progress events of one generation.

    Iteration ends when the listener is unregistered, dropped for falling
    behind, or its generation finishes.
    """

    def __init__(self, generation_id: str, queue_size: int) -> None:
        self.generation_id = generation_id
        self.queue_size = queue_size
        # One extra slot so the close marker always fits.
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_size + 1)
        self.closed = False
        self.dropped = False

    def __aiter__(self) -> "Listener":
        return self

    async def __anext__(self) -> ProgressEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any other waiter.
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item

    async def collect(self) -> list[ProgressEvent]:
        """Consume the stream until it ends."""
        return [event async for event in self]

    # -- Broadcaster side --------------------------------------------------

    def _deliver(self, event: ProgressEvent) -> bool:
        if self.closed or self._queue.qsize() >= self.queue_size:
            return False
        self._queue.put_nowait(event)
        return True

    def _close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSED)


# ---------------------------------------------------------------------------
# Broadcaster
# ---------------------------------------------------------------------------

class ProgressBroadcaster:
    """Single-task actor distributing ``ProgressEvent`` objects."""

    def __init__(self, queue_size: int = 256) -> None:
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")
        self.queue_size = queue_size
        self._loop: asyncio.AbstractEventLoop | None = None
        self._inbox: asyncio.Queue[tuple[str, Any]] | None = None
        self._task: asyncio.Task[None] | None = None
        # Owned by the actor task.
        self._listeners: dict[str, set[Listener]] = {}

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the actor task on the running loop."""
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._inbox = asyncio.Queue()
        self._task = asyncio.create_task(self._run(), name="forge-progress-broadcaster")
        logger.debug("Progress broadcaster started")

    async def stop(self) -> None:
        """Process pending messages, close every listener, and end the task."""
        if not self.running:
            return
        self._post(("stop", None))
        assert self._task is not None
        await self._task
        self._task = None
        logger.debug("Progress broadcaster stopped")

    async def __aenter__(self) -> "ProgressBroadcaster":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    # -- Messages ----------------------------------------------------------

    def register(self, generation_id: str) -> Listener:
        """Create a listener for *generation_id*.

        Must be called on the broadcaster's loop.  Events broadcast after
        this call are delivered to the new listener.
        """
        if not self.running:
            raise RuntimeError("progress broadcaster is not running")
        listener = Listener(generation_id, self.queue_size)
        self._post(("register", listener))
        return listener

    def unregister(self, listener: Listener) -> None:
        """Remove *listener* and end its stream."""
        if not self.running:
            listener._close()
            return
        self._post(("unregister", listener))

    def broadcast(self, event: ProgressEvent) -> None:
        """Queue *event* for delivery.  Must be called on the broadcaster's loop."""
        if not self.running:
            logger.debug("Broadcaster not running, dropping %s event", event.kind.value)
            return
        self._post(("broadcast", event))

    def broadcast_threadsafe(self, event: ProgressEvent) -> None:
        """Queue *event* from any thread."""
        loop = self._loop
        if loop is None or not self.running or loop.is_closed():
            logger.debug("Broadcaster not running, dropping %s event", event.kind.value)
            return
        loop.call_soon_threadsafe(self._post, ("broadcast", event))

    def _post(self, message: tuple[str, Any]) -> None:
        assert self._inbox is not None
        self._inbox.put_nowait(message)

    # -- Actor loop --------------------------------------------------------

    async def _run(self) -> None:
        assert self._inbox is not None
        while True:
            op, arg = await self._inbox.get()
            if op == "stop":
                break
            if op == "register":
                self._listeners.setdefault(arg.generation_id, set()).add(arg)
            elif op == "unregister":
                self._remove(arg)
            elif op == "broadcast":
                self._dispatch(arg)

        for listeners in self._listeners.values():
            for listener in listeners:
                listener._close()
        self._listeners.clear()

    def _dispatch(self, event: ProgressEvent) -> None:
        listeners = self._listeners.get(event.generation_id)
        if not listeners:
            return
        for listener in list(listeners):
            if not listener._deliver(event):
                logger.warning(
                    "Dropping slow listener for %s (buffer of %d full)",
                    event.generation_id,
                    listener.queue_size,
                )
                listener.dropped = True
                self._remove(listener)
        if event.terminal:
            for listener in list(self._listeners.get(event.generation_id, ())):
                self._remove(listener)

    def _remove(self, listener: Listener) -> None:
        listeners = self._listeners.get(listener.generation_id)
        if listeners is not None:
            listeners.discard(listener)
            if not listeners:
                del self._listeners[listener.generation_id]
        listener._close()

    def listener_count(self, generation_id: str | None = None) -> int:
        """Registered listeners, as last seen by the actor task."""
        if generation_id is not None:
            return len(self._listeners.get(generation_id, ()))
        return sum(len(group) for group in self._listeners.values())
