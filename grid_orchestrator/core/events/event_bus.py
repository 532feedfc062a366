"""
Simple synchronous event bus.
"""
from __future__ import annotations

import threading
from typing import Any, Iterable

from grid_orchestrator.core.events.event_sink import EventSink


class EventBus:
    """Dispatches events to registered sinks.

    Events may be emitted from the job thread and from the caller's thread
    (e.g. a cancellation before start), so delivery is serialized.
    """

    def __init__(self, sinks: Iterable[EventSink] | None = None) -> None:
        self._sinks: list[EventSink] = list(sinks) if sinks is not None else []
        self._lock = threading.Lock()
        self._closed = False

    def register(self, sink: EventSink) -> None:
        """Register a new sink."""
        with self._lock:
            self._sinks.append(sink)

    def emit(self, event: Any) -> None:
        """Emit an event to all sinks, in registration order."""
        with self._lock:
            if self._closed:
                return
            for sink in self._sinks:
                sink.on_event(event)

    def close(self) -> None:
        """
        Finalize all sinks that expose a close() method.
        """
        with self._lock:
            if self._closed:
                return

            for sink in self._sinks:
                close_fn = getattr(sink, "close", None)
                if callable(close_fn):
                    close_fn()

            self._closed = True
