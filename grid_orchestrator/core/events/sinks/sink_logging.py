"""
Logging event sink.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, is_dataclass
from typing import Any


class LoggingEventSink:
    """Logs domain events using the standard logging module.

    Dispatch and completion events are chatty on large grids and go to
    DEBUG; lifecycle events go to INFO.
    """

    _DEBUG_EVENTS = frozenset({"BuildDispatchedEvent", "BuildCompletedEvent"})

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def on_event(self, event: Any) -> None:
        name = type(event).__name__
        level = logging.DEBUG if name in self._DEBUG_EVENTS else logging.INFO
        payload = asdict(event) if is_dataclass(event) else {"event": str(event)}
        self._logger.log(level, name, extra={"event": payload})
