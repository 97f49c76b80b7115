"""
Progress Events

Structured per-node progress events and the sinks that receive them.
A sink is any callable taking one ProgressEvent; it must return quickly and
never block the engine. Sinks that raise are logged and ignored.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, List, Optional, Protocol

logger = logging.getLogger(__name__)


class EventKind(Enum):
    """Severity / nature of a progress event"""
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    DEBUG = "debug"


_SEVERITY = {
    EventKind.DEBUG: 0,
    EventKind.INFO: 1,
    EventKind.SUCCESS: 1,
    EventKind.WARNING: 2,
    EventKind.ERROR: 3,
}

_LOG_LEVELS = {
    EventKind.DEBUG: logging.DEBUG,
    EventKind.INFO: logging.INFO,
    EventKind.SUCCESS: logging.INFO,
    EventKind.WARNING: logging.WARNING,
    EventKind.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class ProgressEvent:
    """One progress notification emitted by the engine"""
    kind: EventKind
    message: str
    node_id: Optional[str] = None
    run_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "node_id": self.node_id,
            "run_id": self.run_id,
            "timestamp": self.timestamp.isoformat(),
        }


class ProgressSink(Protocol):
    """Receiver of progress events"""

    def __call__(self, event: ProgressEvent) -> None:
        ...


class NullSink:
    """Discards every event"""

    def __call__(self, event: ProgressEvent) -> None:
        pass


class LoggingSink:
    """Forwards events to a standard library logger"""

    def __init__(self, name: str = "flowgraph.progress"):
        self.logger = logging.getLogger(name)

    def __call__(self, event: ProgressEvent) -> None:
        where = f"[{event.node_id}] " if event.node_id else ""
        self.logger.log(_LOG_LEVELS[event.kind], f"{where}{event.message}")


class CallbackSink:
    """
    Forwards events at or above a minimum severity to a callback.

    Example usage:
        sink = CallbackSink(lambda e: ui_log.append(e.to_dict()), min_kind=EventKind.INFO)
    """

    def __init__(
        self,
        callback: Callable[[ProgressEvent], None],
        min_kind: EventKind = EventKind.DEBUG,
    ):
        self.callback = callback
        self.min_kind = min_kind

    def __call__(self, event: ProgressEvent) -> None:
        if _SEVERITY[event.kind] >= _SEVERITY[self.min_kind]:
            self.callback(event)


class QueueSink:
    """
    Bounded buffer for consumers reading events from another task.

    Events are dropped (and counted) when the queue is full, so a slow
    consumer can never stall a run.

    Example usage:
        sink = QueueSink(maxsize=100)
        coordinator = RunCoordinator(sink=sink)

        async def consume():
            while True:
                event = await sink.queue.get()
                ...
    """

    def __init__(self, maxsize: int = 1000):
        self.queue: "asyncio.Queue[ProgressEvent]" = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def __call__(self, event: ProgressEvent) -> None:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning(f"Progress queue full, dropped {self.dropped} event(s)")


class CompositeSink:
    """Delivers each event to several sinks; one failing sink does not affect the others"""

    def __init__(self, sinks: Iterable[ProgressSink]):
        self.sinks: List[ProgressSink] = list(sinks)

    def __call__(self, event: ProgressEvent) -> None:
        for sink in self.sinks:
            deliver(sink, event)


def deliver(sink: Optional[ProgressSink], event: ProgressEvent) -> None:
    """
    Hand an event to a sink without letting the sink disturb the engine.

    Args:
        sink: Destination (None is ignored)
        event: Event to deliver
    """
    if sink is None:
        return
    try:
        sink(event)
    except Exception as e:
        logger.error(f"Progress sink {sink!r} failed: {e}", exc_info=True)
