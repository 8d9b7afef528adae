"""Run event sinks.

The orchestrator reports everything it does through a sink. Buffered runs use
the base sink, which drops events; streaming runs use QueueEventSink, whose
queue is drained by the HTTP layer.
"""

import queue
from typing import Any, Dict, Optional

from app.services.sync_types import SyncOutcome

Event = Dict[str, Any]


class EventSink:
    def emit(self, event: Event) -> None:
        pass

    def log(self, message: str) -> None:
        self.emit({"type": "log", "message": message})

    def progress(self, current: int, total: int, phase: str) -> None:
        self.emit({"type": "progress", "current": current, "total": total, "phase": phase})

    def item(self, outcome: SyncOutcome) -> None:
        self.emit({"type": "item", **outcome.to_dict()})

    def complete(self, run_id: Optional[int], counts: Dict[str, int]) -> None:
        self.emit({"type": "complete", "run_id": run_id, "counts": counts})

    def error(self, message: str) -> None:
        self.emit({"type": "error", "message": message})


class QueueEventSink(EventSink):
    """Puts every event on a thread-safe queue"""

    def __init__(self, events: Optional["queue.Queue[Optional[Event]]"] = None):
        self.queue: "queue.Queue[Optional[Event]]" = events if events is not None else queue.Queue()

    def emit(self, event: Event) -> None:
        self.queue.put(event)

    def close(self) -> None:
        """Signal consumers that no more events will follow."""
        self.queue.put(None)
