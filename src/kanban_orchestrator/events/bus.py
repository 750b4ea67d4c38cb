from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from loguru import logger

from ..utils import _now_iso

EVENT_TYPES = frozenset(
    {
        "task-created",
        "task-updated",
        "task-moved",
        "task-completed",
        "task-archived",
        "session-started",
        "session-progress",
        "session-completed",
        "session-failed",
        "plan-ready",
        "plan-approved",
    }
)


@dataclass(frozen=True)
class Event:
    type: str
    task_id: Optional[str] = None
    session_id: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)
    seq: int = 0
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "task_id": self.task_id,
            "session_id": self.session_id,
            "payload": self.payload,
            "seq": self.seq,
            "timestamp": self.timestamp,
        }


Subscriber = Callable[[Event], None]


class EventBus:
    """In-process fan-out of state-change events.

    Delivery is best-effort and at-most-once: a subscriber that raises is
    logged and skipped, and nothing is replayed. Observers that miss an event
    re-fetch current state.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()
        self._seq = itertools.count(1)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(
        self,
        event_type: str,
        *,
        task_id: Optional[str] = None,
        session_id: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> Event:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type '{event_type}'")
        with self._lock:
            event = Event(
                type=event_type,
                task_id=task_id,
                session_id=session_id,
                payload=dict(payload or {}),
                seq=next(self._seq),
            )
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber failed for {} (seq={})", event.type, event.seq)
        return event
