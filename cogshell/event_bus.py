from __future__ import annotations

import dataclasses
import queue
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .logging_utils import log
from .util import new_id, utc_ts

# Event types published by the shell.
TURN_COMPLETED = "turn_completed"
TOOL_CREATED = "tool_created"
SKILL_LEARNED = "skill_learned"
MIND_TOPIC = "mind_topic"


@dataclass(frozen=True)
class Event:
    type: str
    ts: float
    payload: Dict[str, Any]
    id: str = dataclasses.field(default_factory=lambda: new_id("evt"))


class EventBus:
    """Thread-safe queue between the interactive turn and background daemons.

    The turn only ever publishes; daemons drain the queue on their own thread, so
    nothing published here can delay or fail a reply.
    """

    def __init__(self, maxsize: int = 1000):
        self._q: "queue.Queue[Event]" = queue.Queue(maxsize=maxsize)

    def publish(self, type: str, payload: Dict[str, Any]) -> Event:
        evt = Event(type=type, ts=utc_ts(), payload=payload)
        try:
            self._q.put_nowait(evt)
        except queue.Full:
            log.warning("event queue full; dropping event", extra={"extra": {"type": type}})
        return evt

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        try:
            return self._q.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> int:
        return self._q.qsize()
