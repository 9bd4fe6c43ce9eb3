from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from .logging_utils import log
from .memory import MemoryStore
from .util import clamp, utc_ts


class ProactiveCandidate(BaseModel):
    """Something the background mind would like to tell the user unprompted."""

    message: str
    topic: str = ""
    relevance: float = 0.5
    novelty: float = 0.5
    confidence: float = 0.5
    interruption_cost: float = 0.3


class InitiativeGate:
    """
    Decides which proactive messages reach the user.

    A candidate must clear `threshold`; on top of that there is a cooldown
    between messages and an hourly cap.
    """

    def __init__(
        self,
        memory: MemoryStore,
        *,
        threshold: float = 0.55,
        cooldown_s: float = 60.0,
        max_per_hour: int = 6,
    ):
        self.memory = memory
        self.threshold = float(threshold)
        self.cooldown_s = float(cooldown_s)
        self.max_per_hour = int(max_per_hour)
        self._lock = threading.Lock()
        self._last_emit = 0.0
        self._recent: List[float] = []

    @staticmethod
    def score(c: ProactiveCandidate) -> float:
        impulse = c.relevance * c.novelty * c.confidence - 0.5 * c.interruption_cost
        return clamp(0.5 + impulse, 0.0, 1.0)

    def submit(self, c: ProactiveCandidate) -> Optional[str]:
        s = self.score(c)
        now = utc_ts()
        with self._lock:
            if now - self._last_emit < self.cooldown_s:
                return None
            cutoff = now - 3600.0
            self._recent = [t for t in self._recent if t >= cutoff]
            if len(self._recent) >= self.max_per_hour:
                return None
            if s < self.threshold:
                return None
            pid = self.memory.add_proactive(c.message, score=s)
            self._last_emit = now
            self._recent.append(now)
        log.debug("proactive queued", extra={"extra": {"id": pid, "score": round(s, 3), "topic": c.topic}})
        return pid

    def poll(self, limit: int = 3) -> List[Dict[str, Any]]:
        return self.memory.fetch_undelivered_proactive(limit=limit)
