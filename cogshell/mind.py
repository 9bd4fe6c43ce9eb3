"""Background curiosity: a slow loop that explores topics and collects facts.

The mind owns its interests, facts and counters and touches them only under
its own lock; the background runner drives `tick()`, the turn only reads.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Callable, Deque, List, Optional

from .event_bus import MIND_TOPIC, EventBus
from .initiative import InitiativeGate, ProactiveCandidate
from .logging_utils import log
from .util import short, toks

Explorer = Callable[[str], str]


class AutonomousMind:
    def __init__(
        self,
        *,
        explorer: Optional[Explorer] = None,
        initiative: Optional[InitiativeGate] = None,
        bus: Optional[EventBus] = None,
        interests: Optional[List[str]] = None,
        max_facts: int = 200,
    ):
        self.explorer = explorer
        self.initiative = initiative
        self.bus = bus
        self._lock = threading.Lock()
        self._active = False
        self._interests: List[str] = list(interests or [])
        self._facts: Deque[str] = deque(maxlen=int(max_facts))
        self._curiosity: Deque[str] = deque()
        self._thoughts: Deque[str] = deque(maxlen=20)
        self._thought_count = 0
        self._epoch = 0
        self._cursor = 0

    # ---- control ----

    def start(self) -> None:
        with self._lock:
            self._active = True
        log.info("mind started")

    def stop(self) -> None:
        with self._lock:
            self._active = False
        log.info("mind stopped")

    @property
    def active(self) -> bool:
        with self._lock:
            return self._active

    def inject_topic(self, topic: str) -> None:
        topic = (topic or "").strip()
        if not topic:
            return
        with self._lock:
            self._curiosity.append(topic)
        if self.bus is not None:
            self.bus.publish(MIND_TOPIC, {"topic": topic})

    def add_interest(self, interest: str) -> None:
        interest = (interest or "").strip()
        if not interest:
            return
        with self._lock:
            if interest.lower() not in (i.lower() for i in self._interests):
                self._interests.append(interest)

    # ---- reads ----

    @property
    def interests(self) -> List[str]:
        with self._lock:
            return list(self._interests)

    @property
    def facts(self) -> List[str]:
        with self._lock:
            return list(self._facts)

    @property
    def epoch(self) -> int:
        with self._lock:
            return self._epoch

    # ---- work ----

    def _next_topic(self) -> Optional[str]:
        if self._curiosity:
            return self._curiosity.popleft()
        if self._interests:
            t = self._interests[self._cursor % len(self._interests)]
            self._cursor += 1
            return t
        return None

    def tick(self) -> Optional[str]:
        """One exploration step; returns the fact learned, if any."""
        with self._lock:
            if not self._active:
                return None
            self._epoch += 1
            topic = self._next_topic()
            if topic is None:
                return None
            self._thought_count += 1
            self._thoughts.append(f"Wondering about {topic}")
            interests = list(self._interests)

        if self.explorer is None:
            return None
        found = (self.explorer(topic) or "").strip()
        if not found:
            return None
        fact = f"{topic}: {short(found, 240)}"
        with self._lock:
            is_new = fact not in self._facts
            self._facts.append(fact)
        log.debug("mind discovery", extra={"extra": {"topic": topic}})

        if self.initiative is not None and is_new:
            want = {t for i in interests for t in toks(i)}
            have = set(toks(topic))
            relevance = 0.9 if (want & have) else 0.4
            self.initiative.submit(
                ProactiveCandidate(
                    message=f"I was exploring '{topic}' and found: {short(found, 200)}",
                    topic=topic,
                    relevance=relevance,
                    novelty=0.8,
                    confidence=0.6,
                    interruption_cost=0.3,
                )
            )
        return fact

    # ---- replies ----

    def state_text(self) -> str:
        with self._lock:
            lines = [
                "Autonomous Mind State",
                f"Status: {'Active' if self._active else 'Dormant'}",
                f"Thoughts Generated: {self._thought_count}",
                f"Facts Learned: {len(self._facts)}",
                f"Active Interests: {len(self._interests)}",
                f"Pending Curiosities: {len(self._curiosity)}",
                f"Epoch: {self._epoch}",
            ]
            if self._interests:
                lines.append(f"\nInterests: {', '.join(self._interests[:10])}")
            facts = list(self._facts)[-10:]
            thoughts = list(self._thoughts)[-3:]
        if facts:
            lines.append("\nRecent Discoveries:")
            lines.extend(f"  - {f}" for f in facts)
        if thoughts:
            lines.append("\nRecent Thoughts:")
            lines.extend(f"  - {t}" for t in thoughts)
        return "\n".join(lines)

    def interests_text(self) -> str:
        facts = self.facts[-10:]
        lines = ["My Current Interests & Discoveries", ""]
        interests = self.interests
        if interests:
            lines.append(f"Interests: {', '.join(interests[:10])}")
        if not facts:
            lines.append("I haven't discovered anything yet. Let me explore!")
            lines.append("Try: 'think about AI' or 'add interest quantum computing'")
        else:
            lines.append("Recent Discoveries:")
            lines.extend(f"  - {f}" for f in facts)
        return "\n".join(lines)
