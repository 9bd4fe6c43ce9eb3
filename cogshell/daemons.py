from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from .event_bus import MIND_TOPIC, TURN_COMPLETED, Event, EventBus
from .logging_utils import log
from .snapshot import write_snapshot
from .util import utc_ts


class DaemonContext(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    memory: Any
    persona: Any = None
    mind: Any = None
    snapshot_dir: str = "~/.cogshell"
    session_id: str = "default"


class Daemon:
    name: str = "daemon"
    tick_every_s: float = 5.0

    def on_event(self, evt: Event, ctx: DaemonContext) -> None:
        return

    def tick(self, ctx: DaemonContext) -> None:
        return


class EpisodeWriter(Daemon):
    """Persists completed conversation turns off the interactive path."""

    name = "episode_writer"
    tick_every_s = 3600.0

    def on_event(self, evt: Event, ctx: DaemonContext) -> None:
        if evt.type != TURN_COMPLETED:
            return
        p = evt.payload
        md: Dict[str, Any] = dict(p.get("metadata") or {})
        md.setdefault("session_id", ctx.session_id)
        ctx.memory.store_episode(
            str(p.get("branch") or "conversation"),
            str(p.get("context") or ""),
            str(p.get("outcome") or ""),
            md,
        )


class SnapshotDaemon(Daemon):
    name = "snapshot"

    def __init__(self, every_s: float = 600.0):
        self.tick_every_s = max(1.0, float(every_s))
        self._first = True

    def tick(self, ctx: DaemonContext) -> None:
        # The runner ticks every daemon once at startup; there is nothing worth saving yet.
        if self._first:
            self._first = False
            return
        if ctx.persona is None or ctx.persona.interaction_count == 0:
            return
        write_snapshot(ctx.persona.snapshot(), ctx.snapshot_dir)


class MindDaemon(Daemon):
    """Drives the autonomous mind: one exploration step per tick while it is active."""

    name = "mind"

    def __init__(self, every_s: float = 30.0):
        self.tick_every_s = max(0.5, float(every_s))

    def on_event(self, evt: Event, ctx: DaemonContext) -> None:
        if evt.type == MIND_TOPIC:
            log.debug("mind topic queued", extra={"extra": {"topic": evt.payload.get("topic")}})

    def tick(self, ctx: DaemonContext) -> None:
        if ctx.mind is None or not ctx.mind.active:
            return
        ctx.mind.tick()


class BackgroundRunner:
    def __init__(self, bus: EventBus, ctx: DaemonContext, daemons: List[Daemon]):
        self.bus = bus
        self.ctx = ctx
        self.daemons = daemons
        self._stop = threading.Event()
        self._th: Optional[threading.Thread] = threading.Thread(target=self._run, name="cogshell-bg", daemon=True)
        self._last_tick: Dict[str, float] = {d.name: 0.0 for d in daemons}

    def start(self) -> None:
        if self._th is not None:
            self._th.start()

    def stop(self) -> None:
        self._stop.set()
        if self._th is not None and self._th.is_alive():
            self._th.join(timeout=2.0)
        # Flush whatever the turn published after the loop exited.
        self.drain()

    def dispatch(self, evt: Event) -> None:
        for d in self.daemons:
            try:
                d.on_event(evt, self.ctx)
            except Exception as e:  # pylint: disable=broad-exception-caught
                log.warning("daemon.on_event failed", extra={"extra": {"daemon": d.name, "err": str(e)}})

    def drain(self) -> int:
        n = 0
        while True:
            evt = self.bus.get(timeout=0.0)
            if evt is None:
                return n
            self.dispatch(evt)
            n += 1

    def _run(self) -> None:
        while not self._stop.is_set():
            evt = self.bus.get(timeout=0.2)
            if evt:
                self.dispatch(evt)
            now = utc_ts()
            for d in self.daemons:
                if now - self._last_tick.get(d.name, 0.0) >= d.tick_every_s:
                    self._last_tick[d.name] = now
                    try:
                        d.tick(self.ctx)
                    except Exception as e:  # pylint: disable=broad-exception-caught
                        log.warning("daemon.tick failed", extra={"extra": {"daemon": d.name, "err": str(e)}})
