from __future__ import annotations

import datetime as dt
import json

from cogshell.daemons import BackgroundRunner, DaemonContext, EpisodeWriter, MindDaemon, SnapshotDaemon
from cogshell.embeddings import HashEmbed
from cogshell.event_bus import TURN_COMPLETED, EventBus
from cogshell.indexer import WorkspaceIndex, chunk_text
from cogshell.initiative import InitiativeGate, ProactiveCandidate
from cogshell.mind import AutonomousMind
from cogshell.persona import Persona
from cogshell.snapshot import snapshot_filename, write_snapshot


def test_event_bus_queues_in_order():
    bus = EventBus()
    bus.publish(TURN_COMPLETED, {"x": 1})
    bus.publish("other", {})
    assert bus.pending() == 2
    assert bus.get(timeout=0).payload == {"x": 1}
    assert bus.get(timeout=0).type == "other"
    assert bus.get(timeout=0) is None


def test_full_queue_drops_instead_of_blocking():
    bus = EventBus(maxsize=1)
    bus.publish("a", {})
    bus.publish("b", {})
    assert bus.pending() == 1
    assert bus.get(timeout=0).type == "a"


def test_episode_writer_drains_turns(memory):
    bus = EventBus()
    runner = BackgroundRunner(bus, DaemonContext(memory=memory, session_id="s1"), [EpisodeWriter()])
    bus.publish(
        TURN_COMPLETED,
        {"branch": "conversation", "context": "Iris: hi", "outcome": "Conversation turn", "metadata": {"summary": "hi"}},
    )
    assert runner.drain() == 1
    ep = memory.recent_episodes()[0]
    assert ep.context == "Iris: hi"
    assert ep.metadata == {"summary": "hi", "session_id": "s1"}
    assert runner.drain() == 0


def test_failing_daemon_does_not_stop_dispatch(memory):
    class Broken(EpisodeWriter):
        name = "broken"

        def on_event(self, evt, ctx):
            raise RuntimeError("nope")

    bus = EventBus()
    runner = BackgroundRunner(bus, DaemonContext(memory=memory), [Broken(), EpisodeWriter()])
    bus.publish(TURN_COMPLETED, {"context": "c", "outcome": "o"})
    runner.drain()
    assert memory.episode_count() == 1


def test_background_thread_start_stop(memory):
    bus = EventBus()
    runner = BackgroundRunner(bus, DaemonContext(memory=memory), [EpisodeWriter()])
    runner.start()
    bus.publish(TURN_COMPLETED, {"context": "c", "outcome": "o"})
    runner.stop()
    assert memory.episode_count() == 1


def test_snapshot_daemon_skips_first_tick_and_idle_persona(memory, tmp_path):
    persona = Persona()
    ctx = DaemonContext(memory=memory, persona=persona, snapshot_dir=str(tmp_path))
    d = SnapshotDaemon(every_s=60)
    d.tick(ctx)
    persona.interaction_count = 0
    d.tick(ctx)
    assert list(tmp_path.iterdir()) == []
    persona.interaction_count = 2
    d.tick(ctx)
    files = list(tmp_path.glob("persona_snapshot_*.json"))
    assert len(files) == 1
    assert json.loads(files[0].read_text(encoding="utf-8"))["interaction_count"] == 2


def test_snapshot_filename_and_write(tmp_path):
    when = dt.datetime(2024, 5, 6, 7, 8, 9)
    assert snapshot_filename("persona_abc", when) == "persona_snapshot_persona_abc_20240506_070809.json"
    path = write_snapshot({"persona_id": "p1", "name": "Iris"}, tmp_path / "nested")
    assert path.parent == tmp_path / "nested"
    assert path.name.startswith("persona_snapshot_p1_")
    assert json.loads(path.read_text(encoding="utf-8"))["name"] == "Iris"


def test_mind_explores_and_proposes(memory):
    gate = InitiativeGate(memory, threshold=0.55)
    calls = []

    def explorer(topic: str) -> str:
        calls.append(topic)
        return f"{topic} are fascinating"

    mind = AutonomousMind(explorer=explorer, initiative=gate, interests=["octopus"])
    assert mind.tick() is None
    mind.start()
    mind.inject_topic("octopus")
    fact = mind.tick()
    assert fact == "octopus: octopus are fascinating"
    assert calls == ["octopus"]
    assert mind.facts == [fact]
    assert mind.epoch == 1
    msgs = gate.poll()
    assert len(msgs) == 1
    assert msgs[0]["message"].startswith("I was exploring 'octopus'")
    state = mind.state_text()
    assert "Status: Active" in state
    assert "Facts Learned: 1" in state


def test_mind_daemon_ticks_only_when_active(memory):
    calls = []
    mind = AutonomousMind(explorer=lambda t: calls.append(t) or "", interests=["tides"])
    ctx = DaemonContext(memory=memory, mind=mind)
    d = MindDaemon(every_s=1)
    d.tick(ctx)
    assert calls == []
    mind.start()
    d.tick(ctx)
    assert calls == ["tides"]


def test_initiative_gate_threshold_and_cooldown(memory):
    gate = InitiativeGate(memory, threshold=0.55, cooldown_s=3600)
    weak = ProactiveCandidate(message="meh", relevance=0.4, novelty=0.8, confidence=0.6, interruption_cost=0.3)
    strong = ProactiveCandidate(message="wow", relevance=0.9, novelty=0.8, confidence=0.6, interruption_cost=0.3)
    assert InitiativeGate.score(weak) < 0.55 < InitiativeGate.score(strong)
    assert gate.submit(weak) is None
    assert gate.submit(strong) is not None
    assert gate.submit(strong) is None
    assert [m["message"] for m in gate.poll()] == ["wow"]


def test_initiative_hourly_cap(memory):
    gate = InitiativeGate(memory, threshold=0.0, cooldown_s=0, max_per_hour=2)
    c = ProactiveCandidate(message="m")
    assert gate.submit(c) and gate.submit(c)
    assert gate.submit(c) is None


def test_chunk_text():
    assert chunk_text("") == []
    assert chunk_text("short") == ["short"]
    chunks = chunk_text("x" * 2500, size=1000, overlap=200)
    assert [len(c) for c in chunks] == [1000, 1000, 900, 100]


def test_workspace_index_incremental(tmp_path):
    root = tmp_path / "ws"
    (root / ".git").mkdir(parents=True)
    (root / ".git" / "config.txt").write_text("ignored", encoding="utf-8")
    (root / "a.md").write_text("tidal pools hold anemones", encoding="utf-8")
    (root / "b.bin").write_bytes(b"\x00\x01")
    idx = WorkspaceIndex(":memory:", HashEmbed(), [str(root)])
    try:
        full = idx.reindex(True)
        assert (full.processed_files, full.indexed_chunks) == (1, 1)
        assert idx.reindex(False).total_files == 0
        (root / "c.txt").write_text("coral reefs bleach in warm water", encoding="utf-8")
        inc = idx.reindex(False)
        assert inc.processed_files == 1
        hits = idx.search("coral reefs bleach in warm water")
        assert hits[0].path.endswith("c.txt")
        assert idx.stats().indexed_files == 2
    finally:
        idx.close()
