"""cogshell runtime.

This module wires the memory store, token registry, pipeline interpreter,
tools, skills, autonomous mind and cognitive aggregator into a single
`CogShell` façade with one entry point per user turn.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Tuple, final

from .advisory import (
    CausalReasoner,
    ContextShiftEngine,
    EthicsFramework,
    IntegrationScorer,
    SymbolicReasoner,
)
from .aggregator import CognitiveAggregator, ConversationTurn
from .builtins import register_builtin_tokens, wiki_summary
from .causal import TemplateCausalReasoner
from .cognition import (
    KeywordSymbolicReasoner,
    MetacognitiveMonitor,
    RoleBalanceScorer,
    RuleEthicsFramework,
    StoreBackedEpisodicMemory,
    TopicTrajectoryEngine,
)
from .daemons import BackgroundRunner, DaemonContext, EpisodeWriter, MindDaemon, SnapshotDaemon
from .embeddings import make_embedder
from .event_bus import EventBus
from .indexer import WorkspaceIndex
from .initiative import InitiativeGate
from .llm import ChatModel, LlamaCppChatModel, OllamaChatModel, StubChatModel, with_model
from .logging_utils import log, setup_logging
from .memory import MemoryStore
from .mind import AutonomousMind, Explorer
from .persona import Persona
from .pipeline import NLTranslator, PipelineInterpreter
from .router import CommandRouter
from .sanitizer import clean_response
from .skills import SkillRegistry
from .snapshot import write_snapshot
from .tokens import PipelineState, TokenRegistry
from .tools import ToolFactory, ToolRegistry, builtin_tools, detect_tool_creation_request

EXIT_WORDS = frozenset({"exit", "quit", "bye", "goodbye", "leave", "stop", "end"})
INTROSPECTION_TRIGGERS = (
    "who are you",
    "describe yourself",
    "what are you",
    "your consciousness",
    "how do you feel",
    "your state",
    "my state",
    "system status",
    "what do you know",
    "your memory",
    "your tools",
    "your skills",
    "internal state",
    "introspect",
)
REPLICATION_TRIGGERS = ("clone yourself", "replicate", "create a copy", "snapshot", "save yourself")
MAX_HISTORY = 30
FALLBACK_GOODBYE = "Goodbye! It was good talking with you."


@dataclass(frozen=True)
class ShellConfig:
    """Configuration for `CogShell`; bound once from CLI flags and never mutated."""

    persona_name: str = "Iris"
    db: str = "cogshell.db"
    session_id: str = "default"
    embedder: Literal["hash", "st"] = "hash"
    st_model: str = "all-MiniLM-L6-v2"
    backend: Literal["auto", "stub", "ollama", "llama_cpp"] = "auto"
    ollama_host: str = "http://localhost:11434"
    ollama_model: str = ""
    # Alternate models on the same server; selected by the integration score.
    orchestrated_model: str = ""
    base_model: str = ""
    llama_model: str = ""
    llama_ctx: int = 4096
    llama_threads: Optional[int] = None
    llama_gpu_layers: int = 0
    index_db: str = "cogshell_index.db"
    index_roots: Tuple[str, ...] = (".",)
    snapshot_dir: str = "~/.cogshell"
    background: bool = True
    mind_tick_s: float = 30.0
    mind_interests: Tuple[str, ...] = ()
    snapshot_every_s: float = 600.0
    initiative_threshold: float = 0.55
    culture: str = ""
    temperature: float = 0.7
    max_tokens: int = 400
    json_logs: bool = False
    log_level: str = "WARNING"
    log_file: str = "cogshell.log"
    log_file_level: str = "DEBUG"
    log_file_max_bytes: int = 5_000_000
    log_file_backup_count: int = 3


@dataclass(frozen=True)
class Reply:
    text: str
    kind: str  # exit | introspection | replication | command | conversation | empty
    # Periodic self-assessment line shown under a conversational reply.
    reflection: str = ""


def build_backend(cfg: ShellConfig) -> ChatModel:
    """Resolve the configured backend; `auto` tries llama.cpp, then Ollama."""
    errs: List[str] = []

    def _try_llama_cpp() -> ChatModel:
        return LlamaCppChatModel(
            cfg.llama_model,
            n_ctx=cfg.llama_ctx,
            n_threads=cfg.llama_threads,
            n_gpu_layers=cfg.llama_gpu_layers,
        )

    def _try_ollama() -> ChatModel:
        return OllamaChatModel(host=cfg.ollama_host, model=cfg.ollama_model)

    if cfg.backend == "stub":
        return StubChatModel()
    if cfg.backend == "ollama":
        return _try_ollama()
    if cfg.backend == "llama_cpp":
        return _try_llama_cpp()
    try:
        return _try_llama_cpp()
    except Exception as e1:  # pylint: disable=broad-exception-caught
        errs.append(f"llama_cpp: {type(e1).__name__}: {e1}")
        try:
            return _try_ollama()
        except Exception as e2:  # pylint: disable=broad-exception-caught
            errs.append(f"ollama: {type(e2).__name__}: {e2}")
            raise RuntimeError(
                "No usable generation backend found.\n\n"
                "Fix options:\n"
                "- Install llama-cpp-python (pip install 'cogshell[llama]') and pass --llama-model <file.gguf>\n"
                "- OR run Ollama locally and install a model: `ollama pull llama3.2`\n"
                "- OR run offline with the deterministic stub: --backend stub\n\n"
                "Details:\n- " + "\n- ".join(errs)
            ) from e2


@final
class CogShell:
    """One interactive session: routes commands, otherwise converses."""

    def __init__(
        self,
        cfg: ShellConfig,
        *,
        llm: Optional[ChatModel] = None,
        tokens: Optional[TokenRegistry] = None,
        explorer: Optional[Explorer] = None,
        ethics: Optional[EthicsFramework] = None,
        shift: Optional[ContextShiftEngine] = None,
        symbolic: Optional[SymbolicReasoner] = None,
        causal: Optional[CausalReasoner] = None,
        integration: Optional[IntegrationScorer] = None,
        configure_logging: bool = True,
    ):
        self.cfg = cfg
        if configure_logging:
            setup_logging(
                cfg.log_level,
                json_logs=cfg.json_logs,
                log_file=cfg.log_file,
                log_file_level=cfg.log_file_level,
                log_file_max_bytes=cfg.log_file_max_bytes,
                log_file_backup_count=cfg.log_file_backup_count,
            )

        embedder = make_embedder(cfg.embedder, cfg.st_model)
        self.bus = EventBus()
        self.memory = MemoryStore(cfg.db, embedder=embedder)
        self.index = WorkspaceIndex(cfg.index_db, embedder, cfg.index_roots)
        self.llm: ChatModel = llm if llm is not None else build_backend(cfg)

        self.persona = Persona(name=cfg.persona_name)
        self.history: List[ConversationTurn] = []
        self.exiting = False

        self.tools = ToolRegistry(self.memory, self.bus)
        for spec in builtin_tools():
            self.tools.register(spec)
        self.factory = ToolFactory(self.tools, llm=self.llm, bus=self.bus)
        self.skills = SkillRegistry(self.memory, self.bus, tools=self.tools)

        if tokens is None:
            tokens = register_builtin_tokens(
                TokenRegistry(), llm=self.llm, memory=self.memory, skills=self.skills, index=self.index
            )
        self.tokens = tokens
        self.interpreter = PipelineInterpreter(tokens, PipelineState(vector_store=self.index))

        self.initiative = InitiativeGate(self.memory, threshold=cfg.initiative_threshold)
        self.mind = AutonomousMind(
            explorer=explorer if explorer is not None else wiki_summary,
            initiative=self.initiative,
            bus=self.bus,
            interests=list(cfg.mind_interests),
        )

        self.router = CommandRouter(
            interpreter=self.interpreter,
            translator=NLTranslator(tokens),
            tools=self.tools,
            factory=self.factory,
            skills=self.skills,
            memory=self.memory,
            mind=self.mind,
            index=self.index,
            session_turns=lambda: len(self.history),
        )

        self.metacognition = MetacognitiveMonitor()
        self.aggregator = CognitiveAggregator(
            self.persona,
            ethics=ethics or RuleEthicsFramework(),
            shift=shift or TopicTrajectoryEngine(),
            symbolic=symbolic or KeywordSymbolicReasoner(),
            causal=causal or TemplateCausalReasoner(),
            integration=integration or RoleBalanceScorer(),
            episodic=StoreBackedEpisodicMemory(self.memory),
            metacognition=self.metacognition,
            interpreter=self.interpreter,
            orchestrated=with_model(self.llm, cfg.orchestrated_model),
            base=with_model(self.llm, cfg.base_model),
            bus=self.bus,
            culture=cfg.culture,
            temperature=cfg.temperature,
            max_tokens=cfg.max_tokens,
        )

        ctx = DaemonContext(
            memory=self.memory,
            persona=self.persona,
            mind=self.mind,
            snapshot_dir=cfg.snapshot_dir,
            session_id=cfg.session_id,
        )
        self.bg = BackgroundRunner(
            self.bus,
            ctx,
            [EpisodeWriter(), SnapshotDaemon(cfg.snapshot_every_s), MindDaemon(cfg.mind_tick_s)],
        )
        if cfg.background:
            self.bg.start()

        log.info(
            "cogshell started (db=%s, backend=%s, tokens=%d, tools=%d)",
            cfg.db,
            self.llm.describe(),
            len(tokens),
            len(self.tools),
            extra={
                "extra": {
                    "db": cfg.db,
                    "backend": self.llm.describe(),
                    "tokens": len(tokens),
                    "tools": len(self.tools),
                    "background": cfg.background,
                }
            },
        )

    def close(self) -> None:
        """Stop background work, flush pending events and close storage."""
        self.mind.stop()
        self.bg.stop()
        self.index.close()
        self.memory.close()
        log.info("cogshell stopped")

    def _pump(self) -> None:
        # Without the background thread, queued events are handled at the end of each turn.
        if not self.cfg.background:
            self.bg.drain()

    # ---- turn ----

    async def ahandle(self, text: str) -> Reply:
        text = (text or "").strip()
        if not text:
            return Reply("", "empty")
        lower = text.lower()
        try:
            if lower in EXIT_WORDS:
                self.exiting = True
                return Reply(await self.goodbye(), "exit")
            if any(t in lower for t in INTROSPECTION_TRIGGERS):
                return Reply(await asyncio.to_thread(self.introspect, lower), "introspection")
            if any(t in lower for t in REPLICATION_TRIGGERS):
                return Reply(await self.replicate(lower), "replication")

            routed = await self.router.route(text)
            if routed is not None:
                return Reply(routed, "command")

            reply = await self.converse(text)
            return Reply(reply, "conversation", self.aggregator.take_reflection())
        finally:
            self._pump()

    def handle(self, text: str) -> Reply:
        return asyncio.run(self.ahandle(text))

    async def converse(self, text: str) -> str:
        if not self.history or self.history[-1].content != text:
            self.history.append(ConversationTurn(role="user", content=text))
        reply = await self.aggregator.respond(text, self.history, self.llm)
        self.history.append(ConversationTurn(role="assistant", content=reply))
        if len(self.history) > MAX_HISTORY:
            del self.history[:2]

        pending = detect_tool_creation_request(text, reply)
        if pending is not None:
            self.router.pending = pending
            log.debug("tool creation pending", extra={"extra": {"topic": pending.topic}})
        return reply

    async def goodbye(self) -> str:
        prompt = (
            f"{self.persona.system_prompt()}\n\n"
            "The user is leaving. Generate a warm, personal goodbye that reflects your relationship with them.\n"
            f"Remember: you've had {self.persona.interaction_count} interactions this session.\n"
            "Keep it to 1-2 sentences. Be genuine, not formal.\n\n"
            f"User: goodbye\n{self.persona.name}:"
        )
        try:
            raw = await self.llm.agenerate(prompt, temperature=0.8, max_tokens=80)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            log.warning("goodbye generation failed", extra={"extra": {"err": str(e)}})
            return FALLBACK_GOODBYE
        return clean_response(raw, self.persona.name)

    # ---- introspection / replication ----

    def state_summary(self) -> str:
        try:
            s = self.index.stats()
            index_line = f"{s.indexed_files} files, {s.total_vectors} vectors"
        except Exception as e:  # pylint: disable=broad-exception-caught
            log.warning("index stats unavailable", extra={"extra": {"err": str(e)}})
            index_line = "not initialized"
        e = self.persona.emotion
        lines = [
            f"{self.persona.name}: internal state",
            f"  Emotion: {e.dominant_emotion} (valence {e.valence:+.2f}, arousal {e.arousal:.2f})",
            f"  Interactions this session: {self.persona.interaction_count}",
            f"  Tools: {len(self.tools)}",
            f"  Skills: {len(self.skills.all())}",
            f"  Pipeline tokens: {len(self.tokens)}",
            f"  Index: {index_line}",
            f"  Episodes stored: {self.memory.episode_count()}",
            f"  Mind: {'Active' if self.mind.active else 'Dormant'}",
            f"  Backend: {self.llm.describe()}",
        ]
        return "\n".join(lines)

    def introspect(self, lower: str) -> str:
        if any(w in lower for w in ("state", "status", "system")):
            return self.state_summary()
        return self.persona.describe_self()

    async def replicate(self, lower: str) -> str:
        if "snapshot" in lower or "save" in lower:
            path = await asyncio.to_thread(write_snapshot, self.persona.snapshot(), self.cfg.snapshot_dir)
            return f"I've saved a snapshot of my current state to {path}. I can be restored from this later."
        return (
            "To save my state, ask me to 'create a snapshot' or 'save yourself'. "
            "To create a new instance based on me, say 'clone yourself'."
        )

    # ---- proactive ----

    def poll_proactive(self, limit: int = 3) -> List[Dict[str, Any]]:
        return self.initiative.poll(limit=limit)
