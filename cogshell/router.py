"""Prioritized natural-language command routing.

`CommandRouter.route` tries its rules in a fixed order and returns the reply of
the first one that matches, or `None` so the turn falls through to
conversation. Matching runs on the lower-cased, trimmed input; arguments that
keep their case (pipelines, token invocations) come from the raw input.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import re
from typing import Callable, List, Optional

from .indexer import WorkspaceIndex
from .logging_utils import log
from .memory import MemoryStore
from .mind import AutonomousMind
from .pipeline import NLTranslator, PipelineInterpreter
from .skills import SkillRegistry
from .tools import PendingConfirmation, ToolCall, ToolFactory, ToolRegistry
from .util import preview

LIST_SKILLS = frozenset({"list skills", "what skills", "show skills", "skills"})
LIST_TOKENS = frozenset({"tokens", "list tokens", "show tokens", "pipeline tokens"})
PIPELINE_HELP = frozenset(
    {"pipeline help", "pipeline examples", "help pipeline", "how to use pipeline", "pipeline usage"}
)
TOOL_STATS = frozenset({"tool stats", "toolstats", "show tool stats"})
CONNECTIONS = frozenset({"connections", "show connections", "learning connections", "tool skill connections"})
MEMORY_STATS = frozenset({"memory stats", "conversation history", "my memory", "your memory"})
MIND_STATE = frozenset({"mind state", "mind status", "autonomous state", "your mind"})
START_MIND = frozenset({"start mind", "start thinking", "wake up mind", "enable autonomous"})
STOP_MIND = frozenset({"stop mind", "stop thinking", "pause mind", "disable autonomous"})
INTERESTS = frozenset({"interests", "my interests", "what are you curious about"})
REINDEX_FULL = frozenset({"reindex", "reindex full"})
REINDEX_INC = frozenset({"reindex incremental", "reindex inc"})
INDEX_STATS = frozenset({"index stats", "indexer stats"})
LIST_TOOLS = frozenset({"list tools", "what tools", "show tools", "tools", "my tools", "available tools"})
REBUILD = frozenset({"rebuild", "rebuild yourself", "recompile", "build yourself"})
MOD_HISTORY = frozenset({"modification history", "my modifications", "what did i change", "view changes"})

_RUN = re.compile(r"^(run|execute)\s+(.+)$")
_GOOGLE = re.compile(r"^google\s*(search)?\s*(.+)$")
_LEARN_ABOUT = re.compile(r"^learn\s+about\s+(.+)$")
_AFFIRM = re.compile(r"^(yes|ok|create\s*it|do\s*it|build\s*it|make\s*it|go\s*ahead|sure|please)$")
_ADD_TOOL = re.compile(r"^(add\s+tool|learn|create\s+tool|build\s+tool|make\s+tool)\s+(.+)$")
_TOOL_FOR = re.compile(r"^(create|build|make)\s+(a\s+)?tool\s+(that|for|to|which)\s+(.+)$")
_SMART_TOOL = re.compile(r"^(smart\s+tool|find\s+tool)\s+(for\s+)?(.+)$")
_RECALL = re.compile(r"^(remember|recall|what\s+do\s+you\s+remember\s+about)\s+(.+)$")
_THINK_ABOUT = re.compile(r"^(think about|explore|be curious about|research)\s+(.+)$")
_ADD_INTEREST = re.compile(r"^(add interest|interest in|i'm interested in)\s+(.+)$")
_INDEX_SEARCH = re.compile(r"^(index\s+search|search\s+index|find\s+in\s+index)\s+(.+)$")
_EMERGENCE = re.compile(r"^emergence\s+(.+)$")
_USE_TOOL = re.compile(r"^(?:use\s+)?tool\s+(\w+)\s*(.*)$", re.IGNORECASE | re.DOTALL)

GOOGLE_OUTPUT_CHARS = 500


class CommandRouter:
    def __init__(
        self,
        *,
        interpreter: PipelineInterpreter,
        translator: NLTranslator,
        tools: ToolRegistry,
        factory: ToolFactory,
        skills: SkillRegistry,
        memory: MemoryStore,
        mind: Optional[AutonomousMind] = None,
        index: Optional[WorkspaceIndex] = None,
        session_turns: Callable[[], int] = lambda: 0,
    ):
        self.interpreter = interpreter
        self.translator = translator
        self.tools = tools
        self.factory = factory
        self.skills = skills
        self.memory = memory
        self.mind = mind
        self.index = index
        self.session_turns = session_turns
        # Set by tool-creation detection after a conversational reply; consumed once.
        self.pending: Optional[PendingConfirmation] = None

    def _hit(self, rule: str) -> None:
        log.debug("route", extra={"extra": {"rule": rule}})

    async def route(self, text: str) -> Optional[str]:
        raw = (text or "").strip()
        lower = raw.lower()
        if not lower:
            return None

        if lower in LIST_SKILLS:
            self._hit("list_skills")
            return await asyncio.to_thread(self.skills.list_text)
        if lower in LIST_TOKENS:
            self._hit("tokens")
            return self.interpreter.list_tokens()
        if lower in PIPELINE_HELP:
            self._hit("pipeline_help")
            return self.interpreter.help_text()
        if lower in TOOL_STATS:
            self._hit("tool_stats")
            return await asyncio.to_thread(self.tool_stats_text)
        if lower in CONNECTIONS:
            self._hit("connections")
            return await asyncio.to_thread(self.connections_text)

        m = _RUN.match(lower)
        if m:
            self._hit("run_skill")
            return await asyncio.to_thread(self.skills.run_text, m.group(2).strip())

        m = _GOOGLE.match(lower)
        if m:
            self._hit("google")
            return await self.google(m.group(2).strip())

        m = _LEARN_ABOUT.match(lower)
        if m:
            self._hit("learn_about")
            return await asyncio.to_thread(self.skills.learn_text, m.group(1).strip())

        if self.pending is not None and _AFFIRM.match(lower):
            pending, self.pending = self.pending, None
            self._hit("confirm_tool")
            return await asyncio.to_thread(self.factory.create_from_context, pending.topic, pending.description)

        m = _ADD_TOOL.match(lower)
        if m and "about" not in lower:
            self._hit("add_tool")
            return await asyncio.to_thread(self.factory.add_tool, m.group(2).strip())

        m = _TOOL_FOR.match(lower)
        if m:
            self._hit("create_tool")
            return await asyncio.to_thread(self.factory.create_from_description, m.group(4).strip())

        m = _SMART_TOOL.match(lower)
        if m:
            self._hit("smart_tool")
            return await asyncio.to_thread(self.factory.smart_tool, m.group(3).strip())

        m = _RECALL.match(lower)
        if m:
            self._hit("recall")
            return await asyncio.to_thread(self.recall_text, m.group(2).strip())

        if lower in MEMORY_STATS:
            self._hit("memory_stats")
            return await asyncio.to_thread(self.memory_stats_text)

        reply = self._mind_rules(lower)
        if reply is not None:
            return reply

        reply = await self._index_rules(lower)
        if reply is not None:
            return reply

        m = _EMERGENCE.match(lower)
        if m:
            self._hit("emergence")
            return await self.emergence(m.group(1).strip())

        if "|" in raw:
            self._hit("pipeline")
            run = await self.interpreter.run(raw)
            return run.render()

        single = await self.interpreter.run_single(raw)
        if single is not None:
            self._hit("token")
            return single

        translated = self.translator.translate(raw)
        if translated is not None:
            single = await self.interpreter.run_single(translated)
            if single is not None:
                self._hit("nl_token")
                return single

        # Matched on the raw input so JSON arguments keep their case.
        m = _USE_TOOL.match(raw)
        if m:
            self._hit("use_tool")
            return await self.tools.use(m.group(1), m.group(2))

        if lower in LIST_TOOLS:
            self._hit("list_tools")
            names = self.tools.names()
            return f"I have {len(names)} tools available. Key ones: {', '.join(names[:10])}"

        if "modify" in lower and any(p in lower for p in ("your code", "yourself", "my code")):
            self._hit("self_modify_help")
            return "Yes, I can modify myself! Use the commands above. Changes create automatic backups."

        if lower in REBUILD:
            self._hit("rebuild")
            return await self.tools.use("rebuild_self", "{}")

        if lower in MOD_HISTORY:
            self._hit("modification_history")
            return await self.tools.use("view_modification_history", "{}")

        return None

    # ---- mind ----

    def _mind_rules(self, lower: str) -> Optional[str]:
        mind = self.mind
        if lower in MIND_STATE:
            self._hit("mind_state")
            return mind.state_text() if mind else "Autonomous mind is not initialized."
        if lower in START_MIND:
            self._hit("start_mind")
            if mind is None:
                return "Autonomous mind is not initialized."
            mind.start()
            return "Autonomous mind activated. I'll think, explore the internet, and learn in the background."
        if lower in STOP_MIND:
            self._hit("stop_mind")
            if mind is None:
                return "Autonomous mind is not initialized."
            mind.stop()
            return "Autonomous mind paused. I'll only respond when you talk to me."
        if lower in INTERESTS:
            self._hit("interests")
            return mind.interests_text() if mind else "Autonomous mind is not initialized."
        m = _THINK_ABOUT.match(lower)
        if m:
            self._hit("think_about")
            if mind is None:
                return "Autonomous mind is not initialized."
            topic = m.group(2).strip()
            mind.inject_topic(topic)
            mind.add_interest(topic)
            return f"I'll explore '{topic}' in the background and let you know if I find something interesting!"
        m = _ADD_INTEREST.match(lower)
        if m:
            self._hit("add_interest")
            if mind is None:
                return "Autonomous mind is not initialized."
            interest = m.group(2).strip()
            mind.add_interest(interest)
            return f"Added '{interest}' to my interests. I'll keep an eye out for related information!"
        return None

    # ---- index ----

    async def _index_rules(self, lower: str) -> Optional[str]:
        if lower in REINDEX_FULL:
            self._hit("reindex_full")
            if self.index is None:
                return "The workspace index is not available."
            r = await asyncio.to_thread(self.index.reindex, True)
            return (
                f"Full reindex complete! Processed {r.processed_files} files, indexed {r.indexed_chunks} chunks "
                f"in {r.elapsed_s:.1f}s. ({r.skipped_files} skipped, {r.error_files} errors)"
            )
        if lower in REINDEX_INC:
            self._hit("reindex_incremental")
            if self.index is None:
                return "The workspace index is not available."
            r = await asyncio.to_thread(self.index.reindex, False)
            if r.total_files == 0:
                return "No files have changed since last index. Workspace is up to date!"
            return (
                f"Incremental reindex complete! Updated {r.processed_files} files, "
                f"indexed {r.indexed_chunks} chunks in {r.elapsed_s:.1f}s."
            )
        m = _INDEX_SEARCH.match(lower)
        if m:
            self._hit("index_search")
            if self.index is None:
                return "The workspace index is not available."
            hits = await asyncio.to_thread(self.index.search, m.group(2).strip())
            if not hits:
                return "No matching content found in the indexed workspace."
            lines = [f"Found {len(hits)} relevant matches:\n"]
            for h in hits:
                lines.append(f"{h.path} (chunk {h.chunk_index + 1}, score: {h.score:.2f})\n   {h.content[:200]}...")
            return "\n".join(lines)
        if lower in INDEX_STATS:
            self._hit("index_stats")
            if self.index is None:
                return "The workspace index is not available."
            s = await asyncio.to_thread(self.index.stats)
            lines = [
                "Index Statistics",
                f"  Indexed files: {s.indexed_files}",
                f"  Total vectors: {s.total_vectors}",
                f"  Vector dimensions: {s.vector_size}",
            ]
            if s.last_run:
                lines.append(f"  Last run: {dt.datetime.fromtimestamp(s.last_run).isoformat(timespec='seconds')}")
            return "\n".join(lines)
        return None

    # ---- handlers ----

    def tool_stats_text(self) -> str:
        stats = self.memory.tool_stats()
        calls = sum(int(s["calls"]) for s in stats)
        ok = sum(int(s["successes"]) for s in stats)
        rate = ok / calls if calls else 0.0
        head = f"I've learned {len(stats)} patterns with a {rate:.0%} success rate. Total usage: {calls}."
        if not stats:
            return head
        lines = [head] + [f"  {s['tool']}: {s['calls']} calls, {s['successes']} succeeded" for s in stats[:10]]
        return "\n".join(lines)

    def connections_text(self) -> str:
        pairs = self.memory.connections()
        if not pairs:
            return "I haven't learned any patterns yet. Use skills and tools and I'll start learning relationships."
        concepts = {p["tool"] for p in pairs} | {p["skill"] for p in pairs}
        head = (
            f"I have {len(pairs)} learned patterns across {len(concepts)} concepts. "
            "Use tools and skills to build more connections!"
        )
        return "\n".join([head] + [f"  {p['skill']} <-> {p['tool']} (x{p['weight']:g})" for p in pairs[:10]])

    def recall_text(self, topic: str) -> str:
        episodes = self.memory.retrieve_similar(topic, top_k=10, min_similarity=0.3)
        if not episodes:
            return f"I don't have any specific memories about '{topic}'."
        lines = [f"Here's what I remember about '{topic}':", ""]
        for e in episodes[:5]:
            when = dt.datetime.fromtimestamp(e.ts).strftime("%Y-%m-%d %H:%M")
            lines.append(f"From conversation on {when}:")
            lines.append(f"  {preview(e.summary or e.context, 100)}")
        return "\n".join(lines)

    def memory_stats_text(self) -> str:
        total = self.memory.episode_count()
        lines = [
            "Conversation Memory Statistics",
            f"  Total stored episodes: {total}",
            f"  Current session turns: {self.session_turns()}",
        ]
        recent = self.memory.recent_episodes(limit=3)
        if recent:
            lines.append("\n  Recent episodes:")
            for e in recent:
                when = dt.datetime.fromtimestamp(e.ts).strftime("%Y-%m-%d %H:%M")
                lines.append(f"    - {when}: {preview(e.summary, 80)}")
        return "\n".join(lines)

    async def google(self, query: str) -> str:
        spec = next((s for s in self.tools.all() if "google" in s.name.lower() or "search" in s.name.lower()), None)
        if spec is None:
            return "Google search tool is not available. Try 'add tool search' first."
        field = spec.primary_field() or "query"
        out = await self.tools.aexecute(ToolCall(name=spec.name, arguments={field: query}))
        if not out.ok:
            return f"I couldn't complete the search. Error: {out.error}"
        text = out.text or "No results found."
        if len(text) > GOOGLE_OUTPUT_CHARS:
            text = text[:GOOGLE_OUTPUT_CHARS] + "..."
        return f"I found results for '{query}':\n\n{text}"

    async def emergence(self, topic: str) -> str:
        """Research the topic with whatever tokens exist, hand it to the mind, then synthesize."""
        found: List[str] = []
        for token in ("ArxivSearch", "WikiSearch"):
            if token in self.interpreter.registry:
                res = await self.interpreter.run_single(f"{token} '{topic}'")
                log.debug("emergence research", extra={"extra": {"token": token, "ok": bool(res)}})
                if res and not res.startswith("Error executing"):
                    found.append(token)
        if self.mind is not None:
            self.mind.inject_topic(topic)
            self.mind.add_interest(topic)
        if found and "Summarize" in self.interpreter.registry:
            await self.interpreter.run_single("Summarize")
        log.info("emergence cycle", extra={"extra": {"topic": topic, "sources": found}})
        return f"I completed an emergence cycle on {topic}. I've synthesized new patterns from the research."
