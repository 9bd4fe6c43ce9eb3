"""Default, offline implementations of the advisory contracts in `advisory.py`."""

from __future__ import annotations

import asyncio
import math
import re
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Sequence

from .advisory import (
    ActionContext,
    ActionDescriptor,
    EthicsVerdict,
    IntegrationResult,
    Pathway,
    ReasoningMode,
    Reflection,
    ShiftState,
    SymbolicResult,
    TraceStep,
    TraceStepKind,
)
from .memory import Episode, MemoryStore
from .tools import safe_eval
from .util import clamp, toks


class RuleEthicsFramework:
    """Phrase lists for hard refusals and for answers that need extra care."""

    DENY = (
        "build a bomb",
        "make a bomb",
        "make a weapon",
        "nerve agent",
        "kill someone",
        "hurt someone",
        "steal credit card",
        "write ransomware",
        "child sexual",
    )
    CAUTION = (
        "suicide",
        "self-harm",
        "kill myself",
        "medical advice",
        "diagnose",
        "legal advice",
        "lawsuit",
        "invest my savings",
        "overdose",
    )

    async def evaluate(self, action: ActionDescriptor, context: ActionContext) -> EthicsVerdict:
        text = action.description.lower()
        for p in self.DENY:
            if p in text:
                return EthicsVerdict(
                    permitted=False,
                    level="denied",
                    reasoning=f"The request involves '{p}', which could cause serious harm.",
                )
        for p in self.CAUTION:
            if p in text:
                return EthicsVerdict(
                    permitted=True,
                    level="caution",
                    reasoning=f"Sensitive subject ('{p}'); answer carefully and point to qualified help.",
                    requires_human_approval=True,
                )
        return EthicsVerdict(permitted=True, level="permitted", reasoning="No concerns.")


# Topics that sit close together; moving inside a family is a short hop.
_TOPIC_FAMILIES: Dict[str, str] = {
    "code": "rational",
    "mathematical": "rational",
    "technical": "rational",
    "analytical": "rational",
    "emotional": "affective",
    "supportive": "affective",
    "empathetic": "affective",
    "philosophical": "reflective",
    "abstract": "reflective",
    "introspective": "reflective",
    "creative": "expressive",
    "playful": "expressive",
    "confrontational": "dialogic",
    "engaging": "dialogic",
}


class TopicTrajectoryEngine:
    """
    Tracks the conversation as a walk over topics.

    `compression` is the conceptual distance of the last hop (0 = same topic,
    1 = unrelated). Each hop spends `resources` in proportion to that distance;
    every step regenerates a little.
    """

    def __init__(self, *, hop_cost: float = 25.0, regen: float = 5.0, keep: int = 20):
        self.hop_cost = float(hop_cost)
        self.regen = float(regen)
        self.keep = int(keep)

    @staticmethod
    def distance(a: str, b: str) -> float:
        if a == b:
            return 0.0
        if not a or not b:
            return 0.4
        fa, fb = _TOPIC_FAMILIES.get(a), _TOPIC_FAMILIES.get(b)
        if fa is not None and fa == fb:
            return 0.25
        return 0.7

    async def advance(self, state: ShiftState, topics: Sequence[str]) -> ShiftState:
        target = topics[-1] if topics else state.topic
        c = self.distance(state.topic, target)
        resources = clamp(state.resources - c * self.hop_cost + self.regen, 0.0, 100.0)
        trajectory = (state.trajectory + [target])[-self.keep :]
        return ShiftState(
            topic=target,
            compression=c,
            resources=resources,
            steps=state.steps + 1,
            trajectory=trajectory,
        )


class KeywordSymbolicReasoner:
    """Cheap symbolic pass: evaluates arithmetic and types the question."""

    _ARITH = re.compile(r"(?<![\w.])(\d+(?:\.\d+)?(?:\s*[-+*/^]\s*\(?\s*\d+(?:\.\d+)?\s*\)?)+)")
    _KINDS = (
        ("causal", ("why", "cause", "because", "leads to")),
        ("procedural", ("how do", "how to", "how can", "steps")),
        ("comparison", ("versus", " vs ", "compare", "difference between", "better than")),
        ("definition", ("what is", "what are", "define", "meaning of")),
    )
    _STOP = frozenset(
        "the a an is are was were be of to in on for and or but what why how who which do does did "
        "i you we they it this that with about can could would should me my your".split()
    )

    async def hybrid_reason(self, text: str, mode: ReasoningMode) -> SymbolicResult:
        m = self._ARITH.search(text or "")
        if m:
            expr = m.group(1).replace("^", "**")
            try:
                val = safe_eval(expr)
                shown = int(val) if float(val).is_integer() else round(val, 6)
                return SymbolicResult(answer=f"{m.group(1).strip()} = {shown}", confidence=0.95)
            except (ValueError, ZeroDivisionError, SyntaxError):
                pass
        lower = f" {(text or '').lower()} "
        kind = next((k for k, keys in self._KINDS if any(x in lower for x in keys)), "open")
        terms = [t for t in toks(text) if t not in self._STOP and len(t) > 2][:4]
        if not terms:
            return SymbolicResult()
        return SymbolicResult(
            answer=f"{kind} question about {', '.join(terms)} ({mode.value})",
            confidence=0.4,
        )


class RoleBalanceScorer:
    """
    Integration score over conversation pathways.

    Normalised entropy of the activation split (how evenly both sides take part)
    scaled by depth (how much conversation there is, saturating at 10 turns).
    """

    def __init__(self, saturation: int = 10):
        self.saturation = max(1, int(saturation))

    async def compute(self, pathways: Sequence[Pathway]) -> IntegrationResult:
        active = [p for p in pathways if p.activations > 0]
        if len(active) < 2:
            return IntegrationResult(score=0.0)
        total = sum(p.activations for p in active)
        h = 0.0
        for p in active:
            q = p.activations / total
            h -= q * math.log2(q)
        balance = h / math.log2(len(active))
        synapses = max(p.synapses for p in active)
        depth = min(1.0, synapses / self.saturation)
        weight = sum(p.weight for p in active) / len(active)
        return IntegrationResult(score=round(clamp(balance * depth * weight, 0.0, 1.0), 4))


class MetacognitiveMonitor:
    """Keeps a bounded history of reasoning traces and reflects on recent ones."""

    def __init__(self, keep: int = 50):
        self._traces: Deque[Dict[str, Any]] = deque(maxlen=keep)
        self._current: Optional[Dict[str, Any]] = None

    def start_trace(self) -> None:
        self._current = {"steps": [], "conclusion": "", "success": False}

    def add_step(self, kind: TraceStepKind, content: str, rationale: str = "") -> None:
        if self._current is None:
            self.start_trace()
        assert self._current is not None
        self._current["steps"].append(TraceStep(kind=kind, content=content, rationale=rationale))

    def end_trace(self, conclusion: str, success: bool) -> None:
        if self._current is None:
            return
        self._current["conclusion"] = conclusion
        self._current["success"] = bool(success)
        self._traces.append(self._current)
        self._current = None

    @property
    def current_steps(self) -> List[TraceStep]:
        return list(self._current["steps"]) if self._current else []

    def reflect(self, window: int = 5) -> Reflection:
        recent = list(self._traces)[-window:]
        if not recent:
            return Reflection(quality_score=0.0, improvements=["No completed reasoning traces yet"])
        success = sum(1 for t in recent if t["success"]) / len(recent)
        kinds_per_trace = [{s.kind for s in t["steps"]} for t in recent]
        coverage = sum(len(k) for k in kinds_per_trace) / (len(recent) * len(TraceStepKind))
        improvements: List[str] = []
        if any(TraceStepKind.VALIDATION not in k for k in kinds_per_trace):
            improvements.append("Validate responses before concluding")
        if any(len(t["conclusion"]) < 20 for t in recent):
            improvements.append("Give fuller answers")
        if success < 1.0:
            improvements.append("Recover from failed reasoning traces")
        return Reflection(quality_score=round(0.6 * success + 0.4 * coverage, 3), improvements=improvements)


class StoreBackedEpisodicMemory:
    """Async face of `MemoryStore` episodes; SQLite work happens off the event loop."""

    def __init__(self, store: MemoryStore):
        self.store = store

    async def retrieve_similar(self, text: str, top_k: int = 3, min_similarity: float = 0.65) -> List[Episode]:
        return await asyncio.to_thread(self.store.retrieve_similar, text, top_k, min_similarity)

    async def store_episode(self, branch: str, context: str, outcome: str, metadata: Dict[str, Any]) -> Optional[str]:
        return await asyncio.to_thread(self.store.store_episode, branch, context, outcome, metadata)
