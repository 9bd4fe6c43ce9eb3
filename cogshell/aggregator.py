"""Composes a conversational reply from advisory annotations.

Each stage consults one advisory subsystem and may contribute a short note.
A failing stage is logged and contributes nothing; only cancellation escapes.
The ethics stage can end the turn early with a `Refused` result, in which case
no backend is called.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel

from .advisory import (
    ActionContext,
    ActionDescriptor,
    CausalReasoner,
    ContextShiftEngine,
    EpisodicMemory,
    EthicsFramework,
    IntegrationScorer,
    Metacognition,
    Pathway,
    ReasoningMode,
    Reflection,
    ShiftState,
    SymbolicReasoner,
    TraceStepKind,
)
from .causal import build_graph, extract_causal_terms
from .event_bus import TURN_COMPLETED, EventBus
from .language import ENGLISH, classify_topic, detect_language, language_for_culture
from .llm import ChatModel
from .logging_utils import log
from .persona import Persona
from .pipeline import PipelineInterpreter, is_pipeline_related
from .sanitizer import clean_response
from .util import words

TROUBLE_REPLY = "I'm having trouble thinking right now. Let me try again."

PHI_HIGH = 0.5
PHI_LOW = 0.2
HISTORY_IN_PROMPT = 8
HISTORY_FOR_PHI = 10
REFLECT_EVERY = 5

_FROM_PREFIX = re.compile(r"^\[From [^\]]+\]:\s*")
_THOUGHT_PREFIX_BLOCK = ("symbolic-processing-note:", "inference-available:", "I am an AI", "As an AI")
_THOUGHT_SUBSTR_BLOCK = ("I cannot answer", "designed to provide helpful")

StageOutcome = Literal["noted", "silent", "failed", "skipped"]


class ConversationTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


@dataclass
class Annotations:
    thoughts: List[str] = field(default_factory=list)
    ethics: Optional[str] = None
    context_shift: Optional[str] = None
    integration: Optional[str] = None
    memory: Optional[str] = None
    reasoning: Optional[str] = None
    causal: Optional[str] = None
    # stage name -> noted | silent | failed | skipped
    outcomes: Dict[str, StageOutcome] = field(default_factory=dict)

    def cognitive_state(self) -> List[str]:
        lines = []
        for label, note in (
            ("Ethics", self.ethics),
            ("Context shift", self.context_shift),
            ("Conversation integration", self.integration),
            ("Memory", self.memory),
            ("Reasoning", self.reasoning),
            ("Causal", self.causal),
        ):
            if note:
                lines.append(f"- {label}: {note}")
        return lines


@dataclass(frozen=True)
class Refused:
    text: str
    reasoning: str = ""


@dataclass(frozen=True)
class Proceeded:
    annotations: Annotations
    backend: ChatModel


AggregateResult = Union[Refused, Proceeded]


def language_instruction(text: str, culture: str = "") -> str:
    if culture and culture != ENGLISH.culture:
        lang = language_for_culture(culture)
    else:
        detected = detect_language(text)
        lang = detected.language if detected.culture != ENGLISH.culture else ""
    if lang:
        return (
            f"LANGUAGE INSTRUCTION: The user is writing in {lang}. "
            f"Respond ENTIRELY in {lang}. Do not switch to English."
        )
    return (
        "LANGUAGE INSTRUCTION: Respond in the same language as the user. "
        "If they switch languages mid-conversation, switch with them immediately."
    )


def history_block(history: Sequence[ConversationTurn], limit: int = HISTORY_IN_PROMPT) -> List[str]:
    out: List[str] = []
    prev: Optional[str] = None
    for turn in list(history)[-limit:]:
        content = _FROM_PREFIX.sub("", turn.content)
        if content == prev:
            continue
        prev = content
        header = "### Human" if turn.role == "user" else "### Assistant"
        out.append(f"{header}\n{content}")
    return out


class CognitiveAggregator:
    def __init__(
        self,
        persona: Persona,
        *,
        ethics: EthicsFramework,
        shift: ContextShiftEngine,
        symbolic: SymbolicReasoner,
        causal: CausalReasoner,
        integration: IntegrationScorer,
        episodic: EpisodicMemory,
        metacognition: Metacognition,
        interpreter: Optional[PipelineInterpreter] = None,
        orchestrated: Optional[ChatModel] = None,
        base: Optional[ChatModel] = None,
        bus: Optional[EventBus] = None,
        culture: str = "",
        temperature: float = 0.7,
        max_tokens: int = 400,
    ):
        self.persona = persona
        self.ethics = ethics
        self.shift = shift
        self.symbolic = symbolic
        self.causal = causal
        self.integration = integration
        self.episodic = episodic
        self.metacognition = metacognition
        self.interpreter = interpreter
        self.orchestrated = orchestrated
        self.base = base
        self.bus = bus
        self.culture = culture
        self.temperature = float(temperature)
        self.max_tokens = int(max_tokens)

        self.shift_state = ShiftState()
        self.last_topic = ""
        self.response_count = 0
        self.last_annotations: Optional[Annotations] = None
        # Set on every REFLECT_EVERY-th reply; the shell takes it once and shows it.
        self.last_reflection: Optional[Reflection] = None

    async def _stage(self, ann: Annotations, name: str, fn: Callable[[], Awaitable[Optional[str]]]) -> Optional[str]:
        try:
            note = await fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            log.warning("advisory stage failed", extra={"extra": {"stage": name, "err": f"{type(e).__name__}: {e}"}})
            ann.outcomes[name] = "failed"
            return None
        if name not in ann.outcomes:
            ann.outcomes[name] = "noted" if note else "silent"
        return note

    # ---- stages ----

    async def _pre_thoughts(self, text: str, ann: Annotations) -> Optional[str]:
        pt = await self.persona.respond(text)
        thoughts = [
            t
            for t in pt.inner_thoughts
            if t and not t.startswith(_THOUGHT_PREFIX_BLOCK) and not any(s in t for s in _THOUGHT_SUBSTR_BLOCK)
        ][:3]
        approach = (pt.cognitive_approach or "").strip()
        if approach and approach != "direct engagement":
            thoughts.append(f"cognitive approach: {approach}")
        ann.thoughts = thoughts
        return "; ".join(thoughts) or None

    async def _recall(self, text: str) -> Optional[str]:
        episodes = await self.episodic.retrieve_similar(text, 3, 0.65)
        summaries = [str(e.metadata.get("summary") or e.summary) for e in episodes[:2]]
        summaries = [s for s in summaries if s]
        if not summaries:
            return None
        return f"[Recalled: {'; '.join(summaries)}]"

    async def _ethics(self, text: str, ann: Annotations) -> Optional[Refused]:
        action = ActionDescriptor(
            name="generate_response",
            description=f"Respond to user input: {text[:120]}",
            parameters={"persona_name": self.persona.name, "input_length": len(text)},
            potential_effects=["Speak to the user", "Influence user's thinking"],
        )
        context = ActionContext(agent_id=self.persona.name, environment="immersive_session", state={"mode": "interactive"})
        refused: List[Refused] = []

        async def _run() -> Optional[str]:
            verdict = await self.ethics.evaluate(action, context)
            if not verdict.permitted:
                refused.append(
                    Refused(
                        text=f"I'm unable to respond to that in this context. {verdict.reasoning}".strip(),
                        reasoning=verdict.reasoning,
                    )
                )
                return None
            if verdict.requires_human_approval:
                return f"[Ethical caution: {verdict.reasoning}]"
            return None

        ann.ethics = await self._stage(ann, "ethics", _run)
        if refused:
            ann.outcomes["ethics"] = "noted"
        self.metacognition.add_step(TraceStepKind.VALIDATION, ann.ethics or "Ethics: clear", "Ethical check")
        return refused[0] if refused else None

    async def _context_shift(self, text: str) -> Optional[str]:
        topic = classify_topic(text) or self.last_topic
        prev = self.last_topic
        new_state = await self.shift.advance(self.shift_state, [topic])
        note = None
        if topic != prev and new_state.compression > 0.3:
            note = (
                f"(Conceptual leap: {prev or 'open conversation'} → {topic or 'open conversation'}, "
                f"resources at {new_state.resources / 100:.0%}, compression={new_state.compression:.2f})"
            )
        self.shift_state = new_state
        self.last_topic = topic
        return note

    async def _symbolic(self, text: str, ann: Annotations) -> Optional[str]:
        if "?" not in text and len(words(text)) <= 10:
            ann.outcomes["symbolic"] = "skipped"
            return None
        res = await self.symbolic.hybrid_reason(text, ReasoningMode.SYMBOLIC_FIRST)
        if not res.answer:
            return None
        return f"[Symbolic: {res.answer[:120]}]"

    async def _causal(self, text: str, ann: Annotations) -> Optional[str]:
        terms = extract_causal_terms(text)
        if terms is None:
            ann.outcomes["causal"] = "skipped"
            return None
        explanation = await self.causal.explain(terms.effect, [terms.cause], build_graph(terms))
        if not explanation.narrative:
            return None
        return f"[Causal: {explanation.narrative[:150]}]"

    async def _phi(self, history: Sequence[ConversationTurn], ann: Annotations, chosen: List[ChatModel]) -> Optional[str]:
        recent = list(history)[-HISTORY_FOR_PHI:]
        users = sum(1 for t in recent if t.role == "user")
        bots = sum(1 for t in recent if t.role == "assistant")
        if not users or not bots:
            ann.outcomes["integration"] = "skipped"
            return None
        total = len(recent)
        pathways = [
            Pathway(name="user", synapses=total, activations=users, weight=1.0),
            Pathway(name=self.persona.name, synapses=total, activations=bots, weight=1.0),
        ]
        phi = (await self.integration.compute(pathways)).score
        if phi >= PHI_HIGH and self.orchestrated is not None:
            chosen[0] = self.orchestrated
        elif phi < PHI_LOW and self.base is not None:
            chosen[0] = self.base
        log.debug("integration score", extra={"extra": {"phi": phi, "backend": chosen[0].describe()}})
        return f"Phi={phi:.2f}"

    # ---- public ----

    async def aggregate(self, text: str, history: Sequence[ConversationTurn], backend: ChatModel) -> AggregateResult:
        ann = Annotations()
        self.last_annotations = ann

        await self._stage(ann, "pre_thought", lambda: self._pre_thoughts(text, ann))
        ann.memory = await self._stage(ann, "memory", lambda: self._recall(text))

        self.metacognition.start_trace()
        self.metacognition.add_step(TraceStepKind.OBSERVATION, f"Input: {text[:80]}", "User query received")

        refused = await self._ethics(text, ann)
        if refused is not None:
            self.metacognition.end_trace(refused.text[:40], False)
            log.info("turn refused by ethics gate", extra={"extra": {"reason": refused.reasoning}})
            return refused

        ann.context_shift = await self._stage(ann, "context_shift", lambda: self._context_shift(text))
        self.metacognition.add_step(TraceStepKind.INFERENCE, ann.context_shift or "No shift", "Context tracking")

        ann.reasoning = await self._stage(ann, "symbolic", lambda: self._symbolic(text, ann))
        if ann.reasoning:
            self.metacognition.add_step(TraceStepKind.INFERENCE, ann.reasoning, "Symbolic reasoning")
        ann.causal = await self._stage(ann, "causal", lambda: self._causal(text, ann))
        if ann.causal:
            self.metacognition.add_step(TraceStepKind.INFERENCE, ann.causal, "Causal reasoning")

        chosen = [backend]
        ann.integration = await self._stage(ann, "integration", lambda: self._phi(history, ann, chosen))
        return Proceeded(annotations=ann, backend=chosen[0])

    def build_prompt(self, text: str, ann: Annotations, history: Sequence[ConversationTurn]) -> str:
        parts: List[str] = ["### System", self.persona.system_prompt(), "", language_instruction(text, self.culture)]
        if ann.thoughts:
            parts += ["", "YOUR PRE-THOUGHTS (inner dialog and symbolic reasoning before you speak):"]
            parts += [f"- {t}" for t in ann.thoughts]
            parts.append("Let these inform your response naturally — do not list them explicitly.")
        state = ann.cognitive_state()
        if state:
            parts += ["", "COGNITIVE STATE:"] + state
        if self.interpreter is not None and (is_pipeline_related(text) or self.interpreter.last_context):
            parts += [
                "",
                "PIPELINE CONTEXT: When asked for examples, show real usage like:",
                "- ArxivSearch 'neural networks' | Summarize",
                "- WikiSearch 'quantum computing'",
                f"You have {len(self.interpreter.registry)} pipeline tokens available.",
            ]
            self.interpreter.last_context = None
        turns = history_block(history)
        if turns:
            parts.append("")
            parts.append("\n\n".join(turns))
        parts += ["", "### Assistant"]
        return "\n".join(parts)

    async def respond(self, text: str, history: Sequence[ConversationTurn], backend: ChatModel) -> str:
        """Full conversational path: annotate, prompt, generate, clean, then update session state."""
        result = await self.aggregate(text, history, backend)
        if isinstance(result, Refused):
            return result.text

        prompt = self.build_prompt(text, result.annotations, history)
        try:
            raw = await result.backend.agenerate(prompt, temperature=self.temperature, max_tokens=self.max_tokens)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            log.warning("generation failed", extra={"extra": {"backend": result.backend.describe(), "err": str(e)}})
            self.metacognition.end_trace("generation failed", False)
            return TROUBLE_REPLY

        reply = clean_response(raw, self.persona.name)
        await self._after_reply(text, reply)
        return reply

    def take_reflection(self) -> str:
        """One-line summary of the pending reflection, e.g. `[[metacognition]] Q=0.72 | ...`; "" when none."""
        r, self.last_reflection = self.last_reflection, None
        if r is None:
            return ""
        line = f"[[metacognition]] Q={r.quality_score:.2f}"
        if r.improvements:
            line += f" | {r.improvements[0]}"
        return line

    async def _after_reply(self, text: str, reply: str) -> None:
        self.metacognition.add_step(TraceStepKind.CONCLUSION, reply[:80], "Response generated")
        self.metacognition.end_trace(reply[:40], True)
        self.response_count += 1
        if self.response_count % REFLECT_EVERY == 0:
            r = self.metacognition.reflect()
            self.last_reflection = r
            log.info(
                "metacognitive reflection",
                extra={"extra": {"quality": r.quality_score, "improvements": r.improvements}},
            )
        self.persona.update_emotion(text, reply)

        episode = {
            "branch": "conversation",
            "context": f"{self.persona.name}: {text[:80]}",
            "outcome": "Conversation turn",
            "metadata": {
                "summary": f"Q: {text[:60]} → {reply[:60]}",
                "persona": self.persona.name,
                "topic": self.last_topic,
            },
        }
        if self.bus is not None:
            self.bus.publish(TURN_COMPLETED, episode)
            return
        try:
            await self.episodic.store_episode(**episode)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            log.warning("episode store failed", extra={"extra": {"err": str(e)}})
