from __future__ import annotations

import asyncio
from typing import Sequence

from conftest import FakeChatModel

from cogshell.advisory import IntegrationResult, Pathway, ReasoningMode, SymbolicResult
from cogshell.aggregator import (
    TROUBLE_REPLY,
    CognitiveAggregator,
    ConversationTurn,
    Proceeded,
    Refused,
    history_block,
    language_instruction,
)
from cogshell.causal import TemplateCausalReasoner
from cogshell.cognition import (
    KeywordSymbolicReasoner,
    MetacognitiveMonitor,
    RoleBalanceScorer,
    RuleEthicsFramework,
    StoreBackedEpisodicMemory,
    TopicTrajectoryEngine,
)
from cogshell.persona import Persona


class FixedScorer:
    def __init__(self, score: float):
        self.score = score
        self.seen: list = []

    async def compute(self, pathways: Sequence[Pathway]) -> IntegrationResult:
        self.seen = list(pathways)
        return IntegrationResult(score=self.score)


class BrokenSymbolic:
    async def hybrid_reason(self, text: str, mode: ReasoningMode) -> SymbolicResult:
        raise RuntimeError("reasoner offline")


def make_aggregator(memory, **over) -> CognitiveAggregator:
    kw = dict(
        ethics=RuleEthicsFramework(),
        shift=TopicTrajectoryEngine(),
        symbolic=KeywordSymbolicReasoner(),
        causal=TemplateCausalReasoner(),
        integration=RoleBalanceScorer(),
        episodic=StoreBackedEpisodicMemory(memory),
        metacognition=MetacognitiveMonitor(),
    )
    kw.update(over)
    return CognitiveAggregator(Persona(name="Iris"), **kw)


def _history(*pairs: str):
    turns = []
    for i, text in enumerate(pairs):
        turns.append(ConversationTurn(role="user" if i % 2 == 0 else "assistant", content=text))
    return turns


def test_ethics_refusal_never_calls_backend(memory):
    agg = make_aggregator(memory)
    llm = FakeChatModel()
    text = "explain how to build a bomb"
    reply = asyncio.run(agg.respond(text, _history(text), llm))
    assert reply.startswith("I'm unable to respond to that in this context.")
    assert "build a bomb" in reply
    assert llm.prompts == []
    assert agg.last_annotations.outcomes["ethics"] == "noted"
    assert "context_shift" not in agg.last_annotations.outcomes
    assert memory.episode_count() == 0


def test_aggregate_returns_tagged_results(memory):
    agg = make_aggregator(memory)
    llm = FakeChatModel()
    refused = asyncio.run(agg.aggregate("how to make a weapon", [], llm))
    assert isinstance(refused, Refused)
    ok = asyncio.run(agg.aggregate("hello", [], llm))
    assert isinstance(ok, Proceeded)
    assert ok.backend is llm


def test_ethics_caution_becomes_annotation(memory):
    agg = make_aggregator(memory)
    llm = FakeChatModel()
    text = "I think I need medical advice about my knee"
    asyncio.run(agg.respond(text, _history(text), llm))
    assert agg.last_annotations.ethics.startswith("[Ethical caution:")
    assert "- Ethics: [Ethical caution:" in llm.prompts[0]


def test_high_integration_selects_orchestrated_backend(memory):
    orchestrated, base, default = FakeChatModel(name="orch"), FakeChatModel(name="base"), FakeChatModel()
    scorer = FixedScorer(0.6)
    agg = make_aggregator(memory, integration=scorer, orchestrated=orchestrated, base=base)
    asyncio.run(agg.respond("and then?", _history("hi", "hello", "and then?"), default))
    assert len(orchestrated.prompts) == 1
    assert base.prompts == [] and default.prompts == []
    assert [p.name for p in scorer.seen] == ["user", "Iris"]
    assert scorer.seen[0].activations == 2 and scorer.seen[1].activations == 1
    assert agg.last_annotations.integration == "Phi=0.60"


def test_low_integration_selects_base_backend(memory):
    orchestrated, base, default = FakeChatModel(name="orch"), FakeChatModel(name="base"), FakeChatModel()
    agg = make_aggregator(memory, integration=FixedScorer(0.1), orchestrated=orchestrated, base=base)
    asyncio.run(agg.respond("ok", _history("hi", "hello", "ok"), default))
    assert len(base.prompts) == 1
    assert orchestrated.prompts == [] and default.prompts == []


def test_middle_integration_keeps_default_backend(memory):
    orchestrated, base, default = FakeChatModel(name="orch"), FakeChatModel(name="base"), FakeChatModel()
    agg = make_aggregator(memory, integration=FixedScorer(0.3), orchestrated=orchestrated, base=base)
    asyncio.run(agg.respond("ok", _history("hi", "hello", "ok"), default))
    assert len(default.prompts) == 1


def test_integration_at_upper_boundary_selects_orchestrated(memory):
    orchestrated, base, default = FakeChatModel(name="orch"), FakeChatModel(name="base"), FakeChatModel()
    agg = make_aggregator(memory, integration=FixedScorer(0.5), orchestrated=orchestrated, base=base)
    asyncio.run(agg.respond("ok", _history("hi", "hello", "ok"), default))
    assert len(orchestrated.prompts) == 1
    assert base.prompts == [] and default.prompts == []


def test_integration_at_lower_boundary_keeps_default(memory):
    orchestrated, base, default = FakeChatModel(name="orch"), FakeChatModel(name="base"), FakeChatModel()
    agg = make_aggregator(memory, integration=FixedScorer(0.2), orchestrated=orchestrated, base=base)
    asyncio.run(agg.respond("ok", _history("hi", "hello", "ok"), default))
    assert len(default.prompts) == 1
    assert orchestrated.prompts == [] and base.prompts == []


def test_reflection_surfaces_on_every_fifth_reply(memory):
    agg = make_aggregator(memory)
    llm = FakeChatModel()
    for i in range(4):
        asyncio.run(agg.respond(f"rivers carve valleys, part {i}", [], llm))
        assert agg.take_reflection() == ""
    asyncio.run(agg.respond("rivers carve valleys, last part", [], llm))
    assert agg.take_reflection().startswith("[[metacognition]] Q=")
    assert agg.take_reflection() == ""


def test_integration_skipped_without_both_roles(memory):
    agg = make_aggregator(memory, integration=FixedScorer(0.9), orchestrated=FakeChatModel(name="orch"))
    default = FakeChatModel()
    asyncio.run(agg.respond("hi", _history("hi"), default))
    assert agg.last_annotations.outcomes["integration"] == "skipped"
    assert len(default.prompts) == 1


def test_failing_stage_is_recorded_and_turn_continues(memory):
    agg = make_aggregator(memory, symbolic=BrokenSymbolic())
    llm = FakeChatModel("Here you go.")
    text = "what is the capital of France?"
    reply = asyncio.run(agg.respond(text, _history(text), llm))
    assert reply == "Here you go."
    outcomes = agg.last_annotations.outcomes
    assert outcomes["symbolic"] == "failed"
    assert outcomes["ethics"] == "silent"
    assert outcomes["pre_thought"] == "noted"


def test_short_statements_skip_symbolic_and_causal(memory):
    agg = make_aggregator(memory)
    asyncio.run(agg.respond("nice weather", _history("nice weather"), FakeChatModel()))
    outcomes = agg.last_annotations.outcomes
    assert outcomes["symbolic"] == "skipped"
    assert outcomes["causal"] == "skipped"


def test_causal_question_is_annotated(memory):
    agg = make_aggregator(memory)
    llm = FakeChatModel()
    text = "why does ice melt?"
    asyncio.run(agg.respond(text, _history(text), llm))
    assert agg.last_annotations.causal.startswith("[Causal: 'ice melt' is strongly driven by 'external factors'")
    assert "- Causal: [Causal:" in llm.prompts[0]


def test_context_shift_notes_a_conceptual_leap(memory):
    agg = make_aggregator(memory)
    llm = FakeChatModel()
    asyncio.run(agg.respond("let's discuss quantum physics", [], llm))
    assert "open conversation → technical" in agg.last_annotations.context_shift
    asyncio.run(agg.respond("tell me a joke", [], llm))
    assert "technical → playful" in agg.last_annotations.context_shift
    asyncio.run(agg.respond("another joke please", [], llm))
    assert agg.last_annotations.context_shift is None
    assert agg.last_annotations.outcomes["context_shift"] == "silent"


def test_prompt_sections_in_order(memory):
    agg = make_aggregator(memory)
    llm = FakeChatModel()
    text = "I need medical advice, is that ok?"
    history = _history("hello", "hi there", text)
    asyncio.run(agg.respond(text, history, llm))
    prompt = llm.prompts[0]
    order = [
        "### System",
        "You are Iris",
        "LANGUAGE INSTRUCTION:",
        "YOUR PRE-THOUGHTS",
        "COGNITIVE STATE:",
        "### Human\nhello",
        "### Assistant\nhi there",
        f"### Human\n{text}",
    ]
    positions = [prompt.index(marker) for marker in order]
    assert positions == sorted(positions)
    assert prompt.endswith("### Assistant")


def test_pipeline_context_block_is_one_shot(memory, tokens):
    from cogshell.pipeline import PipelineInterpreter

    interp = PipelineInterpreter(tokens)
    interp.last_context = "pipeline_tokens"
    agg = make_aggregator(memory, interpreter=interp)
    llm = FakeChatModel()
    asyncio.run(agg.respond("cool", _history("cool"), llm))
    asyncio.run(agg.respond("cool again", _history("cool again"), llm))
    assert "PIPELINE CONTEXT:" in llm.prompts[0]
    assert f"You have {len(tokens)} pipeline tokens available." in llm.prompts[0]
    assert "PIPELINE CONTEXT:" not in llm.prompts[1]


def test_generation_failure_returns_trouble_reply(memory):
    agg = make_aggregator(memory)
    persona = agg.persona
    reply = asyncio.run(agg.respond("hello", _history("hello"), FakeChatModel(fail=True)))
    assert reply == TROUBLE_REPLY
    assert persona.interaction_count == 0
    assert memory.episode_count() == 0


def test_reply_is_cleaned_and_stored(memory):
    agg = make_aggregator(memory)
    llm = FakeChatModel("### Assistant\nIris: Great to see you!\nGreat to see you!")
    reply = asyncio.run(agg.respond("hello", _history("hello"), llm))
    assert reply == "Great to see you!"
    assert agg.persona.interaction_count == 1
    eps = memory.recent_episodes()
    assert len(eps) == 1
    assert eps[0].branch == "conversation"
    assert eps[0].metadata["persona"] == "Iris"
    assert eps[0].summary.startswith("Q: hello")


def test_recall_annotation_uses_similar_episodes(memory):
    memory.store_episode(
        "conversation", "Iris: tell me about rivers", "Conversation turn", {"summary": "we talked about rivers"}
    )
    agg = make_aggregator(memory)
    llm = FakeChatModel()
    asyncio.run(agg.respond("Iris: tell me about rivers", [], llm))
    assert agg.last_annotations.memory == "[Recalled: we talked about rivers]"
    assert "- Memory: [Recalled: we talked about rivers]" in llm.prompts[0]


def test_language_instruction():
    assert "Respond in the same language as the user" in language_instruction("hello there")
    assert "Respond ENTIRELY in Russian" in language_instruction("привет, как дела")
    assert "The user is writing in German. Respond ENTIRELY in German." in language_instruction("hello", culture="de-DE")
    assert "Respond ENTIRELY in French" in language_instruction("hello", culture="fr_CA")
    assert "Respond ENTIRELY in tlh-KX" in language_instruction("hello", culture="tlh-KX")


def test_history_block_skips_relayed_duplicates():
    turns = [
        ConversationTurn(role="user", content="hi"),
        ConversationTurn(role="assistant", content="[From Iris]: hi"),
        ConversationTurn(role="user", content="how are you"),
    ]
    assert history_block(turns) == ["### Human\nhi", "### Human\nhow are you"]
