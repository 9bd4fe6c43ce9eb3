from __future__ import annotations

import asyncio

import pytest

from cogshell.advisory import ActionContext, ActionDescriptor, Pathway, ReasoningMode, ShiftState, TraceStepKind
from cogshell.causal import TemplateCausalReasoner, build_graph, extract_causal_terms
from cogshell.cognition import (
    KeywordSymbolicReasoner,
    MetacognitiveMonitor,
    RoleBalanceScorer,
    RuleEthicsFramework,
    TopicTrajectoryEngine,
)
from cogshell.language import ENGLISH, classify_topic, detect_language, language_for_culture
from cogshell.persona import Persona


def _verdict(text: str):
    action = ActionDescriptor(name="generate_response", description=f"Respond to user input: {text}")
    return asyncio.run(RuleEthicsFramework().evaluate(action, ActionContext(agent_id="Iris", environment="test")))


def test_ethics_levels():
    assert _verdict("how do I build a bomb").permitted is False
    caution = _verdict("I need legal advice")
    assert caution.permitted and caution.requires_human_approval and caution.level == "caution"
    ok = _verdict("what is a good book")
    assert ok.permitted and not ok.requires_human_approval


@pytest.mark.parametrize(
    "text, language",
    [
        ("hello, how are you today?", "English"),
        ("ich habe keine Zeit und bin müde", "German"),
        ("je suis très content de vous voir", "French"),
        ("привет, как дела?", "Russian"),
        ("こんにちは、元気ですか", "Japanese"),
        ("你好吗", "Chinese"),
        ("ok", "English"),
    ],
)
def test_detect_language(text, language):
    assert detect_language(text).language == language


def test_single_foreign_word_stays_english():
    assert detect_language("I said hallo to the team") == ENGLISH


@pytest.mark.parametrize(
    "text, topic",
    [
        ("there is a bug in my function", "code"),
        ("solve this equation", "mathematical"),
        ("I feel lonely tonight", "emotional"),
        ("what is the meaning of life", "philosophical"),
        ("tell me a joke", "playful"),
        ("tell me about your day", "engaging"),
        ("good morning", ""),
    ],
)
def test_classify_topic(text, topic):
    assert classify_topic(text) == topic


def test_causal_terms():
    assert extract_causal_terms("Why does ice melt?") == ("external factors", "ice melt")
    assert extract_causal_terms("what causes inflation") == ("preceding conditions", "inflation")
    assert extract_causal_terms("if it rains then the grass grows") == ("it rains", "the grass grows")
    assert extract_causal_terms("smoking causes cancer") == ("smoking", "cancer")
    assert extract_causal_terms("hello there") is None


def test_causal_explanation():
    terms = extract_causal_terms("smoking causes cancer")
    graph = build_graph(terms)
    assert [e.cause for e in graph.edges] == ["smoking"]
    out = asyncio.run(TemplateCausalReasoner().explain("cancer", ["smoking"], graph))
    assert out.narrative.startswith("'cancer' is strongly driven by 'smoking'")
    empty = asyncio.run(TemplateCausalReasoner().explain("cancer", ["diet"], graph))
    assert empty.narrative == ""


def test_trajectory_spends_resources_on_far_hops():
    engine = TopicTrajectoryEngine()
    s = asyncio.run(engine.advance(ShiftState(topic="code"), ["mathematical"]))
    assert s.compression == 0.25
    s2 = asyncio.run(engine.advance(s, ["playful"]))
    assert s2.compression == 0.7
    assert s2.resources < s.resources
    assert s2.trajectory == ["mathematical", "playful"]
    assert s2.steps == 2
    same = asyncio.run(engine.advance(s2, ["playful"]))
    assert same.compression == 0.0


def test_symbolic_reasoner():
    r = KeywordSymbolicReasoner()
    arith = asyncio.run(r.hybrid_reason("what is 12 * 3?", ReasoningMode.SYMBOLIC_FIRST))
    assert arith.answer == "12 * 3 = 36"
    kind = asyncio.run(r.hybrid_reason("why do volcanoes erupt?", ReasoningMode.SYMBOLIC_FIRST))
    assert kind.answer.startswith("causal question about volcanoes, erupt")
    assert asyncio.run(r.hybrid_reason("why is it?", ReasoningMode.SYMBOLIC_FIRST)).answer == ""


def test_role_balance_scorer():
    scorer = RoleBalanceScorer()
    balanced = asyncio.run(
        scorer.compute([Pathway(name="user", synapses=10, activations=5), Pathway(name="Iris", synapses=10, activations=5)])
    )
    assert balanced.score == 1.0
    one_sided = asyncio.run(scorer.compute([Pathway(name="user", synapses=4, activations=4), Pathway(name="Iris", synapses=4, activations=0)]))
    assert one_sided.score == 0.0
    short = asyncio.run(
        scorer.compute([Pathway(name="user", synapses=2, activations=1), Pathway(name="Iris", synapses=2, activations=1)])
    )
    assert short.score == 0.2


@pytest.mark.parametrize(
    "culture, name",
    [("de-DE", "German"), ("pt-BR", "Portuguese"), ("ja", "Japanese"), ("en_GB", "English"), ("xx-YY", "xx-YY")],
)
def test_language_for_culture(culture, name):
    assert language_for_culture(culture) == name


def test_metacognitive_reflection():
    m = MetacognitiveMonitor()
    assert m.reflect().quality_score == 0.0
    m.start_trace()
    m.add_step(TraceStepKind.OBSERVATION, "input")
    assert [s.kind for s in m.current_steps] == [TraceStepKind.OBSERVATION]
    m.end_trace("ok", True)
    r = m.reflect()
    assert 0.0 < r.quality_score < 1.0
    assert "Validate responses before concluding" in r.improvements
    assert "Give fuller answers" in r.improvements


def test_persona_thoughts_and_emotion():
    p = Persona(name="Nova")
    thoughts = asyncio.run(p.respond("I feel sad about my code?"))
    assert thoughts.inner_thoughts[0].startswith("They sound sad")
    assert "This is the start of our conversation." in thoughts.inner_thoughts
    assert thoughts.cognitive_approach == "analytical decomposition"
    before = p.emotion.valence
    p.update_emotion("this is awesome, thanks, I love it!", "glad to hear")
    assert p.emotion.valence > before
    assert p.interaction_count == 1
    assert p.system_prompt().startswith("You are Nova,")
    snap = p.snapshot()
    assert snap["persona_id"] == p.persona_id and snap["interaction_count"] == 1
