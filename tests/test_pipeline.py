from __future__ import annotations

import asyncio

import pytest

from cogshell.errors import PipelineSyntaxError
from cogshell.pipeline import NLTranslator, PipelineInterpreter, is_pipeline_related, parse_step, split_pipeline
from cogshell.tokens import TokenRegistry


def test_parse_step_quoting_forms():
    assert parse_step("ArxivSearch 'neural networks'") == ("ArxivSearch", "neural networks")
    assert parse_step('WikiSearch "quantum computing"') == ("WikiSearch", "quantum computing")
    assert parse_step("Fetch https://example.org") == ("Fetch", "https://example.org")
    assert parse_step("Summarize") == ("Summarize", "")


def test_parse_step_rejects_non_identifier():
    with pytest.raises(PipelineSyntaxError):
        parse_step("'just a quote'")


def test_split_pipeline_drops_empty_segments():
    assert split_pipeline("A 'x' |  | B ") == ["A 'x'", "B"]


def test_steps_run_in_order_and_share_state(tokens):
    interp = PipelineInterpreter(tokens)
    run = asyncio.run(interp.run("ArxivSearch 'graphs' | Summarize"))
    assert [s.status for s in run.steps] == ["ok", "ok"]
    assert interp.state.output == "summary of: papers about graphs"
    assert interp.state.query == "graphs"
    assert run.summary.startswith("I ran your 2-step pipeline. Here's what I found: summary of: papers about graphs")


def test_failing_step_does_not_abort_chain(tokens):
    interp = PipelineInterpreter(tokens)
    run = asyncio.run(interp.run("ArxivSearch 'x' | Explode | Summarize"))
    assert [s.status for s in run.steps] == ["ok", "error", "ok"]
    text = run.render()
    assert "Step error: boom" in text
    assert interp.state.output == "summary of: papers about x"


def test_unknown_token_suggestions(tokens):
    interp = PipelineInterpreter(tokens)
    run = asyncio.run(interp.run("Arxiv 'x' | Foo"))
    assert run.steps[0].status == "unknown"
    assert run.steps[0].suggestions == ["ArxivSearch"]
    assert run.steps[1].suggestions == []
    text = run.render()
    assert "Unknown token: Arxiv\nDid you mean: ArxivSearch?" in text
    assert "Unknown token: Foo" in text


def test_empty_output_summary():
    reg = TokenRegistry()
    reg.register("Noop", "does nothing", lambda s, a: s)
    run = asyncio.run(PipelineInterpreter(reg).run("Noop"))
    assert run.summary == "I ran your 1-step pipeline successfully."


def test_run_single(tokens):
    interp = PipelineInterpreter(tokens)
    assert asyncio.run(interp.run_single("hello there")) is None
    assert asyncio.run(interp.run_single("SetTopic 'physics'")) == "I executed SetTopic successfully."
    assert interp.state.topic == "physics"
    res = asyncio.run(interp.run_single("ArxivSearch cats"))
    assert res == "I executed ArxivSearch. Result: papers about cats"
    assert asyncio.run(interp.run_single("Explode")) == "Error executing Explode: boom"


def test_token_must_return_state():
    reg = TokenRegistry()
    reg.register("Bad", "returns junk", lambda s, a: "junk")
    res = asyncio.run(PipelineInterpreter(reg).run_single("Bad"))
    assert res is not None and res.startswith("Error executing Bad:")


def test_duplicate_token_rejected():
    reg = TokenRegistry()
    reg.register("A", "a", lambda s, a: s)
    with pytest.raises(ValueError):
        reg.register("A", "again", lambda s, a: s)


def test_listing_and_help_mark_pipeline_context(tokens):
    interp = PipelineInterpreter(tokens)
    text = interp.list_tokens()
    assert text.startswith(f"I have {len(tokens)} pipeline tokens available.")
    assert "  ArxivSearch: Search arXiv for papers on a topic" in text
    assert interp.last_context == "pipeline_tokens"
    interp.last_context = None
    assert "ArxivSearch 'neural networks' | Summarize" in interp.help_text()
    assert interp.last_context == "pipeline_help"


def test_is_pipeline_related():
    assert is_pipeline_related("show me how to use pipelines")
    assert not is_pipeline_related("nice weather today")


def test_nl_translator(tokens):
    tr = NLTranslator(tokens)
    assert tr.translate("search arxiv for transformers") == "ArxivSearch 'transformers'"
    assert tr.translate("summarize the last result") == "Summarize 'the last result'"
    assert tr.translate("papers about Bob's theorem") == "ArxivSearch \"Bob's theorem\""
    # WikiSearch is not registered here, so its patterns are skipped.
    assert tr.translate("wikipedia rivers") is None
    assert tr.translate("good morning") is None
