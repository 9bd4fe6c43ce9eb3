from __future__ import annotations

import asyncio

from pydantic import BaseModel

from cogshell.pipeline import NLTranslator, PipelineInterpreter
from cogshell.router import CommandRouter
from cogshell.skills import SkillRegistry
from cogshell.tools import ToolFactory, ToolRegistry, ToolSpec, builtin_tools


def ask(shell, text: str) -> str:
    reply = shell.handle(text)
    assert reply.kind == "command", (text, reply)
    return reply.text


def test_token_listing_and_pipeline_help(shell, tokens):
    assert ask(shell, "tokens").startswith(f"I have {len(tokens)} pipeline tokens available.")
    assert "ArxivSearch 'neural networks' | Summarize" in ask(shell, "pipeline help")


def test_pipeline_and_single_token(shell):
    text = ask(shell, "ArxivSearch 'graphs' | Summarize")
    assert text == "I ran your 2-step pipeline. Here's what I found: summary of: papers about graphs"
    assert ask(shell, "SetTopic 'physics'") == "I executed SetTopic successfully."
    assert shell.interpreter.state.topic == "physics"


def test_pipeline_reports_unknown_tokens(shell):
    text = ask(shell, "Arxiv 'x' | Foo")
    assert "Unknown token: Arxiv\nDid you mean: ArxivSearch?" in text
    assert "Unknown token: Foo" in text
    assert text.endswith("I ran your 2-step pipeline successfully.")


def test_natural_language_is_translated_to_a_token(shell):
    assert ask(shell, "search arxiv for graphs") == "I executed ArxivSearch. Result: papers about graphs"


def test_skills_and_connections(shell):
    assert ask(shell, "list skills").startswith("I haven't learned any skills yet.")
    assert ask(shell, "learn about rivers") == "I learned about rivers and created a research skill for it."
    assert "Research_rivers" in ask(shell, "list skills")
    assert ask(shell, "connections").startswith("I haven't learned any patterns yet.")
    assert ask(shell, "run rivers") == "I ran the Research_rivers skill. It has 1 steps."
    conn = ask(shell, "connections")
    assert conn.startswith("I have 1 learned patterns across 2 concepts.")
    assert "Research_rivers <-> web_search (x1)" in conn
    assert ask(shell, "run nothing-like-this").startswith("I don't know a skill called 'nothing-like-this'.")


def test_tool_use_and_stats(shell):
    assert ask(shell, "tool calculator 2+3") == "**calculator result:**\n\n2+3 = 5"
    assert ask(shell, 'use tool calculator {"expression": "2*4"}') == "**calculator result:**\n\n2*4 = 8"
    stats = ask(shell, "tool stats")
    assert stats.startswith("I've learned 1 patterns with a 100% success rate. Total usage: 2.")
    assert "calculator: 2 calls, 2 succeeded" in stats


def test_tool_use_misses_and_usage(shell):
    miss = ask(shell, "tool calculatr 1+1")
    assert miss.startswith("I don't have a tool called 'calculatr'. Did you mean 'calculator'?")
    usage = ask(shell, "tool calculator")
    assert usage.startswith("**Tool: calculator**")
    assert '"expression"' in usage
    assert ask(shell, "tool calculator {not json").startswith("**calculator failed:**")


def test_list_tools(shell):
    assert ask(shell, "list tools").startswith("I have 3 tools available. Key ones: calculator, web_search, url_fetch")


def test_add_and_smart_tool(shell):
    assert ask(shell, "add tool calc") == "I created a new calculator tool. It's ready to use."
    assert ask(shell, "add tool poetry") == "I created a custom 'poetry' tool using AI. It's ready to use."
    assert "poetry" in shell.tools
    assert ask(shell, "smart tool for arithmetic math") == "I found the best tool for that: calculator."
    made = ask(shell, "create a tool that translates recipes")
    assert made.startswith("Done! I created a 'TranslatesRecipesTool' tool that translates recipes.")


def test_tool_creation_confirmation_is_consumed_once(shell, fake_llm):
    first = shell.handle("can you create a tool for converting units")
    assert first.kind == "conversation"
    assert shell.router.pending is not None
    done = shell.handle("yes")
    assert done.kind == "command"
    assert done.text == "Done! I created 'ConvertingUnitsTool'. It's ready to use."
    assert "ConvertingUnitsTool" in shell.tools
    assert shell.router.pending is None
    again = shell.handle("yes")
    assert again.kind == "conversation"


def test_google_truncates_long_results(shell):
    class QIn(BaseModel):
        query: str

    class QOut(BaseModel):
        text: str

    shell.tools.register(
        ToolSpec(
            name="web_search",
            description="fake search",
            input_model=QIn,
            output_model=QOut,
            handler=lambda inp: QOut(text="x" * 600),
            render=lambda out: out.text,
        ),
        replace_existing=True,
    )
    text = ask(shell, "google search cats")
    assert text == "I found results for 'cats':\n\n" + "x" * 500 + "..."


def test_recall_and_memory_stats(shell):
    assert ask(shell, "recall zebras") == "I don't have any specific memories about 'zebras'."
    shell.memory.store_episode("conversation", "Iris: rivers and lakes", "Conversation turn", {"summary": "rivers chat"})
    text = ask(shell, "remember rivers and lakes")
    assert text.startswith("Here's what I remember about 'rivers and lakes':")
    assert "rivers chat" in text
    stats = ask(shell, "memory stats")
    assert "Total stored episodes: 1" in stats
    assert "Current session turns: 0" in stats


def test_mind_rules(shell):
    assert ask(shell, "mind state").startswith("Autonomous Mind State\nStatus: Dormant")
    assert ask(shell, "start mind").startswith("Autonomous mind activated.")
    assert shell.mind.active
    assert ask(shell, "think about volcanoes") == (
        "I'll explore 'volcanoes' in the background and let you know if I find something interesting!"
    )
    assert ask(shell, "add interest tides").startswith("Added 'tides' to my interests.")
    assert "volcanoes" in shell.mind.interests and "tides" in shell.mind.interests
    assert "Interests: volcanoes, tides" in ask(shell, "interests")
    assert ask(shell, "stop mind").startswith("Autonomous mind paused.")
    assert not shell.mind.active


def test_emergence_researches_and_hands_topic_to_mind(shell):
    text = ask(shell, "emergence coral reefs")
    assert text == "I completed an emergence cycle on coral reefs. I've synthesized new patterns from the research."
    assert "coral reefs" in shell.mind.interests
    assert shell.interpreter.state.output == "summary of: papers about coral reefs"


def test_index_rules(shell, config):
    root = config.index_roots[0]
    with open(f"{root}/notes.md", "w", encoding="utf-8") as f:
        f.write("Volcanic islands form over mantle hotspots.\n")
    full = ask(shell, "reindex")
    assert full.startswith("Full reindex complete! Processed 1 files, indexed 1 chunks")
    assert ask(shell, "reindex incremental") == "No files have changed since last index. Workspace is up to date!"
    hits = ask(shell, "index search volcanic islands form over mantle hotspots")
    assert hits.startswith("Found 1 relevant matches:")
    assert "notes.md (chunk 1, score:" in hits
    stats = ask(shell, "index stats")
    assert "Indexed files: 1" in stats
    assert "Vector dimensions: 384" in stats
    assert "Last run:" in stats


def _bare_router(memory, tokens) -> CommandRouter:
    tools = ToolRegistry(memory)
    for spec in builtin_tools():
        tools.register(spec)
    return CommandRouter(
        interpreter=PipelineInterpreter(tokens),
        translator=NLTranslator(tokens),
        tools=tools,
        factory=ToolFactory(tools),
        skills=SkillRegistry(memory, tools=tools),
        memory=memory,
    )


def test_missing_mind_and_index(memory, tokens):
    router = _bare_router(memory, tokens)
    for text in ("mind state", "start mind", "think about tides", "interests"):
        assert asyncio.run(router.route(text)) == "Autonomous mind is not initialized."
    for text in ("reindex", "index stats", "index search lava"):
        assert asyncio.run(router.route(text)) == "The workspace index is not available."


def test_unmatched_text_falls_through(memory, tokens):
    router = _bare_router(memory, tokens)
    assert asyncio.run(router.route("what a lovely afternoon")) is None
    assert asyncio.run(router.route("")) is None


def test_rule_order_skills_before_tokens(memory, tokens):
    # "learn about" must reach the skill rule even though "learn" also starts the add-tool rule.
    router = _bare_router(memory, tokens)
    assert asyncio.run(router.route("learn about tides")).startswith("I learned about tides")
